"""
kgcr lists every instance of every namespaced custom resource in a cluster.

The library can be used directly: `kgcr.client.connect` resolves the cluster
connection and `kgcr.scan.scan` runs the concurrent discovery returning a
sorted `kgcr.manifest.ScanResult`.
"""

__all__ = [
    "catalog",
    "client",
    "exceptions",
    "manifest",
    "scan",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
