"""Exceptions related to kgcr."""

__all__ = [
    "KgcrException",
    "InputException",
    "ClusterConfigException",
    "CatalogException",
    "QueryException",
    "ScanIncompleteError",
]


class KgcrException(Exception):
    """Generic base exception used for this library."""


class InputException(KgcrException):
    """Raised when objects or values are not formatted as expected."""


class ClusterConfigException(KgcrException):
    """Raised when the cluster connection or credentials can't be resolved."""


class CatalogException(KgcrException):
    """Raised when the CustomResourceDefinitions can't be listed."""


class QueryException(KgcrException):
    """Raised when listing the instances of a single CRD fails."""

    def __init__(self, resource: str, message: str, forbidden: bool = False) -> None:
        super().__init__(f"Listing {resource} failed: {message}")
        self.resource = resource
        self.forbidden = forbidden


class ScanIncompleteError(KgcrException):
    """Raised when the deadline expired before all CRDs were scanned."""

    def __init__(self, timeout: float, pending: int) -> None:
        super().__init__(
            f"Scan incomplete: deadline of {timeout:g}s exceeded with "
            f"{pending} CRD(s) not scanned"
        )
        self.timeout = timeout
        self.pending = pending
