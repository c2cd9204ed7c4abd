"""Library for command line flags that select the cluster and scan scope."""

from argparse import ArgumentParser, ArgumentTypeError, BooleanOptionalAction
import logging
import re
from typing import Any

from kgcr.client import ClusterContext
from kgcr.scan import DEFAULT_REQUEST_TIMEOUT, DEFAULT_TIMEOUT, ScanConfig

_LOGGER = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"

_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration such as `30s`, `1m30s` or `500ms` into seconds.

    A plain number is interpreted as seconds.
    """
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        if not value or _DURATION_RE.sub("", value):
            raise ArgumentTypeError(
                f"Invalid duration '{value}', expected a value like 30s or 1m"
            )
        seconds = sum(
            float(amount) * _DURATION_UNITS[unit]
            for amount, unit in _DURATION_RE.findall(value)
        )
    if not seconds > 0:
        raise ArgumentTypeError(f"Duration must be positive: '{value}'")
    return seconds


def add_cluster_flags(args: ArgumentParser) -> None:
    """Add flags for selecting the cluster to connect to."""
    args.add_argument(
        "--kubeconfig",
        type=str,
        default=None,
        help="Path to the kubeconfig file. If not set, uses the KUBECONFIG "
        "environment variable or the default location",
    )
    args.add_argument(
        "--context",
        type=str,
        default=None,
        help="The kubeconfig context to use instead of the current context",
    )


def add_scan_flags(args: ArgumentParser) -> None:
    """Add flags controlling the scope and deadline of the scan."""
    args.add_argument(
        "--namespace",
        "-n",
        type=str,
        default=None,
        help="The namespace to scan for custom resources. If not specified, "
        "the current context's namespace is used",
    )
    args.add_argument(
        "--all-namespaces",
        "-A",
        default=False,
        action=BooleanOptionalAction,
        help="Scan for custom resources across all namespaces",
    )
    args.add_argument(
        "--timeout",
        type=parse_duration,
        default=DEFAULT_TIMEOUT,
        help="Time allowed for the whole scan e.g. 30s or 2m (default 30s)",
    )
    args.add_argument(
        "--request-timeout",
        type=parse_duration,
        default=DEFAULT_REQUEST_TIMEOUT,
        help="Time allowed to list the instances of a single CRD (default 5s)",
    )


def resolve_namespace(
    namespace: str | None, all_namespaces: bool, cluster_context: ClusterContext
) -> str | None:
    """Return the namespace to scan, or None for all namespaces."""
    if all_namespaces:
        return None
    if namespace:
        return namespace
    return cluster_context.namespace or DEFAULT_NAMESPACE


def build_scan_config(
    cluster_context: ClusterContext,
    namespace: str | None,
    all_namespaces: bool,
    timeout: float,
    request_timeout: float,
    **kwargs: Any,  # pylint: disable=unused-argument
) -> ScanConfig:
    """Build the scan configuration from the command line flags."""
    config = ScanConfig(
        namespace=resolve_namespace(namespace, all_namespaces, cluster_context),
        timeout=timeout,
        request_timeout=min(request_timeout, timeout),
    )
    _LOGGER.debug("Scan configuration: %s", config)
    return config
