"""Library for discovering the custom resources in a cluster.

The scan lists every CustomResourceDefinition, keeps the namespaced ones
with a resolvable storage version, and queries the instances of each CRD
on a bounded worker pool. A single deadline covers the whole scan:

- Expiring while the CRDs are listed is fatal, as nothing can be queried.
- Expiring while instances are queried returns what was found so far and
  marks the result as timed out.

Individual CRDs that fail to list (permission denied, not served, network
errors) are skipped and counted in the result, but do not fail the scan.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
import functools
import logging
import os

from .catalog import build_jobs
from .client import ClusterClient
from .exceptions import CatalogException, QueryException
from .manifest import CrdJob, FoundResource, ScanResult
from .task import WorkerPool

__all__ = [
    "ScanConfig",
    "scan",
    "sort_resources",
    "worker_count",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_REQUEST_TIMEOUT = 5.0

# Avoid overwhelming the API server with concurrent list calls
MAX_WORKERS = 20
WORKERS_PER_CPU = 3


@dataclass(frozen=True)
class ScanConfig:
    """Options that control a scan, resolved once from the command line."""

    namespace: str | None = None
    """The namespace to scan, or None to scan all namespaces."""

    timeout: float = DEFAULT_TIMEOUT
    """Seconds allowed for the whole scan."""

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    """Seconds allowed for listing the instances of a single CRD."""

    max_workers: int = MAX_WORKERS
    """The upper bound on concurrent requests."""


def worker_count(
    num_jobs: int, max_workers: int = MAX_WORKERS, cpu_count: int | None = None
) -> int:
    """Return the number of workers to use for the specified number of jobs."""
    if num_jobs <= 0:
        return 0
    cpus = cpu_count or os.cpu_count() or 1
    return max(1, min(max_workers, num_jobs, cpus * WORKERS_PER_CPU))


def sort_resources(resources: Iterable[FoundResource]) -> list[FoundResource]:
    """Sort by CRD, resource, namespace then name."""
    return sorted(resources, key=lambda resource: resource.sort_key)


def _list_resources(
    cluster: ClusterClient, namespace: str | None, job: CrdJob, timeout: float
) -> list[FoundResource]:
    """Worker handler that lists the instances of a single CRD."""
    return [
        FoundResource(
            crd_name=job.crd_name,
            resource_name=job.coordinate.plural,
            namespace=instance_namespace,
            name=name,
        )
        for name, instance_namespace in cluster.list_instances(
            job.coordinate, namespace, timeout
        )
    ]


def _log_failures(errors: list[tuple[CrdJob, Exception]]) -> None:
    forbidden = [
        job.crd_name
        for job, err in errors
        if isinstance(err, QueryException) and err.forbidden
    ]
    if forbidden:
        _LOGGER.debug("Permission denied listing: %s", ", ".join(sorted(forbidden)))
    _LOGGER.warning(
        "Could not list instances of %d CRD(s), %d due to permissions",
        len(errors),
        len(forbidden),
    )


async def scan(cluster: ClusterClient, config: ScanConfig) -> ScanResult:
    """Return every instance of every namespaced CRD in the cluster."""
    loop = asyncio.get_running_loop()
    start = loop.time()
    deadline = start + config.timeout

    try:
        async with asyncio.timeout_at(deadline):
            crds = await asyncio.to_thread(cluster.list_crds, config.timeout)
    except TimeoutError as err:
        raise CatalogException(
            f"Timed out listing CRDs after {config.timeout:g}s"
        ) from err
    _LOGGER.info(
        "Found %d CRDs in the cluster (%0.2fs)", len(crds), loop.time() - start
    )

    jobs = build_jobs(crds)
    if not jobs:
        return ScanResult(namespace=config.namespace, crds=len(crds))

    num_workers = worker_count(len(jobs), config.max_workers)
    pool: WorkerPool[CrdJob, FoundResource] = WorkerPool(
        functools.partial(_list_resources, cluster, config.namespace),
        num_workers,
        config.request_timeout,
        name="kgcr-worker",
    )
    _LOGGER.info(
        "Scanning %d namespaced CRDs in %s with %d workers",
        len(jobs),
        f"namespace {config.namespace}" if config.namespace else "all namespaces",
        num_workers,
    )
    pool_result = await pool.run(jobs, deadline)
    _LOGGER.debug(
        "Listed instances of %d of %d CRDs (%0.2fs)",
        pool_result.completed,
        len(jobs),
        loop.time() - start,
    )

    if pool_result.errors:
        _log_failures(pool_result.errors)

    return ScanResult(
        namespace=config.namespace,
        resources=sort_resources(pool_result.results),
        crds=len(crds),
        jobs=len(jobs),
        failed=pool_result.failed,
        pending=pool_result.pending,
        timed_out=pool_result.timed_out,
    )
