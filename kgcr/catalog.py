"""Library for selecting the CustomResourceDefinitions to scan."""

from collections.abc import Iterable
import logging

from .manifest import CrdJob, CustomResourceDefinition, QueryCoordinate

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "build_jobs",
]


def build_jobs(crds: Iterable[CustomResourceDefinition]) -> list[CrdJob]:
    """Return a job for every namespaced CRD with a resolvable storage version.

    The query coordinate is computed here once so that workers never need to
    look at the definition itself.
    """
    jobs: list[CrdJob] = []
    for crd in crds:
        if not crd.namespaced:
            _LOGGER.debug("Skipping %s with scope %s", crd.name, crd.scope)
            continue
        if not (version := crd.storage_version):
            _LOGGER.debug("Skipping %s with no declared versions", crd.name)
            continue
        jobs.append(
            CrdJob(
                crd_name=crd.name,
                coordinate=QueryCoordinate(
                    group=crd.group,
                    version=version,
                    plural=crd.plural,
                ),
            )
        )
    return jobs
