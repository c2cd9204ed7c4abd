"""Representation of custom resource types and the instances found in a cluster.

A `CustomResourceDefinition` is parsed from the raw `apiextensions.k8s.io/v1`
object returned by the API server. Each eligible definition is turned into a
`CrdJob` which carries the `QueryCoordinate` used to list its instances. The
instances discovered are reported as `FoundResource` objects, collected into
a `ScanResult`.
"""

from dataclasses import dataclass, field
import logging
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "CustomResourceDefinition",
    "CrdVersion",
    "QueryCoordinate",
    "CrdJob",
    "FoundResource",
    "ScanResult",
]

_LOGGER = logging.getLogger(__name__)


CRD_KIND = "CustomResourceDefinition"
NAMESPACED_SCOPE = "Namespaced"
CLUSTER_SCOPE = "Cluster"


class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    def compact_dict(self) -> dict[str, Any]:
        """Return a compact dictionary representation of the object."""
        return self.to_dict()

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True)
class CrdVersion(BaseManifest):
    """A version declared by a CustomResourceDefinition."""

    name: str
    """The name of the version e.g. `v1beta1`."""

    storage: bool = False
    """True if this is the version the API server persists objects as."""


@dataclass(frozen=True)
class CustomResourceDefinition(BaseManifest):
    """A representation of a CustomResourceDefinition registered in the cluster."""

    name: str
    """The name of the CRD e.g. `widgets.example.io`."""

    group: str
    """The API group of the resource e.g. `example.io`."""

    plural: str
    """The plural resource name used in API paths e.g. `widgets`."""

    scope: str = NAMESPACED_SCOPE
    """Either `Namespaced` or `Cluster`."""

    versions: tuple[CrdVersion, ...] = ()
    """The versions in declaration order."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "CustomResourceDefinition":
        """Parse a CustomResourceDefinition from a raw kubernetes object."""
        if (metadata := doc.get("metadata")) is None:
            raise InputException(f"Invalid {CRD_KIND} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {CRD_KIND} missing metadata.name: {doc}")
        if (spec := doc.get("spec")) is None:
            raise InputException(f"Invalid {CRD_KIND} {name} missing spec")
        if not (group := spec.get("group")):
            raise InputException(f"Invalid {CRD_KIND} {name} missing spec.group")
        names = spec.get("names") or {}
        if not (plural := names.get("plural")):
            raise InputException(
                f"Invalid {CRD_KIND} {name} missing spec.names.plural"
            )
        versions = tuple(
            CrdVersion(name=version["name"], storage=bool(version.get("storage")))
            for version in spec.get("versions") or ()
            if version.get("name")
        )
        return cls(
            name=name,
            group=group,
            plural=plural,
            scope=spec.get("scope", NAMESPACED_SCOPE),
            versions=versions,
        )

    @property
    def namespaced(self) -> bool:
        """Return true if instances of this resource live inside a namespace."""
        return self.scope == NAMESPACED_SCOPE

    @property
    def storage_version(self) -> str | None:
        """The version flagged for storage, falling back to the first declared."""
        for version in self.versions:
            if version.storage:
                return version.name
        if self.versions:
            return self.versions[0].name
        return None


@dataclass(frozen=True, order=True)
class QueryCoordinate:
    """The group, version and resource used to address a resource type."""

    group: str
    version: str
    plural: str

    def __str__(self) -> str:
        """Render in the same form as `kubectl` e.g. `widgets.v1.example.io`."""
        return f"{self.plural}.{self.version}.{self.group}"


@dataclass(frozen=True)
class CrdJob:
    """A request to list the instances of a single CRD."""

    crd_name: str
    coordinate: QueryCoordinate

    def __str__(self) -> str:
        return self.crd_name


@dataclass(frozen=True)
class FoundResource(BaseManifest):
    """An instance of a custom resource found in the cluster."""

    crd_name: str
    """The name of the CRD that defines the resource."""

    resource_name: str
    """The plural resource name of the CRD."""

    namespace: str
    """The namespace that owns the instance."""

    name: str
    """The name of the instance."""

    @property
    def sort_key(self) -> tuple[str, str, str, str]:
        """Key for ordering results deterministically."""
        return (self.crd_name, self.resource_name, self.namespace, self.name)


@dataclass
class ScanResult(BaseManifest):
    """The outcome of scanning a cluster for custom resources."""

    namespace: str | None = None
    """The namespace scanned, or None when scanning all namespaces."""

    resources: list[FoundResource] = field(default_factory=list)
    """The instances found, sorted."""

    crds: int = 0
    """The number of CRDs registered in the cluster."""

    jobs: int = 0
    """The number of namespaced CRDs that were eligible to be queried."""

    failed: int = 0
    """The number of CRDs whose instances could not be listed."""

    pending: int = 0
    """The number of CRDs not queried before the deadline expired."""

    timed_out: bool = False
    """True if the deadline expired before every CRD was queried."""

    @property
    def all_namespaces(self) -> bool:
        """Return true if the scan was across all namespaces."""
        return self.namespace is None
