"""Library for talking to the kubernetes API server.

The scanner only depends on the `ClusterClient` interface: one call to list
the registered CustomResourceDefinitions and one call per CRD to list its
instances. `KubernetesClient` implements it with the official kubernetes
python client. All calls are blocking and accept a timeout in seconds that
bounds the whole request.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.config.kube_config import (
    KUBE_CONFIG_DEFAULT_LOCATION,
    KubeConfigMerger,
)
import urllib3

from .exceptions import (
    CatalogException,
    ClusterConfigException,
    InputException,
    QueryException,
)
from .manifest import CustomResourceDefinition, QueryCoordinate

__all__ = [
    "ClusterClient",
    "ClusterContext",
    "KubernetesClient",
    "connect",
]

_LOGGER = logging.getLogger(__name__)

IN_CLUSTER_CONTEXT = "in-cluster"
SERVICE_ACCOUNT_NAMESPACE = Path(
    "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
)
FORBIDDEN_STATUS = (401, 403)


@dataclass(frozen=True)
class ClusterContext:
    """The kubeconfig context used to reach the cluster."""

    name: str
    """The name of the context."""

    namespace: str | None = None
    """The default namespace of the context, if it has one."""


class ClusterClient(ABC):
    """Client for the API calls needed to discover custom resources."""

    @abstractmethod
    def list_crds(self, timeout: float) -> list[CustomResourceDefinition]:
        """Return every CustomResourceDefinition registered in the cluster."""

    @abstractmethod
    def list_instances(
        self, coordinate: QueryCoordinate, namespace: str | None, timeout: float
    ) -> list[tuple[str, str]]:
        """Return the (name, namespace) of every instance of a resource.

        A namespace of None lists instances across all namespaces.
        """


class KubernetesClient(ClusterClient):
    """A ClusterClient backed by the kubernetes python client."""

    def __init__(self, api_client: client.ApiClient) -> None:
        """Initialize KubernetesClient."""
        self._extensions = client.ApiextensionsV1Api(api_client)
        self._custom_objects = client.CustomObjectsApi(api_client)

    def list_crds(self, timeout: float) -> list[CustomResourceDefinition]:
        """Return every CustomResourceDefinition registered in the cluster."""
        try:
            # The raw response is parsed directly rather than through the
            # generated models, which reject some valid status fields.
            response = self._extensions.list_custom_resource_definition(
                _request_timeout=timeout, _preload_content=False
            )
            content = json.loads(response.data)
        except ApiException as err:
            raise CatalogException(
                f"Error listing CRDs: {err.status} {err.reason}"
            ) from err
        except urllib3.exceptions.HTTPError as err:
            raise CatalogException(f"Error listing CRDs: {err}") from err
        except ValueError as err:
            raise CatalogException(f"Error decoding CRD list: {err}") from err

        crds: list[CustomResourceDefinition] = []
        for doc in content.get("items") or ():
            try:
                crds.append(CustomResourceDefinition.parse_doc(doc))
            except InputException as err:
                _LOGGER.info("Ignoring CRD: %s", err)
        return crds

    def list_instances(
        self, coordinate: QueryCoordinate, namespace: str | None, timeout: float
    ) -> list[tuple[str, str]]:
        """Return the (name, namespace) of every instance of a resource."""
        try:
            if namespace:
                response = self._custom_objects.list_namespaced_custom_object(
                    group=coordinate.group,
                    version=coordinate.version,
                    namespace=namespace,
                    plural=coordinate.plural,
                    _request_timeout=timeout,
                )
            else:
                response = self._custom_objects.list_cluster_custom_object(
                    group=coordinate.group,
                    version=coordinate.version,
                    plural=coordinate.plural,
                    _request_timeout=timeout,
                )
        except ApiException as err:
            raise QueryException(
                str(coordinate),
                f"{err.status} {err.reason}",
                forbidden=err.status in FORBIDDEN_STATUS,
            ) from err
        except urllib3.exceptions.HTTPError as err:
            raise QueryException(str(coordinate), str(err)) from err

        results: list[tuple[str, str]] = []
        for item in response.get("items") or ():
            metadata = item.get("metadata") or {}
            if not (name := metadata.get("name")):
                raise QueryException(
                    str(coordinate), f"Invalid object missing metadata.name: {item}"
                )
            results.append((name, metadata.get("namespace", "")))
        return results


def _kube_config_exists() -> bool:
    """Return true if any of the default kubeconfig files exist."""
    return any(
        Path(path).expanduser().exists()
        for path in KUBE_CONFIG_DEFAULT_LOCATION.split(os.pathsep)
        if path
    )


def _new_configuration() -> client.Configuration:
    configuration = client.Configuration()
    # A failed request is reported as is, it is never resent
    configuration.retries = False
    return configuration


def _connect_in_cluster() -> tuple[KubernetesClient, ClusterContext]:
    configuration = _new_configuration()
    config.load_incluster_config(client_configuration=configuration)
    namespace: str | None = None
    if SERVICE_ACCOUNT_NAMESPACE.exists():
        namespace = SERVICE_ACCOUNT_NAMESPACE.read_text().strip() or None
    return (
        KubernetesClient(client.ApiClient(configuration=configuration)),
        ClusterContext(name=IN_CLUSTER_CONTEXT, namespace=namespace),
    )


def _select_context(kubeconfig: str, context: str | None) -> ClusterContext:
    """Find the named context, or the current context, in the kubeconfig."""
    merged = KubeConfigMerger(kubeconfig).config
    if merged is None:
        raise ClusterConfigException(
            f"Error loading kubeconfig: no configuration found in {kubeconfig}"
        )
    if context is None:
        if not (context := merged.safe_get("current-context")):
            raise ClusterConfigException("No current context set in kubeconfig")
    contexts = merged.safe_get("contexts") or []
    selected = next((c for c in contexts if c.safe_get("name") == context), None)
    if selected is None:
        raise ClusterConfigException(f"Context '{context}' not found in kubeconfig")
    return ClusterContext(
        name=context,
        namespace=(selected.safe_get("context") or {}).get("namespace"),
    )


def connect(
    kubeconfig: str | None = None, context: str | None = None
) -> tuple[KubernetesClient, ClusterContext]:
    """Resolve the cluster connection and return a client for it.

    Uses the explicit kubeconfig path if specified, otherwise the `KUBECONFIG`
    environment variable or `~/.kube/config`. When no kubeconfig exists the
    in-cluster service account is used instead. An explicit context does not
    require the kubeconfig to have a current context.
    """
    try:
        if kubeconfig is None and context is None and not _kube_config_exists():
            _LOGGER.debug("No kubeconfig found, using in-cluster configuration")
            return _connect_in_cluster()

        config_file = kubeconfig or KUBE_CONFIG_DEFAULT_LOCATION
        cluster_context = _select_context(config_file, context)
        configuration = _new_configuration()
        config.load_kube_config(
            config_file=config_file,
            context=cluster_context.name,
            client_configuration=configuration,
            persist_config=False,
        )
    except (ConfigException, OSError) as err:
        raise ClusterConfigException(f"Error loading kubeconfig: {err}") from err

    _LOGGER.info("Using context: %s", cluster_context.name)
    return (
        KubernetesClient(client.ApiClient(configuration=configuration)),
        cluster_context,
    )
