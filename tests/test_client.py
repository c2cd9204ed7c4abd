"""Tests for the kubernetes client library."""

from collections.abc import Generator
import json
import socket
import time
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
import urllib3

from kgcr import client
from kgcr.client import ClusterContext, KubernetesClient, connect
from kgcr.exceptions import CatalogException, ClusterConfigException, QueryException
from kgcr.manifest import QueryCoordinate

GADGETS = QueryCoordinate(group="example.io", version="v2", plural="gadgets")

KUBECONFIG = """\
apiVersion: v1
kind: Config
clusters:
- name: test-cluster
  cluster:
    server: https://127.0.0.1:6443
users:
- name: test-user
  user:
    token: test-token
contexts:
- name: dev
  context:
    cluster: test-cluster
    user: test-user
    namespace: team-a
- name: prod
  context:
    cluster: test-cluster
    user: test-user
current-context: dev
"""


@pytest.fixture(name="extensions_api")
def mock_extensions_api() -> Generator[MagicMock, None, None]:
    with patch("kgcr.client.client.ApiextensionsV1Api") as api_cls:
        yield api_cls.return_value


@pytest.fixture(name="custom_objects_api")
def mock_custom_objects_api() -> Generator[MagicMock, None, None]:
    with patch("kgcr.client.client.CustomObjectsApi") as api_cls:
        yield api_cls.return_value


@pytest.fixture(name="kube")
def kube_client(
    extensions_api: MagicMock, custom_objects_api: MagicMock
) -> KubernetesClient:
    return KubernetesClient(MagicMock())


def crd_list(*docs: dict[str, Any]) -> MagicMock:
    """Return a raw http response for a CRD list call."""
    return MagicMock(data=json.dumps({"items": list(docs)}).encode())


def test_list_crds(kube: KubernetesClient, extensions_api: MagicMock) -> None:
    """Test parsing the CRD list response."""
    extensions_api.list_custom_resource_definition.return_value = crd_list(
        {
            "metadata": {"name": "gadgets.example.io"},
            "spec": {
                "group": "example.io",
                "names": {"plural": "gadgets"},
                "scope": "Namespaced",
                "versions": [{"name": "v1"}, {"name": "v2", "storage": True}],
            },
        },
        # Unparseable objects are ignored
        {"metadata": {"name": "broken.example.io"}},
    )
    crds = kube.list_crds(timeout=2.0)
    assert [crd.name for crd in crds] == ["gadgets.example.io"]
    assert crds[0].storage_version == "v2"
    extensions_api.list_custom_resource_definition.assert_called_once_with(
        _request_timeout=2.0, _preload_content=False
    )


def test_list_crds_api_error(
    kube: KubernetesClient, extensions_api: MagicMock
) -> None:
    """Test an API error listing CRDs is fatal."""
    extensions_api.list_custom_resource_definition.side_effect = ApiException(
        status=403, reason="Forbidden"
    )
    with pytest.raises(CatalogException, match="403 Forbidden"):
        kube.list_crds(timeout=2.0)


def test_list_crds_connection_error(
    kube: KubernetesClient, extensions_api: MagicMock
) -> None:
    """Test a connection error listing CRDs is fatal."""
    extensions_api.list_custom_resource_definition.side_effect = (
        urllib3.exceptions.ProtocolError("Connection aborted")
    )
    with pytest.raises(CatalogException, match="Connection aborted"):
        kube.list_crds(timeout=2.0)


def test_list_crds_invalid_json(
    kube: KubernetesClient, extensions_api: MagicMock
) -> None:
    """Test a malformed CRD list response."""
    extensions_api.list_custom_resource_definition.return_value = MagicMock(
        data=b"<html>"
    )
    with pytest.raises(CatalogException, match="Error decoding"):
        kube.list_crds(timeout=2.0)


def test_list_instances_namespace(
    kube: KubernetesClient, custom_objects_api: MagicMock
) -> None:
    """Test listing instances within a namespace."""
    custom_objects_api.list_namespaced_custom_object.return_value = {
        "items": [{"metadata": {"name": "bar", "namespace": "ns1"}}]
    }
    assert kube.list_instances(GADGETS, "ns1", timeout=5.0) == [("bar", "ns1")]
    custom_objects_api.list_namespaced_custom_object.assert_called_once_with(
        group="example.io",
        version="v2",
        namespace="ns1",
        plural="gadgets",
        _request_timeout=5.0,
    )
    custom_objects_api.list_cluster_custom_object.assert_not_called()


def test_list_instances_all_namespaces(
    kube: KubernetesClient, custom_objects_api: MagicMock
) -> None:
    """Test listing instances across all namespaces."""
    custom_objects_api.list_cluster_custom_object.return_value = {
        "items": [
            {"metadata": {"name": "bar", "namespace": "ns1"}},
            {"metadata": {"name": "baz", "namespace": "ns2"}},
        ]
    }
    assert kube.list_instances(GADGETS, None, timeout=5.0) == [
        ("bar", "ns1"),
        ("baz", "ns2"),
    ]
    custom_objects_api.list_cluster_custom_object.assert_called_once_with(
        group="example.io", version="v2", plural="gadgets", _request_timeout=5.0
    )


def test_list_instances_empty(
    kube: KubernetesClient, custom_objects_api: MagicMock
) -> None:
    """Test a resource with no instances."""
    custom_objects_api.list_namespaced_custom_object.return_value = {"items": None}
    assert kube.list_instances(GADGETS, "ns1", timeout=5.0) == []


@pytest.mark.parametrize(
    ("status", "forbidden"),
    [(403, True), (401, True), (404, False), (500, False)],
)
def test_list_instances_api_error(
    kube: KubernetesClient,
    custom_objects_api: MagicMock,
    status: int,
    forbidden: bool,
) -> None:
    """Test API errors are raised as query failures."""
    custom_objects_api.list_namespaced_custom_object.side_effect = ApiException(
        status=status, reason="Error"
    )
    with pytest.raises(QueryException, match="gadgets.v2.example.io") as exc_info:
        kube.list_instances(GADGETS, "ns1", timeout=5.0)
    assert exc_info.value.forbidden == forbidden


def test_list_instances_invalid_object(
    kube: KubernetesClient, custom_objects_api: MagicMock
) -> None:
    """Test an object without a name is a query failure."""
    custom_objects_api.list_cluster_custom_object.return_value = {
        "items": [{"metadata": {}}]
    }
    with pytest.raises(QueryException, match="missing metadata.name"):
        kube.list_instances(GADGETS, None, timeout=5.0)


@pytest.fixture(name="kubeconfig")
def kubeconfig_file(tmp_path: Path) -> str:
    path = tmp_path / "config"
    path.write_text(KUBECONFIG)
    return str(path)


def test_connect_current_context(kubeconfig: str) -> None:
    """Test the current context and its namespace are used."""
    kube, context = connect(kubeconfig)
    assert isinstance(kube, KubernetesClient)
    assert context == ClusterContext(name="dev", namespace="team-a")


def test_connect_context_override(kubeconfig: str) -> None:
    """Test selecting a context without a namespace."""
    _, context = connect(kubeconfig, "prod")
    assert context == ClusterContext(name="prod", namespace=None)


def test_connect_unknown_context(kubeconfig: str) -> None:
    """Test selecting a context that does not exist."""
    with pytest.raises(ClusterConfigException, match="Context 'staging' not found"):
        connect(kubeconfig, "staging")


def test_connect_missing_kubeconfig(tmp_path: Path) -> None:
    """Test an explicit kubeconfig that does not exist."""
    with pytest.raises(ClusterConfigException, match="Error loading kubeconfig"):
        connect(str(tmp_path / "missing"))


def test_connect_in_cluster_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test falling back to in-cluster configuration outside a cluster."""
    monkeypatch.setattr(client, "_kube_config_exists", lambda: False)
    monkeypatch.setattr(
        client.config,
        "load_incluster_config",
        MagicMock(side_effect=ConfigException("Service host/port is not set.")),
    )
    with pytest.raises(ClusterConfigException, match="Service host/port"):
        connect()


def test_connect_context_without_current_context(tmp_path: Path) -> None:
    """Test an explicit context does not need a current context to be set."""
    path = tmp_path / "config"
    path.write_text(KUBECONFIG.replace("current-context: dev\n", ""))
    _, context = connect(str(path), "dev")
    assert context == ClusterContext(name="dev", namespace="team-a")

    with pytest.raises(ClusterConfigException, match="No current context"):
        connect(str(path))


def test_connect_disables_retries(kubeconfig: str) -> None:
    """Test failed requests are not resent by the http connection pool."""
    kube, _ = connect(kubeconfig)
    api_client = kube._custom_objects.api_client  # pylint: disable=protected-access
    assert api_client.configuration.retries is False
    assert api_client.rest_client.pool_manager.connection_pool_kw["retries"] is False


@pytest.fixture(name="stalled_server")
def stalled_server_fixture() -> Generator[int, None, None]:
    """Listening socket that accepts connections and never responds."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(8)
        yield sock.getsockname()[1]


def test_list_instances_stalled_server(tmp_path: Path, stalled_server: int) -> None:
    """Test a request to an unresponsive server fails within its timeout."""
    path = tmp_path / "config"
    path.write_text(
        KUBECONFIG.replace(
            "https://127.0.0.1:6443", f"http://127.0.0.1:{stalled_server}"
        )
    )
    kube, _ = connect(str(path))

    start = time.monotonic()
    with pytest.raises(QueryException, match="gadgets.v2.example.io"):
        kube.list_instances(GADGETS, "ns1", timeout=0.3)
    assert time.monotonic() - start < 1.0
