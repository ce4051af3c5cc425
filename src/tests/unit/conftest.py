"""Fixtures for unit tests."""

from unittest.mock import AsyncMock

import pytest
from kubernetes import client

from chaldeploy.config import ChallengeConfig, ClusterConfig, Config, RuntimeConfig
from chaldeploy.infra import DeploymentAPI, NamespaceAPI, ServiceAPI
from chaldeploy.runtimes.kubernetes.instance import InstanceManager
from chaldeploy.runtimes.kubernetes.naming import ResourceNaming


def _service(node_port: int | None = 31337) -> client.V1Service:
    """Service as returned by the API server after NodePort allocation."""
    return client.V1Service(
        spec=client.V1ServiceSpec(
            type="NodePort",
            ports=[client.V1ServicePort(port=1337, node_port=node_port)],
        ),
    )


@pytest.fixture
def config() -> Config:
    """Config for a challenge named pwn1.

    Deletion polling is off by default; tests that exercise it turn it on.
    """
    return Config(
        cluster=ClusterConfig(
            public_host="10.0.0.1",
            api_timeout=1.0,
            wait_for_deletion=False,
            deletion_timeout=1.0,
            deletion_poll_interval=0.0,
        ),
        challenge=ChallengeConfig(
            name="pwn1",
            image="registry.local/ctf/pwn1:latest",
            port=1337,
            cpu_limit="500m",
            memory_limit="256Mi",
        ),
        runtime=RuntimeConfig(
            resource_prefix="chaldeploy-",
            label_domain="chaldeploy",
            managed_by="chaldeploy",
        ),
    )


@pytest.fixture
def naming(config: Config) -> ResourceNaming:
    return ResourceNaming(config)


@pytest.fixture
def mock_namespace_api() -> AsyncMock:
    """Mock NamespaceAPI: creates succeed, namespace exists."""
    api = AsyncMock(spec=NamespaceAPI)
    api.create = AsyncMock(return_value=True)
    api.exists = AsyncMock(return_value=True)
    api.delete = AsyncMock()
    return api


@pytest.fixture
def mock_deployment_api() -> AsyncMock:
    """Mock DeploymentAPI."""
    api = AsyncMock(spec=DeploymentAPI)
    api.create = AsyncMock(return_value=True)
    return api


@pytest.fixture
def mock_service_api() -> AsyncMock:
    """Mock ServiceAPI returning a service with node port 31337."""
    api = AsyncMock(spec=ServiceAPI)
    api.create = AsyncMock(return_value=_service())
    api.read = AsyncMock(return_value=_service())
    return api


@pytest.fixture
def manager(
    config: Config,
    naming: ResourceNaming,
    mock_namespace_api: AsyncMock,
    mock_deployment_api: AsyncMock,
    mock_service_api: AsyncMock,
) -> InstanceManager:
    """InstanceManager with mock cluster APIs and a fresh registry."""
    return InstanceManager(
        config,
        naming,
        namespaces=mock_namespace_api,
        deployments=mock_deployment_api,
        services=mock_service_api,
    )


@pytest.fixture
def make_service():
    """Factory for API-server style V1Service objects."""
    return _service
