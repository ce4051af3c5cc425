"""Unit tests for InstanceManager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from chaldeploy.api.errors import (
    ClusterError,
    ClusterTimeoutError,
    InstanceDestroyingError,
    InstanceNotFoundError,
)
from chaldeploy.config import Config
from chaldeploy.infra import KubeAPIError, KubeTimeoutError
from chaldeploy.runtimes.kubernetes.instance import InstanceManager
from chaldeploy.runtimes.kubernetes.naming import ResourceNaming
from chaldeploy.runtimes.kubernetes.registry import InstanceState
from chaldeploy.runtimes.kubernetes.result import OperationStatus


def _yielding(value):
    """Async side effect that suspends once before returning value."""

    async def _call(*args, **kwargs):
        await asyncio.sleep(0)
        return value

    return _call


class TestCreate:
    """Tests for InstanceManager.create."""

    async def test_create_provisions_instance(
        self,
        manager: InstanceManager,
        naming: ResourceNaming,
        mock_namespace_api: AsyncMock,
        mock_deployment_api: AsyncMock,
        mock_service_api: AsyncMock,
    ) -> None:
        """Creates namespace, deployment and service, then reports RUNNING."""
        result = await manager.create("T-100")

        name = naming.resource_name("T-100")
        assert result.status == OperationStatus.COMPLETED
        assert result.state == InstanceState.RUNNING
        assert result.endpoint == "10.0.0.1:31337"

        namespace = mock_namespace_api.create.await_args.args[0]
        assert namespace.metadata.name == name
        ns_arg, deployment = mock_deployment_api.create.await_args.args
        assert ns_arg == name
        assert deployment.metadata.name == name
        mock_service_api.create.assert_awaited_once()

    async def test_create_passes_team_name_to_namespace(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        await manager.create("T-100", team_name="Null Pointers")

        namespace = mock_namespace_api.create.await_args.args[0]
        assert "Null Pointers" in namespace.metadata.annotations.values()

    async def test_create_when_running_is_noop(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
        mock_deployment_api: AsyncMock,
        mock_service_api: AsyncMock,
    ) -> None:
        """Second create returns the same endpoint without cluster calls."""
        first = await manager.create("T-100")
        second = await manager.create("T-100")

        assert second.status == OperationStatus.ALREADY_RUNNING
        assert second.endpoint == first.endpoint
        assert mock_namespace_api.create.await_count == 1
        assert mock_deployment_api.create.await_count == 1
        assert mock_service_api.create.await_count == 1

    async def test_concurrent_create_provisions_once(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
        mock_deployment_api: AsyncMock,
    ) -> None:
        """Racing creates share one record and one provisioning sequence."""
        mock_namespace_api.create.side_effect = _yielding(True)

        first, second = await asyncio.gather(manager.create("T-100"), manager.create("T-100"))

        assert mock_namespace_api.create.await_count == 1
        assert mock_deployment_api.create.await_count == 1
        assert first.endpoint == second.endpoint == "10.0.0.1:31337"
        assert {first.status, second.status} == {
            OperationStatus.COMPLETED,
            OperationStatus.ALREADY_RUNNING,
        }
        assert len(manager.registry) == 1

    async def test_different_teams_do_not_block_each_other(
        self,
        manager: InstanceManager,
        naming: ResourceNaming,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """A stalled create for one team does not hold up another team."""
        release = asyncio.Event()
        stalled = naming.namespace_name("T-1")

        async def create_namespace(namespace):
            if namespace.metadata.name == stalled:
                await release.wait()
            return True

        mock_namespace_api.create.side_effect = create_namespace

        slow = asyncio.create_task(manager.create("T-1"))
        await asyncio.sleep(0)

        fast = await asyncio.wait_for(manager.create("T-2"), timeout=1.0)
        assert fast.state == InstanceState.RUNNING
        assert not slow.done()

        release.set()
        assert (await slow).state == InstanceState.RUNNING

    async def test_create_deployment_failure_stays_destroyed(
        self,
        manager: InstanceManager,
        mock_deployment_api: AsyncMock,
    ) -> None:
        """Failed create leaves the record DESTROYED with no endpoint."""
        mock_deployment_api.create.side_effect = KubeAPIError("deployment_create", 500, "boom")

        with pytest.raises(ClusterError):
            await manager.create("T-100")

        status = manager.get_status("T-100")
        assert status is not None
        assert status.state == InstanceState.DESTROYED
        assert status.endpoint is None

    async def test_create_timeout_stays_destroyed(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
        mock_deployment_api: AsyncMock,
    ) -> None:
        mock_namespace_api.create.side_effect = KubeTimeoutError("namespace_create", 1.0)

        with pytest.raises(ClusterTimeoutError):
            await manager.create("T-100")

        assert manager.get_status("T-100").state == InstanceState.DESTROYED
        mock_deployment_api.create.assert_not_awaited()

    async def test_create_retry_after_failure(
        self,
        manager: InstanceManager,
        mock_deployment_api: AsyncMock,
    ) -> None:
        """A failed create can be retried by calling create again."""
        mock_deployment_api.create.side_effect = [
            KubeAPIError("deployment_create", 503, "unavailable"),
            True,
        ]

        with pytest.raises(ClusterError):
            await manager.create("T-100")
        result = await manager.create("T-100")

        assert result.status == OperationStatus.COMPLETED
        assert result.state == InstanceState.RUNNING

    async def test_create_without_node_port_fails(
        self,
        manager: InstanceManager,
        mock_service_api: AsyncMock,
        make_service,
    ) -> None:
        mock_service_api.create.return_value = make_service(node_port=None)

        with pytest.raises(ClusterError):
            await manager.create("T-100")

        assert manager.get_status("T-100").state == InstanceState.DESTROYED

    async def test_create_while_destroying_is_rejected(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """A record left DESTROYING by a failed delete refuses create."""
        await manager.create("T-100")
        mock_namespace_api.delete.side_effect = KubeAPIError("namespace_delete", 500, "boom")
        with pytest.raises(ClusterError):
            await manager.destroy("T-100")

        with pytest.raises(InstanceDestroyingError):
            await manager.create("T-100")

        assert mock_namespace_api.create.await_count == 1
        assert manager.get_status("T-100").state == InstanceState.DESTROYING

    async def test_create_during_teardown_fails_fast(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """Create does not wait behind an in-flight destroy."""
        await manager.create("T-100")
        release = asyncio.Event()

        async def exists(name):
            await release.wait()
            return True

        mock_namespace_api.exists.side_effect = exists

        destroy = asyncio.create_task(manager.destroy("T-100"))
        await asyncio.sleep(0)

        with pytest.raises(InstanceDestroyingError):
            await asyncio.wait_for(manager.create("T-100"), timeout=1.0)

        release.set()
        result = await destroy
        assert result.state == InstanceState.DESTROYED


class TestDestroy:
    """Tests for InstanceManager.destroy."""

    async def test_destroy_unknown_team_raises(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """Destroy before any create fails without cluster calls."""
        with pytest.raises(InstanceNotFoundError):
            await manager.destroy("T-404")

        mock_namespace_api.exists.assert_not_awaited()
        mock_namespace_api.delete.assert_not_awaited()
        assert "T-404" not in manager.registry

    async def test_destroy_running_instance(
        self,
        manager: InstanceManager,
        naming: ResourceNaming,
        mock_namespace_api: AsyncMock,
    ) -> None:
        await manager.create("T-100")

        result = await manager.destroy("T-100")

        assert result.status == OperationStatus.COMPLETED
        assert result.state == InstanceState.DESTROYED
        mock_namespace_api.delete.assert_awaited_once_with(naming.namespace_name("T-100"))
        status = manager.get_status("T-100")
        assert status.state == InstanceState.DESTROYED
        assert status.endpoint is None

    async def test_destroy_absent_namespace(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """Namespace already gone: DESTROYED without a delete call."""
        await manager.create("T-100")
        mock_namespace_api.exists.return_value = False

        result = await manager.destroy("T-100")

        assert result.status == OperationStatus.ALREADY_DELETED
        assert result.state == InstanceState.DESTROYED
        mock_namespace_api.delete.assert_not_awaited()

    async def test_concurrent_destroy_deletes_once(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """Second destroy during teardown is a successful no-op."""
        await manager.create("T-100")
        mock_namespace_api.exists.side_effect = _yielding(True)

        first, second = await asyncio.gather(manager.destroy("T-100"), manager.destroy("T-100"))

        assert mock_namespace_api.delete.await_count == 1
        assert first.status == OperationStatus.COMPLETED
        assert second.status == OperationStatus.ALREADY_DESTROYING
        assert manager.get_status("T-100").state == InstanceState.DESTROYED

    async def test_sequential_destroy_deletes_once(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """Namespace still terminating: the second destroy makes no cluster call."""
        await manager.create("T-100")
        await manager.destroy("T-100")
        mock_namespace_api.reset_mock()

        result = await manager.destroy("T-100")

        assert result.status == OperationStatus.ALREADY_DELETED
        assert result.state == InstanceState.DESTROYED
        mock_namespace_api.exists.assert_not_awaited()
        mock_namespace_api.delete.assert_not_awaited()

    async def test_destroy_after_absent_namespace_is_noop(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        await manager.create("T-100")
        mock_namespace_api.exists.return_value = False
        await manager.destroy("T-100")
        mock_namespace_api.reset_mock()

        result = await manager.destroy("T-100")

        assert result.status == OperationStatus.ALREADY_DELETED
        mock_namespace_api.exists.assert_not_awaited()
        assert manager.registry.get("T-100").provisioned is False

    async def test_destroy_lookup_error_is_not_absence(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """A failed lookup stays DESTROYING instead of assuming deletion."""
        await manager.create("T-100")
        mock_namespace_api.exists.side_effect = KubeAPIError("namespace_read", 500, "etcd down")

        with pytest.raises(ClusterError):
            await manager.destroy("T-100")

        record = manager.registry.get("T-100")
        assert record.state == InstanceState.DESTROYING
        assert record.teardown_in_flight is False
        mock_namespace_api.delete.assert_not_awaited()

    async def test_destroy_failure_is_retried_by_next_destroy(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        await manager.create("T-100")
        mock_namespace_api.delete.side_effect = [
            KubeAPIError("namespace_delete", 500, "boom"),
            None,
        ]

        with pytest.raises(ClusterError):
            await manager.destroy("T-100")
        assert manager.get_status("T-100").state == InstanceState.DESTROYING

        result = await manager.destroy("T-100")

        assert result.status == OperationStatus.COMPLETED
        assert result.state == InstanceState.DESTROYED
        assert mock_namespace_api.delete.await_count == 2

    async def test_destroy_timeout_stays_destroying(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        await manager.create("T-100")
        mock_namespace_api.delete.side_effect = KubeTimeoutError("namespace_delete", 1.0)

        with pytest.raises(ClusterTimeoutError):
            await manager.destroy("T-100")

        assert manager.get_status("T-100").state == InstanceState.DESTROYING

    async def test_destroy_waits_until_namespace_absent(
        self,
        manager: InstanceManager,
        config: Config,
        mock_namespace_api: AsyncMock,
    ) -> None:
        config.cluster.wait_for_deletion = True
        await manager.create("T-100")
        # pre-delete check, then two polls
        mock_namespace_api.exists.side_effect = [True, True, False]

        result = await manager.destroy("T-100")

        assert result.state == InstanceState.DESTROYED
        assert mock_namespace_api.exists.await_count == 3
        mock_namespace_api.delete.assert_awaited_once()

    async def test_destroy_wait_timeout_stays_destroying(
        self,
        manager: InstanceManager,
        config: Config,
        mock_namespace_api: AsyncMock,
    ) -> None:
        config.cluster.wait_for_deletion = True
        config.cluster.deletion_timeout = 0.0
        await manager.create("T-100")

        with pytest.raises(ClusterTimeoutError):
            await manager.destroy("T-100")

        assert manager.get_status("T-100").state == InstanceState.DESTROYING

    async def test_destroy_cleans_up_half_created_instance(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
        mock_deployment_api: AsyncMock,
    ) -> None:
        """Namespace created but deployment failed: destroy still deletes it."""
        mock_deployment_api.create.side_effect = KubeAPIError("deployment_create", 500, "boom")
        with pytest.raises(ClusterError):
            await manager.create("T-100")

        result = await manager.destroy("T-100")

        assert result.status == OperationStatus.COMPLETED
        assert result.state == InstanceState.DESTROYED
        mock_namespace_api.delete.assert_awaited_once()

        again = await manager.destroy("T-100")
        assert again.status == OperationStatus.ALREADY_DELETED
        mock_namespace_api.delete.assert_awaited_once()

    async def test_destroy_after_failed_namespace_create_checks_cluster(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        """A create that timed out may still have made the namespace."""
        mock_namespace_api.create.side_effect = KubeTimeoutError("namespace_create", 1.0)
        with pytest.raises(ClusterTimeoutError):
            await manager.create("T-100")

        result = await manager.destroy("T-100")

        assert result.status == OperationStatus.COMPLETED
        mock_namespace_api.exists.assert_awaited_once()
        mock_namespace_api.delete.assert_awaited_once()


class TestStatus:
    """Tests for InstanceManager.get_status / list_all."""

    def test_status_unknown_team(self, manager: InstanceManager) -> None:
        assert manager.get_status("T-404") is None

    async def test_status_reflects_local_state_only(
        self,
        manager: InstanceManager,
        naming: ResourceNaming,
        mock_namespace_api: AsyncMock,
    ) -> None:
        await manager.create("T-100")
        mock_namespace_api.reset_mock()

        status = manager.get_status("T-100")

        assert status.state == InstanceState.RUNNING
        assert status.endpoint == "10.0.0.1:31337"
        assert status.resource_name == naming.resource_name("T-100")
        mock_namespace_api.exists.assert_not_awaited()

    async def test_list_all(self, manager: InstanceManager) -> None:
        await manager.create("T-1")
        await manager.create("T-2")

        teams = {s.team_id: s.state for s in manager.list_all()}

        assert teams == {"T-1": InstanceState.RUNNING, "T-2": InstanceState.RUNNING}


class TestLifecycleScenario:
    """End-to-end lifecycle against mock cluster APIs."""

    async def test_create_destroy_recreate_reuses_name(
        self,
        manager: InstanceManager,
        mock_namespace_api: AsyncMock,
    ) -> None:
        first = await manager.create("T-100")
        assert first.state == InstanceState.RUNNING

        again = await manager.create("T-100")
        assert again.endpoint == first.endpoint
        assert mock_namespace_api.create.await_count == 1

        destroyed = await manager.destroy("T-100")
        assert destroyed.state == InstanceState.DESTROYED

        recreated = await manager.create("T-100")
        assert recreated.status == OperationStatus.COMPLETED
        assert recreated.state == InstanceState.RUNNING

        names = [c.args[0].metadata.name for c in mock_namespace_api.create.await_args_list]
        assert len(names) == 2
        assert names[0] == names[1]
