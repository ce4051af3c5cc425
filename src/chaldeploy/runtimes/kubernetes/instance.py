"""Kubernetes instance manager.

Creates and tears down one challenge instance per team. Each team's record
carries its own lock, so teams never wait on each other while operations
on the same team are serialized.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, NoReturn

from chaldeploy.api.errors import (
    AgentError,
    ClusterError,
    ClusterTimeoutError,
    InstanceDestroyingError,
    InstanceNotFoundError,
)
from chaldeploy.infra import DeploymentAPI, KubeAPIError, KubeTimeoutError, NamespaceAPI, ServiceAPI
from chaldeploy.logging_schema import LogEvent
from chaldeploy.runtimes.kubernetes.manifests import build_manifests
from chaldeploy.runtimes.kubernetes.registry import InstanceRecord, InstanceRegistry, InstanceState
from chaldeploy.runtimes.kubernetes.result import InstanceStatus, OperationResult, OperationStatus

if TYPE_CHECKING:
    from kubernetes import client

    from chaldeploy.config import Config
    from chaldeploy.runtimes.kubernetes.naming import ResourceNaming

logger = logging.getLogger(__name__)


def _cluster_error(exc: KubeAPIError, message: str) -> AgentError:
    if isinstance(exc, KubeTimeoutError):
        return ClusterTimeoutError(f"{message}: {exc.reason}")
    return ClusterError(f"{message}: {exc}")


class InstanceManager:
    """Per-team instance lifecycle on a Kubernetes cluster."""

    def __init__(
        self,
        config: Config,
        naming: ResourceNaming,
        namespaces: NamespaceAPI,
        deployments: DeploymentAPI,
        services: ServiceAPI,
        registry: InstanceRegistry | None = None,
    ) -> None:
        self._config = config
        self._naming = naming
        self._namespaces = namespaces
        self._deployments = deployments
        self._services = services
        self._registry = registry or InstanceRegistry()

    @property
    def registry(self) -> InstanceRegistry:
        return self._registry

    def _new_record(self, team_id: str) -> InstanceRecord:
        return InstanceRecord(
            team_id=team_id,
            resource_name=self._naming.resource_name(team_id),
            namespace=self._naming.namespace_name(team_id),
        )

    # =========================================================================
    # Create
    # =========================================================================

    async def create(self, team_id: str, team_name: str | None = None) -> OperationResult:
        """Deploy the challenge for a team.

        Idempotent while RUNNING: returns the existing endpoint without any
        cluster call. Refused while DESTROYING.

        Raises:
            InstanceDestroyingError: Teardown still pending.
            ClusterError: Namespace/deployment/service creation failed.
            ClusterTimeoutError: A cluster call exceeded its deadline.
        """
        record = self._registry.get_or_create(team_id, lambda: self._new_record(team_id))

        # Fail fast instead of queueing behind a teardown holding the lock
        if record.state is InstanceState.DESTROYING:
            self._reject_create(record)

        async with record.lock:
            if record.state is InstanceState.RUNNING:
                logger.info(
                    "Instance already running",
                    extra={
                        "event": LogEvent.INSTANCE_ALREADY_RUNNING,
                        "team_id": team_id,
                        "resource_name": record.resource_name,
                    },
                )
                return OperationResult(
                    status=OperationStatus.ALREADY_RUNNING,
                    state=record.state,
                    endpoint=record.endpoint,
                    message="Instance already running",
                )
            if record.state is InstanceState.DESTROYING:
                self._reject_create(record)

            manifests = build_manifests(self._naming, self._config.challenge, team_id, team_name)
            record.provisioned = True
            try:
                await self._namespaces.create(manifests.namespace)
                await self._deployments.create(record.namespace, manifests.deployment)
                service = await self._services.create(record.namespace, manifests.service)
                endpoint = self._endpoint(service)
            except KubeAPIError as e:
                # State stays DESTROYED; a leftover namespace is removed by destroy
                logger.error(
                    "Failed to create instance",
                    extra={
                        "event": LogEvent.INSTANCE_CREATE_FAILED,
                        "team_id": team_id,
                        "resource_name": record.resource_name,
                        "operation": e.operation,
                        "status": e.status,
                        "error": e.reason,
                    },
                )
                raise _cluster_error(e, f"Failed to create instance {record.resource_name}") from e

            record.transition(InstanceState.RUNNING, endpoint)
            logger.info(
                "Created instance",
                extra={
                    "event": LogEvent.INSTANCE_CREATED,
                    "team_id": team_id,
                    "resource_name": record.resource_name,
                    "endpoint": endpoint,
                },
            )
            return OperationResult(
                status=OperationStatus.COMPLETED,
                state=record.state,
                endpoint=endpoint,
            )

    def _reject_create(self, record: InstanceRecord) -> NoReturn:
        logger.info(
            "Instance is being destroyed, create refused",
            extra={
                "event": LogEvent.INSTANCE_CREATE_REJECTED,
                "team_id": record.team_id,
                "resource_name": record.resource_name,
            },
        )
        raise InstanceDestroyingError(
            f"Instance for team {record.team_id} is being destroyed, retry once destroy completes"
        )

    def _endpoint(self, service: client.V1Service) -> str:
        ports = service.spec.ports if service.spec else None
        node_port = ports[0].node_port if ports else None
        if not node_port:
            raise KubeAPIError("service_create", None, "service has no node port assigned")
        return f"{self._config.cluster.public_host}:{node_port}"

    # =========================================================================
    # Destroy
    # =========================================================================

    async def destroy(self, team_id: str) -> OperationResult:
        """Tear down a team's instance by deleting its namespace.

        Idempotent while a teardown is in flight. A record left DESTROYING
        by a failed delete is retried here.

        Raises:
            InstanceNotFoundError: Team never created an instance.
            ClusterError: Namespace lookup or delete failed (state stays DESTROYING).
            ClusterTimeoutError: A cluster call or the deletion wait timed out.
        """
        record = self._registry.get(team_id)
        if record is None:
            raise InstanceNotFoundError(f"No instance for team {team_id}")

        if self._teardown_running(record):
            return self._already_destroying(record)

        async with record.lock:
            if self._teardown_running(record):
                return self._already_destroying(record)
            if record.state is InstanceState.DESTROYED and not record.provisioned:
                return self._already_deleted(record, "Instance already destroyed")
            record.transition(InstanceState.DESTROYING)
            record.teardown_in_flight = True

        logger.info(
            "Destroying instance",
            extra={
                "event": LogEvent.INSTANCE_DESTROY_REQUESTED,
                "team_id": team_id,
                "resource_name": record.resource_name,
            },
        )
        try:
            return await self._teardown(record)
        finally:
            async with record.lock:
                record.teardown_in_flight = False

    @staticmethod
    def _teardown_running(record: InstanceRecord) -> bool:
        return record.state is InstanceState.DESTROYING and record.teardown_in_flight

    def _already_destroying(self, record: InstanceRecord) -> OperationResult:
        logger.info(
            "Instance already being destroyed",
            extra={
                "event": LogEvent.INSTANCE_ALREADY_DESTROYING,
                "team_id": record.team_id,
                "resource_name": record.resource_name,
            },
        )
        return OperationResult(
            status=OperationStatus.ALREADY_DESTROYING,
            state=InstanceState.DESTROYING,
            message="Instance is already being destroyed",
        )

    def _already_deleted(self, record: InstanceRecord, message: str) -> OperationResult:
        logger.info(
            message,
            extra={
                "event": LogEvent.INSTANCE_ALREADY_ABSENT,
                "team_id": record.team_id,
                "resource_name": record.resource_name,
            },
        )
        return OperationResult(
            status=OperationStatus.ALREADY_DELETED,
            state=InstanceState.DESTROYED,
            message=message,
        )

    async def _teardown(self, record: InstanceRecord) -> OperationResult:
        try:
            present = await self._namespaces.exists(record.namespace)
        except KubeAPIError as e:
            self._log_destroy_failed(record, e)
            raise _cluster_error(e, f"Failed to look up namespace {record.namespace}") from e

        if not present:
            async with record.lock:
                record.transition(InstanceState.DESTROYED)
                record.provisioned = False
            return self._already_deleted(record, "Namespace does not exist")

        async with record.lock:
            try:
                await self._namespaces.delete(record.namespace)
                if self._config.cluster.wait_for_deletion:
                    await self._wait_until_absent(record.namespace)
            except KubeAPIError as e:
                self._log_destroy_failed(record, e)
                raise _cluster_error(e, f"Failed to delete namespace {record.namespace}") from e

            record.transition(InstanceState.DESTROYED)
            record.provisioned = False

        logger.info(
            "Destroyed instance",
            extra={
                "event": LogEvent.INSTANCE_DESTROYED,
                "team_id": record.team_id,
                "resource_name": record.resource_name,
            },
        )
        return OperationResult(status=OperationStatus.COMPLETED, state=record.state)

    async def _wait_until_absent(self, namespace: str) -> None:
        """Poll until the namespace is gone so the name can be reused."""
        timeout = self._config.cluster.deletion_timeout
        deadline = time.monotonic() + timeout
        while await self._namespaces.exists(namespace):
            if time.monotonic() >= deadline:
                raise KubeTimeoutError("namespace_delete_wait", timeout)
            await asyncio.sleep(self._config.cluster.deletion_poll_interval)

    def _log_destroy_failed(self, record: InstanceRecord, exc: KubeAPIError) -> None:
        logger.error(
            "Failed to destroy instance",
            extra={
                "event": LogEvent.INSTANCE_DESTROY_FAILED,
                "team_id": record.team_id,
                "resource_name": record.resource_name,
                "operation": exc.operation,
                "status": exc.status,
                "error": exc.reason,
            },
        )

    # =========================================================================
    # Query
    # =========================================================================

    def get_status(self, team_id: str) -> InstanceStatus | None:
        """Last known local state; never calls the cluster.

        Returns None if the team never created an instance.
        """
        record = self._registry.get(team_id)
        if record is None:
            return None
        return InstanceStatus(
            team_id=record.team_id,
            resource_name=record.resource_name,
            state=record.state,
            endpoint=record.endpoint,
        )

    def list_all(self) -> list[InstanceStatus]:
        """Local state of every known team."""
        return [
            InstanceStatus(
                team_id=record.team_id,
                resource_name=record.resource_name,
                state=record.state,
                endpoint=record.endpoint,
            )
            for record in self._registry.records()
        ]
