"""Kubernetes API client for chaldeploy.

Wraps the official (synchronous) kubernetes client. Every call runs in a
worker thread and is bounded by a deadline, so a slow control plane never
blocks the event loop or hangs a request forever.
"""

import asyncio
import logging
import os
import time
from collections.abc import Callable
from typing import Any

import urllib3
from kubernetes import client
from kubernetes import config as kube_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.config.incluster_config import InClusterConfigLoader

from chaldeploy.logging_schema import LogEvent
from chaldeploy.metrics import CLUSTER_DURATION, CLUSTER_ERRORS

logger = logging.getLogger(__name__)

# Slack on top of the HTTP timeout before the worker thread is abandoned
_DEADLINE_BUFFER = 5.0


class KubeConfigError(Exception):
    """Raised when no cluster credentials could be resolved."""

    pass


class KubeAPIError(Exception):
    """Raised when a Kubernetes API call fails.

    status is the HTTP status from the API server, or None for transport
    failures where no response was received.
    """

    def __init__(self, operation: str, status: int | None, reason: str) -> None:
        self.operation = operation
        self.status = status
        self.reason = reason
        super().__init__(f"{operation} failed ({status}): {reason}")


class KubeTimeoutError(KubeAPIError):
    """Raised when a Kubernetes API call exceeds its deadline."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(operation, None, f"timed out after {timeout}s")


# =============================================================================
# Credential resolution
# =============================================================================


def resolve_cluster_config(
    config_path: str = "",
    service_account_dir: str = "/var/run/secrets/kubernetes.io/serviceaccount",
    kubeconfig_path: str | None = None,
) -> client.Configuration:
    """Identify the credential source for the cluster and load it.

    Load order:
      - explicit config_path (must exist)
      - injected service account
      - ~/.kube/config current context

    Raises:
        KubeConfigError: If no source resolves.
    """
    configuration = client.Configuration()

    if config_path:
        if not os.path.isfile(config_path):
            raise KubeConfigError(f"Configured kubeconfig does not exist: {config_path}")
        _load_kubeconfig(config_path, configuration)
        logger.info(
            "Using kubeconfig from configured path",
            extra={"event": LogEvent.CLUSTER_CONFIG_LOADED, "source": config_path},
        )
        return configuration

    if os.path.isdir(service_account_dir):
        loader = InClusterConfigLoader(
            token_filename=os.path.join(service_account_dir, "token"),
            cert_filename=os.path.join(service_account_dir, "ca.crt"),
        )
        try:
            loader.load_and_set(configuration)
        except ConfigException as e:
            raise KubeConfigError(f"Failed to load in-cluster config: {e}") from e
        logger.info(
            "Using in-cluster service account",
            extra={"event": LogEvent.CLUSTER_CONFIG_LOADED, "source": service_account_dir},
        )
        return configuration

    path = kubeconfig_path or os.path.expanduser("~/.kube/config")
    if not os.path.isfile(path):
        raise KubeConfigError("Couldn't find a kubeconfig, service account or configured path")
    _load_kubeconfig(path, configuration)
    logger.info(
        "Using current context from local kubeconfig",
        extra={"event": LogEvent.CLUSTER_CONFIG_LOADED, "source": path},
    )
    return configuration


def _load_kubeconfig(path: str, configuration: client.Configuration) -> None:
    try:
        kube_config.load_kube_config(config_file=path, client_configuration=configuration)
    except ConfigException as e:
        raise KubeConfigError(f"Invalid kubeconfig {path}: {e}") from e


# =============================================================================
# Client
# =============================================================================


class KubernetesClient:
    """Thread-offloading, deadline-bounded access to the Kubernetes API."""

    def __init__(self, configuration: client.Configuration, timeout: float = 30.0) -> None:
        self._api_client = client.ApiClient(configuration)
        self._timeout = timeout
        self.core = client.CoreV1Api(self._api_client)
        self.apps = client.AppsV1Api(self._api_client)

    async def call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking API method in a thread with a deadline.

        Raises:
            KubeTimeoutError: Deadline exceeded.
            KubeAPIError: API server returned an error or transport failed.
        """
        start = time.monotonic()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, _request_timeout=self._timeout, **kwargs),
                timeout=self._timeout + _DEADLINE_BUFFER,
            )
        except asyncio.TimeoutError as e:
            self._record_timeout(operation)
            raise KubeTimeoutError(operation, self._timeout) from e
        except ApiException as e:
            # 404/409 are answers, not failures
            if e.status not in (404, 409):
                self._record_failure(operation, "api_error", e.status, e.reason)
            raise KubeAPIError(operation, e.status, e.reason or "") from e
        except urllib3.exceptions.HTTPError as e:
            if isinstance(e, urllib3.exceptions.TimeoutError) or isinstance(
                getattr(e, "reason", None), urllib3.exceptions.TimeoutError
            ):
                self._record_timeout(operation)
                raise KubeTimeoutError(operation, self._timeout) from e
            self._record_failure(operation, "transport", None, str(e))
            raise KubeAPIError(operation, None, str(e)) from e
        finally:
            CLUSTER_DURATION.labels(operation=operation).observe(time.monotonic() - start)

    def _record_timeout(self, operation: str) -> None:
        CLUSTER_ERRORS.labels(operation=operation, error_type="timeout").inc()
        logger.warning(
            "Cluster call timed out",
            extra={
                "event": LogEvent.CLUSTER_CALL_TIMEOUT,
                "operation": operation,
                "timeout": self._timeout,
            },
        )

    def _record_failure(
        self, operation: str, error_type: str, status: int | None, reason: str | None
    ) -> None:
        CLUSTER_ERRORS.labels(operation=operation, error_type=error_type).inc()
        logger.warning(
            "Cluster call failed",
            extra={
                "event": LogEvent.CLUSTER_CALL_FAILED,
                "operation": operation,
                "status": status,
                "error": reason,
            },
        )

    def close(self) -> None:
        """Release the connection pool."""
        self._api_client.close()


# =============================================================================
# Namespace API
# =============================================================================


class NamespaceAPI:
    """Namespace operations."""

    def __init__(self, kube: KubernetesClient) -> None:
        self._kube = kube

    async def create(self, namespace: client.V1Namespace) -> bool:
        """Create a namespace (idempotent).

        Returns:
            False if the namespace already existed.
        """
        try:
            await self._kube.call("namespace_create", self._kube.core.create_namespace, body=namespace)
        except KubeAPIError as e:
            if e.status == 409:
                logger.debug("Namespace already exists: %s", namespace.metadata.name)
                return False
            raise
        logger.info("Created namespace: %s", namespace.metadata.name)
        return True

    async def exists(self, name: str) -> bool:
        """Check if a namespace exists.

        Only a confirmed 404 counts as absent; lookup failures raise.
        """
        try:
            await self._kube.call("namespace_read", self._kube.core.read_namespace, name=name)
        except KubeAPIError as e:
            if e.status == 404:
                return False
            raise
        return True

    async def delete(self, name: str) -> None:
        """Delete a namespace and everything in it (foreground propagation)."""
        try:
            await self._kube.call(
                "namespace_delete",
                self._kube.core.delete_namespace,
                name=name,
                body=client.V1DeleteOptions(propagation_policy="Foreground"),
            )
        except KubeAPIError as e:
            if e.status == 404:
                logger.debug("Namespace not found: %s", name)
                return
            raise
        logger.info("Deleted namespace: %s", name)


# =============================================================================
# Deployment API
# =============================================================================


class DeploymentAPI:
    """Deployment operations."""

    def __init__(self, kube: KubernetesClient) -> None:
        self._kube = kube

    async def create(self, namespace: str, deployment: client.V1Deployment) -> bool:
        """Create a deployment (idempotent).

        Returns:
            False if the deployment already existed.
        """
        try:
            await self._kube.call(
                "deployment_create",
                self._kube.apps.create_namespaced_deployment,
                namespace=namespace,
                body=deployment,
            )
        except KubeAPIError as e:
            if e.status == 409:
                logger.debug("Deployment already exists: %s/%s", namespace, deployment.metadata.name)
                return False
            raise
        logger.info("Created deployment: %s/%s", namespace, deployment.metadata.name)
        return True


# =============================================================================
# Service API
# =============================================================================


class ServiceAPI:
    """Service operations."""

    def __init__(self, kube: KubernetesClient) -> None:
        self._kube = kube

    async def read(self, namespace: str, name: str) -> client.V1Service:
        return await self._kube.call(
            "service_read",
            self._kube.core.read_namespaced_service,
            name=name,
            namespace=namespace,
        )

    async def create(self, namespace: str, service: client.V1Service) -> client.V1Service:
        """Create a service, returning the existing one on conflict."""
        try:
            created = await self._kube.call(
                "service_create",
                self._kube.core.create_namespaced_service,
                namespace=namespace,
                body=service,
            )
        except KubeAPIError as e:
            if e.status == 409:
                logger.debug("Service already exists: %s/%s", namespace, service.metadata.name)
                return await self.read(namespace, service.metadata.name)
            raise
        logger.info("Created service: %s/%s", namespace, service.metadata.name)
        return created
