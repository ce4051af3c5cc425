"""Infrastructure layer."""

from chaldeploy.infra.kubernetes import (
    DeploymentAPI,
    KubeAPIError,
    KubeConfigError,
    KubernetesClient,
    KubeTimeoutError,
    NamespaceAPI,
    ServiceAPI,
    resolve_cluster_config,
)

__all__ = [
    "DeploymentAPI",
    "KubeAPIError",
    "KubeConfigError",
    "KubernetesClient",
    "KubeTimeoutError",
    "NamespaceAPI",
    "ServiceAPI",
    "resolve_cluster_config",
]
