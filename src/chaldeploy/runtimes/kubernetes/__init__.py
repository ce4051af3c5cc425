"""Kubernetes runtime."""

from chaldeploy.config import Config, get_config
from chaldeploy.infra import (
    DeploymentAPI,
    KubernetesClient,
    NamespaceAPI,
    ServiceAPI,
    resolve_cluster_config,
)
from chaldeploy.runtimes.kubernetes.instance import InstanceManager
from chaldeploy.runtimes.kubernetes.naming import ResourceNaming
from chaldeploy.runtimes.kubernetes.registry import (
    InstanceRecord,
    InstanceRegistry,
    InstanceState,
)


class KubernetesRuntime:
    """Kubernetes runtime wiring credentials, client and instance manager."""

    def __init__(
        self,
        config: Config | None = None,
        kube: KubernetesClient | None = None,
    ) -> None:
        self._config = config or get_config()
        self._naming = ResourceNaming(self._config)

        if kube is None:
            cluster = self._config.cluster
            configuration = resolve_cluster_config(
                config_path=cluster.config_path,
                service_account_dir=cluster.service_account_dir,
            )
            kube = KubernetesClient(configuration, timeout=cluster.api_timeout)
        self._kube = kube

        self.instances = InstanceManager(
            self._config,
            self._naming,
            namespaces=NamespaceAPI(self._kube),
            deployments=DeploymentAPI(self._kube),
            services=ServiceAPI(self._kube),
            registry=InstanceRegistry(),
        )

    def close(self) -> None:
        self._kube.close()


__all__ = [
    "KubernetesRuntime",
    "InstanceManager",
    "InstanceRecord",
    "InstanceRegistry",
    "InstanceState",
    "ResourceNaming",
]
