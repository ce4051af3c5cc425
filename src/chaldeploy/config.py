"""Deployer configuration using pydantic-settings.

Configuration hierarchy:
- ClusterConfig: Control plane access and deadlines
- ChallengeConfig: The challenge workload deployed per team
- RuntimeConfig: Resource naming and labeling
- LoggingConfig: Logging behavior
- ServerConfig: HTTP server
- Config: Main config aggregating all sub-configs

Environment variable prefix: CHALDEPLOY_
Example: CHALDEPLOY_CHALLENGE_IMAGE=pwn1:latest
"""

import re
from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Leaves room for the challenge digest, a readable team slug and the team
# digest inside a 63 character namespace name
MAX_RESOURCE_PREFIX_LENGTH = 32

_RESOURCE_PREFIX = re.compile(r"^[a-z0-9][a-z0-9-]*$")


class ClusterConfig(BaseSettings):
    """Kubernetes cluster access configuration.

    Credential resolution order:
      1. config_path (CHALDEPLOY_K8SCONFIG)
      2. in-cluster service account
      3. ~/.kube/config current context
    """

    model_config = SettingsConfigDict(env_prefix="CHALDEPLOY_CLUSTER_")

    config_path: str = Field(
        default="",
        validation_alias=AliasChoices("CHALDEPLOY_K8SCONFIG", "CHALDEPLOY_CLUSTER_CONFIG_PATH"),
        description="Explicit kubeconfig path",
    )
    service_account_dir: str = Field(
        default="/var/run/secrets/kubernetes.io/serviceaccount",
        description="Injected service account directory",
    )

    # Timeouts
    api_timeout: float = Field(default=30.0, description="Kubernetes API call timeout (seconds)")
    wait_for_deletion: bool = Field(
        default=True,
        description="Poll until the namespace is gone before reporting destroyed",
    )
    deletion_timeout: float = Field(default=120.0, description="Namespace deletion wait (seconds)")
    deletion_poll_interval: float = Field(default=1.0, description="Deletion poll interval (seconds)")

    # Networking
    public_host: str = Field(
        default="127.0.0.1",
        description="Externally reachable host for NodePort endpoints",
    )


class ChallengeConfig(BaseSettings):
    """Challenge workload configuration.

    Resource limits are fixed inputs, never computed.
    """

    model_config = SettingsConfigDict(env_prefix="CHALDEPLOY_CHALLENGE_")

    name: str = Field(default="challenge", description="Challenge identity")
    image: str = Field(default="challenge:latest", description="Container image")
    port: int = Field(default=1337, description="Container port")
    cpu_limit: str = Field(default="500m", description="CPU limit")
    memory_limit: str = Field(default="256Mi", description="Memory limit")
    image_pull_policy: str = Field(default="IfNotPresent", description="Image pull policy")


class RuntimeConfig(BaseSettings):
    """Resource naming and labeling."""

    model_config = SettingsConfigDict(env_prefix="CHALDEPLOY_RUNTIME_")

    resource_prefix: str = Field(
        default="chaldeploy-",
        description="Prefix for namespaces and deployments",
    )
    label_domain: str = Field(default="chaldeploy", description="Label key prefix")
    managed_by: str = Field(
        default="chaldeploy",
        description="Value of the managed-by label used by cleanup tooling",
    )

    @field_validator("resource_prefix")
    @classmethod
    def validate_resource_prefix(cls, v: str) -> str:
        """Lowercase the prefix and check it can start a namespace name."""
        v = v.lower()
        if len(v) > MAX_RESOURCE_PREFIX_LENGTH:
            raise ValueError(
                f"resource_prefix '{v}' is longer than {MAX_RESOURCE_PREFIX_LENGTH} characters"
            )
        if v and not _RESOURCE_PREFIX.match(v):
            raise ValueError(
                f"Invalid resource_prefix '{v}': must start with a letter or digit"
                " and contain only letters, digits and dashes"
            )
        return v


class LoggingConfig(BaseSettings):
    """Log level, output format and the service name stamped on JSON lines."""

    model_config = SettingsConfigDict(env_prefix="CHALDEPLOY_LOGGING_")

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (text, json)")
    service_name: str = Field(default="chaldeploy", description="Service identifier in logs")


class ServerConfig(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="CHALDEPLOY_SERVER_")

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=8080, description="Server port")
    api_key: str = Field(default="", description="API key for authentication")
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )


class Config(BaseSettings):
    """Main configuration aggregating all sub-configs.

    Environment variable prefix: CHALDEPLOY_
    Sub-configs use their own prefixes (CHALDEPLOY_CLUSTER_, etc.)
    """

    model_config = SettingsConfigDict(
        env_prefix="CHALDEPLOY_",
        env_nested_delimiter="__",
    )

    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    challenge: ChallengeConfig = Field(default_factory=ChallengeConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


@lru_cache
def get_config() -> Config:
    """Get cached configuration singleton."""
    return Config()
