"""Namespace, Deployment and Service descriptors for a team instance.

Pure functions of (team id, challenge config, naming): identical inputs give
identical objects, which keeps re-creating a team's instance idempotent.
"""

import re
from dataclasses import dataclass

from kubernetes import client

from chaldeploy.config import ChallengeConfig
from chaldeploy.runtimes.kubernetes.naming import ResourceNaming

TEAM_NAME_ANNOTATION = "team-name"

_CONTAINER_NAME_ILLEGAL = re.compile(r"[^a-z0-9-]+")


@dataclass(frozen=True)
class InstanceManifests:
    """All cluster objects making up one team instance."""

    namespace: client.V1Namespace
    deployment: client.V1Deployment
    service: client.V1Service


def container_name(image: str) -> str:
    """Derive a container name from an image reference.

    "registry.local:5000/ctf/pwn1:v2" -> "pwn1"
    """
    repository = image.rsplit("/", 1)[-1].split("@", 1)[0].split(":", 1)[0]
    name = _CONTAINER_NAME_ILLEGAL.sub("-", repository.lower()).strip("-")
    return name[:63] or "challenge"


def instance_labels(naming: ResourceNaming, team_id: str) -> dict[str, str]:
    """Labels shared by every object of an instance."""
    return {
        naming.label_key("chal"): naming.challenge_hash,
        naming.label_key("team-id"): naming.label_value(team_id),
        naming.label_key("managed-by"): naming.managed_by,
    }


def selector_labels(naming: ResourceNaming, name: str, team_id: str) -> dict[str, str]:
    return {
        "app": name,
        naming.label_key("team-id"): naming.label_value(team_id),
    }


def build_namespace(
    naming: ResourceNaming,
    team_id: str,
    team_name: str | None = None,
) -> client.V1Namespace:
    name = naming.namespace_name(team_id)
    annotations = {naming.label_key(TEAM_NAME_ANNOTATION): team_name} if team_name else None
    return client.V1Namespace(
        metadata=client.V1ObjectMeta(
            name=name,
            labels=instance_labels(naming, team_id),
            annotations=annotations,
        ),
    )


def build_deployment(
    naming: ResourceNaming,
    challenge: ChallengeConfig,
    team_id: str,
) -> client.V1Deployment:
    name = naming.resource_name(team_id)
    labels = {"app": name, **instance_labels(naming, team_id)}

    container = client.V1Container(
        name=container_name(challenge.image),
        image=challenge.image,
        image_pull_policy=challenge.image_pull_policy,
        ports=[client.V1ContainerPort(container_port=challenge.port)],
        resources=client.V1ResourceRequirements(
            limits={"cpu": challenge.cpu_limit, "memory": challenge.memory_limit},
        ),
    )

    return client.V1Deployment(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=naming.namespace_name(team_id),
            labels=labels,
        ),
        spec=client.V1DeploymentSpec(
            replicas=1,
            selector=client.V1LabelSelector(match_labels=selector_labels(naming, name, team_id)),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(containers=[container]),
            ),
        ),
    )


def build_service(
    naming: ResourceNaming,
    challenge: ChallengeConfig,
    team_id: str,
) -> client.V1Service:
    """NodePort service exposing the challenge port outside the cluster."""
    name = naming.resource_name(team_id)
    return client.V1Service(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=naming.namespace_name(team_id),
            labels={"app": name, **instance_labels(naming, team_id)},
        ),
        spec=client.V1ServiceSpec(
            type="NodePort",
            selector=selector_labels(naming, name, team_id),
            ports=[
                client.V1ServicePort(
                    port=challenge.port,
                    target_port=challenge.port,
                    protocol="TCP",
                )
            ],
        ),
    )


def build_manifests(
    naming: ResourceNaming,
    challenge: ChallengeConfig,
    team_id: str,
    team_name: str | None = None,
) -> InstanceManifests:
    return InstanceManifests(
        namespace=build_namespace(naming, team_id, team_name),
        deployment=build_deployment(naming, challenge, team_id),
        service=build_service(naming, challenge, team_id),
    )
