"""Operation result types for the Kubernetes runtime."""

from enum import Enum

from pydantic import BaseModel

from chaldeploy.runtimes.kubernetes.registry import InstanceState


class OperationStatus(str, Enum):
    """Operation status values."""

    COMPLETED = "completed"

    # Create-specific
    ALREADY_RUNNING = "already_running"

    # Destroy-specific
    ALREADY_DESTROYING = "already_destroying"
    ALREADY_DELETED = "already_deleted"


class OperationResult(BaseModel):
    """Result of create/destroy.

    Idempotent no-ops report the current state instead of raising.
    """

    status: OperationStatus
    state: InstanceState
    endpoint: str | None = None
    message: str = ""


class InstanceStatus(BaseModel):
    """Last known local state of a team's instance."""

    team_id: str
    resource_name: str
    state: InstanceState
    endpoint: str | None = None
