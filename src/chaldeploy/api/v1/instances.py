"""Instance API endpoints.

Thin translation layer: the team id comes from the path, results and
errors come straight from the InstanceManager.
"""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from chaldeploy.api.dependencies import get_runtime
from chaldeploy.api.errors import InstanceNotFoundError
from chaldeploy.runtimes import KubernetesRuntime
from chaldeploy.runtimes.kubernetes.result import OperationStatus

router = APIRouter(prefix="/instances", tags=["instances"])


# =============================================================================
# Schemas
# =============================================================================


class CreateInstanceRequest(BaseModel):
    """Create instance request."""

    team_name: str | None = None


class CreateInstanceResponse(BaseModel):
    """Create instance response."""

    status: Literal["created", "already_running"]
    team_id: str
    state: str
    host: str | None


class DestroyInstanceResponse(BaseModel):
    """Destroy instance response."""

    status: Literal["destroyed", "already_destroying", "already_deleted"]
    team_id: str
    state: str


class InstanceStatusResponse(BaseModel):
    """Instance status response."""

    team_id: str
    state: str
    host: str | None = None


class InstanceListResponse(BaseModel):
    """Instance list response."""

    instances: list[InstanceStatusResponse]


_DESTROY_STATUS = {
    OperationStatus.COMPLETED: "destroyed",
    OperationStatus.ALREADY_DESTROYING: "already_destroying",
    OperationStatus.ALREADY_DELETED: "already_deleted",
}


@router.get("", response_model=InstanceListResponse)
async def list_instances(
    runtime: KubernetesRuntime = Depends(get_runtime),
) -> InstanceListResponse:
    """List all known instances."""
    return InstanceListResponse(
        instances=[
            InstanceStatusResponse(team_id=s.team_id, state=s.state.value, host=s.endpoint)
            for s in runtime.instances.list_all()
        ]
    )


@router.get("/{team_id}", response_model=InstanceStatusResponse)
async def get_instance_status(
    team_id: str,
    runtime: KubernetesRuntime = Depends(get_runtime),
) -> InstanceStatusResponse:
    """Get last known instance state for a team."""
    status = runtime.instances.get_status(team_id)
    if status is None:
        raise InstanceNotFoundError(f"No instance for team {team_id}")
    return InstanceStatusResponse(
        team_id=team_id,
        state=status.state.value,
        host=status.endpoint,
    )


@router.post("/{team_id}", status_code=200, response_model=CreateInstanceResponse)
async def create_instance(
    team_id: str,
    request: CreateInstanceRequest | None = None,
    runtime: KubernetesRuntime = Depends(get_runtime),
) -> CreateInstanceResponse:
    """Deploy the challenge for a team."""
    team_name = request.team_name if request else None
    result = await runtime.instances.create(team_id, team_name)
    return CreateInstanceResponse(
        status="already_running" if result.status == OperationStatus.ALREADY_RUNNING else "created",
        team_id=team_id,
        state=result.state.value,
        host=result.endpoint,
    )


@router.delete("/{team_id}", status_code=200, response_model=DestroyInstanceResponse)
async def destroy_instance(
    team_id: str,
    runtime: KubernetesRuntime = Depends(get_runtime),
) -> DestroyInstanceResponse:
    """Tear down a team's instance."""
    result = await runtime.instances.destroy(team_id)
    return DestroyInstanceResponse(
        status=_DESTROY_STATUS[result.status],
        team_id=team_id,
        state=result.state.value,
    )
