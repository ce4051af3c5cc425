"""In-memory registry of per-team instance records.

Records are inserted once per team and never removed; a destroyed team's
record is kept so a later create reuses it.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from chaldeploy.metrics import INSTANCES


class InstanceState(StrEnum):
    """Instance lifecycle state."""

    # Resources exist and the endpoint is valid
    RUNNING = "running"
    # Teardown initiated; resources may still exist and must not be recreated
    DESTROYING = "destroying"
    # No resources exist; the initial state and the only one create accepts
    DESTROYED = "destroyed"


# DESTROYED -> DESTROYING covers teardown of a half-created instance
_ALLOWED_TRANSITIONS: dict[InstanceState, frozenset[InstanceState]] = {
    InstanceState.DESTROYED: frozenset({InstanceState.RUNNING, InstanceState.DESTROYING}),
    InstanceState.RUNNING: frozenset({InstanceState.DESTROYING}),
    InstanceState.DESTROYING: frozenset({InstanceState.DESTROYED, InstanceState.DESTROYING}),
}


class InvalidTransitionError(Exception):
    """Raised on a lifecycle transition the state machine does not allow."""

    def __init__(self, team_id: str, current: InstanceState, target: InstanceState) -> None:
        self.team_id = team_id
        self.current = current
        self.target = target
        super().__init__(f"Instance {team_id}: illegal transition {current} -> {target}")


@dataclass
class InstanceRecord:
    """One team's deployment state.

    All mutation happens while holding `lock`, except the quick
    DESTROYING read in destroy.

    `provisioned` is set before create issues its first cluster call and
    cleared once the namespace is confirmed gone or its delete is accepted.
    A DESTROYED record that is still provisioned holds half-created objects.
    """

    team_id: str
    resource_name: str
    namespace: str
    state: InstanceState = InstanceState.DESTROYED
    endpoint: str | None = None
    teardown_in_flight: bool = False
    provisioned: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def transition(self, target: InstanceState, endpoint: str | None = None) -> None:
        """Move to target state; endpoint is only kept while RUNNING."""
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.team_id, self.state, target)
        if target != self.state:
            INSTANCES.labels(state=self.state.value).dec()
            INSTANCES.labels(state=target.value).inc()
        self.state = target
        self.endpoint = endpoint if target is InstanceState.RUNNING else None


class InstanceRegistry:
    """Mapping of team id to InstanceRecord.

    Owned by the InstanceManager that uses it, not a module global.
    """

    def __init__(self) -> None:
        self._records: dict[str, InstanceRecord] = {}

    def get_or_create(
        self,
        team_id: str,
        factory: Callable[[], InstanceRecord],
    ) -> InstanceRecord:
        """Return the record for team_id, inserting factory() if absent.

        Lookup and insert contain no await, so racing tasks always end up
        with the same record instance.
        """
        record = self._records.get(team_id)
        if record is not None:
            return record

        candidate = factory()
        record = self._records.setdefault(team_id, candidate)
        if record is candidate:
            INSTANCES.labels(state=record.state.value).inc()
        return record

    def get(self, team_id: str) -> InstanceRecord | None:
        return self._records.get(team_id)

    def records(self) -> list[InstanceRecord]:
        """Snapshot of all records."""
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, team_id: object) -> bool:
        return team_id in self._records
