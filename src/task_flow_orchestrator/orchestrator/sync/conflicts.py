"""Conflict resolution policies for bidirectional sync.

A conflict is a task whose remote content changed since the last pull while
the local copy holds an edit that has not been pushed yet.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from task_flow_orchestrator.orchestrator.errors import ConfigurationError
from task_flow_orchestrator.orchestrator.remote.models import RemoteTask
from task_flow_orchestrator.orchestrator.staging.models import StagedTask


class Resolution(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True, slots=True)
class Conflict:
    local: StagedTask
    remote: RemoteTask

    @property
    def local_modified_at(self) -> datetime | None:
        if self.local.local_modified_at is None:
            return None
        return datetime.fromisoformat(self.local.local_modified_at)

    @property
    def remote_modified_at(self) -> datetime | None:
        return self.remote.updated_at


class ConflictPolicy(Protocol):
    name: str

    def resolve(self, conflict: Conflict) -> Resolution: ...


class LastWriteWins:
    """The side modified most recently wins; the remote wins ties and unknown times."""

    name = "last_write_wins"

    def resolve(self, conflict: Conflict) -> Resolution:
        local_ts = conflict.local_modified_at
        remote_ts = conflict.remote_modified_at
        if local_ts is None or remote_ts is None:
            return Resolution.REMOTE
        return Resolution.LOCAL if local_ts > remote_ts else Resolution.REMOTE


class RemoteWins:
    name = "remote_wins"

    def resolve(self, conflict: Conflict) -> Resolution:
        return Resolution.REMOTE


class LocalWins:
    name = "local_wins"

    def resolve(self, conflict: Conflict) -> Resolution:
        return Resolution.LOCAL


class ManualResolution:
    """Never auto-resolves; both sides are left untouched and reported."""

    name = "manual"

    def resolve(self, conflict: Conflict) -> Resolution:
        return Resolution.UNRESOLVED


_POLICIES: dict[str, type[LastWriteWins | RemoteWins | LocalWins | ManualResolution]] = {
    LastWriteWins.name: LastWriteWins,
    RemoteWins.name: RemoteWins,
    LocalWins.name: LocalWins,
    ManualResolution.name: ManualResolution,
}


def policy_from_name(name: str) -> ConflictPolicy:
    try:
        return _POLICIES[name]()
    except KeyError as e:
        raise ConfigurationError(f"Unknown conflict policy: {name}") from e
