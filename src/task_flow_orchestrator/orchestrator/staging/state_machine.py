from __future__ import annotations

from enum import Enum

from task_flow_orchestrator.orchestrator.errors import IllegalTransitionError


class SyncStatus(str, Enum):
    PENDING = "pending"
    ENRICHED = "enriched"
    PROMOTED = "promoted"
    ERROR = "error"


# PENDING -> PENDING is a refresh from a remote pull.
ALLOWED_TRANSITIONS: dict[SyncStatus, set[SyncStatus]] = {
    SyncStatus.PENDING: {
        SyncStatus.PENDING,
        SyncStatus.ENRICHED,
        SyncStatus.PROMOTED,
        SyncStatus.ERROR,
    },
    SyncStatus.ENRICHED: {
        SyncStatus.PENDING,
        SyncStatus.ENRICHED,
        SyncStatus.PROMOTED,
        SyncStatus.ERROR,
    },
    SyncStatus.ERROR: {SyncStatus.PENDING},
    SyncStatus.PROMOTED: set(),
}


def transition(*, current: SyncStatus, to: SyncStatus) -> SyncStatus:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


def sources_for(to: SyncStatus) -> tuple[SyncStatus, ...]:
    """States from which ``to`` may be entered.

    The store turns this into the ``WHERE sync_status IN (...)`` guard of a
    conditional update, so the check and the write are one statement.
    """

    return tuple(state for state, targets in ALLOWED_TRANSITIONS.items() if to in targets)
