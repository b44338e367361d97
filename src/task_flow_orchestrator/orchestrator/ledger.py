"""Execution ledger: persisted flow statuses and sync summaries."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field

from task_flow_orchestrator.orchestrator.staging.store import StagingStore, utc_iso_now

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {FlowState.COMPLETED, FlowState.FAILED}


class FlowStatusRecord(BaseModel):
    flow_id: str
    step_name: str
    state: FlowState
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: str = Field(default_factory=utc_iso_now)


class SyncDirection(str, Enum):
    PULL = "pull"
    PUSH = "push"
    BIDIRECTIONAL = "bidirectional"

    @property
    def pulls(self) -> bool:
        return self in {SyncDirection.PULL, SyncDirection.BIDIRECTIONAL}

    @property
    def pushes(self) -> bool:
        return self in {SyncDirection.PUSH, SyncDirection.BIDIRECTIONAL}


class ConflictReport(BaseModel):
    found: int = 0
    resolved: int = 0
    unresolved: int = 0
    details: list[dict[str, str]] = Field(default_factory=list)

    def merge(self, other: ConflictReport) -> None:
        self.found += other.found
        self.resolved += other.resolved
        self.unresolved += other.unresolved
        self.details.extend(other.details)


class SyncOperationSummary(BaseModel):
    sync_id: str
    direction: SyncDirection
    project_id: str | None = None
    projects_synced: int = 0
    tasks_synced: int = 0
    tasks_inserted: int = 0
    tasks_refreshed: int = 0
    tasks_created: int = 0
    tasks_updated: int = 0
    conflicts: ConflictReport = Field(default_factory=ConflictReport)
    errors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    started_at: str = Field(default_factory=utc_iso_now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return not self.errors


class ExecutionLedger:
    """Thin persistence facade used by the executor and the sync coordinator."""

    def __init__(self, store: StagingStore) -> None:
        self._store = store

    def record_flow_status(self, record: FlowStatusRecord) -> None:
        self._store.upsert_flow_status(
            flow_id=record.flow_id,
            step_name=record.step_name,
            state=record.state.value,
            metadata=record.metadata,
            updated_at=record.updated_at,
        )
        logger.debug(
            "Flow status recorded",
            extra={"flow_id": record.flow_id, "state": record.state.value, "step": record.step_name},
        )

    def get_flow_status(self, flow_id: str) -> FlowStatusRecord | None:
        raw = self._store.get_flow_status(flow_id)
        return FlowStatusRecord.model_validate(raw) if raw is not None else None

    def record_sync_summary(self, summary: SyncOperationSummary) -> None:
        self._store.insert_sync_log(
            sync_id=summary.sync_id,
            direction=summary.direction.value,
            timestamp=utc_iso_now(),
            summary=summary.model_dump(mode="json"),
            success=summary.success,
        )
        logger.info(
            "Sync summary recorded",
            extra={
                "sync_id": summary.sync_id,
                "direction": summary.direction.value,
                "success": summary.success,
                "errors": len(summary.errors),
            },
        )

    def recent_sync_summaries(self, *, limit: int = 20) -> list[SyncOperationSummary]:
        return [
            SyncOperationSummary.model_validate(raw)
            for raw in self._store.list_sync_logs(limit=limit)
        ]
