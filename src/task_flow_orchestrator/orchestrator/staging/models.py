"""Records held by the staging store."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from task_flow_orchestrator.orchestrator.staging.state_machine import SyncStatus


class Project(BaseModel):
    id: str
    name: str
    description: str | None = None
    status: str | None = None
    created_at: str
    updated_at: str


class StagedTask(BaseModel):
    """A task awaiting enrichment/validation before promotion.

    Unique on (external_id, project_id). Rows are kept for audit and never
    deleted.
    """

    id: str
    external_id: str
    project_id: str
    title: str = ""
    description: str | None = None
    status: str = ""
    priority: int | None = None
    assignees: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    due_date: str | None = None

    unit_tests: list[str] = Field(default_factory=list)
    effort_estimate: float | None = None
    success_criteria: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    assignee_suggestions: list[str] = Field(default_factory=list)
    confidence_score: float | None = None

    origin: Literal["remote", "local"] = "remote"
    remote_hash: str | None = None
    remote_updated_at: str | None = None
    local_modified_at: str | None = None
    pushed_at: str | None = None
    push_claimed_at: str | None = None
    last_error: str | None = None

    sync_status: SyncStatus = SyncStatus.PENDING
    created_at: str
    updated_at: str

    @property
    def has_unpushed_changes(self) -> bool:
        if self.local_modified_at is None:
            return False
        return self.pushed_at is None or self.local_modified_at > self.pushed_at


class PromotedTask(BaseModel):
    """The finalized, append-only record of a staged task."""

    id: str
    staged_task_id: str
    external_id: str
    project_id: str
    title: str
    description: str | None = None
    status: str
    priority: int | None = None
    assignees: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    due_date: str | None = None
    enriched_data: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str
