"""Adapters exposing the pipeline components as flow capabilities."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from task_flow_orchestrator.orchestrator.enrichment.payload import EnrichmentPayload
from task_flow_orchestrator.orchestrator.errors import ConfigurationError
from task_flow_orchestrator.orchestrator.flows.context import ExecutionContext
from task_flow_orchestrator.orchestrator.flows.definitions import (
    EnrichTaskConfig,
    ReviewStagedTasksConfig,
    SyncAllProjectsConfig,
    SyncProjectConfig,
)
from task_flow_orchestrator.orchestrator.flows.registry import Capability, Handler
from task_flow_orchestrator.orchestrator.ledger import SyncOperationSummary
from task_flow_orchestrator.orchestrator.staging.lifecycle import (
    ReviewResult,
    StagingLifecycleManager,
)
from task_flow_orchestrator.orchestrator.staging.models import StagedTask
from task_flow_orchestrator.orchestrator.staging.store import StagingStore
from task_flow_orchestrator.orchestrator.sync.coordinator import (
    ProjectSyncResult,
    SyncCoordinator,
)

logger = logging.getLogger(__name__)


class SyncCapability(Capability):
    name = "sync"

    def __init__(self, coordinator: SyncCoordinator) -> None:
        self._coordinator = coordinator

    def methods(self) -> Mapping[str, Handler]:
        return {
            "syncAllProjects": self.sync_all_projects,
            "syncProjectById": self.sync_project_by_id,
        }

    def sync_all_projects(
        self, context: ExecutionContext, config: SyncAllProjectsConfig
    ) -> SyncOperationSummary:
        return self._coordinator.sync_all_projects(
            direction=config.direction, cancellation=context.cancellation
        )

    def sync_project_by_id(
        self, context: ExecutionContext, config: SyncProjectConfig
    ) -> ProjectSyncResult:
        project_id = config.project_id or context.request_value("projectId")
        if not project_id:
            raise ConfigurationError("syncProjectById needs a project id (config.projectId)")
        return self._coordinator.sync_project_by_id(
            str(project_id), direction=config.direction, cancellation=context.cancellation
        )

    def health_check(self) -> bool:
        return self._coordinator.health_check()


class ReviewCapability(Capability):
    name = "review"

    def __init__(self, lifecycle: StagingLifecycleManager) -> None:
        self._lifecycle = lifecycle

    def methods(self) -> Mapping[str, Handler]:
        return {"reviewStagedTasks": self.review_staged_tasks}

    def review_staged_tasks(
        self, context: ExecutionContext, config: ReviewStagedTasksConfig
    ) -> ReviewResult:
        if config.retry_errored:
            self._lifecycle.retry_errored()
        limit = config.limit or context.request_value("limit")
        return self._lifecycle.review_staged_tasks(limit=int(limit) if limit else None)


class EnrichmentResult(BaseModel):
    task_id: str | None
    needed_enrichment: bool
    applied: bool
    payload: EnrichmentPayload


class EnrichmentCapability(Capability):
    name = "enrichment"

    def __init__(self, *, lifecycle: StagingLifecycleManager, store: StagingStore) -> None:
        self._lifecycle = lifecycle
        self._store = store

    def methods(self) -> Mapping[str, Handler]:
        return {"enrichTask": self.enrich_task}

    def enrich_task(self, context: ExecutionContext, config: EnrichTaskConfig) -> EnrichmentResult:
        """Enrich a staged task (``taskId``) or an ad-hoc ``taskData`` object."""

        task_id = context.request.task_id or context.request_value("taskId")
        if task_id:
            task = self._store.get_task(str(task_id))
            if task is None:
                raise KeyError(f"Staged task not found: {task_id}")
            persist = config.apply
        else:
            task = self._adhoc_task(context.request_value("taskData"))
            persist = False

        needed = self._lifecycle.needs_enrichment(task)
        payload = self._lifecycle.enrichment.enrich(task)
        applied = False
        if persist:
            self._lifecycle.apply_enrichment(task.id, payload)
            applied = True
        logger.info(
            "Enrich task step finished",
            extra={"flow_id": context.flow_id, "task_id": task.id, "applied": applied},
        )
        return EnrichmentResult(
            task_id=task.id if task_id else None,
            needed_enrichment=needed,
            applied=applied,
            payload=payload,
        )

    @staticmethod
    def _adhoc_task(data: Any) -> StagedTask:
        if not isinstance(data, dict):
            raise ConfigurationError("enrichTask needs taskId or a taskData object")
        now = datetime.now(tz=UTC).isoformat()
        return StagedTask.model_validate(
            {
                "id": str(data.get("id") or "adhoc"),
                "external_id": str(data.get("external_id") or data.get("id") or "adhoc"),
                "project_id": str(data.get("project_id") or ""),
                "title": str(data.get("title") or ""),
                "description": data.get("description"),
                "status": str(data.get("status") or ""),
                "tags": list(data.get("tags") or []),
                "created_at": now,
                "updated_at": now,
            }
        )

    def health_check(self) -> bool:
        return self._lifecycle.enrichment.health_check() and self._store.ping()
