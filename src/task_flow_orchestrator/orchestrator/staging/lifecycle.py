"""Staged-task lifecycle: enrichment, validation gate, promotion.

State machine (see :mod:`state_machine`)::

    pending -> enriched -> promoted
        \\          \\
         +-> error   +-> error      (error -> pending on retry/pull)

Promotion is guarded by the store's UNIQUE (external_id, project_id)
constraint on promoted tasks, so two reviewers racing on the same task
produce one promoted row and one benign duplicate.
"""

from __future__ import annotations

import logging
import sqlite3
import time

from pydantic import BaseModel, Field

from task_flow_orchestrator.orchestrator.enrichment.base import EnrichmentStrategy
from task_flow_orchestrator.orchestrator.enrichment.payload import EnrichmentPayload
from task_flow_orchestrator.orchestrator.errors import (
    DuplicatePromotionError,
    EnrichmentError,
    IllegalTransitionError,
    TaskValidationError,
)
from task_flow_orchestrator.orchestrator.staging.models import PromotedTask, StagedTask
from task_flow_orchestrator.orchestrator.staging.state_machine import SyncStatus, transition
from task_flow_orchestrator.orchestrator.staging.store import StagingStore, utc_iso_now

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = ("title", "project_id", "external_id", "status")


class ReviewResult(BaseModel):
    tasks_reviewed: int = 0
    tasks_enriched: int = 0
    tasks_promoted: int = 0
    validation_failures: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    processing_time: float = 0.0


class StagingLifecycleManager:
    def __init__(self, *, store: StagingStore, enrichment: EnrichmentStrategy) -> None:
        self._store = store
        self._enrichment = enrichment

    @property
    def enrichment(self) -> EnrichmentStrategy:
        return self._enrichment

    def list_pending(self, *, limit: int | None = None) -> list[StagedTask]:
        """Tasks awaiting review, oldest first."""

        return self._store.list_by_status(
            (SyncStatus.PENDING, SyncStatus.ENRICHED), limit=limit
        )

    @staticmethod
    def needs_enrichment(task: StagedTask) -> bool:
        return (
            not (task.description or "").strip()
            or not task.unit_tests
            or not task.tags
            or not task.effort_estimate
            or not task.success_criteria
        )

    def apply_enrichment(self, task_id: str, payload: EnrichmentPayload) -> StagedTask:
        """Merge ``payload`` into the task and mark it enriched.

        Raises:
            KeyError: Unknown task.
            IllegalTransitionError: The task is promoted or in error.
        """

        if self._store.apply_enrichment(task_id, payload):
            updated = self._store.get_task(task_id)
            assert updated is not None
            return updated

        current = self._store.get_task(task_id)
        if current is None:
            raise KeyError(task_id)
        # Not applied, so the transition itself is illegal; this raises.
        transition(current=current.sync_status, to=SyncStatus.ENRICHED)
        raise IllegalTransitionError(f"Task {task_id} changed state during enrichment")

    @staticmethod
    def validate(task: StagedTask) -> None:
        """Promotion gate.

        Raises:
            TaskValidationError: Listing every required field that is empty.
        """

        missing = tuple(
            name for name in REQUIRED_FIELDS if not str(getattr(task, name) or "").strip()
        )
        if missing:
            raise TaskValidationError(task_id=task.id, missing=missing)

    def promote(self, task: StagedTask) -> PromotedTask | None:
        """Insert the promoted record; ``None`` when it already exists."""

        enriched_data = {
            "unit_tests": task.unit_tests,
            "effort_estimate": task.effort_estimate,
            "dependencies": task.dependencies,
            "success_criteria": task.success_criteria,
            "assignee_suggestions": task.assignee_suggestions,
            "confidence_score": task.confidence_score,
            "metadata": {
                "promoted_at": utc_iso_now(),
                "strategy": self._enrichment.name,
                "staged_sync_status": task.sync_status.value,
            },
        }
        try:
            promoted = self._store.insert_promoted(task, enriched_data)
        except DuplicatePromotionError as e:
            logger.info(
                "Task already promoted",
                extra={"task_id": task.id, "external_id": e.external_id, "project_id": e.project_id},
            )
            return None
        logger.info(
            "Task promoted",
            extra={"task_id": task.id, "promoted_id": promoted.id, "project_id": task.project_id},
        )
        return promoted

    def mark_promoted(self, task_id: str) -> bool:
        """Set sync_status to promoted; False if it already was."""

        if self._store.set_sync_status(task_id, SyncStatus.PROMOTED):
            return True
        current = self._store.get_task(task_id)
        if current is None:
            raise KeyError(task_id)
        if current.sync_status is SyncStatus.PROMOTED:
            return False
        transition(current=current.sync_status, to=SyncStatus.PROMOTED)
        return False

    def mark_error(self, task_id: str, message: str) -> bool:
        return self._store.set_sync_status(task_id, SyncStatus.ERROR, error=message[:500])

    def retry_errored(self) -> int:
        count = self._store.reset_errored()
        if count:
            logger.info("Errored tasks reset to pending", extra={"count": count})
        return count

    def review_staged_tasks(self, *, limit: int | None = None) -> ReviewResult:
        """Enrich, validate and promote every task awaiting review.

        One task's failure never stops the batch: validation failures leave
        the task where it is, enrichment failures leave it for the next pass,
        and anything unexpected marks the task as errored.
        """

        started = time.monotonic()
        result = ReviewResult()
        pending = self.list_pending(limit=limit)
        logger.info("Review started", extra={"tasks": len(pending)})

        for task in pending:
            result.tasks_reviewed += 1
            try:
                self._review_one(task, result)
            except Exception as e:
                logger.exception("Review failed for task", extra={"task_id": task.id})
                result.errors.append(f"{task.id}: {e}")
                try:
                    self.mark_error(task.id, str(e))
                except sqlite3.Error:
                    logger.exception("Could not record task error", extra={"task_id": task.id})

        result.processing_time = round(time.monotonic() - started, 3)
        logger.info(
            "Review finished",
            extra={
                "reviewed": result.tasks_reviewed,
                "enriched": result.tasks_enriched,
                "promoted": result.tasks_promoted,
                "validation_failures": len(result.validation_failures),
                "errors": len(result.errors),
            },
        )
        return result

    def _review_one(self, task: StagedTask, result: ReviewResult) -> None:
        if self.needs_enrichment(task):
            try:
                payload = self._enrichment.enrich(task)
            except Exception as e:
                logger.warning(
                    "Enrichment failed; task left for next pass",
                    extra={"task_id": task.id, "error": str(e)},
                    exc_info=not isinstance(e, EnrichmentError),
                )
                result.errors.append(f"{task.id}: enrichment failed: {e}")
                return
            try:
                task = self.apply_enrichment(task.id, payload)
            except IllegalTransitionError:
                if self._already_promoted(task.id):
                    logger.info(
                        "Task promoted by another reviewer; skipping", extra={"task_id": task.id}
                    )
                    return
                raise
            result.tasks_enriched += 1

        try:
            self.validate(task)
        except TaskValidationError as e:
            logger.warning("Task failed validation", extra={"task_id": task.id, "missing": e.missing})
            result.validation_failures.append(str(e))
            return

        promoted = self.promote(task)
        self.mark_promoted(task.id)
        if promoted is not None:
            result.tasks_promoted += 1

    def _already_promoted(self, task_id: str) -> bool:
        current = self._store.get_task(task_id)
        return current is not None and current.sync_status is SyncStatus.PROMOTED
