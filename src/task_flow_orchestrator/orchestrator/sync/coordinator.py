"""Synchronization between the remote tracker and the staging store.

Pull upserts remote tasks as staged tasks, push sends unpushed local edits
back, and in bidirectional mode tasks changed on both sides are reconciled
by a :class:`ConflictPolicy` before either phase runs. Per-project and
per-task failures are collected into the summary's error list; only missing
configuration aborts a call.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid

from pydantic import BaseModel, Field

from task_flow_orchestrator.orchestrator.cancellation import CancellationToken
from task_flow_orchestrator.orchestrator.errors import (
    ConfigurationError,
    OperationCancelled,
    RemoteServiceError,
)
from task_flow_orchestrator.orchestrator.ledger import (
    ConflictReport,
    ExecutionLedger,
    SyncDirection,
    SyncOperationSummary,
)
from task_flow_orchestrator.orchestrator.remote.client import RemoteTaskClient
from task_flow_orchestrator.orchestrator.remote.models import RemoteTask, TaskWrite
from task_flow_orchestrator.orchestrator.staging.store import (
    StagingStore,
    UpsertOutcome,
    utc_iso_now,
)
from task_flow_orchestrator.orchestrator.sync.conflicts import (
    Conflict,
    ConflictPolicy,
    LastWriteWins,
    Resolution,
)

logger = logging.getLogger(__name__)

# Failures that belong to one entity and must not abort the batch.
_ENTITY_ERRORS = (RemoteServiceError, sqlite3.Error, ValueError, OverflowError)


def new_sync_id() -> str:
    return f"sync_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class ProjectSyncResult(BaseModel):
    project_id: str
    tasks_synced: int = 0
    tasks_inserted: int = 0
    tasks_refreshed: int = 0
    tasks_created: int = 0
    tasks_updated: int = 0
    conflicts: ConflictReport = Field(default_factory=ConflictReport)
    errors: list[str] = Field(default_factory=list)


class SyncCoordinator:
    def __init__(
        self,
        *,
        store: StagingStore,
        ledger: ExecutionLedger,
        remote: RemoteTaskClient | None,
        conflict_policy: ConflictPolicy | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._remote = remote
        self._policy: ConflictPolicy = conflict_policy or LastWriteWins()

    @property
    def configured(self) -> bool:
        return self._remote is not None

    def _client(self) -> RemoteTaskClient:
        if self._remote is None:
            raise ConfigurationError(
                "Remote tracker is not configured; set ORCHESTRATOR_REMOTE_TOKEN "
                "and ORCHESTRATOR_REMOTE_TEAM_ID"
            )
        return self._remote

    def sync_all_projects(
        self,
        *,
        direction: SyncDirection = SyncDirection.BIDIRECTIONAL,
        cancellation: CancellationToken | None = None,
    ) -> SyncOperationSummary:
        remote = self._client()
        started = time.monotonic()
        summary = SyncOperationSummary(sync_id=new_sync_id(), direction=direction)
        logger.info(
            "Sync started",
            extra={"sync_id": summary.sync_id, "direction": direction.value},
        )

        try:
            try:
                projects = remote.list_projects(cancellation=cancellation)
            except RemoteServiceError as e:
                summary.errors.append(f"list projects: {e}")
                projects = []
            except OperationCancelled as e:
                summary.errors.append(f"cancelled: {e}")
                projects = []

            for project in projects:
                try:
                    result = self._sync_project(
                        remote, project.id, direction=direction, cancellation=cancellation
                    )
                except OperationCancelled as e:
                    summary.errors.append(f"cancelled during project {project.id}: {e}")
                    break
                self._accumulate(summary, result)
        except Exception as e:
            summary.errors.append(f"sync aborted: {e}")
            raise
        finally:
            self._finish(summary, started)
        return summary

    def sync_project_by_id(
        self,
        project_id: str,
        *,
        direction: SyncDirection = SyncDirection.BIDIRECTIONAL,
        cancellation: CancellationToken | None = None,
    ) -> ProjectSyncResult:
        remote = self._client()
        started = time.monotonic()
        summary = SyncOperationSummary(
            sync_id=new_sync_id(), direction=direction, project_id=project_id
        )
        try:
            try:
                result = self._sync_project(
                    remote, project_id, direction=direction, cancellation=cancellation
                )
            except OperationCancelled as e:
                result = ProjectSyncResult(project_id=project_id, errors=[f"cancelled: {e}"])
            self._accumulate(summary, result)
        except Exception as e:
            summary.errors.append(f"sync aborted: {e}")
            raise
        finally:
            self._finish(summary, started)
        return result

    @staticmethod
    def _accumulate(summary: SyncOperationSummary, result: ProjectSyncResult) -> None:
        if not result.errors or result.tasks_synced:
            summary.projects_synced += 1
        summary.tasks_synced += result.tasks_synced
        summary.tasks_inserted += result.tasks_inserted
        summary.tasks_refreshed += result.tasks_refreshed
        summary.tasks_created += result.tasks_created
        summary.tasks_updated += result.tasks_updated
        summary.conflicts.merge(result.conflicts)
        summary.errors.extend(result.errors)

    def _finish(self, summary: SyncOperationSummary, started: float) -> SyncOperationSummary:
        summary.duration_seconds = round(time.monotonic() - started, 3)
        self._ledger.record_sync_summary(summary)
        log = logger.info if summary.success else logger.warning
        log(
            "Sync finished",
            extra={
                "sync_id": summary.sync_id,
                "projects_synced": summary.projects_synced,
                "tasks_synced": summary.tasks_synced,
                "errors": len(summary.errors),
            },
        )
        return summary

    def _sync_project(
        self,
        remote: RemoteTaskClient,
        project_id: str,
        *,
        direction: SyncDirection,
        cancellation: CancellationToken | None,
    ) -> ProjectSyncResult:
        result = ProjectSyncResult(project_id=project_id)
        try:
            project = remote.get_project(project_id, cancellation=cancellation)
            self._store.upsert_project(project)
            remote_tasks = (
                remote.list_tasks(project_id, cancellation=cancellation, errors=result.errors)
                if direction.pulls
                else []
            )
        except _ENTITY_ERRORS as e:
            logger.warning(
                "Project sync failed", extra={"project_id": project_id, "error": str(e)}
            )
            result.errors.append(f"project {project_id}: {e}")
            return result

        skip_pull: set[str] = set()
        skip_push: set[str] = set()
        if direction is SyncDirection.BIDIRECTIONAL:
            skip_pull, skip_push = self._reconcile(project_id, remote_tasks, result)

        if direction.pulls:
            self._pull(remote_tasks, skip_pull, result)
        if direction.pushes:
            self._push(remote, project_id, skip_push, result, cancellation)
        return result

    def _reconcile(
        self, project_id: str, remote_tasks: list[RemoteTask], result: ProjectSyncResult
    ) -> tuple[set[str], set[str]]:
        skip_pull: set[str] = set()
        skip_push: set[str] = set()
        for remote_task in remote_tasks:
            local = self._store.find_task(external_id=remote_task.id, project_id=project_id)
            if local is None or not local.has_unpushed_changes:
                continue
            if local.remote_hash is None or local.remote_hash == remote_task.content_hash():
                continue

            resolution = self._policy.resolve(Conflict(local=local, remote=remote_task))
            result.conflicts.found += 1
            if resolution is Resolution.UNRESOLVED:
                result.conflicts.unresolved += 1
                skip_pull.add(remote_task.id)
                skip_push.add(local.id)
            else:
                result.conflicts.resolved += 1
                if resolution is Resolution.LOCAL:
                    skip_pull.add(remote_task.id)
                else:
                    skip_push.add(local.id)
            result.conflicts.details.append(
                {
                    "task_id": local.id,
                    "external_id": remote_task.id,
                    "resolution": resolution.value,
                    "policy": self._policy.name,
                }
            )
            logger.info(
                "Sync conflict",
                extra={
                    "task_id": local.id,
                    "project_id": project_id,
                    "resolution": resolution.value,
                },
            )
        return skip_pull, skip_push

    def _pull(
        self, remote_tasks: list[RemoteTask], skip: set[str], result: ProjectSyncResult
    ) -> None:
        for remote_task in remote_tasks:
            if remote_task.id in skip:
                continue
            try:
                outcome = self._store.upsert_remote_task(remote_task)
            except sqlite3.Error as e:
                result.errors.append(f"stage task {remote_task.id}: {e}")
                continue
            result.tasks_synced += 1
            if outcome is UpsertOutcome.INSERTED:
                result.tasks_inserted += 1
            elif outcome is UpsertOutcome.UPDATED:
                result.tasks_refreshed += 1

    def _push(
        self,
        remote: RemoteTaskClient,
        project_id: str,
        skip: set[str],
        result: ProjectSyncResult,
        cancellation: CancellationToken | None,
    ) -> None:
        for candidate in self._store.list_unpushed(project_id=project_id):
            if candidate.id in skip:
                continue
            try:
                claimed = self._store.claim_push(candidate.id)
            except sqlite3.Error as e:
                result.errors.append(f"claim task {candidate.id}: {e}")
                continue
            if not claimed:
                # Another sync holds the row or has already pushed it.
                logger.debug(
                    "Push skipped; task claimed elsewhere",
                    extra={"task_id": candidate.id, "project_id": project_id},
                )
                continue

            marked = False
            try:
                # Re-read under the claim; the listed snapshot may predate another push.
                task = self._store.get_task(candidate.id) or candidate
                write = TaskWrite(
                    name=task.title,
                    description=task.description,
                    status=task.status or None,
                    priority=task.priority,
                    tags=tuple(task.tags),
                    due_date=task.due_date,
                )
                pushed_at = utc_iso_now()
                if task.origin == "local":
                    pushed = remote.create_task(project_id, write, cancellation=cancellation)
                else:
                    pushed = remote.update_task(
                        task.external_id, project_id, write, cancellation=cancellation
                    )
                self._store.mark_pushed(task.id, remote=pushed, pushed_at=pushed_at)
                marked = True
                if task.origin == "local":
                    result.tasks_created += 1
                else:
                    result.tasks_updated += 1
            except _ENTITY_ERRORS as e:
                logger.warning(
                    "Push failed", extra={"task_id": candidate.id, "project_id": project_id}
                )
                result.errors.append(f"push task {candidate.id}: {e}")
            finally:
                if not marked:
                    self._release_claim(candidate.id)

    def _release_claim(self, task_id: str) -> None:
        try:
            self._store.release_push(task_id)
        except sqlite3.Error:
            # The claim expires on its own after PUSH_CLAIM_TTL_SECONDS.
            logger.exception("Could not release push claim", extra={"task_id": task_id})

    def health_check(self) -> bool:
        return self._remote is not None and self._remote.ping()
