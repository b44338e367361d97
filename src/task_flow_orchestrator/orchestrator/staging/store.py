"""SQLite-backed staging store.

Every write is a single parameterized statement executed in autocommit mode
on a short-lived connection, except :meth:`StagingStore.mark_pushed`, which
merges two rows inside one ``BEGIN IMMEDIATE`` transaction. Exclusion between
concurrent flows comes from the UNIQUE constraints and the conditional
``WHERE`` guards in those statements; there is no in-process locking.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from task_flow_orchestrator.orchestrator.enrichment.payload import EnrichmentPayload
from task_flow_orchestrator.orchestrator.errors import DuplicatePromotionError
from task_flow_orchestrator.orchestrator.remote.models import RemoteProject, RemoteTask
from task_flow_orchestrator.orchestrator.staging.models import (
    Project,
    PromotedTask,
    StagedTask,
)
from task_flow_orchestrator.orchestrator.staging.state_machine import SyncStatus, sources_for

logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local:"

# A push claim older than this belongs to a pusher that died mid-push.
PUSH_CLAIM_TTL_SECONDS = 300.0

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        status TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS staging_tasks (
        id TEXT PRIMARY KEY,
        external_id TEXT NOT NULL,
        project_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        description TEXT,
        status TEXT NOT NULL DEFAULT '',
        priority INTEGER,
        assignees TEXT NOT NULL DEFAULT '[]',
        tags TEXT NOT NULL DEFAULT '[]',
        due_date TEXT,
        unit_tests TEXT NOT NULL DEFAULT '[]',
        effort_estimate REAL,
        success_criteria TEXT NOT NULL DEFAULT '[]',
        dependencies TEXT NOT NULL DEFAULT '[]',
        assignee_suggestions TEXT NOT NULL DEFAULT '[]',
        confidence_score REAL,
        origin TEXT NOT NULL DEFAULT 'remote',
        remote_hash TEXT,
        remote_updated_at TEXT,
        local_modified_at TEXT,
        pushed_at TEXT,
        push_claimed_at TEXT,
        last_error TEXT,
        sync_status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (external_id, project_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_staging_tasks_status ON staging_tasks (sync_status, created_at)",
    """
    CREATE TABLE IF NOT EXISTS promoted_tasks (
        id TEXT PRIMARY KEY,
        staged_task_id TEXT NOT NULL,
        external_id TEXT NOT NULL,
        project_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL,
        priority INTEGER,
        assignees TEXT NOT NULL DEFAULT '[]',
        tags TEXT NOT NULL DEFAULT '[]',
        due_date TEXT,
        enriched_data TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (external_id, project_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS flow_status (
        flow_id TEXT PRIMARY KEY,
        step_name TEXT NOT NULL,
        state TEXT NOT NULL,
        metadata TEXT NOT NULL DEFAULT '{}',
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sync_id TEXT NOT NULL,
        direction TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        summary TEXT NOT NULL,
        success INTEGER NOT NULL
    )
    """,
)

_LIST_COLUMNS = (
    "assignees",
    "tags",
    "unit_tests",
    "success_criteria",
    "dependencies",
    "assignee_suggestions",
)


def utc_iso_now() -> str:
    # Fixed precision keeps ISO strings comparable as text.
    return datetime.now(tz=UTC).isoformat(timespec="microseconds")


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _in_clause(states: Sequence[SyncStatus]) -> tuple[str, list[str]]:
    return ", ".join("?" for _ in states), [s.value for s in states]


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class StagingStore:
    """Staged tasks, promoted tasks, and the execution ledger tables."""

    def __init__(self, path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self._path = path
        self._busy_timeout_ms = busy_timeout_ms

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(
            self._path,
            timeout=max(1.0, self._busy_timeout_ms / 1000.0),
            isolation_level=None,
        )
        try:
            connection.execute(f"PRAGMA busy_timeout = {max(1, self._busy_timeout_ms)}")
            connection.row_factory = sqlite3.Row
            yield connection
        finally:
            connection.close()

    def initialize(self) -> None:
        """Create the database file and schema if missing."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            for statement in _SCHEMA:
                conn.execute(statement)
            columns = {r["name"] for r in conn.execute("PRAGMA table_info(staging_tasks)")}
            if "push_claimed_at" not in columns:
                conn.execute("ALTER TABLE staging_tasks ADD COLUMN push_claimed_at TEXT")
        logger.debug("Staging store ready", extra={"db_path": str(self._path)})

    def ping(self) -> bool:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # Projects

    def upsert_project(self, project: RemoteProject) -> None:
        now = utc_iso_now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO projects (id, name, description, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    status = excluded.status,
                    updated_at = excluded.updated_at
                """,
                (project.id, project.name, project.description, project.status, now, now),
            )

    def get_project(self, project_id: str) -> Project | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return Project.model_validate(dict(row)) if row is not None else None

    def list_projects(self) -> list[Project]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM projects ORDER BY name, id").fetchall()
        return [Project.model_validate(dict(r)) for r in rows]

    # Staged tasks

    def upsert_remote_task(self, task: RemoteTask) -> UpsertOutcome:
        """Insert or refresh a staged task from a remote snapshot.

        A promoted row is never touched. Other rows are rewritten (and reset to
        pending) only when the remote content changed, or to retry a row in
        the error state, so replaying an unchanged pull is a no-op. A rewrite
        drops any unpushed local edit.
        """

        new_id = uuid.uuid4().hex
        now = utc_iso_now()
        params = {
            "id": new_id,
            "external_id": task.id,
            "project_id": task.project_id,
            "title": task.name or "",
            "description": task.description,
            "status": task.status or "",
            "priority": task.priority,
            "assignees": _dumps(list(task.assignees)),
            "tags": _dumps(list(task.tags)),
            "due_date": task.due_date,
            "remote_hash": task.content_hash(),
            "remote_updated_at": (
                task.updated_at.isoformat(timespec="microseconds") if task.updated_at else None
            ),
            "now": now,
        }
        with self._connect() as conn:
            rows = conn.execute(
                """
                INSERT INTO staging_tasks (
                    id, external_id, project_id, title, description, status, priority,
                    assignees, tags, due_date, origin, remote_hash, remote_updated_at,
                    sync_status, created_at, updated_at
                )
                VALUES (
                    :id, :external_id, :project_id, :title, :description, :status, :priority,
                    :assignees, :tags, :due_date, 'remote', :remote_hash, :remote_updated_at,
                    'pending', :now, :now
                )
                ON CONFLICT(external_id, project_id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    status = excluded.status,
                    priority = excluded.priority,
                    assignees = excluded.assignees,
                    tags = excluded.tags,
                    due_date = excluded.due_date,
                    remote_hash = excluded.remote_hash,
                    remote_updated_at = excluded.remote_updated_at,
                    local_modified_at = NULL,
                    sync_status = 'pending',
                    last_error = NULL,
                    updated_at = excluded.updated_at
                WHERE staging_tasks.sync_status != 'promoted'
                  AND (
                    staging_tasks.remote_hash IS NOT excluded.remote_hash
                    OR staging_tasks.sync_status = 'error'
                  )
                RETURNING id
                """,
                params,
            ).fetchall()

        if not rows:
            return UpsertOutcome.UNCHANGED
        if rows[0]["id"] == new_id:
            return UpsertOutcome.INSERTED
        return UpsertOutcome.UPDATED

    def create_local_task(
        self,
        *,
        project_id: str,
        title: str,
        description: str | None = None,
        status: str = "to do",
        priority: int | None = None,
        tags: Sequence[str] = (),
    ) -> StagedTask:
        """Stage a task that does not exist remotely yet; the next push creates it."""

        task_id = uuid.uuid4().hex
        now = utc_iso_now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO staging_tasks (
                    id, external_id, project_id, title, description, status, priority, tags,
                    origin, local_modified_at, sync_status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'local', ?, 'pending', ?, ?)
                """,
                (
                    task_id,
                    f"{LOCAL_ID_PREFIX}{task_id}",
                    project_id,
                    title,
                    description,
                    status,
                    priority,
                    _dumps(list(tags)),
                    now,
                    now,
                    now,
                ),
            )
        created = self.get_task(task_id)
        assert created is not None
        return created

    def get_task(self, task_id: str) -> StagedTask | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM staging_tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row is not None else None

    def find_task(self, *, external_id: str, project_id: str) -> StagedTask | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM staging_tasks WHERE external_id = ? AND project_id = ?",
                (external_id, project_id),
            ).fetchone()
        return _row_to_task(row) if row is not None else None

    def list_tasks(self, *, project_id: str | None = None) -> list[StagedTask]:
        with self._connect() as conn:
            if project_id is None:
                rows = conn.execute(
                    "SELECT * FROM staging_tasks ORDER BY created_at, id"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM staging_tasks WHERE project_id = ? ORDER BY created_at, id",
                    (project_id,),
                ).fetchall()
        return [_row_to_task(r) for r in rows]

    def list_by_status(
        self, statuses: Sequence[SyncStatus], *, limit: int | None = None
    ) -> list[StagedTask]:
        """Tasks in any of ``statuses``, oldest first."""

        placeholders, status_values = _in_clause(statuses)
        values: list[Any] = list(status_values)
        sql = (
            f"SELECT * FROM staging_tasks WHERE sync_status IN ({placeholders}) "
            "ORDER BY created_at, id"
        )
        if limit is not None:
            sql += " LIMIT ?"
            values.append(limit)
        with self._connect() as conn:
            rows = conn.execute(sql, values).fetchall()
        return [_row_to_task(r) for r in rows]

    def list_unpushed(self, *, project_id: str) -> list[StagedTask]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM staging_tasks
                WHERE project_id = ?
                  AND local_modified_at IS NOT NULL
                  AND (pushed_at IS NULL OR local_modified_at > pushed_at)
                ORDER BY created_at, id
                """,
                (project_id,),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def count_tasks(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM staging_tasks").fetchone()
        return int(row["n"])

    def apply_enrichment(self, task_id: str, payload: EnrichmentPayload) -> bool:
        """Merge an enrichment payload and mark the task enriched.

        Existing values win for description, priority, effort, unit tests and
        success criteria; tags are unioned. Returns False when the task is
        missing or not in a state that can be enriched.
        """

        placeholders, values = _in_clause(sources_for(SyncStatus.ENRICHED))
        now = utc_iso_now()
        params: list[Any] = [
            payload.description,
            _dumps(payload.unit_tests),
            payload.priority,
            payload.effort_hours,
            _dumps(payload.tags),
            _dumps(payload.success_criteria),
            _dumps(payload.dependencies),
            _dumps(payload.assignee_suggestions),
            payload.confidence_score,
            now,
            now,
            task_id,
            *values,
        ]
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE staging_tasks SET
                    description = CASE
                        WHEN COALESCE(TRIM(description), '') = '' THEN ? ELSE description END,
                    unit_tests = CASE
                        WHEN json_array_length(unit_tests) = 0 THEN ? ELSE unit_tests END,
                    priority = COALESCE(priority, ?),
                    effort_estimate = CASE
                        WHEN COALESCE(effort_estimate, 0) <= 0 THEN ? ELSE effort_estimate END,
                    tags = (
                        SELECT json_group_array(value) FROM (
                            SELECT value FROM json_each(staging_tasks.tags)
                            UNION
                            SELECT value FROM json_each(?)
                        )
                    ),
                    success_criteria = CASE
                        WHEN json_array_length(success_criteria) = 0 THEN ?
                        ELSE success_criteria END,
                    dependencies = ?,
                    assignee_suggestions = ?,
                    confidence_score = ?,
                    sync_status = 'enriched',
                    last_error = NULL,
                    local_modified_at = ?,
                    updated_at = ?
                WHERE id = ? AND sync_status IN ({placeholders})
                """,
                params,
            )
            return cursor.rowcount > 0

    def set_sync_status(
        self, task_id: str, to: SyncStatus, *, error: str | None = None
    ) -> bool:
        """Conditionally move a task to ``to``; False if the transition does not apply."""

        placeholders, values = _in_clause(sources_for(to))
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE staging_tasks
                SET sync_status = ?, last_error = ?, updated_at = ?
                WHERE id = ? AND sync_status IN ({placeholders})
                """,
                [to.value, error, utc_iso_now(), task_id, *values],
            )
            return cursor.rowcount > 0

    def reset_errored(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE staging_tasks SET sync_status = ?, last_error = NULL, updated_at = ?
                WHERE sync_status = ?
                """,
                (SyncStatus.PENDING.value, utc_iso_now(), SyncStatus.ERROR.value),
            )
            return cursor.rowcount

    def claim_push(
        self, task_id: str, *, stale_after_seconds: float = PUSH_CLAIM_TTL_SECONDS
    ) -> bool:
        """Reserve an unpushed task for one pusher.

        True only for the caller whose conditional update took the row. A
        claim older than ``stale_after_seconds`` (a crashed pusher) can be
        taken over.
        """

        now = datetime.now(tz=UTC)
        stale_cutoff = (now - timedelta(seconds=stale_after_seconds)).isoformat(
            timespec="microseconds"
        )
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE staging_tasks SET push_claimed_at = ?
                WHERE id = ?
                  AND local_modified_at IS NOT NULL
                  AND (pushed_at IS NULL OR local_modified_at > pushed_at)
                  AND (push_claimed_at IS NULL OR push_claimed_at < ?)
                """,
                (now.isoformat(timespec="microseconds"), task_id, stale_cutoff),
            )
            return cursor.rowcount == 1

    def release_push(self, task_id: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE staging_tasks SET push_claimed_at = NULL WHERE id = ?", (task_id,))

    def mark_pushed(self, task_id: str, *, remote: RemoteTask, pushed_at: str) -> bool:
        """Record a successful push and release the push claim.

        A locally created task adopts the remote id. If a concurrent pull has
        already staged that remote task as a separate row, the pulled copy is
        dropped in the same transaction so the local row is the one kept.
        """

        params = (
            remote.id,
            remote.content_hash(),
            remote.updated_at.isoformat(timespec="microseconds") if remote.updated_at else None,
            pushed_at,
            utc_iso_now(),
            task_id,
        )
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    """
                    DELETE FROM staging_tasks
                    WHERE external_id = ? AND project_id = (
                        SELECT project_id FROM staging_tasks WHERE id = ?
                    )
                      AND id != ?
                    """,
                    (remote.id, task_id, task_id),
                )
                cursor = conn.execute(
                    """
                    UPDATE staging_tasks SET
                        external_id = ?,
                        origin = 'remote',
                        remote_hash = ?,
                        remote_updated_at = COALESCE(?, remote_updated_at),
                        pushed_at = ?,
                        push_claimed_at = NULL,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    params,
                )
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return cursor.rowcount > 0

    # Promoted tasks

    def insert_promoted(self, task: StagedTask, enriched_data: dict[str, Any]) -> PromotedTask:
        """Append a promoted record.

        Raises:
            DuplicatePromotionError: A row for (external_id, project_id) already exists.
        """

        now = utc_iso_now()
        promoted = PromotedTask(
            id=uuid.uuid4().hex,
            staged_task_id=task.id,
            external_id=task.external_id,
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            assignees=list(task.assignees),
            tags=list(task.tags),
            due_date=task.due_date,
            enriched_data=enriched_data,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO promoted_tasks (
                        id, staged_task_id, external_id, project_id, title, description, status,
                        priority, assignees, tags, due_date, enriched_data, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        promoted.id,
                        promoted.staged_task_id,
                        promoted.external_id,
                        promoted.project_id,
                        promoted.title,
                        promoted.description,
                        promoted.status,
                        promoted.priority,
                        _dumps(promoted.assignees),
                        _dumps(promoted.tags),
                        promoted.due_date,
                        _dumps(promoted.enriched_data),
                        promoted.created_at,
                        promoted.updated_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            raise DuplicatePromotionError(
                external_id=task.external_id, project_id=task.project_id
            ) from e
        return promoted

    def list_promoted(self, *, project_id: str | None = None) -> list[PromotedTask]:
        with self._connect() as conn:
            if project_id is None:
                rows = conn.execute(
                    "SELECT * FROM promoted_tasks ORDER BY created_at, id"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM promoted_tasks WHERE project_id = ? ORDER BY created_at, id",
                    (project_id,),
                ).fetchall()
        return [_row_to_promoted(r) for r in rows]

    # Ledger tables

    def upsert_flow_status(
        self,
        *,
        flow_id: str,
        step_name: str,
        state: str,
        metadata: dict[str, Any],
        updated_at: str,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO flow_status (flow_id, step_name, state, metadata, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(flow_id) DO UPDATE SET
                    step_name = excluded.step_name,
                    state = excluded.state,
                    metadata = excluded.metadata,
                    updated_at = MAX(flow_status.updated_at, excluded.updated_at)
                """,
                (flow_id, step_name, state, _dumps(metadata), updated_at),
            )

    def get_flow_status(self, flow_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM flow_status WHERE flow_id = ?", (flow_id,)
            ).fetchone()
        if row is None:
            return None
        out = dict(row)
        out["metadata"] = json.loads(out["metadata"] or "{}")
        return out

    def insert_sync_log(
        self, *, sync_id: str, direction: str, timestamp: str, summary: dict[str, Any], success: bool
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sync_log (sync_id, direction, timestamp, summary, success)
                VALUES (?, ?, ?, ?, ?)
                """,
                (sync_id, direction, timestamp, _dumps(summary), int(success)),
            )

    def list_sync_logs(self, *, limit: int = 20) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT summary FROM sync_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [json.loads(r["summary"]) for r in rows]


def _row_to_task(row: sqlite3.Row) -> StagedTask:
    data = dict(row)
    for column in _LIST_COLUMNS:
        data[column] = json.loads(data.get(column) or "[]")
    return StagedTask.model_validate(data)


def _row_to_promoted(row: sqlite3.Row) -> PromotedTask:
    data = dict(row)
    data["assignees"] = json.loads(data.get("assignees") or "[]")
    data["tags"] = json.loads(data.get("tags") or "[]")
    data["enriched_data"] = json.loads(data.get("enriched_data") or "{}")
    return PromotedTask.model_validate(data)
