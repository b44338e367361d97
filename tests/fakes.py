"""In-memory fakes shared by the unit tests."""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import UTC, datetime

from task_flow_orchestrator.orchestrator.cancellation import CancellationToken
from task_flow_orchestrator.orchestrator.errors import RemoteServiceError
from task_flow_orchestrator.orchestrator.remote.models import RemoteProject, RemoteTask, TaskWrite


class FakeRemote:
    """In-memory stand-in for :class:`RemoteTaskClient`."""

    def __init__(self) -> None:
        self.projects: dict[str, RemoteProject] = {}
        self.tasks: dict[str, list[RemoteTask]] = {}
        self.failing_projects: set[str] = set()
        self.created: list[RemoteTask] = []
        self.updated: list[RemoteTask] = []
        self._ids = itertools.count(1000)
        self._lock = threading.Lock()

    def add_project(self, project_id: str, name: str | None = None) -> RemoteProject:
        project = RemoteProject(id=project_id, name=name or f"Project {project_id}")
        self.projects[project_id] = project
        self.tasks.setdefault(project_id, [])
        return project

    def add_task(self, project_id: str, task_id: str, name: str, **fields: object) -> RemoteTask:
        fields.setdefault("status", "to do")
        fields.setdefault("updated_at", datetime(2025, 1, 1, tzinfo=UTC))
        task = RemoteTask(id=task_id, project_id=project_id, name=name, **fields)  # type: ignore[arg-type]
        self._replace(task)
        return task

    def edit_task(self, project_id: str, task_id: str, **changes: object) -> RemoteTask:
        current = next(t for t in self.tasks[project_id] if t.id == task_id)
        task = replace(current, **changes)  # type: ignore[arg-type]
        self._replace(task)
        return task

    def _replace(self, task: RemoteTask) -> None:
        with self._lock:
            bucket = self.tasks.setdefault(task.project_id, [])
            bucket[:] = [t for t in bucket if t.id != task.id] + [task]

    # RemoteTaskClient surface

    def list_projects(self, *, cancellation: CancellationToken | None = None) -> list[RemoteProject]:
        return list(self.projects.values())

    def get_project(
        self, project_id: str, *, cancellation: CancellationToken | None = None
    ) -> RemoteProject:
        if project_id in self.failing_projects:
            raise RemoteServiceError(f"GET /project/{project_id} returned 500", status_code=500)
        try:
            return self.projects[project_id]
        except KeyError:
            raise RemoteServiceError(
                f"GET /project/{project_id} returned 404", status_code=404
            ) from None

    def list_tasks(
        self,
        project_id: str,
        *,
        cancellation: CancellationToken | None = None,
        errors: list[str] | None = None,
    ) -> list[RemoteTask]:
        return list(self.tasks.get(project_id, []))

    def create_task(
        self, project_id: str, task: TaskWrite, *, cancellation: CancellationToken | None = None
    ) -> RemoteTask:
        created = self._from_write(f"r{next(self._ids)}", project_id, task)
        self._replace(created)
        self.created.append(created)
        return created

    def update_task(
        self,
        task_id: str,
        project_id: str,
        task: TaskWrite,
        *,
        cancellation: CancellationToken | None = None,
    ) -> RemoteTask:
        updated = self._from_write(task_id, project_id, task)
        self._replace(updated)
        self.updated.append(updated)
        return updated

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    @staticmethod
    def _from_write(task_id: str, project_id: str, task: TaskWrite) -> RemoteTask:
        return RemoteTask(
            id=task_id,
            project_id=project_id,
            name=task.name,
            description=task.description,
            status=task.status,
            priority=task.priority,
            tags=tuple(task.tags),
            due_date=task.due_date,
            updated_at=datetime.now(tz=UTC),
        )
