"""HTTP client for the remote task tracker (ClickUp-style v2 API).

Projects and tasks are read with paginated GETs; tasks are created and updated
with POST/PUT. Transport failures, 429 and 5xx responses are retried with
exponential backoff; any other non-2xx response raises
:class:`RemoteServiceError` immediately.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import requests

from task_flow_orchestrator.orchestrator.cancellation import CancellationToken
from task_flow_orchestrator.orchestrator.errors import ConfigurationError, RemoteServiceError
from task_flow_orchestrator.orchestrator.remote.models import RemoteProject, RemoteTask, TaskWrite

logger = logging.getLogger(__name__)

_MAX_PAGES = 100


class RemoteTaskClient:
    """Small wrapper around the remote tracker's REST API."""

    def __init__(
        self,
        *,
        token: str,
        team_id: str,
        base_url: str = "https://api.clickup.com/api/v2",
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not token:
            raise ConfigurationError("Remote API token is required")
        if not team_id:
            raise ConfigurationError("Remote team id is required")

        self._team_id = team_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": token,
                "Content-Type": "application/json",
                "User-Agent": "task-flow-orchestrator",
            }
        )

    @property
    def team_id(self) -> str:
        return self._team_id

    def close(self) -> None:
        self._session.close()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Any:
        url = self._url(path)
        last_error: RemoteServiceError | None = None

        for attempt in range(1, self._max_attempts + 1):
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            try:
                resp = self._session.request(
                    method, url, params=params, json=json_body, timeout=self._timeout
                )
            except requests.RequestException as e:
                last_error = RemoteServiceError(f"{method} {path} failed: {e}")
            else:
                if 200 <= resp.status_code < 300:
                    return resp.json() if resp.content else {}
                last_error = RemoteServiceError(
                    f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                    status_code=resp.status_code,
                )
                if not last_error.retryable:
                    raise last_error

            if attempt < self._max_attempts:
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Remote request failed; retrying",
                    extra={
                        "method": method,
                        "path": path,
                        "attempt": attempt,
                        "status_code": last_error.status_code,
                        "delay_seconds": delay,
                    },
                )
                self._sleep(delay)

        assert last_error is not None
        raise last_error

    def list_projects(self, *, cancellation: CancellationToken | None = None) -> list[RemoteProject]:
        payload = self._request(
            "GET", f"/team/{self._team_id}/project", cancellation=cancellation
        )
        raw = payload.get("projects", []) if isinstance(payload, dict) else []
        return [self._parse_project(p) for p in raw if isinstance(p, dict)]

    def get_project(
        self, project_id: str, *, cancellation: CancellationToken | None = None
    ) -> RemoteProject:
        payload = self._request("GET", f"/project/{project_id}", cancellation=cancellation)
        if not isinstance(payload, dict):
            raise RemoteServiceError(f"Unexpected project response for {project_id}")
        return self._parse_project(payload)

    def list_tasks(
        self,
        project_id: str,
        *,
        cancellation: CancellationToken | None = None,
        errors: list[str] | None = None,
    ) -> list[RemoteTask]:
        """All tasks of a project, following ``page`` until ``last_page``.

        A task entry that cannot be parsed is skipped; its message is appended
        to ``errors`` when a list is given.
        """

        tasks: list[RemoteTask] = []
        for page in range(_MAX_PAGES):
            payload = self._request(
                "GET",
                f"/project/{project_id}/task",
                params={"page": page},
                cancellation=cancellation,
            )
            if not isinstance(payload, dict):
                break
            raw = payload.get("tasks", [])
            for item in raw:
                if not isinstance(item, dict):
                    continue
                try:
                    tasks.append(self._parse_task(item, project_id))
                except (RemoteServiceError, TypeError, ValueError) as e:
                    logger.warning(
                        "Skipping unparseable remote task",
                        extra={"project_id": project_id, "task_id": item.get("id"), "error": str(e)},
                    )
                    if errors is not None:
                        errors.append(f"task {item.get('id')}: {e}")
            if payload.get("last_page", True) or not raw:
                break
        return tasks

    def create_task(
        self,
        project_id: str,
        task: TaskWrite,
        *,
        cancellation: CancellationToken | None = None,
    ) -> RemoteTask:
        if not task.name.strip():
            raise ValueError("Task name is required")
        payload = self._request(
            "POST",
            f"/project/{project_id}/task",
            json_body=task.to_json(),
            cancellation=cancellation,
        )
        logger.info("Created remote task", extra={"project_id": project_id})
        return self._parse_task(payload, project_id)

    def update_task(
        self,
        task_id: str,
        project_id: str,
        task: TaskWrite,
        *,
        cancellation: CancellationToken | None = None,
    ) -> RemoteTask:
        payload = self._request(
            "PUT", f"/task/{task_id}", json_body=task.to_json(), cancellation=cancellation
        )
        return self._parse_task(payload, project_id)

    def ping(self) -> bool:
        self._request("GET", f"/team/{self._team_id}/project")
        return True

    @staticmethod
    def _parse_project(data: dict[str, Any]) -> RemoteProject:
        project_id = data.get("id")
        if project_id is None:
            raise RemoteServiceError("Invalid project response: missing id")
        status = data.get("status")
        if isinstance(status, dict):
            status = status.get("status")
        return RemoteProject(
            id=str(project_id),
            name=str(data.get("name") or ""),
            description=data.get("description") or data.get("content"),
            status=status if isinstance(status, str) else None,
        )

    @staticmethod
    def _parse_datetime(value: object) -> datetime | None:
        """Epoch milliseconds (as the tracker sends them) or ISO 8601; ``None`` if unusable."""

        if value is None or value == "":
            return None
        text = str(value).strip()
        try:
            if text.lstrip("-").isdigit():
                return datetime.fromtimestamp(int(text) / 1000, tz=UTC)
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except (ValueError, OverflowError, OSError):
            logger.warning("Ignoring unparseable remote timestamp", extra={"value": text[:64]})
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    @classmethod
    def _parse_task(cls, data: dict[str, Any], project_id: str) -> RemoteTask:
        task_id = data.get("id")
        if task_id is None:
            raise RemoteServiceError("Invalid task response: missing id")

        status = data.get("status")
        if isinstance(status, dict):
            status = status.get("status")

        priority = data.get("priority")
        if isinstance(priority, dict):
            priority = priority.get("id") or priority.get("priority")
        try:
            priority_value = int(priority) if priority is not None else None
        except (TypeError, ValueError):
            priority_value = None

        assignees: list[str] = []
        for a in data.get("assignees") or []:
            if isinstance(a, dict):
                name = a.get("username") or a.get("email") or a.get("id")
                if name is not None:
                    assignees.append(str(name))
            elif isinstance(a, str | int):
                assignees.append(str(a))

        tags: list[str] = []
        for t in data.get("tags") or []:
            name = t.get("name") if isinstance(t, dict) else t
            if isinstance(name, str) and name.strip():
                tags.append(name)

        due = cls._parse_datetime(data.get("due_date"))
        return RemoteTask(
            id=str(task_id),
            project_id=project_id,
            name=str(data.get("name") or ""),
            description=data.get("description") or data.get("text_content"),
            status=status if isinstance(status, str) else None,
            priority=priority_value,
            assignees=tuple(assignees),
            tags=tuple(tags),
            due_date=due.isoformat() if due else None,
            updated_at=cls._parse_datetime(data.get("date_updated")),
        )
