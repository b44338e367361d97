"""Unit tests for the remote task tracker client (HTTP mocked)."""

from __future__ import annotations

from typing import Any
from unittest.mock import Mock

import pytest
import requests

from task_flow_orchestrator.orchestrator.cancellation import CancellationToken
from task_flow_orchestrator.orchestrator.errors import (
    ConfigurationError,
    OperationCancelled,
    RemoteServiceError,
)
from task_flow_orchestrator.orchestrator.remote.client import RemoteTaskClient
from task_flow_orchestrator.orchestrator.remote.models import TaskWrite


def _response(status_code: int, body: Any = None) -> Mock:
    resp = Mock()
    resp.status_code = status_code
    resp.content = b"{}" if body is not None else b""
    resp.text = str(body)
    resp.json.return_value = body
    return resp


def _client(session: Mock, sleeps: list[float]) -> RemoteTaskClient:
    return RemoteTaskClient(
        token="pk_test", team_id="team-1", session=session, sleep=sleeps.append
    )


@pytest.fixture
def session() -> Mock:
    s = Mock(spec=requests.Session)
    s.headers = {}
    return s


def test_auth_header_is_set(session: Mock) -> None:
    _client(session, [])

    assert session.headers["Authorization"] == "pk_test"


def test_server_error_is_retried_then_succeeds(session: Mock) -> None:
    sleeps: list[float] = []
    session.request.side_effect = [
        _response(500, "oops"),
        _response(200, {"projects": [{"id": 7, "name": "Backend"}]}),
    ]

    projects = _client(session, sleeps).list_projects()

    assert [(p.id, p.name) for p in projects] == [("7", "Backend")]
    assert session.request.call_count == 2
    assert sleeps == [1.0]


def test_not_found_is_not_retried(session: Mock) -> None:
    session.request.return_value = _response(404, "missing")

    with pytest.raises(RemoteServiceError) as excinfo:
        _client(session, []).get_project("nope")

    assert excinfo.value.status_code == 404
    assert excinfo.value.retryable is False
    assert session.request.call_count == 1


def test_gives_up_after_max_attempts(session: Mock) -> None:
    sleeps: list[float] = []
    session.request.return_value = _response(503, "busy")

    with pytest.raises(RemoteServiceError) as excinfo:
        _client(session, sleeps).list_projects()

    assert excinfo.value.status_code == 503
    assert session.request.call_count == 3
    assert sleeps == [1.0, 2.0]


def test_transport_errors_are_retried(session: Mock) -> None:
    session.request.side_effect = [
        requests.ConnectionError("reset"),
        _response(200, {"projects": []}),
    ]

    assert _client(session, []).list_projects() == []
    assert session.request.call_count == 2


def test_list_tasks_follows_pages(session: Mock) -> None:
    session.request.side_effect = [
        _response(200, {"tasks": [{"id": "a", "name": "A"}], "last_page": False}),
        _response(200, {"tasks": [{"id": "b", "name": "B"}], "last_page": True}),
    ]

    tasks = _client(session, []).list_tasks("p1")

    assert [t.id for t in tasks] == ["a", "b"]
    assert all(t.project_id == "p1" for t in tasks)
    pages = [c.kwargs["params"]["page"] for c in session.request.call_args_list]
    assert pages == [0, 1]


def test_create_task_posts_payload(session: Mock) -> None:
    session.request.return_value = _response(200, {"id": "new-1", "name": "Write docs"})

    created = _client(session, []).create_task("p1", TaskWrite(name="Write docs"))

    assert created.id == "new-1"
    method, url = session.request.call_args.args
    assert method == "POST"
    assert url.endswith("/project/p1/task")
    assert session.request.call_args.kwargs["json"]["name"] == "Write docs"


def test_create_task_requires_a_name(session: Mock) -> None:
    with pytest.raises(ValueError):
        _client(session, []).create_task("p1", TaskWrite(name="  "))
    session.request.assert_not_called()


@pytest.mark.parametrize("token,team_id", [("", "team-1"), ("pk_test", "")])
def test_missing_credentials(token: str, team_id: str, session: Mock) -> None:
    with pytest.raises(ConfigurationError):
        RemoteTaskClient(token=token, team_id=team_id, session=session)


def test_cancelled_token_stops_before_request(session: Mock) -> None:
    token = CancellationToken()
    token.cancel("timed out")

    with pytest.raises(OperationCancelled):
        _client(session, []).list_projects(cancellation=token)
    session.request.assert_not_called()


def test_parse_task_normalises_tracker_shapes() -> None:
    task = RemoteTaskClient._parse_task(
        {
            "id": 42,
            "name": "Fix login",
            "status": {"status": "in progress"},
            "priority": {"id": "2", "priority": "high"},
            "assignees": [{"username": "ana"}, {"email": "bo@example.com"}],
            "tags": [{"name": "backend"}, {"name": " "}],
            "date_updated": "1735689600000",
        },
        "p1",
    )

    assert task.id == "42"
    assert task.status == "in progress"
    assert task.priority == 2
    assert task.assignees == ("ana", "bo@example.com")
    assert task.tags == ("backend",)
    assert task.updated_at is not None
    assert task.updated_at.year == 2025
    assert task.updated_at.tzinfo is not None


def test_parse_datetime_accepts_naive_iso() -> None:
    parsed = RemoteTaskClient._parse_datetime("2025-03-01T10:00:00")

    assert parsed is not None
    assert parsed.tzinfo is not None


@pytest.mark.parametrize("value", ["not-a-date", "999999999999999999999999", "2025-13-45"])
def test_parse_datetime_ignores_unusable_values(value: str) -> None:
    assert RemoteTaskClient._parse_datetime(value) is None


def test_list_tasks_skips_entries_it_cannot_parse(session: Mock) -> None:
    session.request.return_value = _response(
        200,
        {
            "tasks": [
                {"id": "a", "name": "A", "due_date": "not-a-date"},
                {"name": "no id"},
                {"id": "b", "name": "B"},
            ],
            "last_page": True,
        },
    )
    errors: list[str] = []

    tasks = _client(session, []).list_tasks("p1", errors=errors)

    assert [t.id for t in tasks] == ["a", "b"]
    assert tasks[0].due_date is None
    assert len(errors) == 1
    assert "missing id" in errors[0]
