"""Test configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from task_flow_orchestrator.orchestrator.config import OrchestratorSettings
from task_flow_orchestrator.orchestrator.ledger import ExecutionLedger
from task_flow_orchestrator.orchestrator.staging.store import StagingStore
from tests.fakes import FakeRemote

_ENV_VARS = (
    "ORCHESTRATOR_REMOTE_TOKEN",
    "ORCHESTRATOR_REMOTE_TEAM_ID",
    "ORCHESTRATOR_REMOTE_BASE_URL",
    "ORCHESTRATOR_DB_PATH",
    "ORCHESTRATOR_FLOWS_FILE",
    "ORCHESTRATOR_ENRICHMENT_STRATEGY",
    "ORCHESTRATOR_CONFLICT_POLICY",
    "ORCHESTRATOR_STEP_BACKOFF_SECONDS",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture
def store(tmp_path: Path) -> StagingStore:
    """Provide an initialized sqlite staging store."""
    s = StagingStore(tmp_path / "agent_state" / "staging.db")
    s.initialize()
    return s


@pytest.fixture
def ledger(store: StagingStore) -> ExecutionLedger:
    return ExecutionLedger(store)


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> OrchestratorSettings:
    """Settings isolated from the developer's environment and `.env`."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ORCHESTRATOR_DB_PATH", str(tmp_path / "agent_state" / "staging.db"))
    monkeypatch.setenv("ORCHESTRATOR_STEP_BACKOFF_SECONDS", "0")
    return OrchestratorSettings(_env_file=None)
