"""Unit tests for the staging lifecycle manager (review pipeline)."""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any

import pytest

from task_flow_orchestrator.llm.provider import LLMProvider
from task_flow_orchestrator.orchestrator.enrichment.base import EnrichmentStrategy
from task_flow_orchestrator.orchestrator.enrichment.llm_strategy import LLMEnrichment
from task_flow_orchestrator.orchestrator.enrichment.payload import EnrichmentPayload
from task_flow_orchestrator.orchestrator.enrichment.rules import RuleBasedEnrichment
from task_flow_orchestrator.orchestrator.errors import (
    EnrichmentError,
    IllegalTransitionError,
    TaskValidationError,
)
from task_flow_orchestrator.orchestrator.remote.models import RemoteTask
from task_flow_orchestrator.orchestrator.staging.lifecycle import StagingLifecycleManager
from task_flow_orchestrator.orchestrator.staging.models import StagedTask
from task_flow_orchestrator.orchestrator.staging.state_machine import SyncStatus
from task_flow_orchestrator.orchestrator.staging.store import StagingStore


class FailingEnrichment(EnrichmentStrategy):
    name = "failing"

    def enrich(self, task: StagedTask) -> EnrichmentPayload:
        raise EnrichmentError("model unavailable")


def _stage(store: StagingStore, task_id: str, name: str, description: str | None = None) -> StagedTask:
    store.upsert_remote_task(
        RemoteTask(
            id=task_id,
            project_id="p1",
            name=name,
            description=description,
            status="to do",
            updated_at=datetime(2025, 1, 1, tzinfo=UTC),
        )
    )
    task = store.find_task(external_id=task_id, project_id="p1")
    assert task is not None
    return task


COMPLETE = EnrichmentPayload(
    description="unused",
    unit_tests=["should work", "should fail loudly"],
    effort_hours=2.0,
    tags=["bugfix"],
    success_criteria=["Crash no longer reproduces"],
    confidence_score=0.9,
)


@pytest.fixture
def lifecycle(store: StagingStore) -> StagingLifecycleManager:
    return StagingLifecycleManager(store=store, enrichment=RuleBasedEnrichment())


def test_review_batch_promotes_complete_and_enrichable_tasks(
    store: StagingStore, lifecycle: StagingLifecycleManager
) -> None:
    # A: complete, B: missing description, C: missing title.
    a = _stage(store, "a", "Fix crash on save", "The editor crashes when saving large files.")
    lifecycle.apply_enrichment(a.id, COMPLETE)
    a_before = store.get_task(a.id)
    assert a_before is not None and not lifecycle.needs_enrichment(a_before)
    b = _stage(store, "b", "Implement login API")
    c = _stage(store, "c", "")

    result = lifecycle.review_staged_tasks()

    assert result.tasks_reviewed == 3
    assert result.tasks_promoted == 2
    assert result.tasks_enriched == 2
    assert len(result.validation_failures) == 1
    assert "title" in result.validation_failures[0]
    assert result.errors == []

    promoted = {p.external_id: p for p in store.list_promoted()}
    assert set(promoted) == {"a", "b"}
    assert promoted["a"].title == a_before.title
    assert promoted["a"].description == a_before.description
    assert promoted["a"].tags == a_before.tags
    assert promoted["b"].description

    states = {t.external_id: t.sync_status for t in store.list_tasks()}
    assert states["a"] is SyncStatus.PROMOTED
    assert states["b"] is SyncStatus.PROMOTED
    assert states["c"] is SyncStatus.ENRICHED

    # Only C is still awaiting review; a second pass promotes nothing new.
    again = lifecycle.review_staged_tasks()
    assert again.tasks_reviewed == 1
    assert again.tasks_promoted == 0
    assert b.id not in {t.id for t in lifecycle.list_pending()}


def test_promote_twice_is_a_noop(store: StagingStore, lifecycle: StagingLifecycleManager) -> None:
    task = _stage(store, "a", "Write docs", "Document the public API endpoints in detail.")

    first = lifecycle.promote(task)
    second = lifecycle.promote(task)

    assert first is not None
    assert second is None
    assert len(store.list_promoted()) == 1
    assert lifecycle.mark_promoted(task.id) is True
    assert lifecycle.mark_promoted(task.id) is False


def test_enrichment_failure_leaves_task_for_next_pass(store: StagingStore) -> None:
    lifecycle = StagingLifecycleManager(store=store, enrichment=FailingEnrichment())
    task = _stage(store, "a", "Implement search")

    result = lifecycle.review_staged_tasks()

    assert result.tasks_reviewed == 1
    assert result.tasks_promoted == 0
    assert len(result.errors) == 1
    after = store.get_task(task.id)
    assert after is not None
    assert after.sync_status is SyncStatus.PENDING


def test_validate_lists_every_missing_field() -> None:
    task = StagedTask(
        id="x", external_id="", project_id="p1", title=" ", status="", created_at="t", updated_at="t"
    )

    with pytest.raises(TaskValidationError) as excinfo:
        StagingLifecycleManager.validate(task)

    assert excinfo.value.missing == ("title", "external_id", "status")


def test_apply_enrichment_errors(store: StagingStore, lifecycle: StagingLifecycleManager) -> None:
    task = _stage(store, "a", "Implement search")
    store.set_sync_status(task.id, SyncStatus.PROMOTED)

    with pytest.raises(KeyError):
        lifecycle.apply_enrichment("missing", COMPLETE)
    with pytest.raises(IllegalTransitionError):
        lifecycle.apply_enrichment(task.id, COMPLETE)


def test_needs_enrichment() -> None:
    bare = StagedTask(id="x", external_id="e", project_id="p", created_at="t", updated_at="t")
    full = bare.model_copy(
        update={
            "description": "Something",
            "unit_tests": ["should a"],
            "tags": ["api"],
            "effort_estimate": 1.0,
            "success_criteria": ["done"],
        }
    )

    assert StagingLifecycleManager.needs_enrichment(bare) is True
    assert StagingLifecycleManager.needs_enrichment(full) is False


def test_retry_errored(store: StagingStore, lifecycle: StagingLifecycleManager) -> None:
    task = _stage(store, "a", "Implement search")
    lifecycle.mark_error(task.id, "boom")

    assert lifecycle.list_pending() == []
    assert lifecycle.retry_errored() == 1
    assert [t.id for t in lifecycle.list_pending()] == [task.id]


class WrongTypesProvider(LLMProvider):
    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        **kwargs: Any,
    ) -> str:
        return json.dumps({"description": "Generated", "tags": 5})

    @property
    def model_name(self) -> str:
        return "fake-model"


class PromotedElsewhereEnrichment(EnrichmentStrategy):
    """Simulates another reviewer promoting the task while it is being enriched."""

    name = "racing"

    def __init__(self, store: StagingStore) -> None:
        self._store = store

    def enrich(self, task: StagedTask) -> EnrichmentPayload:
        assert self._store.set_sync_status(task.id, SyncStatus.PROMOTED)
        return COMPLETE


def test_malformed_llm_reply_does_not_abort_the_batch(store: StagingStore) -> None:
    lifecycle = StagingLifecycleManager(store=store, enrichment=LLMEnrichment(WrongTypesProvider()))
    tasks = [_stage(store, key, f"Implement feature {key}") for key in ("a", "b", "c")]

    result = lifecycle.review_staged_tasks()

    assert result.tasks_reviewed == 3
    assert result.tasks_promoted == 0
    assert len(result.errors) == 3
    assert all("enrichment failed" in e for e in result.errors)
    for task in tasks:
        after = store.get_task(task.id)
        assert after is not None
        assert after.sync_status is SyncStatus.PENDING


def test_task_promoted_by_another_reviewer_is_skipped(store: StagingStore) -> None:
    lifecycle = StagingLifecycleManager(store=store, enrichment=PromotedElsewhereEnrichment(store))
    task = _stage(store, "a", "Implement search")

    result = lifecycle.review_staged_tasks()

    assert result.errors == []
    assert result.tasks_promoted == 0
    assert result.tasks_enriched == 0
    after = store.get_task(task.id)
    assert after is not None
    assert after.sync_status is SyncStatus.PROMOTED


def test_batch_survives_when_errors_cannot_be_recorded(
    store: StagingStore, lifecycle: StagingLifecycleManager, monkeypatch: pytest.MonkeyPatch
) -> None:
    def explode(task: StagedTask) -> None:
        raise RuntimeError("promotion backend down")

    def locked(task_id: str, message: str) -> bool:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(lifecycle, "promote", explode)
    monkeypatch.setattr(lifecycle, "mark_error", locked)
    _stage(store, "a", "Implement search")
    _stage(store, "b", "Implement login API")

    result = lifecycle.review_staged_tasks()

    assert result.tasks_reviewed == 2
    assert len(result.errors) == 2
    assert all("promotion backend down" in e for e in result.errors)
