"""Unit tests for enrichment strategies."""

from __future__ import annotations

import json
from typing import Any

import pytest

from task_flow_orchestrator.llm.provider import LLMProvider, LLMProviderError
from task_flow_orchestrator.orchestrator.enrichment.llm_strategy import LLMEnrichment
from task_flow_orchestrator.orchestrator.enrichment.rules import (
    FALLBACK_ASSIGNEE,
    FALLBACK_TAG,
    EnrichmentOptions,
    RuleBasedEnrichment,
    confidence_score,
    estimate_priority,
    suggest_tags,
)
from task_flow_orchestrator.orchestrator.errors import EnrichmentError
from task_flow_orchestrator.orchestrator.staging.models import StagedTask


def _task(title: str, description: str | None = None, **fields: Any) -> StagedTask:
    return StagedTask(
        id="task-1",
        external_id="ext-1",
        project_id="p1",
        title=title,
        description=description,
        status="to do",
        created_at="2026-01-01T00:00:00.000000+00:00",
        updated_at="2026-01-01T00:00:00.000000+00:00",
        **fields,
    )


class CannedProvider(LLMProvider):
    def __init__(self, reply: str | Exception) -> None:
        self.reply = reply
        self.messages: list[dict[str, str]] = []

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        **kwargs: Any,
    ) -> str:
        assert json_mode is True
        self.messages = messages
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply

    @property
    def model_name(self) -> str:
        return "fake-model"


def test_rule_based_payload_is_complete() -> None:
    payload = RuleBasedEnrichment().enrich(_task("Implement user auth API"))

    assert payload.description.startswith("Implement the user auth api functionality")
    assert len(payload.unit_tests) >= 2
    assert "should validate user credentials" in payload.unit_tests
    assert {"api", "security"} <= set(payload.tags)
    assert payload.priority == 2
    assert payload.effort_hours == 4.0
    assert "backend-developer" in payload.assignee_suggestions
    assert payload.success_criteria[0] == 'Task "Implement user auth API" is completed'
    assert payload.confidence_score == 1.0
    assert payload.strategy == "rules"


def test_rule_based_keeps_existing_fields() -> None:
    task = _task("Fix login bug", "Users see a 500 after login.", tags=["backend"])

    payload = RuleBasedEnrichment().enrich(task)

    assert payload.description == "Users see a 500 after login."
    assert payload.tags[0] == "backend"
    assert "bugfix" in payload.tags


def test_rule_based_fallbacks_for_unrecognised_text() -> None:
    payload = RuleBasedEnrichment().enrich(_task("zzz"))

    assert payload.tags == [FALLBACK_TAG]
    assert payload.assignee_suggestions == [FALLBACK_ASSIGNEE]
    assert payload.priority == 3
    assert payload.effort_hours == 2.0
    assert payload.dependencies == []


def test_options_can_disable_suggestions() -> None:
    strategy = RuleBasedEnrichment(EnrichmentOptions(tag_suggestions=False, priority_estimation=False))

    payload = strategy.enrich(_task("Urgent: fix the REST API"))

    assert payload.tags == [FALLBACK_TAG]
    assert payload.priority == 3


def test_keywords_match_at_word_start() -> None:
    assert "frontend" not in suggest_tags("build the pipeline")
    assert "testing" in suggest_tags("add testing for parser")
    assert estimate_priority("critical outage") == 1
    assert estimate_priority("nice to have") == 5


def test_confidence_score_is_capped() -> None:
    assert confidence_score(description="x" * 60, unit_tests=["a", "b"], tags=["t"], effort_hours=1) == 1.0
    assert confidence_score(description="short", unit_tests=[], tags=[], effort_hours=0) == 0.5


def test_llm_enrichment_validates_and_merges_reply() -> None:
    reply = json.dumps(
        {
            "description": "Add a login endpoint backed by the user store.",
            "unit_tests": ["should accept valid credentials", "should reject bad passwords"],
            "priority": 2,
            "effort_hours": 5,
            "dependencies": [],
            "assignee_suggestions": ["backend-developer"],
            "tags": ["api", "security"],
            "success_criteria": ["Users can log in"],
            "confidence_score": 1.7,
        }
    )
    provider = CannedProvider(f"Here you go:\n{reply}")

    payload = LLMEnrichment(provider).enrich(_task("Login endpoint", tags=["backend"]))

    assert payload.tags == ["backend", "api", "security"]
    assert payload.confidence_score == 1.0
    assert payload.strategy == "llm:fake-model"
    assert payload.effort_hours == 5.0
    assert provider.messages[0]["role"] == "system"
    assert "Login endpoint" in provider.messages[1]["content"]


def test_llm_enrichment_keeps_existing_description() -> None:
    reply = json.dumps({"description": "Model text", "tags": []})

    payload = LLMEnrichment(CannedProvider(reply)).enrich(_task("Login", "Human text"))

    assert payload.description == "Human text"
    assert payload.tags == [FALLBACK_TAG]


@pytest.mark.parametrize(
    "reply",
    [
        "not json at all",
        "{broken json}",
        json.dumps({"description": "ok", "priority": 9}),
        json.dumps({"description": ""}),
        json.dumps({"description": "ok", "tags": 5}),
        json.dumps({"description": "ok", "confidence_score": "high"}),
    ],
)
def test_llm_enrichment_rejects_unusable_replies(reply: str) -> None:
    with pytest.raises(EnrichmentError):
        LLMEnrichment(CannedProvider(reply)).enrich(_task("Login"))


def test_llm_provider_errors_become_enrichment_errors() -> None:
    provider = CannedProvider(LLMProviderError("rate limited"))

    with pytest.raises(EnrichmentError, match="rate limited"):
        LLMEnrichment(provider).enrich(_task("Login"))
