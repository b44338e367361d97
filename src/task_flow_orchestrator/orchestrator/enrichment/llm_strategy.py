"""LLM-backed enrichment strategy."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from task_flow_orchestrator.llm.provider import LLMProvider, LLMProviderError
from task_flow_orchestrator.orchestrator.enrichment.base import EnrichmentStrategy
from task_flow_orchestrator.orchestrator.enrichment.payload import EnrichmentPayload
from task_flow_orchestrator.orchestrator.enrichment.rules import FALLBACK_TAG
from task_flow_orchestrator.orchestrator.errors import EnrichmentError
from task_flow_orchestrator.orchestrator.staging.models import StagedTask

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a project planning assistant. You enrich software tasks so a \
developer can start on them without asking questions.

Reply with ONE JSON object and nothing else, using exactly these keys:
  description (string, 2-4 sentences)
  unit_tests (array of at least 2 short test names starting with "should")
  priority (integer 1-5, 1 is most urgent)
  effort_hours (number of hours, > 0)
  dependencies (array of strings, may be empty)
  assignee_suggestions (array of role names such as "backend-developer")
  tags (array of at least 1 lowercase tag)
  success_criteria (array of strings)
  confidence_score (number between 0 and 1)
"""


def build_task_prompt(task: StagedTask) -> str:
    fields = {
        "title": task.title,
        "description": task.description or "",
        "status": task.status,
        "priority": task.priority,
        "tags": task.tags,
        "existing_unit_tests": task.unit_tests,
    }
    return "Enrich this task:\n" + json.dumps(fields, indent=2, ensure_ascii=False)


_LIST_FIELDS = ("unit_tests", "dependencies", "assignee_suggestions", "tags", "success_criteria")


def _extract_json_object(text: str) -> dict[str, object]:
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise EnrichmentError("LLM reply did not contain a JSON object")
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise EnrichmentError(f"LLM reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise EnrichmentError("LLM reply JSON is not an object")
    return data


class LLMEnrichment(EnrichmentStrategy):
    """Asks a chat model for the enrichment payload and validates the reply."""

    name = "llm"

    def __init__(self, provider: LLMProvider) -> None:
        self._provider = provider

    def enrich(self, task: StagedTask) -> EnrichmentPayload:
        try:
            reply = self._provider.chat(
                [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_task_prompt(task)},
                ],
                json_mode=True,
            )
        except LLMProviderError as e:
            raise EnrichmentError(str(e)) from e
        data = _extract_json_object(reply)
        for key in _LIST_FIELDS:
            if data.get(key) is not None and not isinstance(data[key], list):
                raise EnrichmentError(f"LLM reply field {key!r} is not an array")

        # Keep what the task already has; the model only fills gaps.
        if (task.description or "").strip():
            data["description"] = task.description
        try:
            tags = [t for t in data.get("tags") or [] if isinstance(t, str) and t.strip()]
            data["tags"] = list(dict.fromkeys([*task.tags, *tags])) or [FALLBACK_TAG]
            if isinstance(data.get("confidence_score"), int | float):
                data["confidence_score"] = min(max(float(data["confidence_score"]), 0.0), 1.0)
        except (TypeError, ValueError) as e:
            raise EnrichmentError(f"LLM reply has unusable values: {e}") from e
        data["strategy"] = f"{self.name}:{self._provider.model_name}"

        try:
            payload = EnrichmentPayload.model_validate(data)
        except ValidationError as e:
            raise EnrichmentError(f"LLM reply does not match the enrichment schema: {e}") from e

        logger.info(
            "Task enriched by LLM",
            extra={"task_id": task.id, "model": self._provider.model_name},
        )
        return payload
