"""Deterministic, keyword-bucketed enrichment.

Every rule table is ordered: the first bucket whose keywords appear in the
task text decides the value. Keywords match at a word start, so ``"test"``
matches "testing" but ``"ui"`` does not match "build".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache

from task_flow_orchestrator.orchestrator.enrichment.base import EnrichmentStrategy
from task_flow_orchestrator.orchestrator.enrichment.payload import EnrichmentPayload
from task_flow_orchestrator.orchestrator.staging.models import StagedTask

logger = logging.getLogger(__name__)

FALLBACK_TAG = "needs-triage"
FALLBACK_ASSIGNEE = "full-stack-developer"
DEFAULT_PRIORITY = 3
DEFAULT_EFFORT_HOURS = 2.0

PRIORITY_RULES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("urgent", "critical", "blocker"), 1),
    (("bug", "fix", "error"), 2),
    (("security", "auth"), 2),
    (("feature", "implement"), 3),
    (("test", "documentation"), 4),
    (("nice to have", "optional"), 5),
)

EFFORT_RULES: tuple[tuple[tuple[str, ...], float], ...] = (
    (("simple", "quick", "minor"), 1.0),
    (("complex", "major", "refactor"), 8.0),
    (("api", "integration"), 4.0),
    (("ui", "design"), 3.0),
    (("test", "documentation"), 2.0),
)

TAG_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("api", "rest"), "api"),
    (("frontend", "ui", "react"), "frontend"),
    (("backend", "server"), "backend"),
    (("database", "sql"), "database"),
    (("auth", "security"), "security"),
    (("test",), "testing"),
    (("deploy", "ci/cd"), "devops"),
    (("bug", "fix"), "bugfix"),
    (("urgent", "critical"), "high-priority"),
    (("nice to have",), "low-priority"),
    (("feature",), "feature"),
    (("documentation",), "documentation"),
    (("refactor",), "refactor"),
)

DEPENDENCY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("depends on", "requires"), "dependency-1"),
    (("after", "following"), "prerequisite-task"),
)

# (keywords in text, tag that implies the role, role)
ASSIGNEE_RULES: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("frontend", "ui"), "frontend", "frontend-developer"),
    (("backend", "api"), "backend", "backend-developer"),
    (("database", "sql"), "database", "database-admin"),
    (("security", "auth"), "security", "security-engineer"),
    (("test",), "testing", "qa-engineer"),
    (("deploy", "devops"), "devops", "devops-engineer"),
)

BASE_UNIT_TESTS: tuple[str, ...] = (
    "should pass basic validation",
    "should link to valid project",
)

UNIT_TEST_RULES: tuple[tuple[tuple[str, ...], tuple[str, str]], ...] = (
    (("api",), ("should return correct HTTP status codes", "should handle error cases gracefully")),
    (("auth",), ("should validate user credentials", "should handle unauthorized access")),
    (
        ("database",),
        ("should maintain data integrity", "should handle database connection errors"),
    ),
    (
        ("ui", "frontend"),
        ("should render correctly on different screen sizes", "should handle user interactions properly"),
    ),
    (("test",), ("should have adequate test coverage", "should run within acceptable time limits")),
)


@lru_cache(maxsize=256)
def _pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}")


def _mentions(text: str, keywords: tuple[str, ...]) -> bool:
    return any(_pattern(k).search(text) for k in keywords)


def _strip_leading(title: str, words: tuple[str, ...]) -> str:
    lowered = title.strip().lower()
    for word in words:
        if lowered.startswith(word + " "):
            return lowered[len(word) + 1 :]
    return lowered


def generate_description(title: str) -> str:
    title = title.strip() or "untitled task"
    lowered = title.lower()
    if _mentions(lowered, ("implement", "create")):
        subject = _strip_leading(title, ("implement", "create"))
        return f"Implement the {subject} functionality according to project requirements."
    if _mentions(lowered, ("test",)):
        subject = _strip_leading(title, ("test", "testing"))
        return f"Create comprehensive tests for {subject} to ensure quality and reliability."
    if _mentions(lowered, ("fix", "bug")):
        return (
            "Investigate and resolve the issue described in the task title. "
            "Ensure the fix is properly tested and documented."
        )
    if _mentions(lowered, ("design", "ui")):
        subject = _strip_leading(title, ("design", "ui"))
        return f"Design and create the user interface components for {subject}."
    if _mentions(lowered, ("deploy", "release")):
        subject = _strip_leading(title, ("deploy", "release"))
        return f"Prepare and execute the deployment process for {subject}."
    return (
        f"Complete the task: {title}. Ensure all requirements are met and the "
        "implementation follows project standards."
    )


def generate_unit_tests(title: str, description: str) -> list[str]:
    text = f"{title} {description}".lower()
    tests = list(BASE_UNIT_TESTS)
    for keywords, pair in UNIT_TEST_RULES:
        if _mentions(text, keywords):
            tests.extend(pair)
    return tests


def estimate_priority(text: str) -> int:
    for keywords, priority in PRIORITY_RULES:
        if _mentions(text, keywords):
            return priority
    return DEFAULT_PRIORITY


def estimate_effort(text: str) -> float:
    for keywords, hours in EFFORT_RULES:
        if _mentions(text, keywords):
            return hours
    return DEFAULT_EFFORT_HOURS


def suggest_tags(text: str) -> list[str]:
    return [tag for keywords, tag in TAG_RULES if _mentions(text, keywords)]


def detect_dependencies(text: str) -> list[str]:
    return [dep for keywords, dep in DEPENDENCY_RULES if _mentions(text, keywords)]


def suggest_assignees(text: str, tags: list[str]) -> list[str]:
    roles = [
        role
        for keywords, tag, role in ASSIGNEE_RULES
        if _mentions(text, keywords) or tag in tags
    ]
    return roles or [FALLBACK_ASSIGNEE]


def success_criteria_for(title: str) -> list[str]:
    title = title.strip() or "untitled task"
    return [
        f'Task "{title}" is completed',
        "All acceptance criteria are met",
        "Code is reviewed and approved",
        "Tests pass successfully",
    ]


def confidence_score(
    *, description: str, unit_tests: list[str], tags: list[str], effort_hours: float
) -> float:
    """Completeness heuristic in [0, 1]; not a probability."""

    score = 0.5
    if len(description) > 50:
        score += 0.2
    if len(unit_tests) >= 2:
        score += 0.1
    if tags:
        score += 0.1
    if effort_hours > 0:
        score += 0.1
    return round(min(score, 1.0), 3)


@dataclass(frozen=True, slots=True)
class EnrichmentOptions:
    unit_tests: bool = True
    priority_estimation: bool = True
    effort_estimation: bool = True
    tag_suggestions: bool = True
    dependency_detection: bool = True


class RuleBasedEnrichment(EnrichmentStrategy):
    """Default strategy: keyword buckets, no external calls."""

    name = "rules"

    def __init__(self, options: EnrichmentOptions | None = None) -> None:
        self._options = options or EnrichmentOptions()

    def enrich(self, task: StagedTask) -> EnrichmentPayload:
        opts = self._options
        description = (task.description or "").strip() or generate_description(task.title)
        text = f"{task.title} {description}".lower()

        if task.unit_tests:
            unit_tests = list(task.unit_tests)
        elif opts.unit_tests:
            unit_tests = generate_unit_tests(task.title, description)
        else:
            unit_tests = list(BASE_UNIT_TESTS)
        priority = estimate_priority(text) if opts.priority_estimation else DEFAULT_PRIORITY
        effort = estimate_effort(text) if opts.effort_estimation else DEFAULT_EFFORT_HOURS

        tags = list(dict.fromkeys(task.tags))
        if opts.tag_suggestions:
            tags = list(dict.fromkeys([*tags, *suggest_tags(text)]))
        if not tags:
            tags = [FALLBACK_TAG]

        dependencies = detect_dependencies(text) if opts.dependency_detection else []

        payload = EnrichmentPayload(
            description=description,
            unit_tests=unit_tests,
            priority=priority,
            effort_hours=effort,
            dependencies=dependencies,
            assignee_suggestions=suggest_assignees(text, tags),
            tags=tags,
            success_criteria=list(task.success_criteria) or success_criteria_for(task.title),
            confidence_score=confidence_score(
                description=description, unit_tests=unit_tests, tags=tags, effort_hours=effort
            ),
            strategy=self.name,
        )
        logger.debug(
            "Task enriched",
            extra={"task_id": task.id, "strategy": self.name, "confidence": payload.confidence_score},
        )
        return payload
