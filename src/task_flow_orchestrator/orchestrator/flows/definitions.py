"""Flow definitions.

A flow is an ordered tuple of steps. Each step names a capability and one of
its methods, carries a config whose ``kind`` must equal
``"<capability>.<method>"``, and its own retry/timeout policy. Definitions
are validated when loaded (schema) and again when the executor is built
(every capability/method must exist in the registry).
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from task_flow_orchestrator.orchestrator.errors import FlowDefinitionError
from task_flow_orchestrator.orchestrator.flows.registry import CapabilityRegistry
from task_flow_orchestrator.orchestrator.ledger import SyncDirection


class _StepConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class SyncAllProjectsConfig(_StepConfig):
    kind: Literal["sync.syncAllProjects"] = "sync.syncAllProjects"
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL


class SyncProjectConfig(_StepConfig):
    kind: Literal["sync.syncProjectById"] = "sync.syncProjectById"
    project_id: str | None = None
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL


class ReviewStagedTasksConfig(_StepConfig):
    kind: Literal["review.reviewStagedTasks"] = "review.reviewStagedTasks"
    limit: int | None = Field(default=None, ge=1)
    retry_errored: bool = False


class EnrichTaskConfig(_StepConfig):
    kind: Literal["enrichment.enrichTask"] = "enrichment.enrichTask"
    apply: bool = True


StepConfig = Annotated[
    SyncAllProjectsConfig | SyncProjectConfig | ReviewStagedTasksConfig | EnrichTaskConfig,
    Field(discriminator="kind"),
]

_DEFAULT_CONFIGS: dict[str, type[_StepConfig]] = {
    "sync.syncAllProjects": SyncAllProjectsConfig,
    "sync.syncProjectById": SyncProjectConfig,
    "review.reviewStagedTasks": ReviewStagedTasksConfig,
    "enrichment.enrichTask": EnrichTaskConfig,
}


class FlowStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    capability: str = Field(min_length=1)
    method: str = Field(min_length=1)
    config: StepConfig | None = None
    retries: int = Field(default=0, ge=0, le=10)
    timeout_seconds: float | None = Field(default=None, gt=0)

    @property
    def name(self) -> str:
        return f"{self.capability}.{self.method}"

    @model_validator(mode="before")
    @classmethod
    def _default_config(cls, data: object) -> object:
        if isinstance(data, dict) and data.get("config") is None:
            kind = f"{data.get('capability')}.{data.get('method')}"
            if kind in _DEFAULT_CONFIGS:
                data = {**data, "config": {"kind": kind}}
        return data

    @model_validator(mode="after")
    def _config_matches_step(self) -> FlowStep:
        if self.config is None:
            raise ValueError(f"No step config type for {self.name}")
        if self.config.kind != self.name:
            raise ValueError(f"Step {self.name} carries config for {self.config.kind}")
        return self


class FlowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    steps: tuple[FlowStep, ...] = Field(min_length=1)


def _step(
    capability: str,
    method: str,
    *,
    retries: int = 0,
    timeout: float | None = None,
    **config: object,
) -> FlowStep:
    return FlowStep.model_validate(
        {
            "capability": capability,
            "method": method,
            "config": {"kind": f"{capability}.{method}", **config},
            "retries": retries,
            "timeout_seconds": timeout,
        }
    )


def default_flows() -> dict[str, FlowDefinition]:
    """Built-in flows; a flows file can add to or override them."""

    flows = [
        FlowDefinition(
            name="sync",
            description="Full bidirectional sync of every remote project.",
            steps=(_step("sync", "syncAllProjects", retries=2, timeout=300.0),),
        ),
        FlowDefinition(
            name="syncPull",
            description="Pull-only sync of every remote project.",
            steps=(
                _step("sync", "syncAllProjects", retries=2, timeout=300.0, direction="pull"),
            ),
        ),
        FlowDefinition(
            name="syncProject",
            description="Bidirectional sync of the project given as config.projectId.",
            steps=(_step("sync", "syncProjectById", retries=2, timeout=120.0),),
        ),
        FlowDefinition(
            name="syncProjectPull",
            description="Pull-only sync of the project given as config.projectId.",
            steps=(
                _step("sync", "syncProjectById", retries=2, timeout=120.0, direction="pull"),
            ),
        ),
        FlowDefinition(
            name="reviewStagedTasks",
            description="Enrich, validate and promote staged tasks.",
            steps=(_step("review", "reviewStagedTasks", retries=1),),
        ),
        FlowDefinition(
            name="enrichTask",
            description="Enrich the task given as taskId.",
            steps=(_step("enrichment", "enrichTask", retries=1, timeout=60.0),),
        ),
        FlowDefinition(
            name="syncAndReview",
            description="Pull remote tasks, then review everything staged.",
            steps=(
                _step("sync", "syncAllProjects", retries=2, timeout=300.0, direction="pull"),
                _step("review", "reviewStagedTasks", retries=1),
            ),
        ),
    ]
    return {flow.name: flow for flow in flows}


_FLOW_LIST = TypeAdapter(list[FlowDefinition])


def load_flow_file(path: Path) -> dict[str, FlowDefinition]:
    """Load flow definitions from a JSON file: ``{"flows": [...]}`` or a bare list."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise FlowDefinitionError(f"Cannot read flow file {path}: {e}") from e

    items = raw.get("flows", []) if isinstance(raw, dict) else raw
    try:
        flows = _FLOW_LIST.validate_python(items)
    except ValidationError as e:
        raise FlowDefinitionError(f"Invalid flow file {path}: {e}") from e

    out: dict[str, FlowDefinition] = {}
    for flow in flows:
        if flow.name in out:
            raise FlowDefinitionError(f"Duplicate flow name in {path}: {flow.name}")
        out[flow.name] = flow
    return out


def validate_flows(flows: Iterable[FlowDefinition], registry: CapabilityRegistry) -> None:
    """Fail at startup if any step names a capability/method the registry lacks."""

    for flow in flows:
        for step in flow.steps:
            if not registry.has_method(step.capability, step.method):
                raise FlowDefinitionError(
                    f"Flow {flow.name} references unknown step {step.name}"
                )
