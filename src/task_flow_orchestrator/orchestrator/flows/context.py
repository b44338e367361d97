from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from task_flow_orchestrator.orchestrator.cancellation import CancellationToken


class FlowRequest(BaseModel):
    """What a caller asked for; passed unchanged to every step."""

    flow_name: str
    task_id: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass(slots=True)
class ExecutionContext:
    """State threaded through the steps of one flow run.

    ``results`` only ever holds the outputs of steps that succeeded, in step
    order. ``cancellation`` is replaced for every attempt; handlers should
    read it once at the start of their work.
    """

    flow_id: str
    request: FlowRequest
    results: list[Any] = field(default_factory=list)
    step_index: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    @property
    def flow_name(self) -> str:
        return str(self.metadata.get("flow_name", self.request.flow_name))

    def request_value(self, key: str) -> Any:
        """Look a value up in the request config, then its metadata."""

        if key in self.request.config:
            return self.request.config[key]
        return self.request.metadata.get(key)
