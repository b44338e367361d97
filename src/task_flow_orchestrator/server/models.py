"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ApiFlowStep(BaseModel):
    name: str
    retries: int
    timeoutSeconds: float | None = None


class ApiFlow(BaseModel):
    name: str
    description: str = ""
    steps: list[ApiFlowStep] = Field(default_factory=list)


class ApiFlowStatus(BaseModel):
    flowId: str
    stepName: str
    state: str
    metadata: dict[str, object] = Field(default_factory=dict)
    updatedAt: str


class HealthResponse(BaseModel):
    status: str
    capabilities: dict[str, bool]
