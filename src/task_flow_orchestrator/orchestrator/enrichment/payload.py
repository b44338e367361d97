from __future__ import annotations

from pydantic import BaseModel, Field


class EnrichmentPayload(BaseModel):
    """Output schema shared by every enrichment strategy.

    The lifecycle manager only ever sees this shape, so strategies can be
    swapped without touching the review pipeline.
    """

    description: str = Field(min_length=1)
    unit_tests: list[str] = Field(default_factory=list)
    priority: int = Field(default=3, ge=1, le=5)
    effort_hours: float = Field(default=2.0, ge=0)
    dependencies: list[str] = Field(default_factory=list)
    assignee_suggestions: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    strategy: str = "rules"
