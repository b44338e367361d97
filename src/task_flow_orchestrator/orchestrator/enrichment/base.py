"""Abstract base class for enrichment strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod

from task_flow_orchestrator.orchestrator.enrichment.payload import EnrichmentPayload
from task_flow_orchestrator.orchestrator.staging.models import StagedTask


class EnrichmentStrategy(ABC):
    """Fills in missing task fields.

    Implementations must return the shared :class:`EnrichmentPayload` schema
    and raise :class:`EnrichmentError` when they cannot.
    """

    name: str = "base"

    @abstractmethod
    def enrich(self, task: StagedTask) -> EnrichmentPayload:
        """Produce an enrichment payload for ``task``.

        Args:
            task: The staged task to enrich. It is not modified.

        Returns:
            The enrichment payload.
        """

    def health_check(self) -> bool:
        return True
