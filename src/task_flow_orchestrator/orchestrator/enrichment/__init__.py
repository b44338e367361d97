"""Task enrichment strategies.

The rule-based strategy is the default; the LLM strategy is selected with
``ORCHESTRATOR_ENRICHMENT_STRATEGY=llm``.
"""

from task_flow_orchestrator.orchestrator.enrichment.base import EnrichmentStrategy
from task_flow_orchestrator.orchestrator.enrichment.llm_strategy import LLMEnrichment
from task_flow_orchestrator.orchestrator.enrichment.payload import EnrichmentPayload
from task_flow_orchestrator.orchestrator.enrichment.rules import (
    EnrichmentOptions,
    RuleBasedEnrichment,
)

__all__ = [
    "EnrichmentOptions",
    "EnrichmentPayload",
    "EnrichmentStrategy",
    "LLMEnrichment",
    "RuleBasedEnrichment",
]
