"""LLM package initialization."""

from task_flow_orchestrator.llm.factory import LLMFactory
from task_flow_orchestrator.llm.provider import LLMProvider, LLMProviderError

__all__ = [
    "LLMFactory",
    "LLMProvider",
    "LLMProviderError",
]
