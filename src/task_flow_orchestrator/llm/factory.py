"""Factory for creating LLM providers."""

import logging

from task_flow_orchestrator.llm.openai_provider import OpenAIProvider
from task_flow_orchestrator.llm.provider import LLMProvider
from task_flow_orchestrator.orchestrator.config import LLMConfig
from task_flow_orchestrator.orchestrator.errors import ConfigurationError

logger = logging.getLogger(__name__)


class LLMFactory:
    """Factory for creating LLM provider instances."""

    @staticmethod
    def create(config: LLMConfig) -> LLMProvider:
        """Create an LLM provider based on configuration.

        Raises:
            ConfigurationError: If the provider is not supported or lacks credentials.
        """
        logger.info("Creating LLM provider", extra={"provider": config.provider})

        if config.provider == "openai":
            return OpenAIProvider(config)
        raise ConfigurationError(f"Unsupported LLM provider: {config.provider}")
