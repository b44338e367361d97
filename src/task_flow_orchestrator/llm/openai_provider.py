"""OpenAI LLM provider implementation."""

import logging
from typing import Any

from openai import OpenAI, OpenAIError

from task_flow_orchestrator.llm.provider import LLMProvider, LLMProviderError
from task_flow_orchestrator.orchestrator.config import LLMConfig
from task_flow_orchestrator.orchestrator.errors import ConfigurationError

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI chat-completions provider."""

    def __init__(self, config: LLMConfig, client: OpenAI | None = None) -> None:
        """Initialize the OpenAI provider.

        Args:
            config: LLM configuration.
            client: Pre-built client (tests inject a fake).

        Raises:
            ConfigurationError: If no API key is configured and no client is given.
        """
        if client is None and not config.openai_api_key:
            raise ConfigurationError("ORCHESTRATOR_LLM_OPENAI_API_KEY is required for LLM enrichment")

        self.config = config
        self.client = client or OpenAI(api_key=config.openai_api_key)
        self.model = config.openai_model
        self.temperature = config.openai_temperature

        logger.info("OpenAI provider initialized", extra={"model": self.model})

    @property
    def model_name(self) -> str:
        return self.model

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        **kwargs: Any,
    ) -> str:
        temp = temperature if temperature is not None else self.temperature
        if json_mode:
            kwargs.setdefault("response_format", {"type": "json_object"})

        logger.debug("Requesting chat completion", extra={"messages": len(messages)})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                max_tokens=max_tokens or self.config.max_tokens,
                temperature=temp,
                **kwargs,
            )
        except OpenAIError as e:
            raise LLMProviderError(f"OpenAI request failed: {e}") from e

        content = response.choices[0].message.content or ""
        logger.debug("Chat completion received", extra={"chars": len(content)})
        return content
