"""Abstract base class for LLM providers."""

from abc import ABC, abstractmethod
from typing import Any


class LLMProviderError(RuntimeError):
    """The backend failed to produce a completion."""


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    The AI-backed enrichment strategy talks to models only through this
    interface, so tests can substitute a canned provider.
    """

    @abstractmethod
    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        **kwargs: Any,
    ) -> str:
        """Generate a chat completion from messages.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            json_mode: Ask the backend to return a single JSON object.
            **kwargs: Additional provider-specific parameters.

        Returns:
            The assistant message content.
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Identifier of the underlying model, recorded in enrichment metadata."""
