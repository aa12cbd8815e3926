"""Interface for the AI model provider used by the enrichment pipeline."""

from abc import ABC, abstractmethod
from typing import Any


class IModelProvider(ABC):
    """
    Text and audio model operations.

    Methods may raise any exception; the enrichment pipeline treats every
    failure as "provider unavailable" and falls back.
    """

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """False when the provider is not configured."""
        ...

    @abstractmethod
    async def transcribe(self, audio_url: str, language: str | None = None) -> str: ...

    @abstractmethod
    async def suggest_replies(self, messages: list[dict[str, Any]]) -> list[str]:
        """
        Reply suggestions for a conversation.

        Args:
            messages: ``{"role": "contact"|"agent"|"bot", "content": str}`` items,
                oldest first
        """
        ...

    @abstractmethod
    async def classify_sentiment(self, content: str) -> dict[str, Any]:
        """Returns ``{"label": str, "score": float}``."""
        ...

    @abstractmethod
    async def chat(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
    ) -> str: ...
