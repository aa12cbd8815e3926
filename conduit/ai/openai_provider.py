"""
OpenAI-backed model provider.

Chat completions with JSON replies for suggestions and sentiment, plain
completions for the chatbot, and speech-to-text for audio. Audio is fetched
with the shared aiohttp session and handed to the API as an in-memory file.
"""

import io
import json
from typing import Any

import aiohttp
from openai import AsyncOpenAI

from conduit.core.config.settings import settings
from conduit.core.logging.logger import get_logger
from conduit.domain.interfaces.model_provider_interface import IModelProvider

logger = get_logger(__name__)

SUGGESTION_PROMPT = (
    "You help customer support agents. Given the conversation, write exactly 3 short, "
    "distinct replies the agent could send next, in the language of the contact. "
    'Answer with JSON: {"suggestions": ["...", "...", "..."]}'
)

SENTIMENT_PROMPT = (
    "Classify the sentiment of the customer message. Answer with JSON: "
    '{"label": "positive" | "neutral" | "negative", "score": <number between 0 and 1>}'
)

_ROLE_MAP = {
    "contact": "user",
    "user": "user",
    "agent": "assistant",
    "assistant": "assistant",
    "bot": "assistant",
}


class OpenAIModelProvider(IModelProvider):
    """
    Args:
        client: AsyncOpenAI client, or None when no API key is configured
        session: aiohttp session used to download audio
        chat_model: Model for chat completions
        transcribe_model: Model for speech-to-text
    """

    def __init__(
        self,
        client: AsyncOpenAI | None,
        session: aiohttp.ClientSession | None = None,
        chat_model: str | None = None,
        transcribe_model: str | None = None,
    ):
        self.client = client
        self.session = session
        self.chat_model = chat_model or settings.openai_chat_model
        self.transcribe_model = transcribe_model or settings.openai_transcribe_model

    @classmethod
    def from_settings(cls, session: aiohttp.ClientSession | None = None) -> "OpenAIModelProvider":
        client = AsyncOpenAI(api_key=settings.openai_api_key) if settings.has_openai else None
        return cls(client, session)

    @property
    def is_available(self) -> bool:
        return self.client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self.client is None:
            raise RuntimeError("OpenAI is not configured")
        return self.client

    async def _download(self, url: str) -> bytes:
        if self.session is None:
            raise RuntimeError("No HTTP session available to download audio")
        async with self.session.get(url) as response:
            response.raise_for_status()
            return await response.read()

    async def transcribe(self, audio_url: str, language: str | None = None) -> str:
        client = self._require_client()
        audio_bytes = await self._download(audio_url)

        audio_stream = io.BytesIO(audio_bytes)
        # The API infers the format from the file name
        audio_stream.name = "audio.ogg"
        kwargs: dict[str, Any] = {"model": self.transcribe_model, "file": audio_stream}
        if language:
            kwargs["language"] = language

        transcription = await client.audio.transcriptions.create(**kwargs)
        logger.debug(f"Transcribed {len(audio_bytes)} bytes of audio")
        return transcription.text

    async def _json_completion(self, system_prompt: str, messages: list[dict[str, str]]) -> dict:
        client = self._require_client()
        completion = await client.chat.completions.create(
            model=self.chat_model,
            messages=[{"role": "system", "content": system_prompt}, *messages],
            response_format={"type": "json_object"},
            temperature=0.3,
        )
        content = completion.choices[0].message.content or "{}"
        return json.loads(content)

    @staticmethod
    def _to_chat_messages(messages: list[dict[str, Any]]) -> list[dict[str, str]]:
        return [
            {
                "role": _ROLE_MAP.get(str(m.get("role", "user")), "user"),
                "content": str(m.get("content") or ""),
            }
            for m in messages
            if m.get("content")
        ]

    async def suggest_replies(self, messages: list[dict[str, Any]]) -> list[str]:
        data = await self._json_completion(SUGGESTION_PROMPT, self._to_chat_messages(messages))
        suggestions = data.get("suggestions")
        if not isinstance(suggestions, list):
            return []
        return [str(s) for s in suggestions]

    async def classify_sentiment(self, content: str) -> dict[str, Any]:
        return await self._json_completion(
            SENTIMENT_PROMPT, [{"role": "user", "content": content}]
        )

    async def chat(self, system_prompt: str, messages: list[dict[str, Any]]) -> str:
        client = self._require_client()
        completion = await client.chat.completions.create(
            model=self.chat_model,
            messages=[
                {"role": "system", "content": system_prompt},
                *self._to_chat_messages(messages),
            ],
        )
        return completion.choices[0].message.content or ""
