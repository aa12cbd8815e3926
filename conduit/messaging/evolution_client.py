"""
Evolution API client (unofficial WhatsApp bridge).

Uses the shared aiohttp session injected at startup. Every HTTP or network
failure becomes ``ProviderSendError`` so the job is retried by policy.
"""

from typing import Any

import aiohttp

from conduit.core.config.settings import settings
from conduit.core.logging.logger import get_logger
from conduit.domain.errors import ProviderSendError

PROVIDER = "evolution"


class EvolutionClient:
    """
    Thin POST client for ``/message/*`` endpoints.

    Args:
        session: Persistent aiohttp session (owned by the worker runtime)
        base_url: Evolution API base URL
        api_key: Global API key sent in the ``apikey`` header
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ):
        self.session = session
        self.base_url = (base_url or settings.evolution_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else (settings.evolution_api_key or "")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.provider_timeout)
        self.logger = get_logger(__name__)

    def _get_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "apikey": self.api_key}

    async def post_request(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST a JSON body to an Evolution endpoint.

        Raises:
            ProviderSendError: For non-2xx responses, network errors and timeouts
        """
        url = f"{self.base_url}{endpoint}"
        self.logger.debug(f"Evolution POST {url}")
        try:
            async with self.session.post(
                url, headers=self._get_headers(), json=payload, timeout=self.timeout
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    self.logger.error(f"Evolution HTTP {response.status}: {error_text}")
                    raise ProviderSendError(
                        error_text or f"HTTP {response.status}",
                        status_code=response.status,
                        provider=PROVIDER,
                    )
                return await response.json(content_type=None) or {}
        except aiohttp.ClientError as e:
            raise ProviderSendError(f"Evolution request failed: {e}", provider=PROVIDER) from e
        except TimeoutError as e:
            raise ProviderSendError("Evolution request timed out", provider=PROVIDER) from e

    async def send_text(self, instance: str, number: str, text: str) -> dict[str, Any]:
        return await self.post_request(
            f"/message/sendText/{instance}", {"number": number, "text": text}
        )

    async def send_media(
        self,
        instance: str,
        number: str,
        media_type: str,
        media_url: str,
        mime_type: str,
        caption: str | None = None,
        file_name: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "number": number,
            "mediatype": media_type,
            "mimetype": mime_type,
            "media": media_url,
        }
        if caption:
            payload["caption"] = caption
        if file_name:
            payload["fileName"] = file_name
        return await self.post_request(f"/message/sendMedia/{instance}", payload)

    @staticmethod
    def message_id(response: dict[str, Any]) -> str | None:
        """Provider message id from a send response (``key.id``)."""
        key = response.get("key") or {}
        return key.get("id")
