"""
Graph API client for WhatsApp Cloud, Instagram and Messenger sends.

One client per process; the access token is per channel and passed on each
call, so the same session serves every tenant.
"""

from typing import Any

import aiohttp

from conduit.core.config.settings import settings
from conduit.core.logging.logger import get_logger
from conduit.domain.errors import ProviderSendError

PROVIDER = "meta"


class GraphApiClient:
    """
    POST client for ``/{node}/messages`` endpoints.

    Args:
        session: Persistent aiohttp session (owned by the worker runtime)
        base_url: Graph base including version, e.g. https://graph.facebook.com/v18.0
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.session = session
        self.base_url = (base_url or settings.graph_base_url).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.provider_timeout)
        self.logger = get_logger(__name__)

    @staticmethod
    def _get_headers(access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _error_text(body: Any, status: int) -> str:
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"].get("message") or f"HTTP {status}"
        return f"HTTP {status}"

    async def post_request(
        self, endpoint: str, access_token: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        POST a JSON body and return the decoded response.

        Graph reports failures as ``{"error": {"message": ...}}``; that message
        becomes the ``ProviderSendError`` text.

        Raises:
            ProviderSendError: For error bodies, network errors and timeouts
        """
        url = f"{self.base_url}{endpoint}"
        self.logger.debug(f"Graph POST {url}")
        try:
            async with self.session.post(
                url,
                headers=self._get_headers(access_token),
                json=payload,
                timeout=self.timeout,
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None

                if response.status >= 400 or (isinstance(body, dict) and "error" in body):
                    error_text = self._error_text(body, response.status)
                    if response.status == 401:
                        self.logger.error(
                            "Graph access token expired or invalid (401). "
                            "Update the channel's access token."
                        )
                    else:
                        self.logger.error(f"Graph HTTP {response.status}: {error_text}")
                    raise ProviderSendError(
                        error_text, status_code=response.status, provider=PROVIDER
                    )
                return body or {}
        except aiohttp.ClientError as e:
            raise ProviderSendError(f"Graph request failed: {e}", provider=PROVIDER) from e
        except TimeoutError as e:
            raise ProviderSendError("Graph request timed out", provider=PROVIDER) from e

    async def send_whatsapp(
        self, phone_number_id: str, access_token: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Send a Cloud API message (``messaging_product`` is added here)."""
        body = {"messaging_product": "whatsapp", "recipient_type": "individual", **payload}
        return await self.post_request(f"/{phone_number_id}/messages", access_token, body)

    async def send_instagram(
        self, ig_user_id: str, access_token: str, recipient_id: str, message: dict[str, Any]
    ) -> dict[str, Any]:
        return await self.post_request(
            f"/{ig_user_id}/messages",
            access_token,
            {"recipient": {"id": recipient_id}, "message": message},
        )

    async def send_messenger(
        self, access_token: str, recipient_id: str, message: dict[str, Any]
    ) -> dict[str, Any]:
        return await self.post_request(
            "/me/messages",
            access_token,
            {
                "recipient": {"id": recipient_id},
                "message": message,
                "messaging_type": "RESPONSE",
            },
        )

    @staticmethod
    def message_id(response: dict[str, Any]) -> str | None:
        """Provider message id: ``messages[0].id`` (Cloud) or ``message_id``."""
        messages = response.get("messages")
        if isinstance(messages, list) and messages:
            return messages[0].get("id")
        return response.get("message_id")
