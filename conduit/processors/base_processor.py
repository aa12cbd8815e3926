"""
Base processor abstraction for provider webhook parsing.

Every provider adapter turns a raw payload into a flat list of canonical
events. Adapters never touch storage; an empty list is a successful no-op.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from conduit.core.logging.logger import get_logger
from conduit.domain.errors import ParseError
from conduit.schemas.core.events import CanonicalEvent
from conduit.schemas.core.types import ProviderType

E = TypeVar("E", bound=BaseModel)


class BaseWebhookProcessor(ABC):
    """
    Provider-agnostic webhook processor base class.

    Subclasses implement ``parse_events``. Signature validation and the
    subscription handshake are shared by the Graph-based providers and live here.
    """

    def __init__(self):
        self.logger = get_logger(__name__)

    @property
    @abstractmethod
    def provider(self) -> ProviderType:
        """Provider this processor handles."""
        pass

    @abstractmethod
    def parse_events(self, payload: dict[str, Any]) -> list[CanonicalEvent]:
        """
        Provider-specific parsing.

        Args:
            payload: Raw webhook JSON body

        Returns:
            Zero or more canonical events

        Raises:
            ParseError: If the payload is not a recognizable webhook
        """
        pass

    def parse(
        self,
        payload: dict[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> list[CanonicalEvent]:
        """
        Parse a raw payload into canonical events.

        Args:
            payload: Raw webhook JSON body
            headers: Request headers (unused by most providers)

        Returns:
            Zero or more canonical events

        Raises:
            ParseError: If the payload is malformed
        """
        if not isinstance(payload, dict):
            raise ParseError(
                f"Expected a JSON object, got {type(payload).__name__}",
                self.provider.value,
            )
        try:
            events = self.parse_events(payload)
        except ValidationError as e:
            raise ParseError(
                f"Invalid {self.provider.value} payload: {e}", self.provider.value
            ) from e
        self.logger.debug(
            f"Parsed {len(events)} event(s) from {self.provider.value} webhook"
        )
        return events

    def _validate(self, model: type[BaseModel], data: Any) -> Any:
        """Validate ``data`` into ``model``, translating errors to ParseError."""
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ParseError(
                f"Invalid {self.provider.value} payload for {model.__name__}: {e}",
                self.provider.value,
            ) from e

    def validate_webhook_signature(
        self, payload: bytes, signature: str | None, secret: str | None
    ) -> bool:
        """
        Validate an ``X-Hub-Signature-256`` header.

        Args:
            payload: Raw request body
            signature: Header value, ``sha256=<hex>``
            secret: App secret; validation is skipped when not configured

        Returns:
            True if the signature is valid or no secret is configured
        """
        if not secret:
            return True

        if not signature or not signature.startswith("sha256="):
            self.logger.error("Invalid signature format - must start with 'sha256='")
            return False

        provided_hash = signature[7:]
        expected_hash = hmac.new(
            secret.encode("utf-8"), payload, hashlib.sha256
        ).hexdigest()

        is_valid = hmac.compare_digest(expected_hash, provided_hash)
        if not is_valid:
            self.logger.error(
                f"Webhook signature validation failed for {self.provider.value}"
            )
        return is_valid

    @staticmethod
    def verify_subscription(
        mode: str | None,
        token: str | None,
        challenge: str | None,
        expected_token: str | None,
    ) -> str | None:
        """
        Subscription handshake used by the Graph-based providers.

        Returns:
            The challenge to echo back, or None when verification fails
        """
        if mode == "subscribe" and expected_token and token == expected_token:
            return challenge or ""
        return None

    @staticmethod
    def _timestamp(value: int | str | None) -> datetime:
        """Provider epoch (seconds or milliseconds) to an aware datetime."""
        if value in (None, ""):
            return datetime.now(UTC)
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            return datetime.now(UTC)
        if seconds > 1e11:
            seconds /= 1000
        try:
            return datetime.fromtimestamp(seconds, UTC)
        except (OverflowError, OSError, ValueError):
            return datetime.now(UTC)

    def _event(self, event_cls: type[E], **fields: Any) -> E | None:
        """
        Build one canonical event, or log and skip it when the fields are invalid.

        A bad item never takes the rest of the webhook down with it.
        """
        try:
            return event_cls(**fields)
        except ValidationError as e:
            self.logger.warning(
                f"Skipping malformed {self.provider.value} {event_cls.__name__}: "
                f"{e.error_count()} error(s)"
            )
            return None

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(provider={self.provider.value})"
