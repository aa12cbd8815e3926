"""
Processor factory.

Processors are stateless, so one cached instance per
provider is shared by every worker.
"""

from collections.abc import Mapping
from typing import Any

from conduit.core.logging.logger import get_logger
from conduit.domain.errors import ParseError
from conduit.processors.base_processor import BaseWebhookProcessor
from conduit.schemas.core.events import CanonicalEvent
from conduit.schemas.core.types import ProviderType


class ProcessorFactory:
    """
    Factory for provider-specific webhook processors.

    Implements a singleton with processor caching.
    """

    _instance: "ProcessorFactory | None" = None
    _processors: dict[ProviderType, BaseWebhookProcessor] = {}

    def __new__(cls) -> "ProcessorFactory":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, "_initialized"):
            self.logger = get_logger(__name__)
            self._initialized = True

    def get_processor(self, provider: ProviderType) -> BaseWebhookProcessor:
        """
        Get or create the processor for a provider.

        Args:
            provider: Provider the webhook came from

        Returns:
            Cached processor instance

        Raises:
            ParseError: If no processor exists for the provider
        """
        if provider in self._processors:
            return self._processors[provider]

        processor = self._create_processor(provider)
        self._processors[provider] = processor
        self.logger.info(f"Created and cached processor for provider: {provider.value}")
        return processor

    def _create_processor(self, provider: ProviderType) -> BaseWebhookProcessor:
        if provider == ProviderType.WHATSAPP_OFFICIAL:
            from .whatsapp_processor import WhatsAppWebhookProcessor

            return WhatsAppWebhookProcessor()

        if provider == ProviderType.WHATSAPP_UNOFFICIAL:
            from .evolution_processor import EvolutionWebhookProcessor

            return EvolutionWebhookProcessor()

        if provider in (ProviderType.INSTAGRAM, ProviderType.MESSENGER):
            from .meta_processor import MetaWebhookProcessor

            return MetaWebhookProcessor(provider)

        raise ParseError(f"Unknown provider: {provider}", str(provider))


def parse_webhook(
    provider: ProviderType | str,
    payload: dict[str, Any],
    headers: Mapping[str, str] | None = None,
) -> list[CanonicalEvent]:
    """
    Parse a raw webhook into canonical events.

    Args:
        provider: Provider type (enum or its string value)
        payload: Raw webhook JSON body
        headers: Request headers

    Returns:
        Zero or more canonical events

    Raises:
        ParseError: If the provider is unknown or the payload is malformed
    """
    try:
        provider_type = ProviderType(provider)
    except ValueError as e:
        raise ParseError(f"Unknown provider: {provider}", str(provider)) from e
    return ProcessorFactory().get_processor(provider_type).parse(payload, headers)
