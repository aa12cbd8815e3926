"""Provider adapters: raw webhook payloads to canonical events."""

from .base_processor import BaseWebhookProcessor
from .factory import ProcessorFactory, parse_webhook

__all__ = [
    "BaseWebhookProcessor",
    "ProcessorFactory",
    "parse_webhook",
]
