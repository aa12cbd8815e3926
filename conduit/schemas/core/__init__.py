"""Core schemas shared by every provider."""

from .events import (
    CanonicalEvent,
    ConnectionStateEvent,
    DeliveryStatusEvent,
    InboundMessageEvent,
    UnhandledEvent,
)

__all__ = [
    "CanonicalEvent",
    "ConnectionStateEvent",
    "DeliveryStatusEvent",
    "InboundMessageEvent",
    "UnhandledEvent",
]
