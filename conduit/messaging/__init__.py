"""Outbound delivery: provider HTTP clients and the dispatcher."""

from .dispatcher import DeliveryResult, OutboundDispatcher, is_transient
from .evolution_client import EvolutionClient
from .meta_client import GraphApiClient

__all__ = [
    "DeliveryResult",
    "EvolutionClient",
    "GraphApiClient",
    "OutboundDispatcher",
    "is_transient",
]
