"""Inbound services: channel/contact resolution, message ingest, the pipeline."""

from .channel_resolver import ChannelResolver
from .contact_resolver import ContactResolver, default_contact_name
from .inbound_pipeline import InboundPipeline, PipelineResult
from .message_ingest import MessageIngestService, refresh_campaign_stats

__all__ = [
    "ChannelResolver",
    "ContactResolver",
    "InboundPipeline",
    "MessageIngestService",
    "PipelineResult",
    "default_contact_name",
    "refresh_campaign_stats",
]
