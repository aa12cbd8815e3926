"""Campaign state machine, fan-out and per-recipient interpolation."""

from .orchestrator import CampaignOrchestrator
from .template import build_contact_context, extract_variables, interpolate

__all__ = [
    "CampaignOrchestrator",
    "build_contact_context",
    "extract_variables",
    "interpolate",
]
