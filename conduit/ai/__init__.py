"""AI enrichment: OpenAI provider, deterministic fallbacks and the job service."""

from .enrichment import AIEnrichmentService
from .fallbacks import (
    FALLBACK_SUGGESTIONS,
    keyword_sentiment,
    normalize_sentiment,
    normalize_suggestions,
)
from .openai_provider import OpenAIModelProvider

__all__ = [
    "AIEnrichmentService",
    "FALLBACK_SUGGESTIONS",
    "OpenAIModelProvider",
    "keyword_sentiment",
    "normalize_sentiment",
    "normalize_suggestions",
]
