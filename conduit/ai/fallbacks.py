"""
Deterministic fallbacks used when the model provider is missing or fails.

Everything here is pure and stable for a given input, so enrichment jobs
always succeed with a well-formed result.
"""

import re
import unicodedata

from conduit.schemas.core.types import SentimentLabel

FALLBACK_SUGGESTIONS = [
    "Sugestão de resposta 1",
    "Sugestão de resposta 2",
    "Sugestão de resposta 3",
]

FALLBACK_CHATBOT_REPLY = (
    "Desculpe, não consegui processar sua mensagem agora. "
    "Um atendente vai continuar a conversa em breve."
)

SUGGESTION_COUNT = 3

_POSITIVE = {
    "obrigado", "obrigada", "otimo", "excelente", "perfeito", "adorei", "gostei",
    "maravilhoso", "bom", "boa", "legal", "top", "parabens", "feliz", "resolvido",
    "thanks", "thank", "great", "excellent", "perfect", "love", "good", "awesome",
    "happy", "amazing", "nice",
}

_NEGATIVE = {
    "ruim", "pessimo", "pessima", "horrivel", "odeio", "problema", "reclamacao",
    "cancelar", "atraso", "atrasado", "demora", "insatisfeito", "raiva", "nunca",
    "bad", "terrible", "awful", "hate", "problem", "complaint", "cancel", "late",
    "angry", "worst", "refund", "broken",
}

_NEGATORS = {"nao", "not", "no", "nem", "never"}

_WORD = re.compile(r"[a-z]+")


def _normalize(text: str) -> list[str]:
    folded = unicodedata.normalize("NFKD", text.lower())
    ascii_text = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return _WORD.findall(ascii_text)


def keyword_sentiment(content: str | None) -> dict:
    """
    Keyword-count sentiment.

    A keyword directly after a negator counts for the opposite side. The score
    is the confidence of the label, always within [0, 1]; neutral text scores 0.5.
    """
    words = _normalize(content or "")
    positive = negative = 0
    for i, word in enumerate(words):
        negated = i > 0 and words[i - 1] in _NEGATORS
        if word in _POSITIVE:
            if negated:
                negative += 1
            else:
                positive += 1
        elif word in _NEGATIVE:
            if negated:
                positive += 1
            else:
                negative += 1

    total = positive + negative
    if total == 0 or positive == negative:
        return {"label": SentimentLabel.NEUTRAL.value, "score": 0.5}

    label = SentimentLabel.POSITIVE if positive > negative else SentimentLabel.NEGATIVE
    dominant = max(positive, negative)
    score = round(0.5 + 0.5 * (dominant / total) * min(total, 4) / 4, 2)
    return {"label": label.value, "score": min(max(score, 0.0), 1.0)}


def normalize_sentiment(result: object) -> dict | None:
    """Validate a provider sentiment result; None when it is unusable."""
    if not isinstance(result, dict):
        return None
    label = str(result.get("label", "")).lower()
    if label not in {s.value for s in SentimentLabel}:
        return None
    try:
        score = float(result.get("score"))
    except (TypeError, ValueError):
        return None
    if score != score:  # NaN
        return None
    return {"label": label, "score": min(max(score, 0.0), 1.0)}


def normalize_suggestions(suggestions: object) -> list[str] | None:
    """
    Exactly three non-empty strings, or None when the provider output is unusable.

    Extra suggestions are dropped; fewer than three usable ones fall back.
    """
    if not isinstance(suggestions, list):
        return None
    cleaned = [str(s).strip() for s in suggestions if isinstance(s, str) and s.strip()]
    if len(cleaned) < SUGGESTION_COUNT:
        return None
    return cleaned[:SUGGESTION_COUNT]
