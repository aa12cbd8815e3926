"""
Provider delivery status vocabulary to the canonical status enum.

Handles the bridge's numeric codes (0-5) and their names (``SERVER_ACK``,
``DELIVERY_ACK``...), Cloud API strings (``sent``, ``delivered``...) and the
Graph receipts. Anything unrecognized counts as ``sent``: the provider has the
message, which is all an unknown receipt tells us.
"""

from conduit.schemas.core.types import MessageStatus

_NUMERIC_STATUS: dict[int, MessageStatus] = {
    0: MessageStatus.FAILED,  # ERROR
    1: MessageStatus.PENDING,
    2: MessageStatus.SENT,  # SERVER_ACK
    3: MessageStatus.DELIVERED,  # DELIVERY_ACK
    4: MessageStatus.READ,
    5: MessageStatus.READ,  # PLAYED
}

_NAMED_STATUS: dict[str, MessageStatus] = {
    "ERROR": MessageStatus.FAILED,
    "FAILED": MessageStatus.FAILED,
    "PENDING": MessageStatus.PENDING,
    "SERVER_ACK": MessageStatus.SENT,
    "SENT": MessageStatus.SENT,
    "DELIVERY_ACK": MessageStatus.DELIVERED,
    "DELIVERED": MessageStatus.DELIVERED,
    "READ": MessageStatus.READ,
    "PLAYED": MessageStatus.READ,
}


def map_provider_status(code: str | int | None) -> MessageStatus:
    """
    Normalize a provider status code.

    Args:
        code: Raw status from the provider webhook

    Returns:
        Canonical status; ``SENT`` for unknown codes
    """
    if code is None:
        return MessageStatus.SENT

    if isinstance(code, bool):
        return MessageStatus.SENT

    if isinstance(code, int):
        return _NUMERIC_STATUS.get(code, MessageStatus.SENT)

    normalized = str(code).strip()
    if normalized.isdigit():
        return _NUMERIC_STATUS.get(int(normalized), MessageStatus.SENT)

    return _NAMED_STATUS.get(normalized.upper(), MessageStatus.SENT)
