"""
Shared enums for the conversation model.

Every provider vocabulary is normalized into these types at the adapter
boundary, so nothing past the processors deals with provider strings.
"""

from enum import Enum


class ProviderType(str, Enum):
    """Provider adapters that can produce canonical events."""

    WHATSAPP_OFFICIAL = "whatsapp_official"  # WhatsApp Cloud API
    WHATSAPP_UNOFFICIAL = "whatsapp_unofficial"  # Evolution bridge
    INSTAGRAM = "instagram"
    MESSENGER = "messenger"


class ChannelType(str, Enum):
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    MESSENGER = "messenger"
    EMAIL = "email"


class ChannelProvider(str, Enum):
    """Concrete provider variant behind a channel type."""

    EVOLUTION = "evolution"
    DIALOG360 = "360dialog"
    CLOUD = "cloud"


class MessageType(str, Enum):
    """Universal message types across all providers."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACT = "contact"
    STICKER = "sticker"
    TEMPLATE = "template"


MEDIA_MESSAGE_TYPES = frozenset(
    {
        MessageType.IMAGE,
        MessageType.VIDEO,
        MessageType.AUDIO,
        MessageType.DOCUMENT,
        MessageType.STICKER,
    }
)


class MessageStatus(str, Enum):
    """Delivery status of a message. Moves forward only."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# Rank used for forward-only transitions; FAILED is handled separately.
MESSAGE_STATUS_RANK: dict[MessageStatus, int] = {
    MessageStatus.PENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SenderType(str, Enum):
    USER = "user"  # agent
    CONTACT = "contact"
    BOT = "bot"


class ConversationStatus(str, Enum):
    OPEN = "open"
    PENDING = "pending"
    RESOLVED = "resolved"
    SNOOZED = "snoozed"
    SPAM = "spam"


class CampaignType(str, Enum):
    BROADCAST = "broadcast"
    DRIP = "drip"
    TRIGGER = "trigger"


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RecipientStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class ConnectionState(str, Enum):
    """Channel connection lifecycle reported by the bridge."""

    OPEN = "open"
    CLOSE = "close"
    CONNECTING = "connecting"
    QRCODE = "qrcode"
    LOGGED_OUT = "logged_out"
    DELETED = "deleted"


class BroadcastEvent(str, Enum):
    """Event types published to real-time subscribers."""

    NEW_MESSAGE = "message:new"
    MESSAGE_UPDATE = "message:update"
    NEW_CONVERSATION = "conversation:new"
    CONVERSATION_UPDATE = "conversation:update"
    CHANNEL_UPDATE = "channel:update"
    CHANNEL_QRCODE = "channel:qrcode"
    CAMPAIGN_UPDATE = "campaign:update"
    AI_TRANSCRIPTION = "ai.transcription"
    AI_SUGGESTIONS = "ai.suggestions"
    AI_SENTIMENT = "ai.sentiment"
    AI_CHATBOT = "ai.chatbot"


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
