"""Enumerations and fixed values shared by the chat server and client."""

from enum import StrEnum


class ConversationStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class SenderRole(StrEnum):
    CUSTOMER = "customer"
    STAFF = "staff"

    @property
    def counterpart(self) -> "SenderRole":
        return SenderRole.STAFF if self is SenderRole.CUSTOMER else SenderRole.CUSTOMER


class MediaKind(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class DeliveryStatus(StrEnum):
    """Client-only delivery state of a locally authored message."""

    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class DeliveryMode(StrEnum):
    POLL = "poll"
    PUSH = "push"


REF_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
REF_CODE_PREFIX = "SPG"
REF_CODE_LENGTH = 5

MEDIA_PREVIEW_LABELS = {
    MediaKind.IMAGE: "[Image]",
    MediaKind.VIDEO: "[Video]",
    MediaKind.AUDIO: "[Voice note]",
}
PREVIEW_MAX_LENGTH = 120

SESSION_STORAGE_KEY = "spg_chat_state"
HISTORY_STORAGE_KEY = "spg_chat_history"
