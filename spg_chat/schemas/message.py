"""Pydantic schemas for chat messages, server records and client-local entries."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from spg_chat.constants.chat import DeliveryStatus, MediaKind, SenderRole
from spg_chat.schemas.common import UtcDateTime


class MessageBase(BaseModel):
    """Base message fields. Text and media are independent; at least one is set."""

    sender_role: SenderRole
    sender_name: Optional[str] = Field(default=None, max_length=256)
    text: Optional[str] = None
    media_url: Optional[str] = None
    media_kind: Optional[MediaKind] = None

    @model_validator(mode="after")
    def check_payload(self):
        if self.text is not None and not self.text.strip():
            self.text = None
        if (self.media_url is None) != (self.media_kind is None):
            raise ValueError("media_url and media_kind must be set together")
        if self.text is None and self.media_url is None:
            raise ValueError("A message needs text or a media attachment")
        return self


class MessageCreate(MessageBase):
    """Schema for creating a message in a conversation."""

    pass


class MessageRead(BaseModel):
    """Server-confirmed message as returned by the API."""

    id: UUID
    conversation_id: UUID
    ref_code: str
    sender_role: SenderRole
    sender_name: Optional[str] = None
    text: Optional[str] = None
    media_url: Optional[str] = None
    media_kind: Optional[MediaKind] = None
    created_at: UtcDateTime
    is_read: bool = False

    model_config = {"from_attributes": True}


class LocalMessage(BaseModel):
    """
    A message as held by the chat client.

    Server records carry their durable id and no status. Locally authored
    entries carry a temp_id from the moment they are composed; status tracks
    delivery until the server copy takes their place.
    """

    id: str
    conversation_id: str
    ref_code: str
    sender_role: SenderRole
    sender_name: Optional[str] = None
    text: Optional[str] = None
    media_url: Optional[str] = None
    media_kind: Optional[MediaKind] = None
    created_at: UtcDateTime
    is_read: bool = False
    temp_id: Optional[str] = None
    status: Optional[DeliveryStatus] = None

    model_config = {"frozen": True}

    @classmethod
    def from_record(cls, record: MessageRead) -> "LocalMessage":
        return cls(
            id=str(record.id),
            conversation_id=str(record.conversation_id),
            ref_code=record.ref_code,
            sender_role=record.sender_role,
            sender_name=record.sender_name,
            text=record.text,
            media_url=record.media_url,
            media_kind=record.media_kind,
            created_at=record.created_at,
            is_read=record.is_read,
        )

    @property
    def is_pending(self) -> bool:
        """Sending or failed: not represented on the server as far as we know."""
        return self.status in (DeliveryStatus.SENDING, DeliveryStatus.FAILED)

    @property
    def is_confirmed(self) -> bool:
        return not self.is_pending


class MessageDraft(BaseModel):
    """What the compose box hands to the reconciler before submission."""

    sender_role: SenderRole
    sender_name: Optional[str] = None
    text: Optional[str] = None
    media_url: Optional[str] = None
    media_kind: Optional[MediaKind] = None

    def to_create(self) -> MessageCreate:
        return MessageCreate(**self.model_dump())
