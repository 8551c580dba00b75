"""ChatMessage model: one row per customer or staff message in a conversation."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from spg_chat.db import Base
from spg_chat.models.mixins import utcnow


class ChatMessage(Base):
    """Text or media message. ref_code is denormalised for filtering by reference."""

    __tablename__ = "chat_messages"

    __table_args__ = (
        Index(
            "ix_chat_messages_conversation_created",
            "conversation_id",
            "created_at",
        ),
        Index(
            "ix_chat_messages_conversation_seq",
            "conversation_id",
            "seq",
            unique=True,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    ref_code = Column(String(16), nullable=False, index=True)
    sender_role = Column(String(16), nullable=False)  # 'customer' | 'staff'
    sender_name = Column(String(256), nullable=True)
    text = Column(Text, nullable=True)
    media_url = Column(String(1024), nullable=True)
    media_kind = Column(String(16), nullable=True)  # 'image' | 'video' | 'audio'
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    # Position within the conversation; breaks created_at ties in insertion order
    seq = Column(Integer, nullable=False, default=0)

    conversation = relationship("Conversation", back_populates="messages")
