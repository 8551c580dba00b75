"""Conversation model: one row per support chat, addressed by its reference code."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Integer, String, Uuid
from sqlalchemy.orm import relationship

from spg_chat.constants.chat import ConversationStatus
from spg_chat.db import Base
from spg_chat.models.mixins import TimestampMixin


class Conversation(Base, TimestampMixin):
    """A customer support conversation. The ref code is the only identity a customer keeps."""

    __tablename__ = "conversations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ref_code = Column(String(16), unique=True, nullable=False, index=True)
    customer_name = Column(String(256), nullable=True)
    customer_phone = Column(String(32), nullable=True)
    status = Column(
        String(16), nullable=False, default=ConversationStatus.OPEN.value
    )  # 'open' | 'closed'
    last_message_at = Column(DateTime, nullable=True, index=True)
    last_message_preview = Column(String(256), nullable=True)
    message_count = Column(Integer, nullable=False, default=0)

    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="[ChatMessage.created_at, ChatMessage.seq]",
    )

    @property
    def is_closed(self) -> bool:
        return self.status == ConversationStatus.CLOSED.value
