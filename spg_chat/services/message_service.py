"""ChatMessage creation, listing and read receipts."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Query, Session as DBSession

from spg_chat.constants.chat import SenderRole
from spg_chat.core.message_feed import MessageFeed
from spg_chat.models.conversation import Conversation
from spg_chat.models.message import ChatMessage
from spg_chat.schemas.message import MessageCreate, MessageRead
from spg_chat.services.exceptions import (
    ConversationClosedError,
    UnknownConversationError,
)
from spg_chat.utils.preview import build_preview

logger = logging.getLogger(__name__)


class MessageService:
    def __init__(self, db: DBSession, feed: Optional[MessageFeed] = None) -> None:
        self.db = db
        self.feed = feed

    def create_message(self, conversation_id: UUID, data: MessageCreate) -> ChatMessage:
        """
        Persist a message and bump the conversation's last activity.

        Customers cannot write into a closed conversation; staff can.
        The committed message is published on the change feed.
        """
        conversation = (
            self.db.query(Conversation)
            .filter(Conversation.id == conversation_id)
            .with_for_update()
            .first()
        )
        if conversation is None:
            raise UnknownConversationError(f"Conversation {conversation_id} not found")
        if conversation.is_closed and data.sender_role == SenderRole.CUSTOMER:
            raise ConversationClosedError(
                f"Conversation {conversation.ref_code} is closed"
            )

        # Row lock above keeps seq unique under concurrent writers
        conversation.message_count = (conversation.message_count or 0) + 1
        dump = data.model_dump(mode="json")
        msg = ChatMessage(
            conversation_id=conversation.id,
            ref_code=conversation.ref_code,
            created_at=datetime.now(timezone.utc),
            seq=conversation.message_count,
            **dump,
        )
        self.db.add(msg)
        conversation.last_message_at = msg.created_at
        conversation.last_message_preview = build_preview(msg.text, msg.media_kind)
        self.db.commit()
        self.db.refresh(msg)

        if self.feed is not None:
            self.feed.publish_message(MessageRead.model_validate(msg))
        return msg

    def get_messages_query(self, conversation_id: UUID) -> Query[ChatMessage]:
        return (
            self.db.query(ChatMessage)
            .filter(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.created_at, ChatMessage.seq)
        )

    def get_messages(self, conversation_id: UUID) -> List[ChatMessage]:
        return self.get_messages_query(conversation_id).all()

    def mark_read(self, conversation_id: UUID, reader_role: SenderRole) -> int:
        """Mark every message written by the other party as read. Returns the count."""
        author = SenderRole(reader_role).counterpart.value
        updated = (
            self.db.query(ChatMessage)
            .filter(
                ChatMessage.conversation_id == conversation_id,
                ChatMessage.sender_role == author,
                ChatMessage.is_read.is_(False),
            )
            .update({ChatMessage.is_read: True}, synchronize_session=False)
        )
        self.db.commit()
        return updated
