"""Conversation CRUD, lookup by reference code and the staff inbox query."""

from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session as DBSession

from spg_chat.constants.chat import ConversationStatus
from spg_chat.core.message_feed import MessageFeed
from spg_chat.models.conversation import Conversation
from spg_chat.schemas.conversation import (
    ConversationCreate,
    ConversationRead,
    ConversationUpdate,
)
from spg_chat.services.exceptions import DuplicateRefCodeError
from spg_chat.utils.ref_code import normalize_ref_code

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(self, db: DBSession, feed: Optional[MessageFeed] = None) -> None:
        self.db = db
        self.feed = feed

    def create_conversation(self, data: ConversationCreate) -> Conversation:
        """Insert a new open conversation. A taken ref code raises DuplicateRefCodeError."""
        conversation = Conversation(
            status=ConversationStatus.OPEN.value,
            **data.model_dump(),
        )
        self.db.add(conversation)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateRefCodeError(
                f"Conversation with ref code {data.ref_code} already exists"
            ) from e
        self.db.refresh(conversation)
        logger.info("Created conversation %s (%s)", conversation.ref_code, conversation.id)
        return conversation

    def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        return (
            self.db.query(Conversation)
            .filter(Conversation.id == conversation_id)
            .first()
        )

    def get_conversation_by_ref_code(self, ref_code: str) -> Optional[Conversation]:
        code = normalize_ref_code(ref_code)
        if not code:
            return None
        return (
            self.db.query(Conversation).filter(Conversation.ref_code == code).first()
        )

    def update_conversation(
        self, conversation_id: UUID, data: ConversationUpdate
    ) -> Optional[Conversation]:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return None
        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("status") is None:
            update_data.pop("status", None)
        else:
            update_data["status"] = ConversationStatus(update_data["status"]).value
        status_changed = (
            "status" in update_data and update_data["status"] != conversation.status
        )
        for key, value in update_data.items():
            setattr(conversation, key, value)
        self.db.commit()
        self.db.refresh(conversation)
        if status_changed:
            logger.info(
                "Conversation %s is now %s", conversation.ref_code, conversation.status
            )
            if self.feed is not None:
                self.feed.publish_conversation(
                    ConversationRead.model_validate(conversation)
                )
        return conversation

    def search_query(
        self,
        status: Optional[ConversationStatus] = None,
        q: Optional[str] = None,
    ) -> Query[Conversation]:
        """Staff inbox: most recently active first, optional status and text filter."""
        query = self.db.query(Conversation)
        if status is not None:
            query = query.filter(Conversation.status == ConversationStatus(status).value)
        if q and q.strip():
            term = f"%{q.strip()}%"
            query = query.filter(
                or_(
                    Conversation.ref_code.ilike(term),
                    Conversation.customer_name.ilike(term),
                    Conversation.customer_phone.ilike(term),
                )
            )
        return query.order_by(
            Conversation.last_message_at.is_(None),
            Conversation.last_message_at.desc(),
            Conversation.created_at.desc(),
        )

    def search(
        self,
        status: Optional[ConversationStatus] = None,
        q: Optional[str] = None,
        limit: int = 100,
    ) -> List[Conversation]:
        return self.search_query(status=status, q=q).limit(limit).all()
