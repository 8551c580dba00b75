from uuid import UUID

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from spg_chat.core.app_state import state
from spg_chat.core.message_feed import MessageFeed
from spg_chat.db import get_db
from spg_chat.models.conversation import Conversation
from spg_chat.services.conversation_service import ConversationService
from spg_chat.storage.object_storage import ObjectStorage


def get_feed() -> MessageFeed:
    return state.feed


def get_object_storage() -> ObjectStorage:
    return state.storage


def get_conversation_by_id(
    conversation_id: UUID,
    db: Session = Depends(get_db),
) -> Conversation:
    """FastAPI dependency to get a conversation by ID."""
    conversation = ConversationService(db).get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation
