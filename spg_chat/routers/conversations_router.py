"""Conversations API: create, look up by reference, staff inbox, status, messages."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from spg_chat.constants.chat import ConversationStatus, SenderRole
from spg_chat.core.message_feed import MessageFeed
from spg_chat.db import get_db
from spg_chat.models.conversation import Conversation
from spg_chat.routers.utils.dependencies import get_conversation_by_id, get_feed
from spg_chat.schemas.conversation import (
    ConversationCreate,
    ConversationRead,
    ConversationUpdate,
)
from spg_chat.schemas.message import MessageCreate, MessageRead
from spg_chat.services.conversation_service import ConversationService
from spg_chat.services.exceptions import (
    ConversationClosedError,
    DuplicateRefCodeError,
    UnknownConversationError,
)
from spg_chat.services.message_service import MessageService

logger = logging.getLogger(__name__)

conversations_router = APIRouter(prefix="/conversations", tags=["Conversation"])


@conversations_router.post("", response_model=ConversationRead, status_code=201)
def create_conversation(
    data: ConversationCreate,
    db: Session = Depends(get_db),
    feed: MessageFeed = Depends(get_feed),
) -> ConversationRead:
    """Open a new conversation under a client-minted reference code."""
    svc = ConversationService(db, feed)
    try:
        conversation = svc.create_conversation(data)
    except DuplicateRefCodeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ConversationRead.model_validate(conversation)


@conversations_router.get("", response_model=Page[ConversationRead])
def list_conversations(
    params: Params = Depends(),
    status: Optional[ConversationStatus] = Query(None),
    q: Optional[str] = Query(None, max_length=64),
    db: Session = Depends(get_db),
) -> Page[ConversationRead]:
    """Staff inbox, most recently active first."""
    query = ConversationService(db).search_query(status=status, q=q)
    return paginate(query, params=params)


@conversations_router.get("/by-ref/{ref_code}", response_model=ConversationRead)
def get_conversation_by_ref(
    ref_code: str,
    db: Session = Depends(get_db),
) -> ConversationRead:
    """Resume lookup. The code is matched case-insensitively."""
    conversation = ConversationService(db).get_conversation_by_ref_code(ref_code)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationRead.model_validate(conversation)


@conversations_router.get("/{conversation_id}", response_model=ConversationRead)
def get_conversation(
    conversation: Conversation = Depends(get_conversation_by_id),
) -> ConversationRead:
    return ConversationRead.model_validate(conversation)


@conversations_router.patch("/{conversation_id}", response_model=ConversationRead)
def update_conversation(
    data: ConversationUpdate,
    conversation: Conversation = Depends(get_conversation_by_id),
    db: Session = Depends(get_db),
    feed: MessageFeed = Depends(get_feed),
) -> ConversationRead:
    """Close, reopen or annotate a conversation (staff)."""
    updated = ConversationService(db, feed).update_conversation(conversation.id, data)
    if updated is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationRead.model_validate(updated)


@conversations_router.get(
    "/{conversation_id}/messages", response_model=List[MessageRead]
)
def list_messages(
    conversation: Conversation = Depends(get_conversation_by_id),
    db: Session = Depends(get_db),
) -> List[MessageRead]:
    """Full message list, oldest first. Polling clients fetch this wholesale."""
    messages = MessageService(db).get_messages(conversation.id)
    return [MessageRead.model_validate(m) for m in messages]


@conversations_router.post(
    "/{conversation_id}/messages", response_model=MessageRead, status_code=201
)
def create_message(
    data: MessageCreate,
    conversation: Conversation = Depends(get_conversation_by_id),
    db: Session = Depends(get_db),
    feed: MessageFeed = Depends(get_feed),
) -> MessageRead:
    svc = MessageService(db, feed)
    try:
        message = svc.create_message(conversation.id, data)
    except UnknownConversationError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except ConversationClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return MessageRead.model_validate(message)


@conversations_router.post(
    "/{conversation_id}/messages/read", response_model=dict[str, Any]
)
def mark_messages_read(
    reader: SenderRole = Query(...),
    conversation: Conversation = Depends(get_conversation_by_id),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Mark the other party's messages as read by `reader`."""
    updated = MessageService(db).mark_read(conversation.id, reader)
    return {"data": {"updated": updated}}
