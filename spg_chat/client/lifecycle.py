"""
Conversation Lifecycle Controller: start, resume, close and reopen.

Owns the transitions of the Session Store. A failed operation never
changes session state.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from spg_chat.client.backend import ChatBackend
from spg_chat.client.errors import (
    ChatBackendError,
    ChatPermissionError,
    ConversationNotFoundError,
    CreateFailedError,
    FetchFailedError,
    RefCodeConflictError,
)
from spg_chat.client.history_ledger import HistoryLedger
from spg_chat.client.session_store import SessionStore
from spg_chat.config import Settings, get_settings
from spg_chat.constants.chat import ConversationStatus, SenderRole
from spg_chat.schemas.chat_state import ChatState, HistoryEntry
from spg_chat.schemas.conversation import ConversationRead
from spg_chat.utils.ref_code import generate_ref_code, is_valid_ref_code, normalize_ref_code

logger = logging.getLogger(__name__)


class ConversationController:
    def __init__(
        self,
        backend: ChatBackend,
        session_store: SessionStore,
        history: HistoryLedger,
        role: SenderRole = SenderRole.CUSTOMER,
        settings: Optional[Settings] = None,
    ) -> None:
        self.backend = backend
        self.session_store = session_store
        self.history = history
        self.role = SenderRole(role)
        self.settings = settings or get_settings()

    @property
    def is_staff(self) -> bool:
        return self.role == SenderRole.STAFF

    async def start_new(self) -> ConversationRead:
        """
        Create a conversation under a fresh reference code and make it the session.

        A code already taken on the server is replaced by a new one, up to
        ``ref_code_max_attempts`` tries.
        """
        attempts = max(1, self.settings.ref_code_max_attempts)
        for attempt in range(1, attempts + 1):
            ref_code = generate_ref_code(
                self.settings.ref_code_prefix, self.settings.ref_code_length
            )
            try:
                conversation = await self.backend.create_conversation(ref_code)
            except RefCodeConflictError:
                logger.warning(
                    "Reference code %s is taken (attempt %d/%d)", ref_code, attempt, attempts
                )
                continue
            except ChatBackendError as e:
                logger.warning("Failed to start conversation: %s", e)
                raise CreateFailedError("Failed to start chat. Please try again.") from e
            self._enter(conversation)
            logger.info("Started conversation %s", conversation.ref_code)
            return conversation
        raise CreateFailedError("Failed to start chat. Please try again.")

    async def resume_by_code(self, raw_code: str) -> ConversationRead:
        code = normalize_ref_code(raw_code)
        if not is_valid_ref_code(
            code, self.settings.ref_code_prefix, self.settings.ref_code_length
        ):
            raise ConversationNotFoundError(f"No conversation found with reference {code or raw_code!r}")
        try:
            conversation = await self.backend.get_conversation_by_ref_code(code)
        except ChatBackendError as e:
            logger.warning("Lookup of %s failed: %s", code, e)
            raise FetchFailedError("Could not look up the conversation. Please try again.") from e
        if conversation is None:
            raise ConversationNotFoundError(f"No conversation found with reference {code}")
        self._enter(conversation)
        return conversation

    def resume_from_history(self, entry: HistoryEntry) -> ChatState:
        """Trust the ledger entry; a stale id shows up later as an empty or failing fetch."""
        state = self.session_store.set_session(entry.ref_code, entry.conversation_id)
        self.history.upsert(entry)
        return state

    def clear_session(self) -> ChatState:
        return self.session_store.clear_session()

    async def close(self, conversation_id: str) -> ConversationRead:
        return await self._set_status(conversation_id, ConversationStatus.CLOSED)

    async def reopen(self, conversation_id: str) -> ConversationRead:
        return await self._set_status(conversation_id, ConversationStatus.OPEN)

    async def list_conversations(
        self, status: Optional[ConversationStatus] = None, q: Optional[str] = None
    ) -> List[ConversationRead]:
        self._require_staff("list conversations")
        try:
            return await self.backend.list_conversations(status=status, q=q)
        except ChatBackendError as e:
            raise FetchFailedError(f"Could not load conversations: {e}") from e

    async def _set_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> ConversationRead:
        self._require_staff(f"mark a conversation {status}")
        conversation = await self.backend.update_conversation_status(conversation_id, status)
        logger.info("Conversation %s marked %s", conversation.ref_code, conversation.status)
        return conversation

    def _require_staff(self, action: str) -> None:
        if not self.is_staff:
            raise ChatPermissionError(f"Only staff can {action}")

    def _enter(self, conversation: ConversationRead) -> None:
        # The staff console has no device session to persist
        if self.is_staff:
            return
        self.session_store.set_session(conversation.ref_code, str(conversation.id))
        self.history.record_message(
            conversation.ref_code,
            str(conversation.id),
            None,
            status=conversation.status,
        )
