"""Client-local state: the active chat session and the history ledger entries."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, model_validator

from spg_chat.constants.chat import ConversationStatus
from spg_chat.schemas.common import UtcDateTime


class ChatState(BaseModel):
    """
    Persisted chat widget state.

    ref_code and conversation_id are always set or cleared together.
    """

    is_open: bool = False
    ref_code: Optional[str] = None
    conversation_id: Optional[str] = None
    notifications_enabled: bool = True

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_session_pair(self):
        if (self.ref_code is None) != (self.conversation_id is None):
            raise ValueError("ref_code and conversation_id must be set together")
        return self

    @property
    def has_session(self) -> bool:
        return self.ref_code is not None


class HistoryEntry(BaseModel):
    """One past conversation in the resume picker."""

    ref_code: str
    conversation_id: str
    last_message_preview: Optional[str] = None
    last_message_at: Optional[UtcDateTime] = None
    status: Optional[ConversationStatus] = None

    model_config = {"frozen": True}
