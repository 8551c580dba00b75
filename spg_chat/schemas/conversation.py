"""Pydantic schemas for Conversation."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from spg_chat.config import get_settings
from spg_chat.constants.chat import ConversationStatus
from spg_chat.schemas.common import UtcDateTime
from spg_chat.utils.ref_code import normalize_ref_code, is_valid_ref_code


class ConversationCreate(BaseModel):
    """Schema for creating a conversation. Only the ref code is required."""

    ref_code: str
    customer_name: Optional[str] = Field(default=None, max_length=256)
    customer_phone: Optional[str] = Field(default=None, max_length=32)

    @field_validator("ref_code")
    @classmethod
    def check_ref_code(cls, value: str) -> str:
        code = normalize_ref_code(value)
        settings = get_settings()
        if not is_valid_ref_code(code, settings.ref_code_prefix, settings.ref_code_length):
            raise ValueError(f"Invalid reference code: {value!r}")
        return code


class ConversationUpdate(BaseModel):
    """Schema for updating a conversation. All fields optional."""

    status: Optional[ConversationStatus] = None
    customer_name: Optional[str] = Field(default=None, max_length=256)
    customer_phone: Optional[str] = Field(default=None, max_length=32)


class ConversationRead(BaseModel):
    """Conversation for API responses and for the chat client."""

    id: UUID
    ref_code: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    status: ConversationStatus
    created_at: UtcDateTime
    updated_at: Optional[UtcDateTime] = None
    last_message_at: Optional[UtcDateTime] = None
    last_message_preview: Optional[str] = None

    model_config = {"from_attributes": True}

    @property
    def is_closed(self) -> bool:
        return self.status == ConversationStatus.CLOSED
