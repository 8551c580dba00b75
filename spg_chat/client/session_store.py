"""
Session Store: the chat session that survives reloads.

Passed explicitly from the application root to whoever needs it; readers
take `state`, writers go through the methods below, and observers register
with `subscribe`.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, List

from pydantic import ValidationError

from spg_chat.client.local_store import KeyValueStore
from spg_chat.constants.chat import SESSION_STORAGE_KEY
from spg_chat.schemas.chat_state import ChatState

logger = logging.getLogger(__name__)

StateListener = Callable[[ChatState], None]


class SessionStore:
    def __init__(self, kv: KeyValueStore, key: str = SESSION_STORAGE_KEY) -> None:
        self._kv = kv
        self._key = key
        self._listeners: List[StateListener] = []
        self._state = self._load()

    @property
    def state(self) -> ChatState:
        return self._state

    def set_session(self, ref_code: str, conversation_id: str) -> ChatState:
        if not ref_code or not conversation_id:
            raise ValueError("ref_code and conversation_id are both required")
        return self._update(ref_code=ref_code, conversation_id=str(conversation_id))

    def clear_session(self) -> ChatState:
        return self._update(ref_code=None, conversation_id=None)

    def toggle_notifications(self) -> ChatState:
        return self._update(notifications_enabled=not self._state.notifications_enabled)

    def set_notifications(self, enabled: bool) -> ChatState:
        return self._update(notifications_enabled=enabled)

    def set_open(self, is_open: bool) -> ChatState:
        return self._update(is_open=is_open)

    def toggle_open(self) -> ChatState:
        return self._update(is_open=not self._state.is_open)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> ChatState:
        new_state = ChatState.model_validate({**self._state.model_dump(), **changes})
        self._kv.set(self._key, new_state.model_dump_json())
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Session listener failed")
        return new_state

    def _load(self) -> ChatState:
        raw = self._kv.get(self._key)
        if not raw:
            return ChatState()
        try:
            return ChatState.model_validate_json(raw)
        except ValidationError:
            pass
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.warning("Discarding unreadable chat session state")
            return ChatState()
        # Keep the preferences, drop a half-set session
        logger.warning("Chat session state is inconsistent, clearing the session")
        return ChatState(
            is_open=data.get("is_open") is True,
            notifications_enabled=data.get("notifications_enabled") is not False,
        )
