"""
History Ledger: past conversations this device took part in.

Independent of authentication and of the Session Store; feeds the
"resume previous conversation" picker. Most recently active first, one
entry per reference code, capped in size.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from spg_chat.client.local_store import KeyValueStore
from spg_chat.config import get_settings
from spg_chat.constants.chat import HISTORY_STORAGE_KEY, ConversationStatus
from spg_chat.schemas.chat_state import HistoryEntry
from spg_chat.schemas.message import LocalMessage
from spg_chat.utils.preview import build_preview

logger = logging.getLogger(__name__)

_entries_adapter = TypeAdapter(List[HistoryEntry])


class HistoryLedger:
    def __init__(
        self,
        kv: KeyValueStore,
        max_entries: Optional[int] = None,
        key: str = HISTORY_STORAGE_KEY,
    ) -> None:
        if max_entries is None:
            max_entries = get_settings().history_max_entries
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._kv = kv
        self._key = key
        self.max_entries = max_entries

    def entries(self) -> List[HistoryEntry]:
        raw = self._kv.get(self._key)
        if not raw:
            return []
        try:
            return _entries_adapter.validate_json(raw)[: self.max_entries]
        except ValidationError:
            logger.warning("Discarding unreadable chat history")
            return []

    def get(self, ref_code: str) -> Optional[HistoryEntry]:
        return next((e for e in self.entries() if e.ref_code == ref_code), None)

    def upsert(self, entry: HistoryEntry) -> List[HistoryEntry]:
        """Replace any entry with the same ref code and put this one first."""
        entries = [e for e in self.entries() if e.ref_code != entry.ref_code]
        entries.insert(0, entry)
        return self._save(entries[: self.max_entries])

    def record_message(
        self,
        ref_code: str,
        conversation_id: str,
        message: Optional[LocalMessage],
        status: Optional[ConversationStatus] = None,
    ) -> List[HistoryEntry]:
        previous = self.get(ref_code)
        if status is None and previous is not None:
            status = previous.status
        if message is None:
            entry = HistoryEntry(
                ref_code=ref_code,
                conversation_id=conversation_id,
                last_message_preview=previous.last_message_preview if previous else None,
                last_message_at=previous.last_message_at if previous else None,
                status=status,
            )
        else:
            entry = HistoryEntry(
                ref_code=ref_code,
                conversation_id=conversation_id,
                last_message_preview=build_preview(message.text, message.media_kind),
                last_message_at=message.created_at,
                status=status,
            )
        return self.upsert(entry)

    def remove(self, ref_code: str) -> List[HistoryEntry]:
        return self._save([e for e in self.entries() if e.ref_code != ref_code])

    def clear(self) -> None:
        self._kv.delete(self._key)

    def _save(self, entries: List[HistoryEntry]) -> List[HistoryEntry]:
        payload = json.dumps([e.model_dump(mode="json") for e in entries])
        self._kv.set(self._key, payload)
        return entries
