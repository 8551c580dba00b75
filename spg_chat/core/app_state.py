from __future__ import annotations

from typing import Optional

from spg_chat.core.message_feed import MessageFeed
from spg_chat.storage.object_storage import ObjectStorage, build_object_storage


class AppState:
    def __init__(self) -> None:
        self.feed = MessageFeed()
        self._storage: Optional[ObjectStorage] = None

    @property
    def storage(self) -> ObjectStorage:
        if self._storage is None:
            self._storage = build_object_storage()
        return self._storage

    @storage.setter
    def storage(self, value: Optional[ObjectStorage]) -> None:
        self._storage = value


state = AppState()
