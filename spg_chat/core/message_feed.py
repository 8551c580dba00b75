"""
In-process change feed for chat messages and conversation status.

Backs push-mode delivery: the message service publishes after each commit,
subscribers registered for that conversation are called synchronously in
the publisher's thread. A failing subscriber never affects the publisher.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from spg_chat.schemas.conversation import ConversationRead
from spg_chat.schemas.message import MessageRead

logger = logging.getLogger(__name__)

MessageListener = Callable[[MessageRead], None]
ConversationListener = Callable[[ConversationRead], None]


@dataclass
class Subscription:
    id: int
    conversation_id: str
    on_message: MessageListener
    on_conversation: Optional[ConversationListener] = None
    _feed: Optional["MessageFeed"] = field(default=None, repr=False)

    def unsubscribe(self) -> None:
        if self._feed is not None:
            self._feed.unsubscribe(self)
            self._feed = None


class MessageFeed:
    def __init__(self) -> None:
        self._subscriptions: Dict[str, Dict[int, Subscription]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(
        self,
        conversation_id: str,
        on_message: MessageListener,
        on_conversation: Optional[ConversationListener] = None,
    ) -> Subscription:
        sub = Subscription(
            id=next(self._ids),
            conversation_id=str(conversation_id),
            on_message=on_message,
            on_conversation=on_conversation,
            _feed=self,
        )
        with self._lock:
            self._subscriptions.setdefault(sub.conversation_id, {})[sub.id] = sub
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(sub.conversation_id)
            if not subs:
                return
            subs.pop(sub.id, None)
            if not subs:
                del self._subscriptions[sub.conversation_id]

    def subscriber_count(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(str(conversation_id), {}))

    def publish_message(self, message: MessageRead) -> None:
        for sub in self._snapshot(str(message.conversation_id)):
            try:
                sub.on_message(message)
            except Exception:
                logger.exception(
                    "Feed subscriber %s failed on message %s", sub.id, message.id
                )

    def publish_conversation(self, conversation: ConversationRead) -> None:
        for sub in self._snapshot(str(conversation.id)):
            if sub.on_conversation is None:
                continue
            try:
                sub.on_conversation(conversation)
            except Exception:
                logger.exception(
                    "Feed subscriber %s failed on conversation %s",
                    sub.id,
                    conversation.id,
                )

    def _snapshot(self, conversation_id: str) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions.get(conversation_id, {}).values())
