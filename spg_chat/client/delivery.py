"""
Delivery channels: how new messages for the open conversation reach the client.

Two strategies sit behind one contract. Polling re-fetches the full list on
an interval; push takes an initial snapshot and then receives inserts from
the backend's change feed. Both deliver into a DeliverySink and both ignore
anything that arrives after they were closed or re-opened on another
conversation.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

from spg_chat.client.backend import ChatBackend
from spg_chat.client.errors import (
    ChatBackendError,
    ClosedConversationError,
    FetchFailedError,
    SendFailedError,
)
from spg_chat.config import Settings, get_settings
from spg_chat.constants.chat import DeliveryMode
from spg_chat.core.message_feed import Subscription
from spg_chat.infra.logging_config import get_logger
from spg_chat.schemas.conversation import ConversationRead
from spg_chat.schemas.message import MessageCreate, MessageRead

logger = get_logger()


@dataclass(frozen=True)
class ChannelMeta:
    label: str
    docs: Optional[str] = None


@dataclass(frozen=True)
class ChannelCapabilities:
    supports_polling: bool = False
    supports_push: bool = False


@dataclass
class DeliverySink:
    on_snapshot: Callable[[Sequence[MessageRead]], None]
    on_insert: Callable[[MessageRead], None]
    on_conversation: Optional[Callable[[ConversationRead], None]] = None
    on_error: Optional[Callable[[FetchFailedError], None]] = None

    def report(self, error: FetchFailedError) -> None:
        if self.on_error is not None:
            self.on_error(error)


class DeliveryChannel(Protocol):
    id: str
    meta: ChannelMeta
    capabilities: ChannelCapabilities

    async def open(self, conversation_id: str, sink: DeliverySink) -> None: ...
    async def close(self) -> None: ...

    async def fetch(self, conversation_id: str) -> List[MessageRead]: ...
    async def submit(self, conversation_id: str, payload: MessageCreate) -> MessageRead: ...


class _BaseChannel:
    def __init__(self, backend: ChatBackend) -> None:
        self.backend = backend
        self._conversation_id: Optional[str] = None
        self._sink: Optional[DeliverySink] = None
        # Bumped on every open and close; work started under an older value is dropped
        self._generation = 0

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._sink is not None

    async def fetch(self, conversation_id: str) -> List[MessageRead]:
        try:
            return await self.backend.list_messages(conversation_id)
        except ChatBackendError as e:
            raise FetchFailedError(f"Could not load messages: {e}") from e

    async def submit(self, conversation_id: str, payload: MessageCreate) -> MessageRead:
        try:
            return await self.backend.create_message(conversation_id, payload)
        except ClosedConversationError:
            raise
        except ChatBackendError as e:
            raise SendFailedError(f"Could not send message: {e}") from e

    async def _deliver_snapshot(self, generation: int) -> bool:
        conversation_id = self._conversation_id
        try:
            records = await self.fetch(conversation_id)
        except FetchFailedError as e:
            logger.warning("Fetch for conversation %s failed: %s", conversation_id, e)
            if self._is_current(generation):
                self._sink.report(e)
            return False
        if not self._is_current(generation):
            logger.debug("Dropping stale snapshot for %s", conversation_id)
            return False
        self._sink.on_snapshot(records)
        return True


class PollingChannel(_BaseChannel):
    id = "poll"
    meta = ChannelMeta(label="Interval polling")
    capabilities = ChannelCapabilities(supports_polling=True)

    def __init__(self, backend: ChatBackend, interval: Optional[float] = None) -> None:
        super().__init__(backend)
        self.interval = interval if interval is not None else get_settings().poll_interval_seconds
        self._task: Optional[asyncio.Task[None]] = None

    async def open(self, conversation_id: str, sink: DeliverySink) -> None:
        await self.close()
        self._generation += 1
        self._conversation_id = str(conversation_id)
        self._sink = sink
        generation = self._generation
        await self._tick(generation)
        if self._is_current(generation):
            self._task = asyncio.create_task(self._run(generation))

    async def close(self) -> None:
        self._generation += 1
        self._sink = None
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def poll_now(self) -> None:
        """Run one tick right away, outside the interval."""
        if self._sink is not None:
            await self._tick(self._generation)

    async def _run(self, generation: int) -> None:
        while self._is_current(generation):
            await asyncio.sleep(self.interval)
            try:
                await self._tick(generation)
            except Exception:
                logger.exception("Poll tick for %s failed", self._conversation_id)

    async def _tick(self, generation: int) -> None:
        if not await self._deliver_snapshot(generation):
            return
        try:
            conversation = await self.backend.get_conversation(self._conversation_id)
        except ChatBackendError as e:
            logger.warning("Status refresh for %s failed: %s", self._conversation_id, e)
            return
        if conversation is None or not self._is_current(generation):
            return
        if self._sink.on_conversation is not None:
            self._sink.on_conversation(conversation)


class PushChannel(_BaseChannel):
    id = "push"
    meta = ChannelMeta(label="Change feed subscription")
    capabilities = ChannelCapabilities(supports_push=True)

    def __init__(
        self, backend: ChatBackend, resubscribe_interval: Optional[float] = None
    ) -> None:
        super().__init__(backend)
        self.resubscribe_interval = (
            resubscribe_interval
            if resubscribe_interval is not None
            else get_settings().push_resubscribe_seconds
        )
        self._subscription: Optional[Subscription] = None
        self._retry_task: Optional[asyncio.Task[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # Inserts that arrive while the initial snapshot is in flight; None when not buffering
        self._held: Optional[List[MessageRead]] = None

    async def open(self, conversation_id: str, sink: DeliverySink) -> None:
        await self.close()
        self._generation += 1
        self._conversation_id = str(conversation_id)
        self._sink = sink
        self._loop = asyncio.get_running_loop()
        generation = self._generation
        # Listen before fetching so nothing committed during the fetch slips between the two
        self._held = []
        subscribed = self._subscribe(generation)
        await self._snapshot_then_release(generation)
        if self._is_current(generation) and not subscribed:
            self._retry_task = asyncio.create_task(self._resubscribe_later(generation))

    async def close(self) -> None:
        self._generation += 1
        self._sink = None
        self._held = None
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        task, self._retry_task = self._retry_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _subscribe(self, generation: int) -> bool:
        loop = self._loop

        def on_message(record: MessageRead) -> None:
            loop.call_soon_threadsafe(self._deliver_insert, generation, record)

        def on_conversation(conversation: ConversationRead) -> None:
            loop.call_soon_threadsafe(self._deliver_conversation, generation, conversation)

        try:
            self._subscription = self.backend.subscribe_messages(
                self._conversation_id, on_message, on_conversation
            )
        except ChatBackendError as e:
            logger.warning("Subscribe for %s failed: %s", self._conversation_id, e)
            self._sink.report(FetchFailedError(f"Could not subscribe: {e}"))
            return False
        logger.debug("Subscribed to conversation %s", self._conversation_id)
        return True

    async def _resubscribe_later(self, generation: int) -> None:
        while self._is_current(generation):
            await asyncio.sleep(self.resubscribe_interval)
            if not self._is_current(generation):
                return
            self._held = []
            if self._subscribe(generation):
                # Catch up on whatever arrived while we were not listening
                await self._snapshot_then_release(generation)
                return
            self._held = None

    async def _snapshot_then_release(self, generation: int) -> None:
        """Deliver a snapshot, then the inserts held back while it was being fetched."""
        await self._deliver_snapshot(generation)
        if not self._is_current(generation):
            return
        held, self._held = self._held or [], None
        for record in held:
            self._sink.on_insert(record)

    def _deliver_insert(self, generation: int, record: MessageRead) -> None:
        if not self._is_current(generation):
            return
        if self._held is not None:
            self._held.append(record)
            return
        self._sink.on_insert(record)

    def _deliver_conversation(self, generation: int, conversation: ConversationRead) -> None:
        if self._is_current(generation) and self._sink.on_conversation is not None:
            self._sink.on_conversation(conversation)


def build_delivery_channel(
    backend: ChatBackend,
    mode: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> DeliveryChannel:
    """Pick the channel for the configured mode. Push falls back to polling."""
    settings = settings or get_settings()
    requested = DeliveryMode(mode or settings.delivery_mode)
    if requested == DeliveryMode.PUSH:
        if backend.capabilities.supports_push:
            return PushChannel(backend, settings.push_resubscribe_seconds)
        logger.info("Backend cannot push, falling back to polling")
    return PollingChannel(backend, settings.poll_interval_seconds)
