"""
Chat view: one mounted conversation pane.

Used by the customer widget and full page as well as by the staff console.
It wires the Session Store, History Ledger, lifecycle controller,
reconciler, delivery channel and media pipeline together, and it is the
boundary where client errors stop: every ChatError becomes a Notice or a
delivery flag on the affected message.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Coroutine, List, Optional, Sequence, Set
from zoneinfo import ZoneInfo

from spg_chat.client.backend import ChatBackend, build_chat_backend
from spg_chat.client.delivery import DeliveryChannel, DeliverySink, build_delivery_channel
from spg_chat.client.errors import (
    AttachFailedError,
    ChatBackendError,
    ChatError,
    ClosedConversationError,
    FetchFailedError,
    SendFailedError,
)
from spg_chat.client.history_ledger import HistoryLedger
from spg_chat.client.lifecycle import ConversationController
from spg_chat.client.local_store import KeyValueStore, build_key_value_store
from spg_chat.client.media import (
    MediaAttachmentPipeline,
    MediaReference,
    VoiceNote,
    VoiceRecorder,
)
from spg_chat.client.notifications import LoggingNotificationCue, NotificationCue, fire_cue
from spg_chat.client.reconciler import MessageReconciler
from spg_chat.client.session_store import SessionStore
from spg_chat.config import Settings, get_settings
from spg_chat.constants.chat import ConversationStatus, MediaKind, SenderRole
from spg_chat.schemas.chat_state import HistoryEntry
from spg_chat.schemas.conversation import ConversationRead
from spg_chat.schemas.message import LocalMessage, MessageDraft

logger = logging.getLogger(__name__)

SEND_FAILED_MESSAGE = "Failed to send message. Please try again."
MEDIA_FAILED_MESSAGE = "Failed to send media. Please try again."
CLOSED_MESSAGE = "This conversation has been closed."


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    variant: str = "destructive"


@dataclass(frozen=True)
class TimelineItem:
    """Either a date divider (label set) or a message."""

    label: Optional[str] = None
    message: Optional[LocalMessage] = None

    @property
    def is_divider(self) -> bool:
        return self.message is None


def resolve_timezone(name: str) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def day_label(moment: datetime, today: datetime) -> str:
    day = moment.date()
    if day == today.date():
        return "Today"
    if day == (today - timedelta(days=1)).date():
        return "Yesterday"
    return f"{moment:%B} {moment.day}, {moment.year}"


def build_timeline(
    messages: Sequence[LocalMessage],
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> List[TimelineItem]:
    """Messages in order, with a divider before the first message of each calendar day."""
    today = (now or datetime.now(timezone.utc)).astimezone(tz)
    items: List[TimelineItem] = []
    current_day = None
    for message in messages:
        local = message.created_at.astimezone(tz)
        if local.date() != current_day:
            current_day = local.date()
            items.append(TimelineItem(label=day_label(local, today)))
        items.append(TimelineItem(message=message))
    return items


class ChatView:
    def __init__(
        self,
        backend: ChatBackend,
        session_store: SessionStore,
        history: HistoryLedger,
        role: SenderRole = SenderRole.CUSTOMER,
        channel: Optional[DeliveryChannel] = None,
        cue: Optional[NotificationCue] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.backend = backend
        self.session_store = session_store
        self.history = history
        self.role = SenderRole(role)
        self.cue = cue if cue is not None else LoggingNotificationCue()
        self.controller = ConversationController(
            backend, session_store, history, role=self.role, settings=self.settings
        )
        self.channel = channel or build_delivery_channel(backend, settings=self.settings)
        self.media = MediaAttachmentPipeline(backend, role=self.role)
        self.recorder = VoiceRecorder()
        self.sender_name = (
            self.settings.staff_display_name if self.role == SenderRole.STAFF else None
        )
        self.tz = resolve_timezone(self.settings.display_timezone)

        self.reconciler: Optional[MessageReconciler] = None
        self.status: Optional[ConversationStatus] = None
        self.conversation: Optional[ConversationRead] = None
        self.last_fetch_error: Optional[FetchFailedError] = None
        self._notices: List[Notice] = []
        self._tasks: Set[asyncio.Task[Any]] = set()

    # -- state for rendering -------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.reconciler is not None

    @property
    def conversation_id(self) -> Optional[str]:
        return self.reconciler.conversation_id if self.reconciler else None

    @property
    def ref_code(self) -> Optional[str]:
        return self.reconciler.ref_code if self.reconciler else None

    @property
    def messages(self) -> List[LocalMessage]:
        return self.reconciler.messages if self.reconciler else []

    @property
    def compose_enabled(self) -> bool:
        return self.is_active and self.status != ConversationStatus.CLOSED

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    def pop_notices(self) -> List[Notice]:
        notices, self._notices = self._notices, []
        return notices

    def timeline(self, now: Optional[datetime] = None) -> List[TimelineItem]:
        return build_timeline(self.messages, now=now, tz=self.tz)

    def toggle_notifications(self) -> bool:
        return self.session_store.toggle_notifications().notifications_enabled

    # -- lifecycle -----------------------------------------------------------

    async def restore(self) -> bool:
        """Re-open the conversation held in the Session Store, if any."""
        state = self.session_store.state
        if not state.has_session:
            return False
        await self._open(state.conversation_id, state.ref_code, ConversationStatus.OPEN)
        return True

    async def start_new(self) -> bool:
        try:
            conversation = await self.controller.start_new()
        except ChatError as e:
            self._notify(e, str(e))
            return False
        await self.activate(conversation)
        return True

    async def resume_by_code(self, code: str) -> bool:
        try:
            conversation = await self.controller.resume_by_code(code)
        except ChatError as e:
            self._notify(e, str(e))
            return False
        await self.activate(conversation)
        return True

    async def resume_from_history(self, entry: HistoryEntry) -> None:
        self.controller.resume_from_history(entry)
        await self._open(
            entry.conversation_id, entry.ref_code, entry.status or ConversationStatus.OPEN
        )

    async def activate(self, conversation: ConversationRead) -> None:
        await self._open(str(conversation.id), conversation.ref_code, conversation.status)
        self.conversation = conversation

    async def go_back(self) -> None:
        """Leave the conversation. Customers also drop their device session."""
        await self.teardown()
        if self.role == SenderRole.CUSTOMER:
            self.controller.clear_session()

    async def teardown(self) -> None:
        """Stop delivery; anything still in flight lands on a closed reconciler and is ignored."""
        reconciler, self.reconciler = self.reconciler, None
        if reconciler is not None:
            reconciler.close()
        await self.channel.close()
        if self.recorder.is_recording:
            self.recorder.cancel()
        self.status = None
        self.conversation = None

    async def drain(self) -> None:
        """Wait for every in-flight submission to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- staff actions -------------------------------------------------------

    async def close_conversation(self) -> bool:
        return await self._change_status(ConversationStatus.CLOSED)

    async def reopen_conversation(self) -> bool:
        return await self._change_status(ConversationStatus.OPEN)

    # -- composing -----------------------------------------------------------

    async def send_text(self, text: str) -> Optional[LocalMessage]:
        text = (text or "").strip()
        if not text or not self.compose_enabled:
            return None
        return self._send(
            MessageDraft(sender_role=self.role, sender_name=self.sender_name, text=text)
        )

    async def send_media(
        self,
        data: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        kind: Optional[MediaKind] = None,
    ) -> Optional[LocalMessage]:
        if not self.compose_enabled:
            return None
        reconciler = self.reconciler
        return await self._send_attachment(
            reconciler,
            self.media.attach(
                reconciler.ref_code,
                data,
                kind=kind,
                filename=filename,
                content_type=content_type,
            ),
        )

    async def send_voice_note(self, note: Optional[VoiceNote] = None) -> Optional[LocalMessage]:
        """Upload and send a recorded note. An empty capture still goes to attach and fails there."""
        if note is None:
            if not self.recorder.is_recording:
                return None
            note = self.recorder.stop()
        if not self.compose_enabled:
            return None
        reconciler = self.reconciler
        return await self._send_attachment(
            reconciler, self.media.attach_voice_note(reconciler.ref_code, note)
        )

    async def toggle_recording(self) -> Optional[LocalMessage]:
        if not self.recorder.is_recording and not self.compose_enabled:
            return None
        note = self.recorder.toggle()
        if note is None:
            return None
        return await self.send_voice_note(note)

    def retry(self, temp_id: str) -> bool:
        if self.reconciler is None or not self.compose_enabled:
            return False
        entry = self.reconciler.retry(temp_id)
        if entry is None:
            return False
        self._spawn(self._submit(self.reconciler, entry))
        return True

    def discard(self, temp_id: str) -> bool:
        return self.reconciler.discard(temp_id) if self.reconciler else False

    # -- internals -----------------------------------------------------------

    async def _send_attachment(
        self,
        reconciler: MessageReconciler,
        upload: Coroutine[Any, Any, MediaReference],
    ) -> Optional[LocalMessage]:
        try:
            ref = await upload
        except AttachFailedError as e:
            self._notify(e, MEDIA_FAILED_MESSAGE)
            return None
        if reconciler is not self.reconciler or not self.compose_enabled:
            logger.info("Conversation changed during upload, dropping %s", ref.key)
            return None
        return self._send(
            MessageDraft(
                sender_role=self.role,
                sender_name=self.sender_name,
                media_url=ref.url,
                media_kind=ref.kind,
            )
        )

    def _send(self, draft: MessageDraft) -> Optional[LocalMessage]:
        reconciler = self.reconciler
        entry = reconciler.append_local(draft)
        if entry is not None:
            self._spawn(self._submit(reconciler, entry))
        return entry

    async def _submit(self, reconciler: MessageReconciler, entry: LocalMessage) -> None:
        payload = MessageDraft(
            sender_role=entry.sender_role,
            sender_name=entry.sender_name,
            text=entry.text,
            media_url=entry.media_url,
            media_kind=entry.media_kind,
        ).to_create()
        try:
            record = await self.channel.submit(reconciler.conversation_id, payload)
        except ClosedConversationError as e:
            logger.info("Send to closed conversation %s rejected", reconciler.ref_code)
            reconciler.fail(entry.temp_id)
            if reconciler is self.reconciler:
                self.status = ConversationStatus.CLOSED
                self._notify(e, CLOSED_MESSAGE)
            return
        except SendFailedError as e:
            logger.warning("Send %s failed: %s", entry.temp_id, e)
            reconciler.fail(entry.temp_id)
            if reconciler is self.reconciler:
                self._notify(e, SEND_FAILED_MESSAGE)
            return
        reconciler.confirm(entry.temp_id, record)

    async def _open(
        self, conversation_id: str, ref_code: str, status: ConversationStatus
    ) -> None:
        await self.teardown()
        reconciler = MessageReconciler(
            conversation_id,
            ref_code,
            remote_role=self.role.counterpart,
            cue=lambda message: fire_cue(self.cue, message),
            notifications_enabled=lambda: self.session_store.state.notifications_enabled,
            match_window=timedelta(seconds=self.settings.pending_match_window_seconds),
        )
        reconciler.subscribe(
            lambda messages, new: self._on_messages_changed(reconciler, new)
        )
        self.reconciler = reconciler
        self.status = ConversationStatus(status)
        self.last_fetch_error = None
        sink = DeliverySink(
            on_snapshot=reconciler.apply_snapshot,
            on_insert=reconciler.apply_insert,
            on_conversation=self._on_conversation,
            on_error=self._on_fetch_error,
        )
        await self.channel.open(conversation_id, sink)
        logger.debug("Opened conversation %s via %s", ref_code, self.channel.id)

    def _on_messages_changed(
        self, reconciler: MessageReconciler, new_messages: List[LocalMessage]
    ) -> None:
        if not new_messages or reconciler is not self.reconciler:
            return
        if self.role == SenderRole.CUSTOMER:
            self.history.record_message(
                reconciler.ref_code,
                reconciler.conversation_id,
                new_messages[-1],
                status=self.status,
            )
        if any(m.sender_role == self.role.counterpart for m in new_messages):
            self._spawn(self._mark_read(reconciler.conversation_id))

    def _on_conversation(self, conversation: ConversationRead) -> None:
        if self.reconciler is None or str(conversation.id) != self.conversation_id:
            return
        changed = conversation.status != self.status
        self.conversation = conversation
        self.status = conversation.status
        if changed:
            logger.info("Conversation %s is now %s", conversation.ref_code, conversation.status)
            if self.role == SenderRole.CUSTOMER:
                self.history.record_message(
                    conversation.ref_code, str(conversation.id), None, status=conversation.status
                )

    def _on_fetch_error(self, error: FetchFailedError) -> None:
        # Transient; the next tick or resubscribe tries again
        self.last_fetch_error = error

    async def _mark_read(self, conversation_id: str) -> None:
        try:
            await self.backend.mark_read(conversation_id, self.role)
        except ChatBackendError as e:
            logger.debug("Mark read for %s failed: %s", conversation_id, e)

    async def _change_status(self, status: ConversationStatus) -> bool:
        if self.reconciler is None:
            return False
        try:
            conversation = await (
                self.controller.close(self.conversation_id)
                if status == ConversationStatus.CLOSED
                else self.controller.reopen(self.conversation_id)
            )
        except ChatError as e:
            self._notify(e, str(e))
            return False
        self._on_conversation(conversation)
        return True

    def _notify(self, error: ChatError, description: str) -> None:
        self._notices.append(Notice(title=error.title, description=description))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def build_chat_view(
    settings: Optional[Settings] = None,
    role: SenderRole = SenderRole.CUSTOMER,
    backend: Optional[ChatBackend] = None,
    kv: Optional[KeyValueStore] = None,
    cue: Optional[NotificationCue] = None,
) -> ChatView:
    """Wire a view from settings: backend, device state, history cap and delivery mode."""
    settings = settings or get_settings()
    if backend is None:
        backend = build_chat_backend(settings)
    if kv is None:
        kv = build_key_value_store(settings)
    return ChatView(
        backend,
        SessionStore(kv),
        HistoryLedger(kv, max_entries=settings.history_max_entries),
        role=role,
        cue=cue,
        settings=settings,
    )
