"""
Message Reconciler: the ordered message list of the active conversation.

The server snapshot is the source of truth. Locally authored messages live
as an overlay on top of it until the server copy takes their place:

* ``sending``: composed, submission in flight. Shown at the end of the list.
* ``sent``: the server copy is known. The entry carries the server id and
  stays bound to the temp id it was composed under.
* ``failed``: submission failed. Stays visible until retried or discarded.

Server records do not carry the temp id, so a snapshot record takes over a
``sending`` entry when sender role, text and media are equal and it is not
older than the entry by more than the match window. A record is bound to at
most one local entry.

Every mutation goes through ``_reconcile``, which runs ``merge_messages``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from spg_chat.constants.chat import DeliveryStatus, SenderRole
from spg_chat.schemas.message import LocalMessage, MessageDraft, MessageRead

logger = logging.getLogger(__name__)

DEFAULT_MATCH_WINDOW = timedelta(minutes=2)

ChangeListener = Callable[[List[LocalMessage], List[LocalMessage]], None]
Cue = Callable[[LocalMessage], None]


def new_temp_id() -> str:
    return f"temp-{uuid.uuid4().hex}"


def _takes_over(
    record: LocalMessage, pending: LocalMessage, match_window: timedelta
) -> bool:
    return (
        record.sender_role == pending.sender_role
        and (record.text or None) == (pending.text or None)
        and record.media_url == pending.media_url
        and record.created_at >= pending.created_at - match_window
    )


def _bind(record: LocalMessage, temp_id: str) -> LocalMessage:
    return record.model_copy(update={"temp_id": temp_id, "status": DeliveryStatus.SENT})


def merge_messages(
    remote: Iterable[LocalMessage],
    pending: Iterable[LocalMessage],
    match_window: timedelta = DEFAULT_MATCH_WINDOW,
) -> List[LocalMessage]:
    """
    Merge an authoritative snapshot with the local overlay.

    Pure and deterministic. Confirmed messages come first, ordered by
    created_at (ties keep arrival order), followed by the unconfirmed
    overlay in composition order. No durable id appears twice.
    """
    confirmed: Dict[str, LocalMessage] = {}
    for message in remote:
        if message.is_pending:
            continue
        confirmed.setdefault(message.id, message)

    overlay: List[LocalMessage] = []
    for message in pending:
        if message.status == DeliveryStatus.SENT and message.temp_id:
            server_copy = confirmed.get(message.id)
            if server_copy is None:
                # Acknowledged, but this snapshot predates it
                confirmed[message.id] = message
            elif server_copy.temp_id is None:
                confirmed[message.id] = _bind(server_copy, message.temp_id)
        elif message.is_pending:
            overlay.append(message)

    ordered = sorted(confirmed.values(), key=lambda m: m.created_at)
    claimed = {m.id for m in ordered if m.temp_id}
    position = {m.id: i for i, m in enumerate(ordered)}

    tail: List[LocalMessage] = []
    for message in overlay:
        if message.status == DeliveryStatus.SENDING:
            match = next(
                (
                    r
                    for r in ordered
                    if r.id not in claimed and _takes_over(r, message, match_window)
                ),
                None,
            )
            if match is not None:
                claimed.add(match.id)
                ordered[position[match.id]] = _bind(match, message.temp_id)
                continue
        tail.append(message)
    return ordered + tail


class MessageReconciler:
    """
    Holds the merged list for one open conversation view.

    ``remote_role`` is the party whose new messages fire the notification
    cue (staff, for a customer view). ``notifications_enabled`` is read at
    the time of each cue.
    """

    def __init__(
        self,
        conversation_id: str,
        ref_code: str,
        remote_role: SenderRole = SenderRole.STAFF,
        cue: Optional[Cue] = None,
        notifications_enabled: Callable[[], bool] = lambda: True,
        match_window: timedelta = DEFAULT_MATCH_WINDOW,
    ) -> None:
        self.conversation_id = str(conversation_id)
        self.ref_code = ref_code
        self.remote_role = remote_role
        self.match_window = match_window
        self._cue = cue
        self._notifications_enabled = notifications_enabled
        self._messages: List[LocalMessage] = []
        self._seen_ids: set[str] = set()
        self._primed = False
        self._closed = False
        self._listeners: List[ChangeListener] = []

    @property
    def messages(self) -> List[LocalMessage]:
        return list(self._messages)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Tear down: late responses and events are ignored from now on."""
        self._closed = True
        self._listeners.clear()

    def find(self, temp_id: str) -> Optional[LocalMessage]:
        return next((m for m in self._messages if m.temp_id == temp_id), None)

    # -- local side ---------------------------------------------------------

    def append_local(self, draft: MessageDraft) -> Optional[LocalMessage]:
        """Add an optimistic entry for a message about to be submitted."""
        if self._closed:
            return None
        temp_id = new_temp_id()
        entry = LocalMessage(
            id=temp_id,
            temp_id=temp_id,
            status=DeliveryStatus.SENDING,
            conversation_id=self.conversation_id,
            ref_code=self.ref_code,
            sender_role=draft.sender_role,
            sender_name=draft.sender_name,
            text=draft.text,
            media_url=draft.media_url,
            media_kind=draft.media_kind,
            created_at=datetime.now(timezone.utc),
        )
        self._reconcile(self._messages + [entry])
        return entry

    def confirm(self, temp_id: str, record: MessageRead) -> None:
        """Submission succeeded: the server record takes the entry's place."""
        if self._closed:
            logger.debug("Ignoring confirmation for %s after teardown", temp_id)
            return
        confirmed = _bind(LocalMessage.from_record(record), temp_id)
        entries = list(self._messages)
        own = next((i for i, m in enumerate(entries) if m.temp_id == temp_id), None)
        holder = next((i for i, m in enumerate(entries) if m.id == confirmed.id), None)

        if holder is not None and holder != own:
            # A snapshot bound this record to another identical local entry.
            # Hand that entry's temp id over to ours so every temp id stays live.
            other_temp = entries[holder].temp_id
            entries[holder] = confirmed
            if own is not None:
                if other_temp is None:
                    del entries[own]
                elif entries[own].is_pending:
                    entries[own] = entries[own].model_copy(
                        update={"id": other_temp, "temp_id": other_temp}
                    )
                else:
                    entries[own] = entries[own].model_copy(update={"temp_id": other_temp})
        elif own is not None:
            entries[own] = confirmed
        else:
            entries.append(confirmed)
        self._reconcile(entries)

    def fail(self, temp_id: str) -> None:
        """Submission failed: flag the entry in place. Never retried automatically."""
        if self._closed:
            return
        entry = self.find(temp_id)
        if entry is None:
            logger.warning("Send failure for unknown entry %s", temp_id)
            return
        if entry.status == DeliveryStatus.FAILED:
            return
        if entry.status == DeliveryStatus.SENT:
            # Already matched to a server record, so it did go through
            logger.info("Send failure for %s ignored, message is on the server", temp_id)
            return
        self._replace(temp_id, entry.model_copy(update={"status": DeliveryStatus.FAILED}))

    def retry(self, temp_id: str) -> Optional[LocalMessage]:
        """Put a failed entry back to sending. Returns it for resubmission."""
        if self._closed:
            return None
        entry = self.find(temp_id)
        if entry is None or entry.status != DeliveryStatus.FAILED:
            return None
        retried = entry.model_copy(
            update={
                "status": DeliveryStatus.SENDING,
                "created_at": datetime.now(timezone.utc),
            }
        )
        self._replace(temp_id, retried)
        return retried

    def discard(self, temp_id: str) -> bool:
        if self._closed:
            return False
        entry = self.find(temp_id)
        if entry is None or entry.status != DeliveryStatus.FAILED:
            return False
        self._reconcile([m for m in self._messages if m.temp_id != temp_id])
        return True

    # -- remote side --------------------------------------------------------

    def apply_snapshot(self, records: Sequence[MessageRead]) -> None:
        """A full authoritative list arrived (poll tick or initial load)."""
        if self._closed:
            return
        remote = [LocalMessage.from_record(r) for r in records]
        overlay = [m for m in self._messages if m.temp_id is not None]
        self._reconcile(remote, overlay, announce=self._primed)
        self._primed = True

    def apply_insert(self, record: MessageRead) -> None:
        """A single new record arrived from the push feed."""
        if self._closed:
            return
        self._reconcile(self._messages + [LocalMessage.from_record(record)])

    # -- internals ----------------------------------------------------------

    def _replace(self, temp_id: str, entry: LocalMessage) -> None:
        self._reconcile(
            [entry if m.temp_id == temp_id else m for m in self._messages]
        )

    def _reconcile(
        self,
        remote: List[LocalMessage],
        pending: Optional[List[LocalMessage]] = None,
        announce: bool = True,
    ) -> None:
        if pending is None:
            pending = [m for m in remote if m.is_pending]
        merged = merge_messages(remote, pending, self.match_window)

        new_messages = [
            m for m in merged if m.is_confirmed and m.id not in self._seen_ids
        ]
        self._seen_ids.update(m.id for m in new_messages)
        if announce:
            for message in new_messages:
                self._maybe_cue(message)

        changed = merged != self._messages
        self._messages = merged
        if changed:
            for listener in list(self._listeners):
                try:
                    listener(self.messages, new_messages)
                except Exception:
                    logger.exception("Reconciler listener failed")

    def _maybe_cue(self, message: LocalMessage) -> None:
        if self._cue is None or message.temp_id is not None:
            return
        if message.sender_role != self.remote_role:
            return
        if not self._notifications_enabled():
            return
        self._cue(message)
