"""Tests for the Message Reconciler and the pure merge."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from spg_chat.client.reconciler import MessageReconciler, merge_messages
from spg_chat.constants.chat import DeliveryStatus, SenderRole
from spg_chat.schemas.message import LocalMessage, MessageDraft, MessageRead

CONVERSATION_ID = str(uuid4())
REF_CODE = "SPG-AB12C"


def make_record(text, role=SenderRole.STAFF, created_at=None):
    return MessageRead(
        id=uuid4(),
        conversation_id=CONVERSATION_ID,
        ref_code=REF_CODE,
        sender_role=role,
        sender_name="Support Team" if role == SenderRole.STAFF else None,
        text=text,
        created_at=created_at or datetime.now(timezone.utc),
    )


def customer_draft(text):
    return MessageDraft(sender_role=SenderRole.CUSTOMER, text=text)


@pytest.fixture
def played():
    return []


@pytest.fixture
def reconciler(played):
    return MessageReconciler(CONVERSATION_ID, REF_CODE, cue=played.append)


def test_merge_is_idempotent():
    base = datetime.now(timezone.utc)
    remote = [
        LocalMessage.from_record(make_record("b", created_at=base + timedelta(seconds=2))),
        LocalMessage.from_record(make_record("a", created_at=base)),
    ]
    pending = [
        LocalMessage(
            id="temp-1",
            temp_id="temp-1",
            status=DeliveryStatus.SENDING,
            conversation_id=CONVERSATION_ID,
            ref_code=REF_CODE,
            sender_role=SenderRole.CUSTOMER,
            text="still going",
            created_at=base + timedelta(seconds=3),
        ),
        LocalMessage(
            id="temp-2",
            temp_id="temp-2",
            status=DeliveryStatus.FAILED,
            conversation_id=CONVERSATION_ID,
            ref_code=REF_CODE,
            sender_role=SenderRole.CUSTOMER,
            text="never made it",
            created_at=base + timedelta(seconds=4),
        ),
    ]
    first = merge_messages(remote, pending)
    second = merge_messages(remote, pending)
    assert first == second
    assert [m.text for m in first] == ["a", "b", "still going", "never made it"]


def test_merge_dedupes_durable_ids():
    record = LocalMessage.from_record(make_record("once"))
    merged = merge_messages([record, record], [])
    assert len(merged) == 1


def test_same_snapshot_twice_gives_same_list(reconciler):
    records = [make_record("hello"), make_record("there")]
    reconciler.apply_snapshot(records)
    reconciler.append_local(customer_draft("reply"))
    reconciler.apply_snapshot(records)
    once = reconciler.messages
    reconciler.apply_snapshot(records)
    assert reconciler.messages == once


def test_pending_send_survives_reordering(reconciler):
    """A send, then a fetch that has not seen it, then a fetch that has."""
    reconciler.apply_snapshot([])
    entry = reconciler.append_local(customer_draft("Hello"))
    assert entry.status == DeliveryStatus.SENDING

    reconciler.apply_snapshot([])
    assert [(m.text, m.status) for m in reconciler.messages] == [
        ("Hello", DeliveryStatus.SENDING)
    ]

    record = make_record("Hello", role=SenderRole.CUSTOMER)
    reconciler.apply_snapshot([record])
    assert len(reconciler.messages) == 1
    assert reconciler.messages[0].id == str(record.id)
    assert reconciler.messages[0].status == DeliveryStatus.SENT

    reconciler.confirm(entry.temp_id, record)
    reconciler.apply_snapshot([record])
    assert len(reconciler.messages) == 1
    assert reconciler.messages[0].id == str(record.id)
    assert reconciler.messages[0].temp_id == entry.temp_id


def test_confirm_before_snapshot_sees_it(reconciler):
    reconciler.apply_snapshot([])
    entry = reconciler.append_local(customer_draft("Hello"))
    record = make_record("Hello", role=SenderRole.CUSTOMER)
    reconciler.confirm(entry.temp_id, record)
    reconciler.apply_snapshot([])
    assert [m.id for m in reconciler.messages] == [str(record.id)]
    reconciler.apply_snapshot([record])
    assert [m.id for m in reconciler.messages] == [str(record.id)]


def test_identical_pending_texts_each_get_one_record(reconciler):
    reconciler.apply_snapshot([])
    first = reconciler.append_local(customer_draft("ok"))
    second = reconciler.append_local(customer_draft("ok"))
    r1 = make_record("ok", role=SenderRole.CUSTOMER)
    r2 = make_record("ok", role=SenderRole.CUSTOMER)

    reconciler.apply_snapshot([r1])
    assert [m.status for m in reconciler.messages] == [
        DeliveryStatus.SENT,
        DeliveryStatus.SENDING,
    ]

    # The second submission is acknowledged with the record the snapshot gave the first
    reconciler.confirm(second.temp_id, r1)
    reconciler.confirm(first.temp_id, r2)
    reconciler.apply_snapshot([r1, r2])

    messages = reconciler.messages
    assert sorted(m.id for m in messages) == sorted([str(r1.id), str(r2.id)])
    assert all(m.status == DeliveryStatus.SENT for m in messages)


def test_old_identical_record_does_not_take_over(reconciler):
    """An hours-old "ok" from earlier in the thread is not mistaken for a new send."""
    old = make_record(
        "ok", role=SenderRole.CUSTOMER, created_at=datetime.now(timezone.utc) - timedelta(hours=3)
    )
    reconciler.apply_snapshot([old])
    reconciler.append_local(customer_draft("ok"))
    reconciler.apply_snapshot([old])
    assert [m.status for m in reconciler.messages] == [None, DeliveryStatus.SENDING]


def test_failed_send_stays_in_place(reconciler):
    """Offline send: one entry, first sending, then failed. Never zero, never two."""
    reconciler.apply_snapshot([])
    entry = reconciler.append_local(customer_draft("Hello"))
    reconciler.fail(entry.temp_id)
    assert [(m.text, m.status) for m in reconciler.messages] == [
        ("Hello", DeliveryStatus.FAILED)
    ]
    reconciler.apply_snapshot([])
    assert len(reconciler.messages) == 1
    assert reconciler.messages[0].status == DeliveryStatus.FAILED


def test_failed_entry_is_not_taken_over(reconciler):
    reconciler.apply_snapshot([])
    entry = reconciler.append_local(customer_draft("Hello"))
    reconciler.fail(entry.temp_id)
    reconciler.apply_snapshot([make_record("Hello", role=SenderRole.CUSTOMER)])
    assert [m.status for m in reconciler.messages] == [None, DeliveryStatus.FAILED]


def test_retry_and_discard(reconciler):
    reconciler.apply_snapshot([])
    entry = reconciler.append_local(customer_draft("Hello"))
    assert reconciler.retry(entry.temp_id) is None
    assert reconciler.discard(entry.temp_id) is False

    reconciler.fail(entry.temp_id)
    retried = reconciler.retry(entry.temp_id)
    assert retried.status == DeliveryStatus.SENDING
    assert retried.temp_id == entry.temp_id

    reconciler.fail(entry.temp_id)
    assert reconciler.discard(entry.temp_id) is True
    assert reconciler.messages == []


def test_fail_after_match_is_ignored(reconciler):
    reconciler.apply_snapshot([])
    entry = reconciler.append_local(customer_draft("Hello"))
    reconciler.apply_snapshot([make_record("Hello", role=SenderRole.CUSTOMER)])
    reconciler.fail(entry.temp_id)
    assert reconciler.messages[0].status == DeliveryStatus.SENT


def test_cue_once_per_new_staff_message(reconciler, played):
    history = make_record("earlier")
    reconciler.apply_snapshot([history])
    assert played == []

    reply = make_record("We'll call you")
    reconciler.apply_snapshot([history, reply])
    reconciler.apply_snapshot([history, reply])
    reconciler.apply_insert(reply)
    assert [m.id for m in played] == [str(reply.id)]


def test_no_cue_for_own_messages(reconciler, played):
    reconciler.apply_snapshot([])
    reconciler.apply_insert(make_record("mine", role=SenderRole.CUSTOMER))
    entry = reconciler.append_local(customer_draft("also mine"))
    reconciler.confirm(entry.temp_id, make_record("also mine", role=SenderRole.CUSTOMER))
    assert played == []


def test_no_cue_when_notifications_disabled(played):
    enabled = {"value": False}
    reconciler = MessageReconciler(
        CONVERSATION_ID,
        REF_CODE,
        cue=played.append,
        notifications_enabled=lambda: enabled["value"],
    )
    reconciler.apply_snapshot([])
    reconciler.apply_insert(make_record("quiet"))
    enabled["value"] = True
    reconciler.apply_insert(make_record("loud"))
    assert [m.text for m in played] == ["loud"]


def test_listener_receives_new_messages(reconciler):
    calls = []
    unsubscribe = reconciler.subscribe(
        lambda messages, new: calls.append((len(messages), [m.text for m in new]))
    )
    first = make_record("a")
    reconciler.apply_snapshot([first])
    reconciler.apply_snapshot([first])
    reconciler.apply_insert(make_record("b"))
    unsubscribe()
    reconciler.apply_insert(make_record("c"))
    assert calls == [(1, ["a"]), (2, ["b"])]


def test_closed_reconciler_ignores_late_events(reconciler):
    reconciler.apply_snapshot([])
    entry = reconciler.append_local(customer_draft("Hello"))
    reconciler.close()
    reconciler.confirm(entry.temp_id, make_record("Hello", role=SenderRole.CUSTOMER))
    reconciler.apply_insert(make_record("late"))
    assert [m.status for m in reconciler.messages] == [DeliveryStatus.SENDING]
    assert reconciler.append_local(customer_draft("more")) is None
