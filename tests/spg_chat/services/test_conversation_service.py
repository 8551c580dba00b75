"""Tests for ConversationService."""

from uuid import uuid4

import pytest

from spg_chat.constants.chat import ConversationStatus
from spg_chat.schemas.conversation import ConversationCreate, ConversationUpdate
from spg_chat.services.conversation_service import ConversationService
from spg_chat.services.exceptions import DuplicateRefCodeError


def test_create_conversation(db):
    """Create a conversation with only a ref code; it starts open."""
    svc = ConversationService(db)
    conversation = svc.create_conversation(ConversationCreate(ref_code="spg-ab12c"))
    assert conversation.id is not None
    assert conversation.ref_code == "SPG-AB12C"
    assert conversation.status == ConversationStatus.OPEN
    assert conversation.last_message_at is None


def test_create_conversation_duplicate_ref_code(db, setup_conversation):
    """A taken ref code is rejected and the session stays usable."""
    svc = ConversationService(db)
    with pytest.raises(DuplicateRefCodeError):
        svc.create_conversation(ConversationCreate(ref_code=setup_conversation.ref_code))
    assert svc.get_conversation(setup_conversation.id) is not None


def test_create_conversation_rejects_bad_ref_code():
    with pytest.raises(ValueError):
        ConversationCreate(ref_code="ABC-12345")
    with pytest.raises(ValueError):
        ConversationCreate(ref_code="SPG-AB12")


def test_get_conversation_not_found(db):
    assert ConversationService(db).get_conversation(uuid4()) is None


def test_get_conversation_by_ref_code_normalises(db, setup_conversation):
    """Lookup trims and uppercases the input."""
    svc = ConversationService(db)
    found = svc.get_conversation_by_ref_code(f"  {setup_conversation.ref_code.lower()} ")
    assert found is not None
    assert found.id == setup_conversation.id


def test_get_conversation_by_ref_code_missing(db):
    svc = ConversationService(db)
    assert svc.get_conversation_by_ref_code("SPG-ZZZZZ") is None
    assert svc.get_conversation_by_ref_code("   ") is None


def test_close_and_reopen_publishes_status(db, feed, setup_conversation):
    """Status changes go out on the feed; no-op updates do not."""
    seen = []
    feed.subscribe(str(setup_conversation.id), lambda m: None, seen.append)
    svc = ConversationService(db, feed)

    closed = svc.update_conversation(
        setup_conversation.id, ConversationUpdate(status=ConversationStatus.CLOSED)
    )
    assert closed.status == ConversationStatus.CLOSED
    assert closed.is_closed

    svc.update_conversation(
        setup_conversation.id, ConversationUpdate(status=ConversationStatus.CLOSED)
    )
    reopened = svc.update_conversation(
        setup_conversation.id, ConversationUpdate(status=ConversationStatus.OPEN)
    )
    assert reopened.status == ConversationStatus.OPEN
    assert [c.status for c in seen] == [
        ConversationStatus.CLOSED,
        ConversationStatus.OPEN,
    ]


def test_update_conversation_details_keeps_status(db, setup_conversation):
    svc = ConversationService(db)
    updated = svc.update_conversation(
        setup_conversation.id, ConversationUpdate(customer_name="Ravi Kumar")
    )
    assert updated.customer_name == "Ravi Kumar"
    assert updated.status == ConversationStatus.OPEN


def test_update_conversation_not_found(db):
    svc = ConversationService(db)
    assert svc.update_conversation(uuid4(), ConversationUpdate(status="closed")) is None


def test_search_orders_by_last_activity(db, setup_inbox):
    """Most recently active first; conversations without messages last."""
    results = ConversationService(db).search()
    assert [c.id for c in results] == [c.id for c in setup_inbox]


def test_search_filters_status_and_text(db, setup_inbox):
    svc = ConversationService(db)
    closed = svc.search(status=ConversationStatus.CLOSED)
    assert [c.id for c in closed] == [setup_inbox[1].id]

    target = setup_inbox[2]
    by_code = svc.search(q=target.ref_code[-5:].lower())
    assert target.id in [c.id for c in by_code]
