"""Fixtures for conversation model."""

from datetime import datetime, timedelta, timezone

import pytest

from spg_chat.constants.chat import ConversationStatus
from spg_chat.models.conversation import Conversation
from spg_chat.utils.ref_code import generate_ref_code


@pytest.fixture(scope="function")
def setup_conversation(db, faker):
    """
    Create an open conversation with customer details.
    """
    conversation = Conversation(
        ref_code=generate_ref_code(),
        customer_name=faker.name(),
        customer_phone=faker.numerify("98########"),
        status=ConversationStatus.OPEN.value,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


@pytest.fixture(scope="function")
def setup_closed_conversation(db):
    """Create a closed conversation."""
    conversation = Conversation(
        ref_code=generate_ref_code(),
        status=ConversationStatus.CLOSED.value,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


@pytest.fixture(scope="function")
def setup_inbox(db, faker):
    """Three conversations with staggered activity; the last one never had a message."""
    now = datetime.now(timezone.utc)
    rows = []
    for i, status in enumerate(
        [ConversationStatus.OPEN, ConversationStatus.CLOSED, ConversationStatus.OPEN]
    ):
        rows.append(
            Conversation(
                ref_code=generate_ref_code(),
                customer_name=faker.name(),
                status=status.value,
                last_message_at=None if i == 2 else now - timedelta(minutes=10 * i),
                last_message_preview=None if i == 2 else faker.sentence(),
            )
        )
    db.add_all(rows)
    db.commit()
    for row in rows:
        db.refresh(row)
    return rows
