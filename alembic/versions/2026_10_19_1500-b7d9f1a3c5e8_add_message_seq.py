"""add per-conversation message sequence

Revision ID: b7d9f1a3c5e8
Revises: a1c3e5f7b9d2
Create Date: 2026-10-19 15:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "b7d9f1a3c5e8"
down_revision: Union[str, None] = "a1c3e5f7b9d2"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema: chat_messages.seq and conversations.message_count."""
    op.add_column(
        "conversations",
        sa.Column(
            "message_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
    )
    op.add_column(
        "chat_messages",
        sa.Column("seq", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )

    # Number existing rows in the order they were listed before
    op.execute(
        """
        UPDATE chat_messages SET seq = numbered.rn
        FROM (
            SELECT id, ROW_NUMBER() OVER (
                PARTITION BY conversation_id ORDER BY created_at, id
            ) AS rn
            FROM chat_messages
        ) AS numbered
        WHERE chat_messages.id = numbered.id
        """
    )
    op.execute(
        """
        UPDATE conversations SET message_count = (
            SELECT COUNT(*) FROM chat_messages
            WHERE chat_messages.conversation_id = conversations.id
        )
        """
    )

    op.create_index(
        "ix_chat_messages_conversation_seq",
        "chat_messages",
        ["conversation_id", "seq"],
        unique=True,
    )


def downgrade() -> None:
    """Downgrade schema: drop the message sequence."""
    op.drop_index("ix_chat_messages_conversation_seq", table_name="chat_messages")
    op.drop_column("chat_messages", "seq")
    op.drop_column("conversations", "message_count")
