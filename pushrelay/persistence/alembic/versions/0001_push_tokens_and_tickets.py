"""push token registry and notification ticket ledger

Revision ID: 0001_push_tokens_and_tickets
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_push_tokens_and_tickets"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "push_tokens",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("token", name="uq_push_tokens_token"),
    )

    op.create_table(
        "notification_tickets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("ticket_id", sa.String(), nullable=False),
        sa.Column(
            "push_token_id",
            sa.BigInteger(),
            sa.ForeignKey("push_tokens.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content_key", sa.String(), nullable=True),
        sa.Column("route", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="unconfirmed"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        # NULL content keys (ad-hoc broadcasts) never collide under this constraint.
        sa.UniqueConstraint("content_key", "push_token_id", name="uq_notification_tickets_content_token"),
    )
    op.create_index("ix_notification_tickets_ticket_id", "notification_tickets", ["ticket_id"])
    op.create_index("ix_notification_tickets_push_token_id", "notification_tickets", ["push_token_id"])
    op.create_index("ix_notification_tickets_content_key", "notification_tickets", ["content_key"])
    op.create_index("ix_notification_tickets_created_at", "notification_tickets", ["created_at"])
    # Serves the status-policy scan of unconfirmed tickets.
    op.create_index(
        "ix_notification_tickets_status_created",
        "notification_tickets",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_notification_tickets_status_created", table_name="notification_tickets")
    op.drop_index("ix_notification_tickets_created_at", table_name="notification_tickets")
    op.drop_index("ix_notification_tickets_content_key", table_name="notification_tickets")
    op.drop_index("ix_notification_tickets_push_token_id", table_name="notification_tickets")
    op.drop_index("ix_notification_tickets_ticket_id", table_name="notification_tickets")
    op.drop_table("notification_tickets")
    op.drop_table("push_tokens")
