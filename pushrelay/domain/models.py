from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER primary keys; keep BIGINT ids elsewhere.
_Id = BigInteger().with_variant(Integer(), "sqlite")

TICKET_STATUS_UNCONFIRMED = "unconfirmed"
TICKET_STATUS_CONFIRMED = "confirmed"
TICKET_STATUS_FAILED = "failed"


class Base(DeclarativeBase):
    pass


class PushToken(Base):
    __tablename__ = "push_tokens"

    # Monotonic insertion id doubles as the registry scan cursor.
    id: Mapped[int] = mapped_column(_Id, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NotificationTicket(Base):
    __tablename__ = "notification_tickets"
    __table_args__ = (
        # NULL content keys never collide, so only keyed campaigns are deduplicated.
        UniqueConstraint("content_key", "push_token_id", name="uq_notification_tickets_content_token"),
        Index("ix_notification_tickets_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(_Id, primary_key=True, autoincrement=True)
    # Provider-issued send acknowledgment id, used to fetch the receipt.
    ticket_id: Mapped[str] = mapped_column(String, index=True)
    push_token_id: Mapped[int] = mapped_column(
        _Id,
        ForeignKey("push_tokens.id", ondelete="CASCADE"),
        index=True,
    )
    content_key: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    route: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default=TICKET_STATUS_UNCONFIRMED, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
