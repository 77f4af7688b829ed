"""Notification outbox.

Rows are written inside the business transaction that triggers them and
delivered later by the worker, so a delivery failure can never roll back a
booking or payment.
"""

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, JSONType, TimestampMixin, UTCDateTime, str_enum, utcnow


class NotificationChannel(enum.StrEnum):
    EMAIL = "email"
    PUSH = "push"
    IN_APP = "in_app"


class OutboxStatus(enum.StrEnum):
    PENDING = "pending"
    SENT = "sent"
    DEAD = "dead"  # gave up after max_attempts


class NotificationOutbox(TimestampMixin, Base):
    __tablename__ = "notification_outbox"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    channel: Mapped[NotificationChannel] = mapped_column(
        str_enum(NotificationChannel, "notification_channel"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)  # 1 = highest
    data: Mapped[dict | None] = mapped_column(JSONType, default=dict)
    source: Mapped[str | None] = mapped_column(String(50))  # booking, payment, refund

    status: Mapped[OutboxStatus] = mapped_column(
        str_enum(OutboxStatus, "outbox_status"), default=OutboxStatus.PENDING, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    __table_args__ = (Index("ix_outbox_due", "status", "next_attempt_at"),)

    def __repr__(self) -> str:
        return f"<NotificationOutbox {self.id} {self.channel.value} user={self.user_id} {self.status.value}>"
