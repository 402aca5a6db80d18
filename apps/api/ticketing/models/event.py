import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Table, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketing.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from ticketing.models.user import User


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


event_co_hosts = Table(
    "event_co_hosts",
    Base.metadata,
    Column("event_id", Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Event(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "events"
    __table_args__ = (
        sa.CheckConstraint("max_participants >= 1", name="ck_events_max_participants_positive"),
        sa.CheckConstraint("current_participants >= 0", name="ck_events_current_participants_nonneg"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # {"venue": ..., "address": ..., "city": ..., "state": ...}
    location: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    host_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    # Claimed spots, not participant rows: a group ticket counts its quantity.
    current_participants: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    price_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0"), server_default="0"
    )
    price_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    status: Mapped[EventStatus] = mapped_column(
        sa.Enum(EventStatus, name="event_status", native_enum=False),
        nullable=False,
        default=EventStatus.PUBLISHED,
    )

    host: Mapped["User"] = relationship(foreign_keys=[host_id], lazy="joined")
    co_hosts: Mapped[list["User"]] = relationship(secondary=event_co_hosts, lazy="selectin")

    @property
    def is_free(self) -> bool:
        return not self.price_amount or self.price_amount <= 0

    def is_staff(self, user_id: uuid.UUID) -> bool:
        return self.host_id == user_id or any(c.id == user_id for c in self.co_hosts)
