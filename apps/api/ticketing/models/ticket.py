from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketing.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from ticketing.models.event import Event
from ticketing.models.user import User


class TicketStatus(str, Enum):
    ACTIVE = "active"
    CHECKED_IN = "checked_in"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class TicketType(str, Enum):
    GENERAL = "general"
    VIP = "vip"
    EARLY_BIRD = "early_bird"
    GROUP = "group"
    COMPLIMENTARY = "complimentary"


MIN_TICKET_QUANTITY = 1
MAX_TICKET_QUANTITY = 10


class Ticket(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "tickets"
    __table_args__ = (
        # One ticket per (user, event): makes issuance idempotent under retries.
        UniqueConstraint("user_id", "event_id", name="uq_tickets_user_event"),
        sa.CheckConstraint(
            f"quantity >= {MIN_TICKET_QUANTITY} AND quantity <= {MAX_TICKET_QUANTITY}",
            name="ck_tickets_quantity_range",
        ),
        sa.Index("ix_tickets_status", "status"),
        sa.Index("ix_tickets_event_id", "event_id"),
    )

    ticket_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # PNG data URL; qr_code_url is the optional object-storage mirror.
    qr_code: Mapped[str] = mapped_column(Text, nullable=False)
    qr_code_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    status: Mapped[TicketStatus] = mapped_column(
        sa.Enum(TicketStatus, name="ticket_status", native_enum=False),
        nullable=False,
        default=TicketStatus.ACTIVE,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=MIN_TICKET_QUANTITY)

    purchase_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    price_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # ticketType, basePrice, fees breakdown and any caller-supplied context
    ticket_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    check_in_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    event: Mapped[Event] = relationship(lazy="joined")
    user: Mapped[User] = relationship(foreign_keys=[user_id], lazy="joined")

    @property
    def ticket_type(self) -> str:
        return (self.ticket_metadata or {}).get("ticketType", TicketType.GENERAL.value)
