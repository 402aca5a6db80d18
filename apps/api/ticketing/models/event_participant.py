import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ticketing.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ParticipantStatus(str, Enum):
    REGISTERED = "registered"
    ATTENDED = "attended"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    FREE = "free"
    PAID = "paid"


class EventParticipant(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "event_participants"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_participant_event_user"),
    )

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    status: Mapped[ParticipantStatus] = mapped_column(
        sa.Enum(ParticipantStatus, name="participant_status", native_enum=False),
        nullable=False,
        default=ParticipantStatus.REGISTERED,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    payment_status: Mapped[PaymentStatus] = mapped_column(
        sa.Enum(PaymentStatus, name="participant_payment_status", native_enum=False),
        nullable=False,
        default=PaymentStatus.FREE,
    )
    payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    # [{"name": ..., "email": ...}] for group tickets
    additional_persons: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
