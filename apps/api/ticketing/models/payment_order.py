import uuid
from decimal import Decimal
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ticketing.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PaymentOrderStatus(str, Enum):
    CREATED = "created"
    PAID = "paid"
    FAILED = "failed"
    # Money captured but no spot could be claimed; these orders need a refund.
    PAID_UNREGISTERED = "paid_unregistered"


class PaymentOrder(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "payment_orders"

    order_id: Mapped[str] = mapped_column(String(200), unique=True, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    group_tier: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    additional_persons: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    status: Mapped[PaymentOrderStatus] = mapped_column(
        sa.Enum(PaymentOrderStatus, name="payment_order_status", native_enum=False),
        nullable=False,
        default=PaymentOrderStatus.CREATED,
    )
    payment_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cf_payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
