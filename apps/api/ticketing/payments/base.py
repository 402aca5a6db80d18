from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

PAYMENT_SUCCESS = "SUCCESS"


@dataclass(frozen=True)
class OrderRequest:
    order_id: str
    amount: Decimal
    currency: str
    customer_id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    return_url: str
    notify_url: str
    note: str | None = None


@dataclass(frozen=True)
class OrderSession:
    order_id: str
    payment_session_id: str
    order_status: str | None = None


@dataclass(frozen=True)
class PaymentAttempt:
    payment_status: str
    cf_payment_id: str | None = None
    payment_amount: Decimal | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.payment_status == PAYMENT_SUCCESS


class PaymentGateway(ABC):
    @abstractmethod
    def create_order(self, request: OrderRequest) -> OrderSession:
        """Create a hosted-checkout order and return its session token."""

    @abstractmethod
    def get_order_payments(self, order_id: str) -> list[PaymentAttempt]:
        """Return payment attempts recorded against an order, newest first."""

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, timestamp: str, signature: str) -> bool:
        """Return whether a webhook body was signed by the gateway."""
