from __future__ import annotations

import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

_TMP = Path(tempfile.mkdtemp(prefix="ticketing-tests-"))

# Settings are read at import time, so configure the environment before importing the app.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("AUTH_MODE", "jwt")
os.environ.setdefault("JWT_SECRET", "test_jwt_secret_32_chars_minimum")
os.environ.setdefault("ACCESS_TOKEN_TTL_SECONDS", "900")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP / 'tickets.db'}")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("STORAGE_ROOT", str(_TMP / "media"))
os.environ.setdefault("MEDIA_BASE_URL", "http://testserver/media")
os.environ.setdefault("FRONTEND_URL", "https://app.example.test")
os.environ.setdefault("BACKEND_URL", "https://api.example.test")
os.environ.setdefault("CASHFREE_APP_ID", "test_app_id")
os.environ.setdefault("CASHFREE_SECRET_KEY", "test_secret_key")
os.environ.setdefault("CASHFREE_WEBHOOK_SECRET", "test_webhook_secret")
os.environ.setdefault("RESEND_API_KEY", "")

from ticketing.db import SessionLocal, engine  # noqa: E402
from ticketing.main import app  # noqa: E402
from ticketing.models import Base, Event, User  # noqa: E402
from ticketing.models.event import EventStatus  # noqa: E402
from ticketing.payments import get_payment_gateway  # noqa: E402
from ticketing.payments.base import (  # noqa: E402
    OrderRequest,
    OrderSession,
    PaymentAttempt,
    PaymentGateway,
)
from ticketing.payments.cashfree import verify_signature  # noqa: E402

WEBHOOK_SECRET = os.environ["CASHFREE_WEBHOOK_SECRET"]


class FakeGateway(PaymentGateway):
    """In-process stand-in for the payment gateway."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.created: list[OrderRequest] = []
        self.payments: dict[str, list[PaymentAttempt]] = {}
        self.lookup_error: Exception | None = None

    def create_order(self, request: OrderRequest) -> OrderSession:
        with self._lock:
            self.created.append(request)
        return OrderSession(
            order_id=request.order_id,
            payment_session_id=f"session_{request.order_id}",
            order_status="ACTIVE",
        )

    def get_order_payments(self, order_id: str) -> list[PaymentAttempt]:
        if self.lookup_error is not None:
            raise self.lookup_error
        return list(self.payments.get(order_id, []))

    def verify_webhook_signature(self, raw_body: bytes, timestamp: str, signature: str) -> bool:
        return verify_signature(WEBHOOK_SECRET, raw_body, timestamp, signature)

    def mark_paid(self, order_id: str, amount: Decimal | str = "500.00", cf_payment_id: str = "cf_1") -> None:
        self.payments[order_id] = [
            PaymentAttempt(
                payment_status="SUCCESS",
                cf_payment_id=cf_payment_id,
                payment_amount=Decimal(str(amount)),
            )
        ]

    def mark_status(self, order_id: str, status: str) -> None:
        self.payments[order_id] = [PaymentAttempt(payment_status=status, cf_payment_id="cf_failed")]


@pytest.fixture(scope="session", autouse=True)
def schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def clean_db(schema):
    # Ensure a clean slate for each test
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture
def gateway() -> FakeGateway:
    fake = FakeGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest.fixture
def client(gateway) -> TestClient:
    return TestClient(app)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_user(db_session):
    def _make(email: str, name: str = "Test User", phone_number: str | None = None) -> User:
        user = User(email=email, name=name, phone_number=phone_number)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_event(db_session):
    def _make(
        host: User,
        *,
        title: str = "Sunset Rooftop Jam",
        price: Decimal | str = "500.00",
        max_participants: int = 50,
        current_participants: int = 0,
        starts_at: datetime | None = None,
        categories: list[str] | None = None,
        status: EventStatus = EventStatus.PUBLISHED,
        co_hosts: list[User] | None = None,
    ) -> Event:
        event = Event(
            title=title,
            description="Live music and food",
            starts_at=starts_at or datetime.now(timezone.utc) + timedelta(days=3),
            location={"venue": "Skyline Terrace", "city": "Mumbai"},
            categories=categories if categories is not None else ["Music & Concerts"],
            host_id=host.id,
            max_participants=max_participants,
            current_participants=current_participants,
            price_amount=Decimal(str(price)),
            price_currency="INR",
            status=status,
        )
        event.co_hosts = list(co_hosts or [])
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)
        return event

    return _make
