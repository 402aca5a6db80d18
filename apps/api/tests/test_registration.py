from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from ticketing.main import app
from ticketing.models import Event, EventParticipant, Notification, PaymentOrder, Ticket, User
from ticketing.models.event import EventStatus
from ticketing.models.event_participant import PaymentStatus
from ticketing.models.payment_order import PaymentOrderStatus
from ticketing.services import registration_service, ticket_service
from ticketing.services.exceptions import (
    AlreadyRegisteredError,
    ConflictError,
    EventFullError,
    NotFoundError,
    ValidationError,
)
from ticketing.worker import tasks

from tests.helpers import auth_headers, create_order


@pytest.mark.parametrize(
    ("quantity", "group_tier", "expected"),
    [
        (None, None, 1),
        (0, None, 1),
        (3, None, 3),
        (25, None, 10),
        (2, {"tierPeople": 4, "tierPrice": 1800}, 4),
        (2, {"tierPeople": 0}, 2),
    ],
)
def test_resolve_quantity(quantity, group_tier, expected):
    assert registration_service.resolve_quantity(quantity, group_tier) == expected


def test_resolve_quantity_rejects_oversized_group_tier():
    with pytest.raises(ValidationError):
        registration_service.resolve_quantity(1, {"tierPeople": 12})


def test_register_participant_claims_spots(db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host, max_participants=5)

    participant = registration_service.register_participant(
        db_session, event_id=event.id, user_id=user.id, quantity=3, payment_status=PaymentStatus.FREE
    )

    assert participant.quantity == 3
    db_session.refresh(event)
    assert event.current_participants == 3


def test_registration_failures_are_classified(db_session, make_user, make_event):
    host = make_user("host@example.com")
    first = make_user("first@example.com")
    second = make_user("second@example.com")
    event = make_event(host, max_participants=2)

    registration_service.register_participant(
        db_session, event_id=event.id, user_id=first.id, quantity=1, payment_status=PaymentStatus.FREE
    )

    with pytest.raises(AlreadyRegisteredError):
        registration_service.register_participant(
            db_session, event_id=event.id, user_id=first.id, quantity=1, payment_status=PaymentStatus.FREE
        )
    with pytest.raises(EventFullError):
        registration_service.register_participant(
            db_session, event_id=event.id, user_id=second.id, quantity=2, payment_status=PaymentStatus.FREE
        )
    with pytest.raises(NotFoundError):
        registration_service.register_participant(
            db_session, event_id=uuid.uuid4(), user_id=second.id, quantity=1, payment_status=PaymentStatus.FREE
        )

    db_session.refresh(event)
    assert event.current_participants == 1


def test_unpublished_event_rejects_registration(db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host, status=EventStatus.CANCELLED)

    with pytest.raises(ConflictError) as exc_info:
        registration_service.register_participant(
            db_session, event_id=event.id, user_id=user.id, quantity=1, payment_status=PaymentStatus.FREE
        )
    assert exc_info.value.code == "EVENT_NOT_OPEN"


def test_last_spot_goes_to_one_of_two_concurrent_payers(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user_a = make_user("a@example.com")
    user_b = make_user("b@example.com")
    event = make_event(host, max_participants=1)

    order_a = create_order(client, user_a, event.id)["order_id"]
    order_b = create_order(client, user_b, event.id)["order_id"]
    gateway.mark_paid(order_a, cf_payment_id="cf_a")
    gateway.mark_paid(order_b, cf_payment_id="cf_b")

    barrier = threading.Barrier(2)

    def _verify(user: User, order_id: str):
        with TestClient(app) as local_client:
            barrier.wait()
            return local_client.post(
                "/v1/payments/verify-payment",
                json={"order_id": order_id, "event_id": str(event.id)},
                headers=auth_headers(user),
            )

    with ThreadPoolExecutor(max_workers=2) as executor:
        futures = [executor.submit(_verify, user_a, order_a), executor.submit(_verify, user_b, order_b)]
        responses = [f.result() for f in futures]

    statuses = sorted(resp.status_code for resp in responses)
    assert statuses == [200, 409]

    conflict = next(resp for resp in responses if resp.status_code == 409)
    assert conflict.json()["detail"]["code"] == "EVENT_FULL"

    tickets = db_session.scalar(select(func.count()).select_from(Ticket).where(Ticket.event_id == event.id))
    assert tickets == 1
    refreshed = db_session.get(Event, event.id, populate_existing=True)
    assert refreshed.current_participants == 1


def test_concurrent_requests_never_exceed_capacity(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    event = make_event(host, max_participants=5)
    buyers = [make_user(f"buyer{i}@example.com") for i in range(4)]

    orders = []
    for buyer in buyers:
        order_id = create_order(client, buyer, event.id, quantity=2)["order_id"]
        gateway.mark_paid(order_id, amount="1000.00")
        orders.append((buyer, order_id))

    barrier = threading.Barrier(len(orders))

    def _verify(args):
        user, order_id = args
        with TestClient(app) as local_client:
            barrier.wait()
            return local_client.post(
                "/v1/payments/verify-payment",
                json={"order_id": order_id, "event_id": str(event.id)},
                headers=auth_headers(user),
            )

    with ThreadPoolExecutor(max_workers=len(orders)) as executor:
        responses = list(executor.map(_verify, orders))

    assert [r.status_code for r in responses].count(200) == 2
    assert all(r.json()["detail"]["code"] == "EVENT_FULL" for r in responses if r.status_code == 409)

    claimed = db_session.scalar(
        select(func.coalesce(func.sum(EventParticipant.quantity), 0)).where(EventParticipant.event_id == event.id)
    )
    assert claimed == 4
    assert db_session.get(Event, event.id, populate_existing=True).current_participants == 4


def test_verify_payment_registers_and_issues_ticket(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com", name="Host")
    user = make_user("guest@example.com", name="Guest")
    event = make_event(host, price="500.00", categories=["Music & Concerts"])

    order = create_order(
        client,
        user,
        event.id,
        group_tier={"tierName": "Squad", "tierPeople": 3, "tierPrice": 1350},
        additional_persons=[{"name": "Friend One", "email": "f1@example.com"}, {"name": "Friend Two"}],
    )
    assert order["quantity"] == 3
    assert Decimal(order["amount"]) == Decimal("1350")
    gateway.mark_paid(order["order_id"], amount="1400.00", cf_payment_id="cf_99")

    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order["order_id"], "event_id": str(event.id)},
        headers=auth_headers(user),
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["replayed"] is False
    assert body["participant"]["quantity"] == 3
    assert body["participant"]["payment_status"] == "paid"
    assert body["participant"]["payment_id"] == "cf_99"
    assert body["event"]["current_participants"] == 3
    ticket_body = body["ticket"]
    assert ticket_body["quantity"] == 3
    assert ticket_body["qr_code"].startswith("data:image/png;base64,")
    assert ticket_body["download_url"].endswith(f"/v1/tickets/{ticket_body['id']}/qr?format=png")

    ticket = db_session.scalar(select(Ticket).where(Ticket.user_id == user.id))
    assert ticket.ticket_type == "group"
    fees = {k: Decimal(v) for k, v in ticket.ticket_metadata["fees"].items()}
    assert fees == {"subtotal": Decimal("1350"), "gatewayAndTaxes": Decimal("50"), "total": Decimal("1400")}

    stored_order = db_session.scalar(select(PaymentOrder).where(PaymentOrder.order_id == order["order_id"]))
    assert stored_order.status == PaymentOrderStatus.PAID
    assert stored_order.cf_payment_id == "cf_99"

    # Side effects ran eagerly in-process.
    notification = db_session.scalar(select(Notification).where(Notification.user_id == user.id))
    assert notification.data["ticketNumber"] == ticket.ticket_number
    refreshed_user = db_session.get(User, user.id, populate_existing=True)
    assert refreshed_user.analytics["category_preferences"] == {"Music & Concerts": 1}
    assert refreshed_user.analytics["registered_events"][0]["event"] == str(event.id)


def test_verify_payment_replay_returns_same_registration(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]
    gateway.mark_paid(order_id)

    payload = {"order_id": order_id, "event_id": str(event.id)}
    first = client.post("/v1/payments/verify-payment", json=payload, headers=auth_headers(user))
    second = client.post("/v1/payments/verify-payment", json=payload, headers=auth_headers(user))

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["ticket"]["ticket_number"] == first.json()["ticket"]["ticket_number"]
    assert db_session.get(Event, event.id, populate_existing=True).current_participants == 1
    notifications = db_session.scalar(select(func.count()).select_from(Notification))
    assert notifications == 1


def test_ticket_failure_keeps_registration(client, gateway, db_session, make_user, make_event, monkeypatch):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]
    gateway.mark_paid(order_id)

    def _boom(*args, **kwargs):
        raise RuntimeError("qr renderer crashed")

    monkeypatch.setattr(ticket_service, "issue_ticket", _boom)

    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order_id, "event_id": str(event.id)},
        headers=auth_headers(user),
    )

    assert resp.status_code == 200
    assert resp.json()["ticket"] is None
    participant = db_session.scalar(select(EventParticipant).where(EventParticipant.user_id == user.id))
    assert participant is not None
    assert participant.order_id == order_id


def test_side_effect_dispatch_failure_does_not_fail_registration(
    client, db_session, make_user, make_event, monkeypatch
):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host, price="0")

    def _broker_down(*args, **kwargs):
        raise ConnectionError("broker unreachable")

    monkeypatch.setattr(tasks.send_registration_email, "delay", _broker_down)

    resp = client.post(f"/v1/events/{event.id}/register", headers=auth_headers(user))

    assert resp.status_code == 201, resp.text
    assert resp.json()["ticket"]["ticket_number"].startswith("IND-")
    # The remaining side effects still ran.
    assert db_session.scalar(select(func.count()).select_from(Notification)) == 1
