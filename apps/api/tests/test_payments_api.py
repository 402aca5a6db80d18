from __future__ import annotations

from sqlalchemy import func, select

from ticketing.models import Event, EventParticipant, PaymentOrder
from ticketing.models.event import EventStatus
from ticketing.models.payment_order import PaymentOrderStatus
from ticketing.services.exceptions import PaymentGatewayTimeoutError

from tests.helpers import auth_headers, create_order, signed_webhook


def test_create_order_persists_order_and_calls_gateway(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com", name="Guest")
    event = make_event(host, price="499.00")

    body = create_order(client, user, event.id, quantity=2)

    assert body["payment_session_id"] == f"session_{body['order_id']}"
    assert body["quantity"] == 2
    assert body["environment"] == "sandbox"
    assert body["order_id"].startswith("ORDER_")
    assert len(body["order_id"]) <= 45

    request = gateway.created[0]
    assert request.customer_phone == "9999999999"
    assert request.return_url == f"https://app.example.test/payment-callback?order_id={body['order_id']}"
    assert request.notify_url == "https://api.example.test/v1/payments/webhook"

    order = db_session.scalar(select(PaymentOrder).where(PaymentOrder.order_id == body["order_id"]))
    assert order.status == PaymentOrderStatus.CREATED
    assert order.user_id == user.id


def test_create_order_rejects_free_event(client, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host, price="0")

    resp = client.post(
        "/v1/payments/create-order", json={"event_id": str(event.id)}, headers=auth_headers(user)
    )

    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "EVENT_IS_FREE"


def test_create_order_rejects_full_event(client, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host, max_participants=2, current_participants=2)

    resp = client.post(
        "/v1/payments/create-order", json={"event_id": str(event.id)}, headers=auth_headers(user)
    )

    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "EVENT_FULL"


def test_create_order_requires_auth(client, make_user, make_event):
    event = make_event(make_user("host@example.com"))

    resp = client.post("/v1/payments/create-order", json={"event_id": str(event.id)})

    assert resp.status_code == 401


def test_verify_without_payment_is_rejected(client, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]

    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order_id, "event_id": str(event.id)},
        headers=auth_headers(user),
    )

    assert resp.status_code == 402
    assert resp.json()["detail"]["code"] == "PAYMENT_NOT_FOUND"


def test_verify_unsuccessful_payment_is_rejected(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]
    gateway.mark_status(order_id, "FAILED")

    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order_id, "event_id": str(event.id)},
        headers=auth_headers(user),
    )

    assert resp.status_code == 402
    assert resp.json()["detail"]["code"] == "PAYMENT_NOT_SUCCESSFUL"
    assert resp.json()["detail"]["payment_status"] == "FAILED"
    assert db_session.scalar(select(func.count()).select_from(EventParticipant)) == 0


def test_verify_gateway_timeout_maps_to_504(client, gateway, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]
    gateway.lookup_error = PaymentGatewayTimeoutError("PAYMENT_GATEWAY_TIMEOUT", "payment gateway timed out")

    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order_id, "event_id": str(event.id)},
        headers=auth_headers(user),
    )

    assert resp.status_code == 504


def test_verify_someone_elses_order_is_forbidden(client, gateway, make_user, make_event):
    host = make_user("host@example.com")
    payer = make_user("payer@example.com")
    other = make_user("other@example.com")
    event = make_event(host)
    order_id = create_order(client, payer, event.id)["order_id"]
    gateway.mark_paid(order_id)

    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order_id, "event_id": str(event.id)},
        headers=auth_headers(other),
    )

    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "ORDER_MISMATCH"


def test_webhook_rejects_bad_or_missing_signature(client, gateway, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]
    gateway.mark_paid(order_id)

    body, headers = signed_webhook("PAYMENT_SUCCESS_WEBHOOK", order_id, secret="not-the-secret")
    forged = client.post("/v1/payments/webhook", content=body, headers=headers)
    assert forged.status_code == 401
    assert forged.json()["detail"]["code"] == "INVALID_WEBHOOK_SIGNATURE"

    unsigned = client.post(
        "/v1/payments/webhook", content=body, headers={"Content-Type": "application/json"}
    )
    assert unsigned.status_code == 401

    body, headers = signed_webhook("PAYMENT_SUCCESS_WEBHOOK", order_id)
    tampered = body.replace(b"500.0", b"1.0")
    assert client.post("/v1/payments/webhook", content=tampered, headers=headers).status_code == 401


def test_webhook_success_completes_registration_once(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]
    gateway.mark_paid(order_id)

    body, headers = signed_webhook("PAYMENT_SUCCESS_WEBHOOK", order_id)
    first = client.post("/v1/payments/webhook", content=body, headers=headers)
    retry = client.post("/v1/payments/webhook", content=body, headers=headers)

    assert first.status_code == 200
    assert first.json()["action"] == "registered"
    assert retry.status_code == 200
    assert retry.json()["action"] == "already_processed"
    assert db_session.scalar(select(func.count()).select_from(EventParticipant)) == 1

    # The client's own verification after the webhook is an idempotent replay.
    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order_id, "event_id": str(event.id)},
        headers=auth_headers(user),
    )
    assert resp.status_code == 200
    assert resp.json()["replayed"] is True


def test_webhook_failure_marks_order_failed(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]

    body, headers = signed_webhook("PAYMENT_FAILED_WEBHOOK", order_id)
    resp = client.post("/v1/payments/webhook", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["action"] == "marked_failed"
    order = db_session.scalar(select(PaymentOrder).where(PaymentOrder.order_id == order_id))
    assert order.status == PaymentOrderStatus.FAILED


def test_webhook_ignores_other_event_types(client, gateway):
    body, headers = signed_webhook("PAYMENT_USER_DROPPED_WEBHOOK", "ORDER_UNKNOWN")

    resp = client.post("/v1/payments/webhook", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["action"] == "ignored"


def test_verify_uses_the_quantity_that_was_paid_for(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host, price="500.00", max_participants=20)
    order = create_order(client, user, event.id, quantity=1)
    gateway.mark_paid(order["order_id"], amount="500.00")

    inflated = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order["order_id"], "event_id": str(event.id), "quantity": 10},
        headers=auth_headers(user),
    )
    assert inflated.status_code == 422
    assert inflated.json()["detail"]["code"] == "INVALID_QUANTITY"

    retiered = client.post(
        "/v1/payments/verify-payment",
        json={
            "order_id": order["order_id"],
            "event_id": str(event.id),
            "group_tier": {"tierName": "Crew", "tierPeople": 6, "tierPrice": 500},
        },
        headers=auth_headers(user),
    )
    assert retiered.status_code == 422
    assert db_session.get(Event, event.id, populate_existing=True).current_participants == 0

    ok = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order["order_id"], "event_id": str(event.id), "quantity": 1},
        headers=auth_headers(user),
    )
    assert ok.status_code == 200
    assert ok.json()["participant"]["quantity"] == 1
    assert ok.json()["ticket"]["quantity"] == 1
    assert db_session.get(Event, event.id, populate_existing=True).current_participants == 1


def test_verify_rejects_underpaid_order(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host, price="500.00")
    order = create_order(client, user, event.id, quantity=3)
    gateway.mark_paid(order["order_id"], amount="500.00")

    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": order["order_id"], "event_id": str(event.id)},
        headers=auth_headers(user),
    )

    assert resp.status_code == 402
    assert resp.json()["detail"]["code"] == "PAYMENT_AMOUNT_MISMATCH"
    assert db_session.scalar(select(func.count()).select_from(EventParticipant)) == 0


def test_webhook_acknowledges_paid_order_for_closed_event(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    user = make_user("guest@example.com")
    event = make_event(host)
    order_id = create_order(client, user, event.id)["order_id"]
    gateway.mark_paid(order_id, cf_payment_id="cf_closed")

    db_session.get(Event, event.id).status = EventStatus.CANCELLED
    db_session.commit()

    body, headers = signed_webhook("PAYMENT_SUCCESS_WEBHOOK", order_id)
    resp = client.post("/v1/payments/webhook", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["action"] == "registration_failed"
    order = db_session.scalar(
        select(PaymentOrder).where(PaymentOrder.order_id == order_id).execution_options(populate_existing=True)
    )
    assert order.status == PaymentOrderStatus.PAID_UNREGISTERED
    assert order.cf_payment_id == "cf_closed"


def test_paid_order_for_full_event_is_flagged_for_refund(client, gateway, db_session, make_user, make_event):
    host = make_user("host@example.com")
    first = make_user("first@example.com")
    second = make_user("second@example.com")
    event = make_event(host, max_participants=1)
    first_order = create_order(client, first, event.id)["order_id"]
    second_order = create_order(client, second, event.id)["order_id"]
    gateway.mark_paid(first_order)
    gateway.mark_paid(second_order)

    assert client.post(
        "/v1/payments/verify-payment",
        json={"order_id": first_order, "event_id": str(event.id)},
        headers=auth_headers(first),
    ).status_code == 200
    resp = client.post(
        "/v1/payments/verify-payment",
        json={"order_id": second_order, "event_id": str(event.id)},
        headers=auth_headers(second),
    )

    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "EVENT_FULL"
    order = db_session.scalar(select(PaymentOrder).where(PaymentOrder.order_id == second_order))
    assert order.status == PaymentOrderStatus.PAID_UNREGISTERED
