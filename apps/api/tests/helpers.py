from __future__ import annotations

import json
import os
import time
from typing import Any

from ticketing.auth.jwt import create_access_token
from ticketing.models import User
from ticketing.payments.cashfree import compute_signature

WEBHOOK_SECRET = os.environ.get("CASHFREE_WEBHOOK_SECRET", "test_webhook_secret")


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def signed_webhook(event_type: str, order_id: str, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(
        {
            "type": event_type,
            "event_time": "2026-10-19T10:00:00+05:30",
            "data": {
                "order": {"order_id": order_id, "order_amount": 500.0, "order_currency": "INR"},
                "payment": {"cf_payment_id": "cf_1", "payment_status": "SUCCESS"},
            },
        }
    ).encode("utf-8")
    timestamp = str(int(time.time()))
    headers = {
        "Content-Type": "application/json",
        "x-webhook-timestamp": timestamp,
        "x-webhook-signature": compute_signature(secret, body, timestamp),
    }
    return body, headers


def create_order(client, user: User, event_id: Any, **extra) -> dict:
    resp = client.post(
        "/v1/payments/create-order",
        json={"event_id": str(event_id), **extra},
        headers=auth_headers(user),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
