"""
Cashfree PG client.

Only the two calls the registration flow needs are implemented: order
creation and the order's payment-attempt lookup. Configuration is an explicit
``GatewayConfig`` value handed to the client, so tests and multiple merchants
never share process-wide state.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any

import httpx
import structlog

from ticketing.core.config import settings
from ticketing.payments.base import OrderRequest, OrderSession, PaymentAttempt, PaymentGateway
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import PaymentGatewayError, PaymentGatewayTimeoutError

logger = structlog.get_logger(__name__)

BASE_URLS = {
    "SANDBOX": "https://sandbox.cashfree.com/pg",
    "PRODUCTION": "https://api.cashfree.com/pg",
}


@dataclass(frozen=True)
class GatewayConfig:
    app_id: str
    secret_key: str
    environment: str = "SANDBOX"
    api_version: str = "2023-08-01"
    timeout_seconds: float = 10.0
    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    webhook_secret: str = ""

    @property
    def base_url(self) -> str:
        try:
            return BASE_URLS[self.environment.upper()]
        except KeyError:
            raise ValueError(f"unknown cashfree environment: {self.environment}") from None

    @classmethod
    def from_settings(cls) -> GatewayConfig:
        return cls(
            app_id=settings.cashfree_app_id,
            secret_key=settings.cashfree_secret_key,
            environment=settings.cashfree_environment,
            api_version=settings.cashfree_api_version,
            timeout_seconds=settings.cashfree_timeout_seconds,
            max_retries=settings.cashfree_max_retries,
            webhook_secret=settings.cashfree_webhook_secret or settings.cashfree_secret_key,
        )


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class CashfreeGateway(PaymentGateway):
    def __init__(self, config: GatewayConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._client = client or httpx.Client(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    @property
    def config(self) -> GatewayConfig:
        return self._config

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-client-id": self._config.app_id,
            "x-client-secret": self._config.secret_key,
            "x-api-version": self._config.api_version,
        }

    def _request(self, method: str, path: str, *, retry: bool, **kwargs) -> httpx.Response:
        attempts = max(1, self._config.max_retries) if retry else 1
        last_exc: PaymentGatewayError | None = None
        last_cause: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = self._client.request(method, path, headers=self._headers(), **kwargs)
            except httpx.TimeoutException as exc:
                last_exc = PaymentGatewayTimeoutError(
                    ErrorCode.PAYMENT_GATEWAY_TIMEOUT.value, "payment gateway timed out"
                )
                last_cause = exc
            except httpx.TransportError as exc:
                last_exc = PaymentGatewayError(
                    ErrorCode.PAYMENT_GATEWAY_ERROR.value, "payment gateway unreachable"
                )
                last_cause = exc
            else:
                if response.status_code < 500:
                    return response
                last_cause = None
                last_exc = PaymentGatewayError(
                    ErrorCode.PAYMENT_GATEWAY_ERROR.value,
                    f"payment gateway returned HTTP {response.status_code}",
                )

            logger.warning(
                "payment_gateway_request_failed",
                method=method,
                path=path,
                attempt=attempt,
                max_attempts=attempts,
                error=str(last_exc),
            )
            if attempt < attempts and self._config.retry_backoff_seconds > 0:
                time.sleep(self._config.retry_backoff_seconds * 2 ** (attempt - 1))

        assert last_exc is not None
        raise last_exc from last_cause

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return str(body.get("message") or body.get("code") or body)
        return str(body)

    def create_order(self, request: OrderRequest) -> OrderSession:
        body = {
            "order_amount": float(request.amount),
            "order_currency": request.currency,
            "order_id": request.order_id,
            "customer_details": {
                "customer_id": request.customer_id,
                "customer_name": request.customer_name,
                "customer_email": request.customer_email,
                "customer_phone": request.customer_phone,
            },
            "order_meta": {
                "return_url": request.return_url,
                "notify_url": request.notify_url,
            },
        }
        if request.note:
            body["order_note"] = request.note

        # Order creation is not retried: a timeout may still have created the order.
        response = self._request("POST", "/orders", retry=False, json=body)
        if response.status_code >= 400:
            raise PaymentGatewayError(
                ErrorCode.PAYMENT_GATEWAY_ERROR.value,
                f"order creation failed: {self._error_message(response)}",
            )

        data = response.json()
        return OrderSession(
            order_id=data.get("order_id", request.order_id),
            payment_session_id=data["payment_session_id"],
            order_status=data.get("order_status"),
        )

    def get_order_payments(self, order_id: str) -> list[PaymentAttempt]:
        # Pure read of existing payment state, safe to retry.
        response = self._request("GET", f"/orders/{order_id}/payments", retry=True)
        if response.status_code == 404:
            return []
        if response.status_code >= 400:
            raise PaymentGatewayError(
                ErrorCode.PAYMENT_GATEWAY_ERROR.value,
                f"payment lookup failed: {self._error_message(response)}",
            )

        data = response.json() or []
        return [
            PaymentAttempt(
                payment_status=str(item.get("payment_status", "")).upper(),
                cf_payment_id=str(item["cf_payment_id"]) if item.get("cf_payment_id") is not None else None,
                payment_amount=_decimal(item.get("payment_amount")),
                raw=item,
            )
            for item in data
        ]

    def verify_webhook_signature(self, raw_body: bytes, timestamp: str, signature: str) -> bool:
        if not (self._config.webhook_secret and timestamp and signature):
            return False
        return verify_signature(self._config.webhook_secret, raw_body, timestamp, signature)


def compute_signature(secret: str, raw_body: bytes, timestamp: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        timestamp.encode("utf-8") + raw_body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(secret: str, raw_body: bytes, timestamp: str, signature: str) -> bool:
    expected = compute_signature(secret, raw_body, timestamp)
    return hmac.compare_digest(expected, signature.strip())


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    return CashfreeGateway(GatewayConfig.from_settings())
