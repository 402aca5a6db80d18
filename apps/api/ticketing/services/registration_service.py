"""
Registration and payment verification.

This is the only place where money, capacity and ticket issuance meet. Every
entry point funnels into ``register_participant``, whose single conditional
UPDATE claims the spots and guards against double registration in one
statement; ticket issuance and side effects only run after it has committed.
"""
from __future__ import annotations

import json
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing.core.config import settings
from ticketing.models import Event, EventParticipant, PaymentOrder, Ticket, User
from ticketing.models.event import EventStatus
from ticketing.models.event_participant import PaymentStatus
from ticketing.models.payment_order import PaymentOrderStatus
from ticketing.models.ticket import MAX_TICKET_QUANTITY, MIN_TICKET_QUANTITY, TicketType
from ticketing.payments.base import OrderRequest, OrderSession, PaymentAttempt, PaymentGateway
from ticketing.services import notifications, ticket_service
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import (
    AlreadyRegisteredError,
    ConflictError,
    EventFullError,
    InvalidSignatureError,
    NotFoundError,
    PaymentNotFoundError,
    PaymentNotSuccessfulError,
    PermissionDeniedError,
    RegistrationFailedError,
    ServiceError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

WEBHOOK_PAYMENT_SUCCESS = "PAYMENT_SUCCESS_WEBHOOK"
WEBHOOK_PAYMENT_FAILED = "PAYMENT_FAILED_WEBHOOK"
DEFAULT_CUSTOMER_PHONE = "9999999999"


@dataclass
class RegistrationResult:
    event: Event
    participant: EventParticipant
    ticket: Ticket | None
    replayed: bool = False


@dataclass
class WebhookOutcome:
    event_type: str | None
    order_id: str | None
    action: str
    detail: dict[str, Any] = field(default_factory=dict)


def resolve_quantity(quantity: int | None, group_tier: Mapping[str, Any] | None = None) -> int:
    """A group tier with ``tierPeople > 0`` decides the quantity; otherwise clamp to [1, 10]."""
    if group_tier:
        try:
            tier_people = int(group_tier.get("tierPeople") or 0)
        except (TypeError, ValueError):
            tier_people = 0
        if tier_people > 0:
            if tier_people > MAX_TICKET_QUANTITY:
                raise ValidationError(
                    ErrorCode.INVALID_QUANTITY.value,
                    f"group tiers are limited to {MAX_TICKET_QUANTITY} people",
                )
            return tier_people

    try:
        requested = int(quantity) if quantity is not None else MIN_TICKET_QUANTITY
    except (TypeError, ValueError):
        requested = MIN_TICKET_QUANTITY
    return min(max(requested, MIN_TICKET_QUANTITY), MAX_TICKET_QUANTITY)


def _find_participant(db: Session, event_id: Any, user_id: Any) -> EventParticipant | None:
    return db.scalar(
        select(EventParticipant).where(
            EventParticipant.event_id == event_id,
            EventParticipant.user_id == user_id,
        )
    )


def _classify_registration_failure(
    db: Session, event_id: Any, user_id: Any, quantity: int
) -> ServiceError:
    event = db.get(Event, event_id, populate_existing=True)
    if event is None:
        return NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    if _find_participant(db, event_id, user_id) is not None:
        return AlreadyRegisteredError(
            ErrorCode.ALREADY_REGISTERED.value, "you are already registered for this event"
        )
    if event.status != EventStatus.PUBLISHED:
        return ConflictError(
            ErrorCode.EVENT_NOT_OPEN.value, f"event is {event.status.value}, registration is closed"
        )

    remaining = max(0, event.max_participants - event.current_participants)
    if remaining < quantity:
        return EventFullError(
            ErrorCode.EVENT_FULL.value,
            f"not enough spots left: {remaining} available, {quantity} requested",
        )
    # Capacity freed up between the update and this read.
    return RegistrationFailedError(
        ErrorCode.REGISTRATION_FAILED.value, "registration could not be completed, please retry"
    )


def register_participant(
    db: Session,
    *,
    event_id: Any,
    user_id: Any,
    quantity: int,
    payment_status: PaymentStatus,
    payment_id: str | None = None,
    order_id: str | None = None,
    amount_paid: Decimal | None = None,
    additional_persons: list[dict[str, Any]] | None = None,
) -> EventParticipant:
    """Claim ``quantity`` spots for the user and record the participant entry.

    The event row is matched only while it is published, has room for the
    whole quantity and has no participant entry for this user; the counter is
    incremented in the same statement. The participant insert commits in the
    same transaction, with the unique (event, user) constraint as backstop.
    """
    already_registered = exists().where(
        EventParticipant.event_id == event_id,
        EventParticipant.user_id == user_id,
    )
    result = db.execute(
        update(Event)
        .where(
            Event.id == event_id,
            Event.status == EventStatus.PUBLISHED,
            Event.current_participants + quantity <= Event.max_participants,
            ~already_registered,
        )
        .values(current_participants=Event.current_participants + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        err = _classify_registration_failure(db, event_id, user_id, quantity)
        logger.info(
            "registration_rejected",
            event_id=str(event_id),
            user_id=str(user_id),
            quantity=quantity,
            code=err.code,
        )
        raise err

    participant = EventParticipant(
        event_id=event_id,
        user_id=user_id,
        quantity=quantity,
        payment_status=payment_status,
        payment_id=payment_id,
        order_id=order_id,
        amount_paid=amount_paid,
        additional_persons=list(additional_persons or []),
    )
    db.add(participant)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyRegisteredError(
            ErrorCode.ALREADY_REGISTERED.value, "you are already registered for this event"
        ) from exc

    db.refresh(participant)
    logger.info(
        "participant_registered",
        event_id=str(event_id),
        user_id=str(user_id),
        quantity=quantity,
        payment_status=payment_status.value,
    )
    return participant


def confirm_payment(gateway: PaymentGateway, order_id: str) -> PaymentAttempt:
    attempts = gateway.get_order_payments(order_id)
    if not attempts:
        raise PaymentNotFoundError(
            ErrorCode.PAYMENT_NOT_FOUND.value, f"no payment found for order {order_id}"
        )

    payment = next((a for a in attempts if a.succeeded), attempts[0])
    if not payment.succeeded:
        raise PaymentNotSuccessfulError(
            ErrorCode.PAYMENT_NOT_SUCCESSFUL.value,
            f"payment status is {payment.payment_status or 'unknown'}",
            payment_status=payment.payment_status,
        )
    return payment


def _ticket_type(group_tier: Mapping[str, Any] | None, quantity: int) -> str:
    if group_tier or quantity > 1:
        return TicketType.GROUP.value
    return TicketType.GENERAL.value


def _ticket_metadata(
    event: Event,
    quantity: int,
    amount_paid: Decimal | None,
    group_tier: Mapping[str, Any] | None,
    order_id: str | None,
) -> dict[str, Any]:
    base_price = Decimal(event.price_amount or 0)
    base_total = _order_amount(event, quantity, group_tier)
    paid = amount_paid if amount_paid is not None else base_total
    metadata: dict[str, Any] = {
        "basePrice": str(base_price),
        "fees": {
            "subtotal": str(base_total),
            "gatewayAndTaxes": str(max(paid - base_total, Decimal("0"))),
            "total": str(paid),
        },
    }
    if group_tier:
        metadata["groupTier"] = dict(group_tier)
    if order_id:
        metadata["orderId"] = order_id
    return metadata


def _issue_for_participant(
    db: Session,
    *,
    user: User,
    event: Event,
    participant: EventParticipant,
    group_tier: Mapping[str, Any] | None = None,
) -> Ticket:
    return ticket_service.issue_ticket(
        db,
        user_id=user.id,
        event_id=event.id,
        amount=participant.amount_paid if participant.amount_paid is not None else Decimal("0"),
        payment_id=participant.payment_id,
        ticket_type=_ticket_type(group_tier, participant.quantity),
        quantity=participant.quantity,
        metadata=_ticket_metadata(
            event, participant.quantity, participant.amount_paid, group_tier, participant.order_id
        ),
    )


def _issue_ticket_quietly(
    db: Session,
    *,
    user: User,
    event: Event,
    participant: EventParticipant,
    group_tier: Mapping[str, Any] | None = None,
) -> Ticket | None:
    # Registration is already committed; a missing ticket can be regenerated later.
    try:
        return _issue_for_participant(
            db, user=user, event=event, participant=participant, group_tier=group_tier
        )
    except Exception:
        db.rollback()
        logger.exception(
            "ticket_issue_failed",
            event_id=str(event.id),
            user_id=str(user.id),
            order_id=participant.order_id,
        )
        return None


def _load_order(db: Session, order_id: str) -> PaymentOrder:
    order = db.scalar(select(PaymentOrder).where(PaymentOrder.order_id == order_id))
    if order is None:
        raise NotFoundError(ErrorCode.ORDER_NOT_FOUND.value, f"order {order_id} not found")
    return order


def _require_matching_order_terms(
    order: PaymentOrder,
    quantity: int | None,
    group_tier: Mapping[str, Any] | None,
) -> None:
    if group_tier is not None and dict(group_tier) != (order.group_tier or {}):
        raise ValidationError(
            ErrorCode.INVALID_QUANTITY.value, "group tier differs from the one on the order"
        )
    if quantity is not None and quantity != order.quantity:
        raise ValidationError(
            ErrorCode.INVALID_QUANTITY.value,
            f"order {order.order_id} was placed for {order.quantity}, not {quantity}",
        )


def _mark_paid_unregistered(db: Session, order: PaymentOrder, payment: PaymentAttempt) -> None:
    order.status = PaymentOrderStatus.PAID_UNREGISTERED
    order.cf_payment_id = payment.cf_payment_id
    db.add(order)
    db.commit()
    logger.error(
        "payment_captured_without_registration",
        order_id=order.order_id,
        cf_payment_id=payment.cf_payment_id,
        amount=str(order.amount),
    )


def verify_payment_and_register(
    db: Session,
    gateway: PaymentGateway,
    *,
    order_id: str,
    event_id: Any,
    user: User,
    quantity: int | None = None,
    group_tier: Mapping[str, Any] | None = None,
    additional_persons: list[dict[str, Any]] | None = None,
) -> RegistrationResult:
    order = _load_order(db, order_id)
    if order.user_id != user.id or order.event_id != event_id:
        raise PermissionDeniedError(
            ErrorCode.ORDER_MISMATCH.value, "this order does not belong to you or this event"
        )

    # The order was priced from its stored quantity and tier; those are what was paid for.
    _require_matching_order_terms(order, quantity, group_tier)
    group_tier = order.group_tier
    if additional_persons is None:
        additional_persons = order.additional_persons
    resolved = resolve_quantity(order.quantity, group_tier)

    payment = confirm_payment(gateway, order_id)
    if payment.payment_amount is not None and payment.payment_amount < order.amount:
        raise PaymentNotSuccessfulError(
            ErrorCode.PAYMENT_AMOUNT_MISMATCH.value,
            f"paid {payment.payment_amount} but the order is for {order.amount}",
            payment_status=payment.payment_status,
        )
    amount_paid = payment.payment_amount if payment.payment_amount is not None else order.amount

    try:
        participant = register_participant(
            db,
            event_id=event_id,
            user_id=user.id,
            quantity=resolved,
            payment_status=PaymentStatus.PAID,
            payment_id=payment.cf_payment_id,
            order_id=order_id,
            amount_paid=amount_paid,
            additional_persons=additional_persons,
        )
    except AlreadyRegisteredError:
        participant = _find_participant(db, event_id, user.id)
        if participant is None or participant.order_id != order_id:
            _mark_paid_unregistered(db, order, payment)
            raise
        # Replay of an order that already registered this user: hand back the same result.
        event = db.get(Event, event_id, populate_existing=True)
        ticket = _issue_ticket_quietly(
            db, user=user, event=event, participant=participant, group_tier=group_tier
        )
        logger.info("registration_replayed", order_id=order_id, event_id=str(event_id))
        return RegistrationResult(event=event, participant=participant, ticket=ticket, replayed=True)
    except (ConflictError, NotFoundError):
        _mark_paid_unregistered(db, order, payment)
        raise

    order.status = PaymentOrderStatus.PAID
    order.cf_payment_id = payment.cf_payment_id
    db.add(order)
    db.commit()

    event = db.get(Event, event_id, populate_existing=True)
    ticket = _issue_ticket_quietly(
        db, user=user, event=event, participant=participant, group_tier=group_tier
    )
    notifications.dispatch_registration_side_effects(
        user=user, event=event, participant=participant, ticket=ticket
    )

    logger.info(
        "registration_completed",
        order_id=order_id,
        event_id=str(event_id),
        user_id=str(user.id),
        quantity=resolved,
        ticket_number=ticket.ticket_number if ticket else None,
    )
    return RegistrationResult(event=event, participant=participant, ticket=ticket)


def _order_amount(event: Event, quantity: int, group_tier: Mapping[str, Any] | None) -> Decimal:
    if group_tier and group_tier.get("tierPrice") is not None:
        return Decimal(str(group_tier["tierPrice"]))
    return Decimal(event.price_amount or 0) * quantity


def new_order_id(user_id: Any, event_id: Any, now_ms: int | None = None) -> str:
    # Cashfree caps order ids at 45 characters, so ids are shortened.
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    user_part = str(user_id).replace("-", "")[:8]
    event_part = str(event_id).replace("-", "")[:8]
    return f"ORDER_{now_ms}_{user_part}_{event_part}_{secrets.token_hex(2)}"


def create_payment_order(
    db: Session,
    gateway: PaymentGateway,
    *,
    event_id: Any,
    user: User,
    quantity: int | None = None,
    group_tier: Mapping[str, Any] | None = None,
    additional_persons: list[dict[str, Any]] | None = None,
) -> tuple[PaymentOrder, OrderSession]:
    event = db.get(Event, event_id, populate_existing=True)
    if event is None:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    if event.is_free:
        raise ValidationError(
            ErrorCode.EVENT_IS_FREE.value, "this event is free, register without payment"
        )
    if event.status != EventStatus.PUBLISHED:
        raise ConflictError(
            ErrorCode.EVENT_NOT_OPEN.value, f"event is {event.status.value}, registration is closed"
        )

    resolved = resolve_quantity(quantity, group_tier)
    # Early rejection before the user pays; the registration update is what enforces these.
    if _find_participant(db, event.id, user.id) is not None:
        raise AlreadyRegisteredError(
            ErrorCode.ALREADY_REGISTERED.value, "you are already registered for this event"
        )
    remaining = event.max_participants - event.current_participants
    if remaining < resolved:
        raise EventFullError(
            ErrorCode.EVENT_FULL.value,
            f"not enough spots left: {max(remaining, 0)} available, {resolved} requested",
        )

    amount = _order_amount(event, resolved, group_tier)
    order_id = new_order_id(user.id, event.id)
    session = gateway.create_order(
        OrderRequest(
            order_id=order_id,
            amount=amount,
            currency=event.price_currency or settings.ticket_currency,
            customer_id=str(user.id),
            customer_name=user.name or (user.email or "Guest"),
            customer_email=user.email or "",
            customer_phone=user.phone_number or DEFAULT_CUSTOMER_PHONE,
            return_url=f"{settings.frontend_url.rstrip('/')}/payment-callback?order_id={order_id}",
            notify_url=f"{settings.backend_url.rstrip('/')}/v1/payments/webhook",
            note=f"Registration for {event.title}",
        )
    )

    order = PaymentOrder(
        order_id=order_id,
        user_id=user.id,
        event_id=event.id,
        amount=amount,
        currency=event.price_currency or settings.ticket_currency,
        quantity=resolved,
        group_tier=dict(group_tier) if group_tier else None,
        additional_persons=list(additional_persons or []),
        status=PaymentOrderStatus.CREATED,
        payment_session_id=session.payment_session_id,
    )
    db.add(order)
    db.commit()
    db.refresh(order)

    logger.info(
        "payment_order_created",
        order_id=order_id,
        event_id=str(event.id),
        user_id=str(user.id),
        amount=str(amount),
        quantity=resolved,
    )
    return order, session


def register_free_event(db: Session, *, event_id: Any, user: User) -> RegistrationResult:
    event = db.get(Event, event_id, populate_existing=True)
    if event is None:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    if not event.is_free:
        raise ValidationError(
            ErrorCode.EVENT_REQUIRES_PAYMENT.value, "this event requires payment"
        )

    participant = register_participant(
        db,
        event_id=event.id,
        user_id=user.id,
        quantity=MIN_TICKET_QUANTITY,
        payment_status=PaymentStatus.FREE,
        amount_paid=Decimal("0"),
    )
    event = db.get(Event, event_id, populate_existing=True)
    ticket = _issue_ticket_quietly(db, user=user, event=event, participant=participant)
    notifications.dispatch_registration_side_effects(
        user=user, event=event, participant=participant, ticket=ticket
    )

    logger.info("free_registration_completed", event_id=str(event.id), user_id=str(user.id))
    return RegistrationResult(event=event, participant=participant, ticket=ticket)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def handle_webhook(
    db: Session,
    gateway: PaymentGateway,
    raw_body: bytes,
    headers: Mapping[str, str],
) -> WebhookOutcome:
    """Process a gateway webhook after verifying its signature.

    The payload only tells us which order to look at. Success notifications
    re-confirm the payment with the gateway through the same path the client
    uses, so a replayed or forged-but-signed body cannot register anyone
    without a real successful payment.
    """
    signature = _header(headers, "x-webhook-signature")
    timestamp = _header(headers, "x-webhook-timestamp")
    if not signature or not timestamp or not gateway.verify_webhook_signature(raw_body, timestamp, signature):
        logger.warning("webhook_signature_rejected", has_signature=bool(signature), has_timestamp=bool(timestamp))
        raise InvalidSignatureError(
            ErrorCode.INVALID_WEBHOOK_SIGNATURE.value, "webhook signature verification failed"
        )

    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise ValidationError(
            ErrorCode.INVALID_WEBHOOK_PAYLOAD.value, "webhook body is not valid JSON"
        ) from exc
    if not isinstance(payload, dict):
        raise ValidationError(ErrorCode.INVALID_WEBHOOK_PAYLOAD.value, "webhook body must be an object")

    event_type = payload.get("type")
    order_id = ((payload.get("data") or {}).get("order") or {}).get("order_id")
    logger.info("webhook_received", event_type=event_type, order_id=order_id)

    if event_type not in (WEBHOOK_PAYMENT_SUCCESS, WEBHOOK_PAYMENT_FAILED):
        return WebhookOutcome(event_type, order_id, "ignored")
    if not order_id:
        raise ValidationError(ErrorCode.INVALID_WEBHOOK_PAYLOAD.value, "webhook has no order id")

    order = db.scalar(select(PaymentOrder).where(PaymentOrder.order_id == order_id))
    if order is None:
        logger.warning("webhook_unknown_order", order_id=order_id)
        return WebhookOutcome(event_type, order_id, "unknown_order")

    if event_type == WEBHOOK_PAYMENT_FAILED:
        if order.status not in (PaymentOrderStatus.PAID, PaymentOrderStatus.PAID_UNREGISTERED):
            order.status = PaymentOrderStatus.FAILED
            db.add(order)
            db.commit()
        logger.info("webhook_payment_failed", order_id=order_id)
        return WebhookOutcome(event_type, order_id, "marked_failed")

    user = db.get(User, order.user_id)
    if user is None:
        logger.warning("webhook_order_user_missing", order_id=order_id)
        return WebhookOutcome(event_type, order_id, "unknown_order")

    try:
        result = verify_payment_and_register(db, gateway, order_id=order_id, event_id=order.event_id, user=user)
    except AlreadyRegisteredError:
        # Registered earlier through a different order; this payment needs a refund.
        logger.info("webhook_user_already_registered", order_id=order_id)
        return WebhookOutcome(event_type, order_id, "already_registered")
    except (ConflictError, NotFoundError) as exc:
        # Full, closed or gone: retrying the webhook cannot help, the order is flagged for refund.
        logger.error("registration_failed_after_payment", order_id=order_id, code=exc.code)
        return WebhookOutcome(event_type, order_id, "registration_failed", {"code": exc.code})

    return WebhookOutcome(
        event_type,
        order_id,
        "already_processed" if result.replayed else "registered",
        {"ticket_number": result.ticket.ticket_number if result.ticket else None},
    )


def issue_ticket_for_participant(db: Session, *, event_id: Any, user: User) -> Ticket:
    """Issue (or return) the ticket for an existing registration."""
    participant = _find_participant(db, event_id, user.id)
    if participant is None:
        raise PermissionDeniedError(
            ErrorCode.NOT_REGISTERED.value, "you are not registered for this event"
        )
    event = db.get(Event, event_id)
    if event is None:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")

    group_tier = None
    if participant.order_id:
        order = db.scalar(select(PaymentOrder).where(PaymentOrder.order_id == participant.order_id))
        group_tier = order.group_tier if order else None
    return _issue_for_participant(
        db, user=user, event=event, participant=participant, group_tier=group_tier
    )
