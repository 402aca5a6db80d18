from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from ticketing.api.errors import http_error_from_service
from ticketing.api.v1.schemas.payments import (
    CreateOrderIn,
    CreateOrderOut,
    ParticipantOut,
    RegistrationOut,
    VerifyPaymentIn,
    WebhookOut,
)
from ticketing.api.v1.schemas.tickets import EventSummaryOut, TicketSummaryOut
from ticketing.auth.deps import CurrentUser, DBSession
from ticketing.core.config import settings
from ticketing.payments import PaymentGateway, get_payment_gateway
from ticketing.services import registration_service
from ticketing.services.exceptions import ServiceError
from ticketing.services.registration_service import RegistrationResult

router = APIRouter(prefix="/payments", tags=["payments"])

Gateway = Annotated[PaymentGateway, Depends(get_payment_gateway)]


def registration_out(result: RegistrationResult, message: str) -> RegistrationOut:
    participant = result.participant
    return RegistrationOut(
        message=message,
        replayed=result.replayed,
        event=EventSummaryOut.from_event(result.event),
        participant=ParticipantOut(
            quantity=participant.quantity,
            payment_status=participant.payment_status,
            payment_id=participant.payment_id,
            order_id=participant.order_id,
            amount_paid=participant.amount_paid,
        ),
        ticket=TicketSummaryOut.from_ticket(result.ticket) if result.ticket else None,
    )


@router.post("/create-order", response_model=CreateOrderOut, status_code=201)
def create_order(payload: CreateOrderIn, user: CurrentUser, db: DBSession, gateway: Gateway):
    try:
        order, session = registration_service.create_payment_order(
            db,
            gateway,
            event_id=payload.event_id,
            user=user,
            quantity=payload.quantity,
            group_tier=payload.tier_dict(),
            additional_persons=payload.persons(),
        )
    except ServiceError as err:
        raise http_error_from_service(err) from err

    return CreateOrderOut(
        order_id=order.order_id,
        payment_session_id=session.payment_session_id,
        amount=order.amount,
        currency=order.currency,
        quantity=order.quantity,
        environment=settings.cashfree_environment.lower(),
    )


@router.post("/verify-payment", response_model=RegistrationOut)
def verify_payment(payload: VerifyPaymentIn, user: CurrentUser, db: DBSession, gateway: Gateway):
    try:
        result = registration_service.verify_payment_and_register(
            db,
            gateway,
            order_id=payload.order_id,
            event_id=payload.event_id,
            user=user,
            quantity=payload.quantity,
            group_tier=payload.tier_dict(),
            additional_persons=payload.persons(),
        )
    except ServiceError as err:
        raise http_error_from_service(err) from err

    message = (
        "already registered with this order"
        if result.replayed
        else "payment verified, registration complete"
    )
    return registration_out(result, message)


@router.post("/webhook", response_model=WebhookOut)
async def webhook(request: Request, db: DBSession, gateway: Gateway):
    # Signature covers the exact bytes sent, so read the body before any parsing.
    raw_body = await request.body()
    try:
        outcome = await run_in_threadpool(
            registration_service.handle_webhook, db, gateway, raw_body, request.headers
        )
    except ServiceError as err:
        raise http_error_from_service(err) from err

    return WebhookOut(action=outcome.action, order_id=outcome.order_id)
