from __future__ import annotations

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Query, Response

from ticketing.api.errors import http_error_from_service
from ticketing.api.v1.schemas.tickets import (
    CheckInOut,
    EventTicketsOut,
    GenerateTicketIn,
    TicketOut,
    TicketQROut,
    TicketStatsOut,
)
from ticketing.auth.deps import CurrentUser, DBSession
from ticketing.models import Event
from ticketing.models.ticket import TicketStatus
from ticketing.services import qr_service, registration_service, ticket_service
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import NotFoundError, ServiceError

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("/my-tickets", response_model=list[TicketOut])
def my_tickets(user: CurrentUser, db: DBSession, status: TicketStatus | None = None):
    tickets = ticket_service.get_user_tickets(db, user.id, status)
    return [TicketOut.from_ticket(t) for t in tickets]


@router.post("/generate", response_model=TicketOut, status_code=201)
def generate_ticket(payload: GenerateTicketIn, user: CurrentUser, db: DBSession):
    try:
        ticket = registration_service.issue_ticket_for_participant(db, event_id=payload.event_id, user=user)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    return TicketOut.from_ticket(ticket)


@router.get("/info/{ticket_number}", response_model=TicketOut)
def ticket_info(ticket_number: str, user: CurrentUser, db: DBSession):
    try:
        ticket = ticket_service.get_ticket_details(db, ticket_number)
        ticket_service.require_ticket_access(ticket, user)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    return TicketOut.from_ticket(ticket)


@router.post("/check-in/{ticket_number}", response_model=CheckInOut)
def check_in(ticket_number: str, user: CurrentUser, db: DBSession):
    try:
        ticket = ticket_service.check_in_ticket(db, ticket_number, user)
    except ServiceError as err:
        raise http_error_from_service(err) from err

    return CheckInOut(
        ticket_number=ticket.ticket_number,
        status=ticket.status,
        check_in_time=ticket.check_in_time,
        check_in_by=ticket.check_in_by,
        holder_name=ticket.user.name if ticket.user else None,
        quantity=ticket.quantity,
    )


@router.get("/event/{event_id}", response_model=EventTicketsOut)
def event_tickets(
    event_id: UUID,
    user: CurrentUser,
    db: DBSession,
    status: TicketStatus | None = None,
):
    try:
        event = db.get(Event, event_id)
        if event is None:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
        ticket_service.require_event_staff(event, user)
        tickets, counts = ticket_service.get_event_tickets(db, event_id, status)
    except ServiceError as err:
        raise http_error_from_service(err) from err

    return EventTicketsOut(
        event_id=event_id,
        tickets=[TicketOut.from_ticket(t, include_event=False) for t in tickets],
        stats=TicketStatsOut(**counts),
    )


@router.get("/{ticket_id}", response_model=TicketOut)
def get_ticket(ticket_id: str, user: CurrentUser, db: DBSession):
    try:
        ticket = ticket_service.get_ticket_details(db, ticket_id)
        ticket_service.require_ticket_access(ticket, user)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    return TicketOut.from_ticket(ticket)


@router.get("/{ticket_id}/qr", response_model=TicketQROut)
def get_ticket_qr(
    ticket_id: str,
    user: CurrentUser,
    db: DBSession,
    format: Literal["json", "png"] = Query(default="json"),
):
    try:
        ticket = ticket_service.get_ticket_details(db, ticket_id)
        ticket_service.require_ticket_access(ticket, user)
    except ServiceError as err:
        raise http_error_from_service(err) from err

    if format == "png":
        return Response(
            content=qr_service.data_url_to_png(ticket.qr_code),
            media_type="image/png",
            headers={"Content-Disposition": f'inline; filename="{ticket.ticket_number}.png"'},
        )
    return TicketQROut(
        ticket_number=ticket.ticket_number,
        qr_code=ticket.qr_code,
        qr_code_url=ticket.qr_code_url,
    )


@router.put("/{ticket_id}/regenerate-qr", response_model=TicketOut)
def regenerate_qr(ticket_id: str, user: CurrentUser, db: DBSession):
    try:
        ticket = ticket_service.get_ticket_details(db, ticket_id)
        ticket_service.require_ticket_access(ticket, user)
        ticket = ticket_service.regenerate_qr_code(db, ticket_id)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    return TicketOut.from_ticket(ticket)


@router.post("/{ticket_id}/cancel", response_model=TicketOut)
def cancel(ticket_id: str, user: CurrentUser, db: DBSession):
    try:
        ticket = ticket_service.cancel_ticket(db, ticket_id, user)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    return TicketOut.from_ticket(ticket)
