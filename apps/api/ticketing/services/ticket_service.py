from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing.core.config import settings
from ticketing.models import Event, Ticket, User
from ticketing.models.ticket import MAX_TICKET_QUANTITY, MIN_TICKET_QUANTITY, TicketStatus, TicketType
from ticketing.services import qr_service, ticket_store
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import (
    DuplicateTicketNumberError,
    NotFoundError,
    PermissionDeniedError,
    TicketNumberExhaustedError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def require_event_staff(event: Event, user: User) -> None:
    if not event.is_staff(user.id):
        raise PermissionDeniedError(
            ErrorCode.NOT_EVENT_STAFF.value, "only the event host or a co-host can do this"
        )


def require_ticket_owner(ticket: Ticket, user: User) -> None:
    if ticket.user_id != user.id:
        raise PermissionDeniedError(
            ErrorCode.NOT_TICKET_OWNER.value, "you do not have access to this ticket"
        )


def require_ticket_access(ticket: Ticket, user: User) -> None:
    # Holders see their own tickets; hosts and co-hosts see every ticket of their event.
    if ticket.user_id == user.id or ticket.event.is_staff(user.id):
        return
    raise PermissionDeniedError(
        ErrorCode.NOT_TICKET_OWNER.value, "you do not have access to this ticket"
    )


def _insert_ticket(db: Session, ticket: Ticket) -> Ticket:
    db.add(ticket)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        # The (user, event) constraint lost the race: the winner's row is the answer.
        existing = ticket_store.find_by_user_and_event(db, ticket.user_id, ticket.event_id)
        if existing is not None:
            logger.info(
                "ticket_issue_conflict",
                ticket_number=existing.ticket_number,
                user_id=str(ticket.user_id),
                event_id=str(ticket.event_id),
            )
            return existing
        raise DuplicateTicketNumberError(
            ErrorCode.DUPLICATE_TICKET_NUMBER.value,
            f"ticket number {ticket.ticket_number} already taken",
        ) from exc

    db.refresh(ticket)
    return ticket


def issue_ticket(
    db: Session,
    *,
    user_id: Any,
    event_id: Any,
    amount: Decimal | int | float | None = None,
    payment_id: str | None = None,
    ticket_type: str = TicketType.GENERAL.value,
    quantity: int = MIN_TICKET_QUANTITY,
    metadata: dict[str, Any] | None = None,
) -> Ticket:
    """Return the ticket for (user, event), creating it only if absent.

    An existing ticket is returned untouched, including its original QR code,
    whatever amount or metadata this call carries. Concurrent callers that
    both miss the existence check are reconciled by the unique (user, event)
    constraint: the loser re-reads and returns the winner's ticket.
    """
    existing = ticket_store.find_by_user_and_event(db, user_id, event_id)
    if existing is not None:
        logger.info("ticket_already_issued", ticket_number=existing.ticket_number)
        return existing

    event = db.get(Event, event_id)
    if event is None:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND.value, "event not found")
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError(ErrorCode.USER_NOT_FOUND.value, "user not found")

    if not MIN_TICKET_QUANTITY <= quantity <= MAX_TICKET_QUANTITY:
        raise ValidationError(
            ErrorCode.INVALID_QUANTITY.value,
            f"quantity must be between {MIN_TICKET_QUANTITY} and {MAX_TICKET_QUANTITY}",
        )

    price = Decimal(str(amount)) if amount is not None else Decimal(event.price_amount or 0)
    ticket_metadata = {"ticketType": ticket_type or TicketType.GENERAL.value, **(metadata or {})}

    attempts = settings.ticket_number_max_attempts
    for attempt in range(1, attempts + 1):
        ticket_number = ticket_store.generate_unique_ticket_number(
            lambda candidate: ticket_store.ticket_number_exists(db, candidate)
        )
        payload = qr_service.build_qr_payload(ticket_number, event, user)
        qr_code = qr_service.render_qr_data_url(payload)

        ticket = Ticket(
            ticket_number=ticket_number,
            event_id=event.id,
            user_id=user.id,
            qr_code=qr_code,
            status=TicketStatus.ACTIVE,
            quantity=quantity,
            price_amount=price,
            price_currency=settings.ticket_currency,
            payment_id=payment_id,
            ticket_metadata=ticket_metadata,
        )
        try:
            stored = _insert_ticket(db, ticket)
        except DuplicateTicketNumberError:
            logger.warning("ticket_number_taken_on_insert", ticket_number=ticket_number, attempt=attempt)
            continue
        if stored is not ticket:
            # Lost the (user, event) race; nothing of ours was persisted.
            return stored

        # Mirrored only after the insert has won.
        qr_code_url = qr_service.mirror_qr_image(qr_code, ticket_number)
        if qr_code_url:
            ticket.qr_code_url = qr_code_url
            db.add(ticket)
            db.commit()

        logger.info(
            "ticket_issued",
            ticket_number=ticket.ticket_number,
            user_id=str(user.id),
            event_id=str(event.id),
            quantity=ticket.quantity,
            mirrored=ticket.qr_code_url is not None,
        )
        return ticket

    raise TicketNumberExhaustedError(
        ErrorCode.TICKET_NUMBER_EXHAUSTED.value,
        f"could not persist a unique ticket number after {attempts} attempts",
    )


def get_ticket_details(db: Session, identifier: str) -> Ticket:
    return ticket_store.find_by_number_or_id(db, identifier)


def get_user_tickets(db: Session, user_id: Any, status: TicketStatus | None = None) -> list[Ticket]:
    return ticket_store.list_for_user(db, user_id, status)


def get_event_tickets(
    db: Session, event_id: Any, status: TicketStatus | None = None
) -> tuple[list[Ticket], dict[str, int]]:
    tickets = ticket_store.list_for_event(db, event_id, status)
    return tickets, ticket_store.status_counts(tickets)


def _require_check_in_open(event: Event) -> None:
    window = settings.check_in_window_hours
    if window is None or event.starts_at is None:
        return
    opens_at = _as_utc(event.starts_at) - timedelta(hours=window)
    if datetime.now(timezone.utc) < opens_at:
        raise ValidationError(
            ErrorCode.CHECK_IN_NOT_OPEN.value,
            f"check-in opens {window:g} hours before the event",
        )


def check_in_ticket(db: Session, ticket_number: str, staff: User) -> Ticket:
    ticket = ticket_store.find_by_number_or_id(db, ticket_number)
    require_event_staff(ticket.event, staff)
    _require_check_in_open(ticket.event)

    ticket = ticket_store.check_in(db, ticket, staff.id)
    logger.info(
        "ticket_checked_in",
        ticket_number=ticket.ticket_number,
        event_id=str(ticket.event_id),
        staff_id=str(staff.id),
    )
    return ticket


def cancel_ticket(db: Session, identifier: str, user: User) -> Ticket:
    ticket = ticket_store.find_by_number_or_id(db, identifier)
    require_ticket_owner(ticket, user)

    ticket = ticket_store.cancel(db, ticket)
    logger.info("ticket_cancelled", ticket_number=ticket.ticket_number)
    return ticket


def regenerate_qr_code(db: Session, identifier: str) -> Ticket:
    """Re-render the QR from the ticket's current event and holder data.

    The ticket number and every other identity field stay as they are.
    """
    ticket = ticket_store.find_by_number_or_id(db, identifier)
    payload = qr_service.build_qr_payload(ticket.ticket_number, ticket.event, ticket.user)
    ticket.qr_code = qr_service.render_qr_data_url(payload)
    ticket.qr_code_url = qr_service.mirror_qr_image(ticket.qr_code, ticket.ticket_number) or ticket.qr_code_url
    db.add(ticket)
    db.commit()
    db.refresh(ticket)

    logger.info("ticket_qr_regenerated", ticket_number=ticket.ticket_number)
    return ticket
