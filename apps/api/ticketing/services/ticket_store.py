from __future__ import annotations

import secrets
import string
import time
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from ticketing.core.config import settings
from ticketing.models import Ticket
from ticketing.models.ticket import TicketStatus
from ticketing.services.error_codes import ErrorCode
from ticketing.services.exceptions import (
    InvalidStateError,
    NotFoundError,
    TicketNumberExhaustedError,
)

logger = structlog.get_logger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_uppercase
RANDOM_SUFFIX_LENGTH = 4


def _base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_ticket_number(prefix: str | None = None, now_ms: int | None = None) -> str:
    """Compose ``PREFIX-<base36 epoch-ms>-<4 random base36 chars>``, upper-cased."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(RANDOM_SUFFIX_LENGTH))
    return f"{prefix or settings.ticket_number_prefix}-{_base36(now_ms)}-{suffix}".upper()


def generate_unique_ticket_number(
    is_taken: Callable[[str], bool],
    prefix: str | None = None,
    max_attempts: int | None = None,
) -> str:
    """Generate a ticket number that ``is_taken`` reports as free.

    Every collision regenerates the whole value (fresh timestamp and random
    suffix). Gives up with ``TicketNumberExhaustedError`` after
    ``max_attempts`` candidates.
    """
    attempts = max_attempts or settings.ticket_number_max_attempts
    for attempt in range(1, attempts + 1):
        candidate = generate_ticket_number(prefix)
        if not is_taken(candidate):
            return candidate
        logger.warning("ticket_number_collision", ticket_number=candidate, attempt=attempt)

    raise TicketNumberExhaustedError(
        ErrorCode.TICKET_NUMBER_EXHAUSTED.value,
        f"could not generate a unique ticket number after {attempts} attempts",
    )


def ticket_number_exists(db: Session, ticket_number: str) -> bool:
    return bool(db.scalar(select(exists().where(Ticket.ticket_number == ticket_number))))


def find_by_user_and_event(db: Session, user_id: Any, event_id: Any) -> Ticket | None:
    return db.scalar(select(Ticket).where(Ticket.user_id == user_id, Ticket.event_id == event_id))


def _parse_ticket_id(identifier: str) -> uuid.UUID | None:
    # Internal ids are fixed-length hex UUIDs; anything else is a ticket number.
    candidate = identifier.strip()
    if len(candidate) not in (32, 36):
        return None
    try:
        return uuid.UUID(candidate)
    except ValueError:
        return None


def find_by_number_or_id(db: Session, identifier: str | uuid.UUID) -> Ticket:
    ticket = None
    ticket_id = identifier if isinstance(identifier, uuid.UUID) else _parse_ticket_id(identifier)
    if ticket_id is not None:
        ticket = db.get(Ticket, ticket_id)

    if ticket is None and not isinstance(identifier, uuid.UUID):
        ticket = db.scalar(select(Ticket).where(Ticket.ticket_number == identifier.strip().upper()))

    if ticket is None:
        raise NotFoundError(ErrorCode.TICKET_NOT_FOUND.value, "ticket not found")
    return ticket


def check_in(db: Session, ticket: Ticket, staff_user_id: Any) -> Ticket:
    # Conditional update: two scanners racing on one ticket check it in once.
    result = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.ACTIVE)
        .values(
            status=TicketStatus.CHECKED_IN,
            check_in_time=datetime.now(timezone.utc),
            check_in_by=staff_user_id,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(ticket)
        code = (
            ErrorCode.TICKET_ALREADY_CHECKED_IN
            if ticket.status == TicketStatus.CHECKED_IN
            else ErrorCode.TICKET_NOT_ACTIVE
        )
        raise InvalidStateError(code.value, f"ticket is {ticket.status.value}, cannot check in")

    db.commit()
    db.refresh(ticket)
    return ticket


def cancel(db: Session, ticket: Ticket) -> Ticket:
    result = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.ACTIVE)
        .values(status=TicketStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(ticket)
        if ticket.status == TicketStatus.CHECKED_IN:
            raise InvalidStateError(
                ErrorCode.TICKET_ALREADY_CHECKED_IN.value, "cannot cancel a checked-in ticket"
            )
        raise InvalidStateError(
            ErrorCode.TICKET_NOT_ACTIVE.value, f"ticket is {ticket.status.value}, cannot cancel"
        )

    db.commit()
    db.refresh(ticket)
    return ticket


def list_for_user(db: Session, user_id: Any, status: TicketStatus | None = None) -> list[Ticket]:
    stmt = select(Ticket).where(Ticket.user_id == user_id)
    if status is not None:
        stmt = stmt.where(Ticket.status == status)
    return list(db.scalars(stmt.order_by(Ticket.purchase_date.desc())).unique().all())


def list_for_event(db: Session, event_id: Any, status: TicketStatus | None = None) -> list[Ticket]:
    stmt = select(Ticket).where(Ticket.event_id == event_id)
    if status is not None:
        stmt = stmt.where(Ticket.status == status)
    return list(db.scalars(stmt.order_by(Ticket.purchase_date.desc())).unique().all())


def status_counts(tickets: Iterable[Ticket]) -> dict[str, int]:
    counts = {"total": 0, **{s.value: 0 for s in TicketStatus}}
    for ticket in tickets:
        counts["total"] += 1
        counts[ticket.status.value] += 1
    return counts
