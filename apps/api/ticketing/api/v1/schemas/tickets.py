from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ticketing.core.config import settings
from ticketing.models import Event, Ticket
from ticketing.models.event import EventStatus
from ticketing.models.ticket import TicketStatus


class SchemaBase(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class EventSummaryOut(SchemaBase):
    id: UUID
    title: str
    starts_at: datetime | None = None
    location: dict[str, Any] = Field(default_factory=dict)
    categories: list[str] = Field(default_factory=list)
    price_amount: Decimal
    price_currency: str
    max_participants: int
    current_participants: int
    status: EventStatus

    @classmethod
    def from_event(cls, event: Event) -> EventSummaryOut:
        return cls.model_validate(event)


class TicketOut(SchemaBase):
    id: UUID
    ticket_number: str
    event_id: UUID
    user_id: UUID
    status: TicketStatus
    quantity: int
    price_amount: Decimal
    price_currency: str
    payment_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    qr_code: str
    qr_code_url: str | None = None
    purchase_date: datetime
    check_in_time: datetime | None = None
    check_in_by: UUID | None = None
    event: EventSummaryOut | None = None

    @classmethod
    def from_ticket(cls, ticket: Ticket, include_event: bool = True) -> TicketOut:
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            event_id=ticket.event_id,
            user_id=ticket.user_id,
            status=ticket.status,
            quantity=ticket.quantity,
            price_amount=ticket.price_amount,
            price_currency=ticket.price_currency,
            payment_id=ticket.payment_id,
            metadata=ticket.ticket_metadata or {},
            qr_code=ticket.qr_code,
            qr_code_url=ticket.qr_code_url,
            purchase_date=ticket.purchase_date,
            check_in_time=ticket.check_in_time,
            check_in_by=ticket.check_in_by,
            event=EventSummaryOut.from_event(ticket.event) if include_event and ticket.event else None,
        )


class TicketSummaryOut(BaseModel):
    id: UUID
    ticket_number: str
    status: TicketStatus
    quantity: int
    qr_code: str
    qr_code_url: str | None = None
    download_url: str

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> TicketSummaryOut:
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            status=ticket.status,
            quantity=ticket.quantity,
            qr_code=ticket.qr_code,
            qr_code_url=ticket.qr_code_url,
            download_url=f"{settings.backend_url.rstrip('/')}/v1/tickets/{ticket.id}/qr?format=png",
        )


class TicketQROut(BaseModel):
    ticket_number: str
    qr_code: str
    qr_code_url: str | None = None


class GenerateTicketIn(BaseModel):
    event_id: UUID


class TicketStatsOut(BaseModel):
    total: int
    active: int
    checked_in: int
    cancelled: int
    refunded: int


class EventTicketsOut(BaseModel):
    event_id: UUID
    tickets: list[TicketOut]
    stats: TicketStatsOut


class CheckInOut(BaseModel):
    ticket_number: str
    status: TicketStatus
    check_in_time: datetime | None = None
    check_in_by: UUID | None = None
    holder_name: str | None = None
    quantity: int
