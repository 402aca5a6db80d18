from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ticketing.api.v1.schemas.tickets import EventSummaryOut, TicketSummaryOut
from ticketing.models.event_participant import PaymentStatus


class GroupTierIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tier_name: str | None = Field(default=None, alias="tierName")
    tier_people: int = Field(default=0, ge=0, alias="tierPeople")
    tier_price: Decimal | None = Field(default=None, ge=0, alias="tierPrice")

    def as_stored(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class AdditionalPersonIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)


class OrderIn(BaseModel):
    event_id: UUID
    quantity: int | None = None
    group_tier: GroupTierIn | None = None
    additional_persons: list[AdditionalPersonIn] = Field(default_factory=list, max_length=9)

    def tier_dict(self) -> dict[str, Any] | None:
        return self.group_tier.as_stored() if self.group_tier else None

    def persons(self) -> list[dict[str, Any]]:
        return [p.model_dump() for p in self.additional_persons]


class CreateOrderIn(OrderIn):
    pass


class CreateOrderOut(BaseModel):
    order_id: str
    payment_session_id: str
    amount: Decimal
    currency: str
    quantity: int
    environment: str


class VerifyPaymentIn(OrderIn):
    order_id: str = Field(min_length=1, max_length=200)
    additional_persons: list[AdditionalPersonIn] | None = None

    def persons(self) -> list[dict[str, Any]] | None:
        if self.additional_persons is None:
            return None
        return [p.model_dump() for p in self.additional_persons]


class ParticipantOut(BaseModel):
    quantity: int
    payment_status: PaymentStatus
    payment_id: str | None = None
    order_id: str | None = None
    amount_paid: Decimal | None = None


class RegistrationOut(BaseModel):
    message: str
    replayed: bool = False
    event: EventSummaryOut
    participant: ParticipantOut
    ticket: TicketSummaryOut | None = None


class WebhookOut(BaseModel):
    status: str = "ok"
    action: str
    order_id: str | None = None
