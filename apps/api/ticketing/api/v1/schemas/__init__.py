from ticketing.api.v1.schemas.payments import (
    CreateOrderIn,
    CreateOrderOut,
    RegistrationOut,
    VerifyPaymentIn,
    WebhookOut,
)
from ticketing.api.v1.schemas.tickets import (
    CheckInOut,
    EventSummaryOut,
    EventTicketsOut,
    GenerateTicketIn,
    TicketOut,
    TicketQROut,
    TicketSummaryOut,
)

__all__ = [
    "CreateOrderIn",
    "CreateOrderOut",
    "VerifyPaymentIn",
    "RegistrationOut",
    "WebhookOut",
    "EventSummaryOut",
    "TicketOut",
    "TicketSummaryOut",
    "TicketQROut",
    "GenerateTicketIn",
    "EventTicketsOut",
    "CheckInOut",
]
