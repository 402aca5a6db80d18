from ticketing.services.registration_service import (
    create_payment_order,
    handle_webhook,
    register_free_event,
    verify_payment_and_register,
)
from ticketing.services.ticket_service import (
    cancel_ticket,
    check_in_ticket,
    issue_ticket,
    regenerate_qr_code,
)

__all__ = [
    "create_payment_order",
    "verify_payment_and_register",
    "register_free_event",
    "handle_webhook",
    "issue_ticket",
    "check_in_ticket",
    "cancel_ticket",
    "regenerate_qr_code",
]
