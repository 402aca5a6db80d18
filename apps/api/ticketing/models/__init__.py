from ticketing.models.base import Base
from ticketing.models.event import Event
from ticketing.models.event_participant import EventParticipant
from ticketing.models.notification import Notification
from ticketing.models.payment_order import PaymentOrder
from ticketing.models.ticket import Ticket
from ticketing.models.user import User

__all__ = [
    "Base",
    "User",
    "Event",
    "EventParticipant",
    "Ticket",
    "PaymentOrder",
    "Notification",
]
