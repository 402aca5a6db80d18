import uuid
from datetime import datetime, timezone

from celery.utils.log import get_task_logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from ticketing.core.config import settings
from ticketing.db import SessionLocal
from ticketing.integrations import email
from ticketing.models import Event, Notification, Ticket, User
from ticketing.worker.celery_app import celery_app

logger = get_task_logger(__name__)

REGISTRATION_NOTIFICATION_TYPE = "event_registration"


def _uuid(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


def _ticket_link(ticket: Ticket) -> str:
    return f"{settings.frontend_url.rstrip('/')}/tickets/{ticket.id}"


@celery_app.task(name="send_registration_email")
def send_registration_email(
    to_email: str,
    recipient_name: str | None,
    event_id: str,
    ticket_id: str | None = None,
) -> dict:
    db: Session = SessionLocal()
    try:
        event = db.get(Event, _uuid(event_id))
        if event is None:
            logger.warning("send_registration_email skipped, event %s not found", event_id)
            return {"success": False, "error": "event not found"}

        ticket = db.get(Ticket, _uuid(ticket_id)) if ticket_id else None
        result = email.send_registration_confirmation(
            to_email=to_email,
            recipient_name=recipient_name,
            event_title=event.title,
            event_date=event.starts_at.isoformat() if event.starts_at else None,
            ticket_number=ticket.ticket_number if ticket else None,
            location=event.location,
            qr_code_url=ticket.qr_code_url if ticket else None,
            qr_code=ticket.qr_code if ticket else None,
            ticket_link=_ticket_link(ticket) if ticket else None,
        )
        logger.info("send_registration_email to=%s event_id=%s result=%s", to_email, event_id, result)
        return result
    except Exception:
        logger.exception("send_registration_email failed to=%s event_id=%s", to_email, event_id)
        return {"success": False, "error": "unexpected error"}
    finally:
        db.close()


@celery_app.task(name="send_host_notification")
def send_host_notification(event_id: str, user_id: str, quantity: int = 1) -> dict:
    db: Session = SessionLocal()
    try:
        event = db.get(Event, _uuid(event_id))
        attendee = db.get(User, _uuid(user_id))
        if event is None or attendee is None:
            logger.warning("send_host_notification skipped event_id=%s user_id=%s", event_id, user_id)
            return {"success": False, "error": "event or user not found"}
        if not event.host or not event.host.email:
            return {"success": False, "error": "host has no email"}

        result = email.send_host_registration_notice(
            to_email=event.host.email,
            host_name=event.host.name,
            event_title=event.title,
            attendee_name=attendee.name or attendee.email,
            quantity=quantity,
            current_participants=event.current_participants,
            max_participants=event.max_participants,
        )
        logger.info("send_host_notification event_id=%s result=%s", event_id, result)
        return result
    except Exception:
        logger.exception("send_host_notification failed event_id=%s", event_id)
        return {"success": False, "error": "unexpected error"}
    finally:
        db.close()


@celery_app.task(name="create_registration_notification")
def create_registration_notification(
    user_id: str,
    event_id: str,
    ticket_id: str | None,
    ticket_number: str | None,
    quantity: int,
    amount: str | None,
) -> dict:
    db: Session = SessionLocal()
    try:
        event = db.get(Event, _uuid(event_id))
        title = event.title if event else "your event"
        notification = Notification(
            user_id=_uuid(user_id),
            type=REGISTRATION_NOTIFICATION_TYPE,
            title="Registration confirmed",
            message=f"You're registered for {title}.",
            data={
                "eventId": event_id,
                "ticketId": ticket_id,
                "ticketNumber": ticket_number,
                "quantity": quantity,
                "amount": amount,
            },
        )
        db.add(notification)
        db.commit()
        logger.info("create_registration_notification user_id=%s event_id=%s", user_id, event_id)
        return {"success": True, "notification_id": str(notification.id)}
    except Exception:
        db.rollback()
        logger.exception("create_registration_notification failed user_id=%s", user_id)
        return {"success": False, "error": "unexpected error"}
    finally:
        db.close()


@celery_app.task(name="update_registration_analytics")
def update_registration_analytics(user_id: str, event_id: str) -> dict:
    db: Session = SessionLocal()
    try:
        user = db.scalar(select(User).where(User.id == _uuid(user_id)).with_for_update())
        event = db.get(Event, _uuid(event_id))
        if user is None or event is None:
            logger.warning("update_registration_analytics skipped user_id=%s event_id=%s", user_id, event_id)
            return {"success": False, "error": "user or event not found"}

        # Copy before mutating so the JSON column is flagged dirty.
        analytics = dict(user.analytics or {})
        registered = list(analytics.get("registered_events") or [])
        category = event.categories[0] if event.categories else None
        registered.append(
            {
                "event": event_id,
                "category": category,
                "location": (event.location or {}).get("city"),
                "registered_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        analytics["registered_events"] = registered

        if category:
            prefs = dict(analytics.get("category_preferences") or {})
            prefs[category] = int(prefs.get(category, 0)) + 1
            analytics["category_preferences"] = prefs

        user.analytics = analytics
        db.commit()
        logger.info("update_registration_analytics user_id=%s category=%s", user_id, category)
        return {"success": True}
    except Exception:
        db.rollback()
        logger.exception("update_registration_analytics failed user_id=%s", user_id)
        return {"success": False, "error": "unexpected error"}
    finally:
        db.close()
