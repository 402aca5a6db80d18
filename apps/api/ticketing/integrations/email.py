"""
Transactional email through Resend.

Senders return a result dict instead of raising so callers on the side-effect
path can log the outcome and move on.
"""
from __future__ import annotations

from html import escape
from typing import Any

import resend
import structlog

from ticketing.core.config import settings

logger = structlog.get_logger(__name__)


def init_resend() -> bool:
    if not settings.resend_api_key:
        return False
    resend.api_key = settings.resend_api_key
    return True


def _send(to_email: str, subject: str, html: str) -> dict[str, Any]:
    if not init_resend():
        logger.info("email_skipped_not_configured", to=to_email, subject=subject)
        return {"success": False, "skipped": True}

    params = {
        "from": settings.email_from,
        "to": [to_email],
        "subject": subject,
        "html": html,
    }
    try:
        response = resend.Emails.send(params)
    except Exception as exc:
        logger.warning("email_send_failed", to=to_email, subject=subject, error=str(exc))
        return {"success": False, "error": str(exc)}

    logger.info("email_sent", to=to_email, subject=subject)
    return {"success": True, "id": response.get("id") if isinstance(response, dict) else None}


def _location_line(location: dict[str, Any] | None) -> str:
    if not location:
        return ""
    parts = [location.get(k) for k in ("venue", "address", "city", "state")]
    text = ", ".join(str(p) for p in parts if p)
    return f"<p><strong>Location:</strong> {escape(text)}</p>" if text else ""


def _qr_block(qr_code_url: str | None, qr_code: str | None) -> str:
    # Hosted image when mirrored; inline data URLs are large and some clients drop them.
    src = qr_code_url or qr_code
    if not src:
        return ""
    return f'<p><img src="{escape(src)}" alt="Ticket QR code" width="240" height="240"></p>'


def send_registration_confirmation(
    to_email: str,
    recipient_name: str | None,
    event_title: str,
    event_date: str | None,
    ticket_number: str | None,
    location: dict[str, Any] | None = None,
    qr_code_url: str | None = None,
    qr_code: str | None = None,
    ticket_link: str | None = None,
) -> dict[str, Any]:
    ticket_html = ""
    if ticket_number:
        ticket_html = (
            f"<p>Your ticket number: <strong>{escape(ticket_number)}</strong></p>"
            f"{_qr_block(qr_code_url, qr_code)}"
            "<p>Show this QR code at the entrance to check in.</p>"
        )
    if ticket_link:
        ticket_html += f'<p><a href="{escape(ticket_link)}">View your ticket</a></p>'

    html = (
        f"<p>Hi {escape(recipient_name or 'there')},</p>"
        f"<p>You're registered for <strong>{escape(event_title)}</strong>.</p>"
        f"<p><strong>Date:</strong> {escape(event_date or 'TBA')}</p>"
        f"{_location_line(location)}"
        f"{ticket_html}"
        "<p>See you there!<br>The IndulgeOut Team</p>"
    )
    return _send(to_email, f"Registration Confirmed: {event_title}", html)


def send_host_registration_notice(
    to_email: str,
    host_name: str | None,
    event_title: str,
    attendee_name: str | None,
    quantity: int,
    current_participants: int,
    max_participants: int,
) -> dict[str, Any]:
    html = (
        f"<p>Hi {escape(host_name or 'there')},</p>"
        f"<p><strong>{escape(attendee_name or 'Someone')}</strong> just registered for "
        f"<strong>{escape(event_title)}</strong> ({quantity} "
        f"{'spot' if quantity == 1 else 'spots'}).</p>"
        f"<p>Registrations so far: {current_participants} / {max_participants}</p>"
    )
    return _send(to_email, f"New registration: {event_title}", html)
