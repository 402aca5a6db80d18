"""
Ticket QR codes.

The QR encodes a JSON document identifying the ticket, its event and holder,
plus a check-in deep link. The rendered PNG is stored inline on the ticket as
a data URL; a copy may be mirrored to object storage so emails can link to it
instead of embedding a large base64 blob.
"""
from __future__ import annotations

import base64
import io
import json
from typing import Any

import qrcode
import structlog
from PIL import Image
from qrcode.image.pil import PilImage

from ticketing.core.config import settings
from ticketing.models import Event, User
from ticketing.storage.factory import get_storage

logger = structlog.get_logger(__name__)

QR_BORDER_MODULES = 1
DATA_URL_PREFIX = "data:image/png;base64,"


def check_in_url(ticket_number: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/check-in/{ticket_number}"


def build_qr_payload(ticket_number: str, event: Event, user: User) -> dict[str, Any]:
    return {
        "ticketNumber": ticket_number,
        "eventId": str(event.id),
        "userId": str(user.id),
        "eventName": event.title,
        "userName": user.name,
        "date": event.starts_at.isoformat() if event.starts_at else None,
        "checkInUrl": check_in_url(ticket_number),
    }


def encode_qr(payload: dict[str, Any]) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        border=QR_BORDER_MODULES,
        image_factory=PilImage,
    )
    qr.add_data(json.dumps(payload, separators=(",", ":")))
    qr.make(fit=True)
    return qr


def render_qr_png(payload: dict[str, Any], width: int | None = None) -> bytes:
    width = width or settings.qr_width_px
    qr = encode_qr(payload)

    total_modules = qr.modules_count + 2 * QR_BORDER_MODULES
    qr.box_size = max(1, width // total_modules)
    img = qr.make_image(fill_color="black", back_color="white").get_image()
    if img.size != (width, width):
        img = img.resize((width, width), Image.NEAREST)

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def render_qr_data_url(payload: dict[str, Any], width: int | None = None) -> str:
    png = render_qr_png(payload, width)
    return DATA_URL_PREFIX + base64.b64encode(png).decode("ascii")


def data_url_to_png(data_url: str) -> bytes:
    if not data_url.startswith(DATA_URL_PREFIX):
        raise ValueError("not a PNG data URL")
    return base64.b64decode(data_url[len(DATA_URL_PREFIX):])


def mirror_qr_image(data_url: str, ticket_number: str) -> str | None:
    """Upload the QR PNG to object storage; returns its public URL or None.

    Never raises: tickets are issued with the inline image alone when the
    upload fails.
    """
    if not settings.qr_mirror_enabled:
        return None

    key = f"tickets/qr/{ticket_number}.png"
    try:
        storage = get_storage()
        storage.put_bytes(key, data_url_to_png(data_url), content_type="image/png")
        return storage.public_url(key)
    except Exception:
        logger.warning("qr_mirror_failed", ticket_number=ticket_number, key=key, exc_info=True)
        return None
