from __future__ import annotations

import base64
import io
import json
import logging
from datetime import datetime
from typing import Any

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from PIL import Image

from app.core.config import settings
from app.core.errors import QRRenderError
from app.services.ticket_hash import HASH_FIELD, compute_hash

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else ""


def build_payload(ticket_meta: dict, event, user, booking) -> dict[str, Any]:
    """Assemble the QR descriptor and sign it.

    ``ticket_meta`` carries ticketId, ticketType, quantity, issuedAt and
    validUntil (datetimes). Key order is fixed; the hash does not depend on it.
    """
    payload: dict[str, Any] = {
        "ticketId": ticket_meta["ticketId"],
        "eventId": str(event.id),
        "userId": str(user.id),
        "bookingId": str(booking.id),
        "ticketType": ticket_meta["ticketType"],
        "quantity": int(ticket_meta["quantity"]),
        "issuedAt": _iso(ticket_meta["issuedAt"]),
        "validUntil": _iso(ticket_meta["validUntil"]),
        "eventTitle": event.title,
        "eventDate": _iso(event.date),
        "userName": user.name,
        "userEmail": user.email,
    }
    payload[HASH_FIELD] = compute_hash(payload)
    return payload


def render_png_bytes(payload: dict[str, Any], size_px: int | None = None) -> bytes:
    size = size_px or settings.TICKET_QR_SIZE_PX
    try:
        qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=10, border=1)
        qr.add_data(json.dumps(payload, separators=(",", ":"), ensure_ascii=False))
        qr.make(fit=True)
        img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").get_image()
        img = img.convert("RGB").resize((size, size), Image.Resampling.NEAREST)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
    except Exception as e:
        logger.exception("QR encoding failed for ticket %s", payload.get("ticketId"))
        raise QRRenderError("Failed to generate QR code") from e
    return buf.getvalue()


def render_image(payload: dict[str, Any], size_px: int | None = None) -> str:
    """Return the QR code as a ``data:image/png;base64,...`` URL."""
    png = render_png_bytes(payload, size_px=size_px)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
