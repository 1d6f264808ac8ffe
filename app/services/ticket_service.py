from __future__ import annotations

import io
import json
import logging
import random
import string
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.core.errors import Internal, NotFound, PreconditionFailed
from app.models.booking import Booking
from app.models.event import Event
from app.models.payment_receipt import PaymentReceipt
from app.models.ticket import TICKET_TYPES, Ticket
from app.models.user import User
from app.services.audit_service import log_audit
from app.services.qr_service import build_payload, render_image, render_png_bytes
from app.services.status_machine import check_transition

logger = logging.getLogger(__name__)

TICKET_TYPE_LABELS = {
    "vvip": "VVIP",
    "vip": "VIP",
    "standard": "Standard",
    "tableFor2": "Table for 2",
    "tableFor5": "Table for 5",
    "regular": "Regular",
}


@dataclass
class IssuanceResult:
    ticket: Ticket
    created: bool
    qr_code_image: str
    event_title: str = ""

    def as_dict(self) -> dict:
        return {
            "id": self.ticket.id,
            "ticketId": self.ticket.ticket_id,
            "eventTitle": self.event_title,
            "ticketType": self.ticket.ticket_type,
            "quantity": self.ticket.quantity,
            "validUntil": as_utc(self.ticket.valid_until).isoformat(),
            "downloadUrl": download_url(self.ticket),
        }


def generate_ticket_id(now: datetime | None = None) -> str:
    """TKT-<year>-<6 random chars><last 6 digits of epoch millis>."""
    now = now or utcnow()
    rand = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    millis = str(int(time.time() * 1000))[-6:]
    return f"TKT-{now.year}-{rand}{millis}"


def download_url(ticket: Ticket) -> str:
    return f"{settings.API_PUBLIC_URL.rstrip('/')}/api/v1/tickets/{ticket.id}/download"


def derive_ticket_type_and_quantity(booking: Booking) -> tuple[str, int]:
    breakdown = booking.ticket_breakdown or []
    if breakdown:
        first = breakdown[0] or {}
        ticket_type = first.get("type") or "regular"
        if ticket_type not in TICKET_TYPES:
            logger.warning("booking %s has unknown ticket type %r; issuing as regular", booking.id, ticket_type)
            ticket_type = "regular"
        return ticket_type, max(int(first.get("quantity") or 1), 1)
    return "regular", max(int(booking.seats or 1), 1)


def _parse_event_date(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (TypeError, ValueError):
        return None


def resolve_validity_window(event_date, now: datetime) -> tuple[datetime, datetime]:
    """(valid_from, valid_until): until event date + grace, or now + fallback days + grace."""
    grace = timedelta(hours=settings.TICKET_GRACE_HOURS)
    start = _parse_event_date(event_date)
    if start is None:
        logger.warning("event date missing or invalid (%r); using %d-day fallback", event_date, settings.TICKET_FALLBACK_VALIDITY_DAYS)
        start = now + timedelta(days=settings.TICKET_FALLBACK_VALIDITY_DAYS)
    return now, start + grace


def _load_issuance_context(db: Session, receipt: PaymentReceipt) -> tuple[Event, User, Booking]:
    event = db.get(Event, receipt.event_id)
    user = db.get(User, receipt.user_id)
    booking = db.get(Booking, receipt.booking_id)
    if not event:
        raise NotFound("Event not found")
    if not user:
        raise NotFound("User not found")
    if not booking:
        raise NotFound("Booking not found")
    return event, user, booking


def _existing_result(db: Session, ticket: Ticket) -> IssuanceResult:
    event = db.get(Event, ticket.event_id)
    qr_image = render_image(json.loads(ticket.qr_code_data))
    return IssuanceResult(ticket=ticket, created=False, qr_code_image=qr_image, event_title=event.title if event else "")


def issue_ticket_for_receipt(db: Session, receipt_id: str, dispatcher=None, now: datetime | None = None) -> IssuanceResult:
    """Issue the ticket for a confirmed payment receipt. Safe to call repeatedly."""
    receipt = db.get(PaymentReceipt, receipt_id)
    if not receipt:
        raise NotFound("Payment receipt not found")
    if receipt.status != "confirmed":
        raise PreconditionFailed("Payment must be confirmed before generating ticket", status=receipt.status)

    existing = db.query(Ticket).filter(Ticket.payment_receipt_id == receipt.id).first()
    if existing:
        return _existing_result(db, existing)

    event, user, booking = _load_issuance_context(db, receipt)
    now = now or utcnow()
    ticket_type, quantity = derive_ticket_type_and_quantity(booking)
    valid_from, valid_until = resolve_validity_window(event.date, now)
    ticket_id = generate_ticket_id(now)

    payload = build_payload(
        {"ticketId": ticket_id, "ticketType": ticket_type, "quantity": quantity,
         "issuedAt": now, "validUntil": valid_until},
        event, user, booking,
    )
    qr_image = render_image(payload)  # raises QRRenderError; nothing persisted yet

    ticket = Ticket(
        id=str(uuid.uuid4()),
        ticket_id=ticket_id,
        event_id=event.id,
        user_id=user.id,
        booking_id=booking.id,
        payment_receipt_id=receipt.id,
        ticket_type=ticket_type,
        quantity=quantity,
        qr_code_data=json.dumps(payload, ensure_ascii=False),
        verification_hash=payload["hash"],
        status="active",
        valid_from=valid_from,
        valid_until=valid_until,
        download_count=0,
        generated_at=now,
    )
    db.add(ticket)
    log_audit(db, "system", "ticket.issue", "ticket", ticket_id, {"receipt": receipt.id, "type": ticket_type, "quantity": quantity})
    try:
        db.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent confirmation; the unique receipt column kept it to one ticket.
        db.rollback()
        winner = db.query(Ticket).filter(Ticket.payment_receipt_id == receipt.id).first()
        if winner:
            logger.info("ticket for receipt %s already issued concurrently (%s)", receipt.id, winner.ticket_id)
            return _existing_result(db, winner)
        raise Internal("Could not store ticket") from e

    logger.info("issued ticket %s for receipt %s (%s x%d)", ticket_id, receipt.id, ticket_type, quantity)
    result = IssuanceResult(ticket=ticket, created=True, qr_code_image=qr_image, event_title=event.title)
    _notify_ticket_ready(dispatcher, result, event)
    return result


def _notify_ticket_ready(dispatcher, result: IssuanceResult, event: Event) -> None:
    if dispatcher is None:
        return
    ticket = result.ticket
    event_date = as_utc(event.date).strftime("%Y-%m-%d") if event.date else "TBA"
    try:
        dispatcher.notify(
            ticket.user_id,
            type="ticket_generated",
            title="Your Event Ticket is Ready!",
            message=(
                f'Your ticket for "{event.title}" has been generated and is ready for download.\n\n'
                f"Ticket Details:\n"
                f"- Ticket ID: {ticket.ticket_id}\n"
                f"- Event Date: {event_date}\n"
                f"- Ticket Type: {ticket.ticket_type.upper()}\n"
                f"- Quantity: {ticket.quantity}\n\n"
                f"Please download and save your ticket. Present the QR code at the venue for entry."
            ),
            push_message=f'Your ticket for "{event.title}" is ready for download!',
            data={
                "ticketId": ticket.ticket_id,
                "eventId": event.id,
                "eventTitle": event.title,
                "eventDate": as_utc(event.date).isoformat() if event.date else None,
                "ticketType": ticket.ticket_type,
                "quantity": ticket.quantity,
                "downloadUrl": download_url(ticket),
            },
        )
    except Exception:
        logger.exception("ticket %s issued but owner notification failed", ticket.ticket_id)


def list_user_tickets(db: Session, user_id: str) -> list[dict]:
    tickets = db.query(Ticket).filter(Ticket.user_id == user_id).order_by(Ticket.created_at.desc()).all()
    event_ids = {t.event_id for t in tickets}
    events = {e.id: e for e in db.query(Event).filter(Event.id.in_(event_ids)).all()} if event_ids else {}
    out = []
    for t in tickets:
        ev = events.get(t.event_id)
        out.append({
            "id": t.id,
            "ticketId": t.ticket_id,
            "event": {
                "id": ev.id, "title": ev.title,
                "date": as_utc(ev.date).isoformat() if ev.date else None,
                "time": ev.time, "location": ev.location, "status": ev.status,
            } if ev else None,
            "ticketType": t.ticket_type,
            "quantity": t.quantity,
            "status": t.status,
            "validUntil": as_utc(t.valid_until).isoformat(),
            "isValid": t.is_valid,
            "downloadCount": t.download_count,
            "createdAt": as_utc(t.created_at).isoformat() if t.created_at else None,
            "downloadUrl": download_url(t),
        })
    return out


def render_ticket_pdf_bytes(*, ticket: Ticket, event: Event, user: User, qr_png: bytes) -> bytes:
    """Return an A4 PDF bytes. Pure function."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    w, h = A4

    # Header
    c.setFont("Helvetica-Bold", 18)
    c.drawString(40, h - 60, event.title[:60])
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 80, f"Ticket ID: {ticket.ticket_id}")
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 104, TICKET_TYPE_LABELS.get(ticket.ticket_type, ticket.ticket_type.upper()))

    # Event block
    date_str = as_utc(event.date).strftime("%A, %B %d, %Y") if event.date else "Date TBA"
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 140, "Event")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 158, f"Date:     {date_str}")
    c.drawString(40, h - 174, f"Time:     {event.time or 'Time TBA'}")
    c.drawString(40, h - 190, f"Location: {event.location}")

    # Attendee block
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 226, "Attendee")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 244, user.name or "(Not provided)")
    c.drawString(40, h - 260, user.email)
    plural = "s" if ticket.quantity > 1 else ""
    c.drawString(40, h - 276, f"Quantity: {ticket.quantity} ticket{plural}")
    if ticket.seat_number:
        c.drawString(40, h - 292, f"Seat: {ticket.seat_number}")

    c.setFont("Helvetica", 10)
    c.drawString(40, h - 320, f"Valid until {as_utc(ticket.valid_until).strftime('%A, %B %d, %Y %H:%M UTC')}")

    # QR
    qr_size = 200
    c.drawImage(ImageReader(io.BytesIO(qr_png)), w - qr_size - 40, h - qr_size - 120, qr_size, qr_size)
    c.setFont("Helvetica", 9)
    c.drawString(w - qr_size - 40, h - qr_size - 134, "Present this QR code at the venue")

    # Footer
    c.setFont("Helvetica", 9)
    c.drawString(40, 54, "This ticket is non-transferable and valid for one-time use only.")
    c.drawString(40, 40, "Please arrive at least 30 minutes before the event start time.")
    c.drawString(40, 26, f"Generated: {utcnow().isoformat()}")

    c.showPage()
    c.save()
    return buf.getvalue()


def download_ticket(db: Session, ticket_pk: str, user_id: str) -> tuple[str, bytes]:
    """Render the owner's ticket as PDF and count the download. Returns (filename, pdf)."""
    ticket = db.query(Ticket).filter(Ticket.id == ticket_pk, Ticket.user_id == user_id).first()
    if not ticket:
        raise NotFound("Ticket not found")
    if not ticket.is_valid:
        raise PreconditionFailed("Ticket is no longer valid", status=ticket.status)
    event = db.get(Event, ticket.event_id)
    user = db.get(User, ticket.user_id)
    if not event or not user:
        raise NotFound("Ticket event or owner not found")

    qr_png = render_png_bytes(json.loads(ticket.qr_code_data))
    pdf = render_ticket_pdf_bytes(ticket=ticket, event=event, user=user, qr_png=qr_png)
    ticket.record_download()
    db.commit()
    return f"ticket-{ticket.ticket_id}.pdf", pdf


def expire_tickets(db: Session, now: datetime | None = None) -> int:
    """Flip every active ticket past ``valid_until`` to expired in one UPDATE.

    Tickets admitted meanwhile are no longer ``active`` and are left alone.
    """
    now = now or utcnow()
    check_transition("ticket", "active", "expired")
    expired = (
        db.query(Ticket)
        .filter(Ticket.status == "active", Ticket.valid_until < now)
        .update({Ticket.status: "expired"}, synchronize_session=False)
    )
    db.commit()
    return expired


def receipts_awaiting_ticket(db: Session, limit: int = 100) -> list[str]:
    """Confirmed receipts that have no ticket yet (issuance crashed or never ran)."""
    rows = (
        db.query(PaymentReceipt.id)
        .outerjoin(Ticket, Ticket.payment_receipt_id == PaymentReceipt.id)
        .filter(PaymentReceipt.status == "confirmed", Ticket.id.is_(None))
        .order_by(PaymentReceipt.verified_at.asc())
        .limit(limit)
        .all()
    )
    return [r[0] for r in rows]
