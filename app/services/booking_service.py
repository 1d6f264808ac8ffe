import logging
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import Conflict, Forbidden, NotFound, PreconditionFailed
from app.models.booking import Booking
from app.models.event import Event
from app.models.ticket import TICKET_TYPES
from app.models.user import User
from app.services.audit_service import log_audit
from app.services.status_machine import transition

logger = logging.getLogger(__name__)

BOOKABLE_EVENT_STATUSES = ("published", "postponed")


def _breakdown_total(breakdown: list[dict]) -> tuple[int, Decimal | None]:
    seats = 0
    total = Decimal("0")
    priced = False
    for item in breakdown:
        qty = int(item.get("quantity") or 0)
        if qty < 1:
            raise ValueError("ticket quantity must be >= 1")
        if item.get("type") not in TICKET_TYPES:
            raise ValueError(f"unknown ticket type {item.get('type')!r}")
        seats += qty
        if item.get("price") is not None:
            priced = True
            total += Decimal(str(item["price"])) * qty
    return seats, (total if priced else None)


def create_booking(db: Session, event_id: str, booker: User, seats: int,
                   ticket_breakdown: list[dict] | None = None, payment_method: str = "online",
                   attendee_info: dict | None = None, notes: str = "") -> Booking:
    breakdown = [dict(item) for item in (ticket_breakdown or [])]
    total = None
    if breakdown:
        seats, total = _breakdown_total(breakdown)
    if seats < 1:
        raise ValueError("seats must be >= 1")

    # Row lock so two bookings cannot both take the last seats
    ev = db.execute(
        select(Event).where(Event.id == event_id).with_for_update()
    ).scalar_one_or_none()
    if not ev:
        raise NotFound("Event not found")
    if ev.status not in BOOKABLE_EVENT_STATUSES:
        raise PreconditionFailed(f"Event is {ev.status}")

    if ev.capacity and (ev.booked_slots or 0) + seats > ev.capacity:
        raise Conflict("Not enough seats available", available=max(ev.capacity - (ev.booked_slots or 0), 0))

    ev.booked_slots = (ev.booked_slots or 0) + seats
    if total is None and ev.price is not None:
        total = Decimal(str(ev.price)) * seats

    booking = Booking(
        id=str(uuid.uuid4()),
        event_id=ev.id,
        user_id=booker.id,
        seats=seats,
        status="pending",
        payment_method=payment_method or "online",
        notes=notes or "",
        ticket_breakdown=breakdown,
        attendee_info=attendee_info or {"name": booker.name, "email": booker.email, "phone": booker.phone},
        total_amount=total,
        payment_status="pending",
    )
    db.add(booking)
    log_audit(db, booker.id, "booking.create", "booking", booking.id, {"event": ev.id, "seats": seats})
    db.commit()
    db.refresh(booking)
    logger.info("booking %s: %d seat(s) on event %s", booking.id, seats, ev.id)
    return booking


def get_booking_for(db: Session, booking_id: str, caller: User) -> Booking:
    b = db.get(Booking, booking_id)
    if not b:
        raise NotFound("Booking not found")
    if b.user_id != caller.id:
        ev = db.get(Event, b.event_id)
        if not ev or ev.owner_id != caller.id:
            raise Forbidden("You can only view your own bookings")
    return b


def list_event_bookings(db: Session, event_id: str, owner: User) -> list[tuple[Booking, User]]:
    ev = db.get(Event, event_id)
    if not ev:
        raise NotFound("Event not found")
    if ev.owner_id != owner.id:
        raise Forbidden("Only the event owner can list its bookings")
    return (
        db.query(Booking, User)
        .outerjoin(User, User.id == Booking.user_id)
        .filter(Booking.event_id == ev.id)
        .order_by(Booking.created_at.desc())
        .all()
    )


def check_in_booking(db: Session, booking_id: str, caller: User) -> Booking:
    """Mark a confirmed booking as checked in at the door."""
    b = db.get(Booking, booking_id)
    if not b:
        raise NotFound("Booking not found")
    ev = db.get(Event, b.event_id)
    if not ev or ev.owner_id != caller.id:
        raise Forbidden("Only the event owner can check in attendees")
    transition("booking", b, "checked-in")
    log_audit(db, caller.id, "booking.checkin", "booking", b.id, {"event": b.event_id})
    db.commit()
    db.refresh(b)
    logger.info("booking %s checked in by %s", b.id, caller.id)
    return b


def serialize_booking(b: Booking, event: Event | None = None) -> dict:
    out = {
        "id": b.id,
        "eventId": b.event_id,
        "userId": b.user_id,
        "seats": b.seats,
        "status": b.status,
        "paymentMethod": b.payment_method,
        "paymentStatus": b.payment_status,
        "ticketBreakdown": b.ticket_breakdown or [],
        "attendeeInfo": b.attendee_info or {},
        "totalAmount": float(b.total_amount) if b.total_amount is not None else None,
        "notes": b.notes,
        "paymentConfirmedAt": b.payment_confirmed_at.isoformat() if b.payment_confirmed_at else None,
        "createdAt": b.created_at.isoformat() if b.created_at else None,
    }
    if event is not None:
        out["event"] = {"id": event.id, "title": event.title, "date": event.date.isoformat() if event.date else None,
                        "location": event.location, "status": event.status}
    return out


def serialize_event_booking(b: Booking, user: User | None) -> dict:
    out = serialize_booking(b)
    out["user"] = {"id": user.id, "name": user.name, "email": user.email} if user else None
    return out
