import logging
import uuid
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import Conflict, Forbidden, NotFound, PreconditionFailed
from app.models.booking import Booking
from app.models.event import Event
from app.models.user import User
from app.services.audit_service import log_audit
from app.services.status_machine import transition

logger = logging.getLogger(__name__)


def create_event(db: Session, owner: User, *, title: str, location: str, date: datetime | None = None,
                 time: str = "", description: str = "", capacity: int = 0, price=None,
                 currency: str = "USD", status: str = "published") -> Event:
    if status not in ("draft", "published"):
        raise PreconditionFailed("New events must be draft or published")
    ev = Event(
        id=str(uuid.uuid4()),
        title=title,
        description=description or "",
        date=date,
        time=time or "",
        location=location,
        capacity=max(capacity, 0),
        booked_slots=0,
        price=price,
        currency=(currency or "USD").upper(),
        status=status,
        status_details={},
        owner_id=owner.id,
    )
    db.add(ev)
    log_audit(db, owner.id, "event.create", "event", ev.id, {"title": title})
    db.commit()
    db.refresh(ev)
    return ev


def list_events(db: Session, q: str = "", status: str = "published", page: int = 1, limit: int = 20) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    query = db.query(Event)
    if status:
        query = query.filter(Event.status == status)
    if q:
        query = query.filter(func.lower(Event.title).like(f"%{q.lower()}%"))
    total = query.count()
    rows = query.order_by(Event.date.asc()).offset((page - 1) * limit).limit(limit).all()
    return {"items": rows, "total": total, "page": page, "limit": limit}


def get_event(db: Session, event_id: str) -> Event:
    ev = db.get(Event, event_id)
    if not ev:
        raise NotFound("Event not found")
    return ev


def update_event_status(db: Session, event_id: str, owner: User, status: str, *, message: str = "",
                        new_date: datetime | None = None, new_time: str = "", new_location: str = "",
                        dispatcher=None) -> Event:
    ev = get_event(db, event_id)
    if ev.owner_id != owner.id:
        raise Forbidden("Only the event owner can change its status")

    previous = transition("event", ev, status)
    details = {"message": message, "updatedAt": utcnow().isoformat()}
    if status == "postponed":
        details.update({
            "originalDate": ev.date.isoformat() if ev.date else None,
            "originalTime": ev.time,
            "originalLocation": ev.location,
            "newDate": new_date.isoformat() if new_date else None,
            "newTime": new_time or None,
            "newLocation": new_location or None,
        })
        if new_date:
            ev.date = new_date
        if new_time:
            ev.time = new_time
        if new_location:
            ev.location = new_location
    ev.status_details = details
    log_audit(db, owner.id, "event.status", "event", ev.id, {"from": previous, "to": status, "message": message})
    db.commit()
    db.refresh(ev)

    if dispatcher is not None and status in ("postponed", "cancelled"):
        _notify_attendees(db, ev, status, message, dispatcher)
    return ev


EDITABLE_FIELDS = ("title", "description", "date", "time", "location", "capacity", "price", "currency")


def _owned_event(db: Session, event_id: str, owner: User, verb: str) -> Event:
    ev = get_event(db, event_id)
    if ev.owner_id != owner.id:
        raise Forbidden(f"Only the event owner can {verb} it")
    return ev


def list_host_events(db: Session, owner: User) -> list[Event]:
    return db.query(Event).filter(Event.owner_id == owner.id).order_by(Event.created_at.desc()).all()


def update_event(db: Session, event_id: str, owner: User, **changes) -> Event:
    """Edit event details. Status moves go through :func:`update_event_status`."""
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise PreconditionFailed("These fields cannot be edited", fields=unknown)
    ev = _owned_event(db, event_id, owner, "edit")
    if ev.status == "cancelled":
        raise PreconditionFailed("Cancelled events cannot be edited")

    capacity = changes.get("capacity")
    if capacity and capacity < (ev.booked_slots or 0):
        raise Conflict("Capacity cannot be lower than seats already booked", bookedSlots=ev.booked_slots)
    if changes.get("currency"):
        changes["currency"] = changes["currency"].upper()

    for field, value in changes.items():
        setattr(ev, field, value)
    log_audit(db, owner.id, "event.update", "event", ev.id, {"fields": sorted(changes)})
    db.commit()
    db.refresh(ev)
    return ev


def delete_event(db: Session, event_id: str, owner: User) -> None:
    ev = _owned_event(db, event_id, owner, "delete")
    booking_count = db.query(Booking).filter(Booking.event_id == ev.id).count()
    if booking_count:
        raise PreconditionFailed(
            "Cannot delete event with existing bookings. Cancel the event instead.",
            bookingCount=booking_count,
            canDelete=False,
        )
    db.delete(ev)
    log_audit(db, owner.id, "event.delete", "event", event_id, {"title": ev.title})
    db.commit()
    logger.info("event %s deleted by %s", event_id, owner.id)


def send_event_notification(db: Session, event_id: str, owner: User, *, update_type: str, message: str,
                            new_date: datetime | None = None, new_time: str = "", dispatcher) -> int:
    """Broadcast an organizer message to everyone holding a booking. Returns how many were stored."""
    if update_type not in ("postponed", "cancelled"):
        raise PreconditionFailed("Notification type must be postponed or cancelled")
    ev = get_event(db, event_id)
    if ev.owner_id != owner.id:
        raise Forbidden("Only event owner can send notifications")

    attendee_ids = _attendee_ids(db, ev)
    if not attendee_ids:
        return 0
    data = {"eventId": ev.id, "eventTitle": ev.title, "updateType": update_type}
    if new_date:
        data["newDate"] = new_date.isoformat()
    if new_time:
        data["newTime"] = new_time
    sent = dispatcher.notify_many(
        attendee_ids,
        type="event_update",
        title="Event Postponed" if update_type == "postponed" else "Event Cancelled",
        message=message,
        data=data,
    )
    log_audit(db, owner.id, "event.notify", "event", ev.id, {"type": update_type, "sent": sent})
    db.commit()
    return sent


def _attendee_ids(db: Session, ev: Event) -> list[str]:
    return [
        row[0] for row in db.query(Booking.user_id)
        .filter(Booking.event_id == ev.id, Booking.status != "cancelled")
        .distinct()
        .all()
    ]


def _notify_attendees(db: Session, ev: Event, status: str, message: str, dispatcher) -> int:
    attendee_ids = _attendee_ids(db, ev)
    if status == "postponed":
        title = f'Event Postponed: "{ev.title}"'
        when = ev.date.strftime("%Y-%m-%d") if ev.date else "a date to be announced"
        body = f'"{ev.title}" has been postponed to {when} {ev.time}.'.strip()
    else:
        title = f'Event Cancelled: "{ev.title}"'
        body = f'"{ev.title}" has been cancelled by the organizer.'
    if message:
        body += f"\n\nMessage from the organizer: {message}"
    sent = dispatcher.notify_many(
        attendee_ids,
        type=f"event_{status}",
        title=title,
        message=body,
        data={"eventId": ev.id, "eventTitle": ev.title, "status": status, **(ev.status_details or {})},
    )
    logger.info("event %s %s: notified %d/%d attendees", ev.id, status, sent, len(attendee_ids))
    return sent


def serialize_event(ev: Event) -> dict:
    return {
        "id": ev.id,
        "title": ev.title,
        "description": ev.description,
        "date": ev.date.isoformat() if ev.date else None,
        "time": ev.time,
        "location": ev.location,
        "capacity": ev.capacity,
        "bookedSlots": ev.booked_slots,
        "price": float(ev.price) if ev.price is not None else None,
        "currency": ev.currency,
        "status": ev.status,
        "statusDetails": ev.status_details or {},
        "ownerId": ev.owner_id,
    }
