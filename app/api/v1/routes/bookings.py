from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import User
from app.models.booking import Booking
from app.models.event import Event
from app.schemas.booking import BookingCreate
from app.services.booking_service import (
    check_in_booking, create_booking, get_booking_for, list_event_bookings, serialize_booking,
    serialize_event_booking,
)

router = APIRouter(tags=["bookings"])

@router.post("/bookings", status_code=201)
def create(body: BookingCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    try:
        booking = create_booking(
            db, body.eventId, me, body.seats,
            ticket_breakdown=[item.model_dump() for item in body.ticketBreakdown],
            payment_method=body.paymentMethod,
            attendee_info=body.attendeeInfo.model_dump() if body.attendeeInfo else None,
            notes=body.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_booking(booking)

@router.get("/bookings/mine")
def my_bookings(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    rows = (
        db.query(Booking, Event)
        .outerjoin(Event, Event.id == Booking.event_id)
        .filter(Booking.user_id == me.id)
        .order_by(Booking.created_at.desc())
        .all()
    )
    return [serialize_booking(b, ev) for b, ev in rows]

@router.get("/bookings/event/{event_id}")
def event_bookings(event_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return [serialize_event_booking(b, u) for b, u in list_event_bookings(db, event_id, me)]

@router.get("/bookings/{booking_id}")
def get_one(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    b = get_booking_for(db, booking_id, me)
    return serialize_booking(b, db.get(Event, b.event_id))

@router.patch("/bookings/{booking_id}/checkin")
def checkin(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    b = check_in_booking(db, booking_id, me)
    return {"message": "Checked in", "booking": serialize_booking(b)}
