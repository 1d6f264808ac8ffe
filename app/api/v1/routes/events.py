from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_dispatcher
from app.db.session import get_db
from app.models.user import User
from app.schemas.event import EventCreate, EventNotify, EventStatusUpdate, EventUpdate
from app.services.event_service import (
    create_event, delete_event, get_event, list_events, list_host_events, send_event_notification,
    serialize_event, update_event, update_event_status,
)
from app.services.notification_service import NotificationDispatcher

router = APIRouter(tags=["events"])


@router.post("/events", status_code=201)
def create(body: EventCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    ev = create_event(
        db, me,
        title=body.title, location=body.location, date=body.date, time=body.time,
        description=body.description, capacity=body.capacity, price=body.price,
        currency=body.currency, status=body.status,
    )
    return serialize_event(ev)


@router.get("/events")
def list_public(q: str = "", status: str = "published", page: int = 1, limit: int = 20,
                db: Session = Depends(get_db)):
    res = list_events(db, q=q, status=status, page=page, limit=limit)
    return {**res, "items": [serialize_event(e) for e in res["items"]]}


@router.get("/events/host/my-events")
def my_events(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return [serialize_event(e) for e in list_host_events(db, me)]


@router.get("/events/{event_id}")
def get_one(event_id: str, db: Session = Depends(get_db)):
    return serialize_event(get_event(db, event_id))


@router.put("/events/{event_id}")
def update(event_id: str, body: EventUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    ev = update_event(db, event_id, me, **changes)
    return serialize_event(ev)


@router.delete("/events/{event_id}")
def delete(event_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    delete_event(db, event_id, me)
    return {"message": "Event deleted successfully"}


@router.patch("/events/{event_id}/status")
def change_status(event_id: str, body: EventStatusUpdate,
                  db: Session = Depends(get_db),
                  me: User = Depends(get_current_user),
                  dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    ev = update_event_status(
        db, event_id, me, body.status,
        message=body.message, new_date=body.newDate, new_time=body.newTime,
        new_location=body.newLocation, dispatcher=dispatcher,
    )
    return serialize_event(ev)


@router.post("/events/{event_id}/notify")
def notify_attendees(event_id: str, body: EventNotify,
                     db: Session = Depends(get_db),
                     me: User = Depends(get_current_user),
                     dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    sent = send_event_notification(
        db, event_id, me, update_type=body.type, message=body.message,
        new_date=body.newDate, new_time=body.newTime, dispatcher=dispatcher,
    )
    if not sent:
        return {"message": "No attendees to notify", "notificationsSent": 0}
    return {"message": f"Notifications sent to {sent} attendees", "notificationsSent": sent}
