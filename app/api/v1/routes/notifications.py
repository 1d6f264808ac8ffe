from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.db.session import get_db
from app.models.user import User
from app.services.notification_service import (
    clear_notifications, delete_notification, list_notifications, mark_all_read, mark_read,
    serialize_notification,
)

router = APIRouter(tags=["notifications"])


@router.get("/notifications")
def list_mine(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return [serialize_notification(n) for n in list_notifications(db, me.id)]


@router.patch("/notifications/read-all")
def read_all(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"message": "All read", "updated": mark_all_read(db, me.id)}


@router.patch("/notifications/{notification_id}/read")
def read_one(notification_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    n = mark_read(db, me.id, notification_id)
    if not n:
        raise HTTPException(status_code=404, detail="Not found")
    return serialize_notification(n)


@router.delete("/notifications/{notification_id}")
def delete_one(notification_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    if not delete_notification(db, me.id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Deleted"}


@router.delete("/notifications")
def clear(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"message": "Cleared", "deleted": clear_notifications(db, me.id)}
