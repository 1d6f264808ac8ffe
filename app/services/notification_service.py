from __future__ import annotations

import logging
import uuid
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.models.notification import Notification
from app.realtime.registry import SessionRegistry

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Persist a notification and push it to the user's open sockets.

    Uses its own session so a failed notification can never roll back the
    caller's unit of work. ``notify`` never raises.
    """

    def __init__(self, session_factory: Callable[[], Session], registry: SessionRegistry | None = None):
        self.session_factory = session_factory
        self.registry = registry or SessionRegistry()

    def notify(self, user_id: str, *, type: str, title: str, message: str,
               data: dict | None = None, push_message: str | None = None) -> bool:
        try:
            db = self.session_factory()
            try:
                n = Notification(
                    id=str(uuid.uuid4()),
                    user_id=str(user_id),
                    type=type,
                    title=title,
                    message=message,
                    data=data or {},
                    read=False,
                    created_at=utcnow(),
                )
                db.add(n)
                db.commit()
                frame = {
                    "event": "newNotification",
                    "id": n.id,
                    "type": n.type,
                    "title": n.title,
                    "message": push_message or n.message,
                    "data": n.data,
                    "read": False,
                    "createdAt": n.created_at.isoformat(),
                    "timestamp": utcnow().isoformat(),
                }
            finally:
                db.close()
            reached = self.registry.push(str(user_id), frame)
            logger.info("notification %s (%s) for user %s, %d live socket(s)", frame["id"], type, user_id, reached)
            return True
        except Exception:
            logger.exception("failed to notify user %s (%s)", user_id, type)
            return False

    def notify_many(self, user_ids: Iterable[str], **kwargs) -> int:
        user_ids = list(dict.fromkeys(str(u) for u in user_ids))
        ok = sum(1 for uid in user_ids if self.notify(uid, **kwargs))
        logger.info("sent %s notifications to %d/%d users", kwargs.get("type"), ok, len(user_ids))
        return ok


def serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "data": n.data or {},
        "read": bool(n.read),
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }


def list_notifications(db: Session, user_id: str) -> list[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .all()
    )


def mark_read(db: Session, user_id: str, notification_id: str) -> Notification | None:
    n = db.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user_id).first()
    if not n:
        return None
    n.read = True
    db.commit()
    return n


def mark_all_read(db: Session, user_id: str) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return count


def delete_notification(db: Session, user_id: str, notification_id: str) -> bool:
    count = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return count > 0


def clear_notifications(db: Session, user_id: str) -> int:
    count = db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
    db.commit()
    return count
