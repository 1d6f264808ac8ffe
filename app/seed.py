import logging
import uuid
from datetime import timedelta

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError

from app.db.session import SessionLocal
from app.core.clock import utcnow
from app.core.security import hash_password
from app.models.user import User
from app.models.event import Event

logger = logging.getLogger(__name__)


def ensure_user(db: Session, email: str, password: str, role: str, name: str) -> User:
    u = db.query(User).filter(User.email == email).first()
    if u:
        return u
    u = User(
        id=str(uuid.uuid4()),
        email=email,
        name=name,
        role=role,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.add(u)
    db.commit()
    return u


def ensure_demo_event(db: Session, owner: User) -> None:
    if db.query(Event).filter(Event.owner_id == owner.id).first():
        return
    db.add(Event(
        id=str(uuid.uuid4()),
        title="Launch Night",
        description="Demo event created by the seed script.",
        date=utcnow() + timedelta(days=14),
        time="19:00",
        location="Main Hall",
        capacity=200,
        booked_slots=0,
        price=25,
        currency="USD",
        status="published",
        status_details={},
        owner_id=owner.id,
    ))
    db.commit()


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except ProgrammingError:
            db.rollback()
            logger.warning("users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        ensure_user(db, "admin@eventhost.local", "admin12345", "admin", "Admin")
        organizer = ensure_user(db, "organizer@eventhost.local", "organizer123", "user", "Demo Organizer")
        ensure_user(db, "attendee@eventhost.local", "attendee123", "user", "Demo Attendee")
        ensure_demo_event(db, organizer)
        logger.info("seed complete")
    finally:
        db.close()


if __name__ == "__main__":
    run()
