import os

# Settings are read at import time; these must exist before anything from app is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("TICKET_SECRET", "test-ticket-secret")
os.environ.setdefault("API_PUBLIC_URL", "http://testserver")

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.clock import utcnow
from app.core.security import hash_password
from app.db.session import Base, get_db
from app.models import Event, User
from app.realtime.registry import SessionRegistry
from app.services.booking_service import create_booking
from app.services.notification_service import NotificationDispatcher
from app.services.receipt_service import upload_receipt
from app.services.status_machine import transition

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def dispatcher(registry):
    return NotificationDispatcher(TestingSessionLocal, registry)


@pytest.fixture
def make_user(db):
    def _make(email: str, name: str = "", role: str = "user", password: str = "secret123") -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            name=name or email.split("@")[0].title(),
            phone="",
            role=role,
            password_hash=hash_password(password),
            is_active=True,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def organizer(make_user):
    return make_user("organizer@example.com", "Olu Organizer")


@pytest.fixture
def attendee(make_user):
    return make_user("attendee@example.com", "Ada Attendee")


@pytest.fixture
def make_event(db, organizer):
    def _make(date="default", **kwargs) -> Event:
        ev = Event(
            id=str(uuid.uuid4()),
            title=kwargs.pop("title", "Harbour Jazz Night"),
            description="",
            date=utcnow() + timedelta(days=10) if date == "default" else date,
            time="19:00",
            location=kwargs.pop("location", "Pier 4"),
            capacity=kwargs.pop("capacity", 100),
            booked_slots=0,
            price=kwargs.pop("price", Decimal("50.00")),
            currency="USD",
            status=kwargs.pop("status", "published"),
            status_details={},
            owner_id=organizer.id,
        )
        db.add(ev)
        db.commit()
        return ev
    return _make


@pytest.fixture
def event(make_event):
    return make_event()


@pytest.fixture
def make_confirmed_receipt(db, attendee):
    """Booking plus receipt already moved to confirmed, with no ticket yet."""
    def _make(ev: Event, seats: int = 1, breakdown=None):
        booking = create_booking(db, ev.id, attendee, seats, ticket_breakdown=breakdown)
        receipt = upload_receipt(
            db, user=attendee, event_id=ev.id, booking_id=booking.id,
            amount=Decimal("100.00"), receipt_image="https://img.example.com/r.png",
        )
        transition("receipt", receipt, "confirmed")
        receipt.verified_at = utcnow()
        receipt.verified_by = ev.owner_id
        db.commit()
        return booking, receipt
    return _make


@pytest.fixture
def confirmed_receipt(make_confirmed_receipt, event):
    _, receipt = make_confirmed_receipt(event, breakdown=[{"type": "vip", "quantity": 2, "price": 50}])
    return receipt


@pytest.fixture
def client():
    from app.main import app

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    saved = (app.state.session_factory, app.state.notification_dispatcher)
    app.dependency_overrides[get_db] = override_get_db
    app.state.session_factory = TestingSessionLocal
    app.state.notification_dispatcher = NotificationDispatcher(TestingSessionLocal, app.state.session_registry)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.session_factory, app.state.notification_dispatcher = saved
    app.state.session_registry.clear()
