from sqlalchemy import String, Integer, DateTime, JSON, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_id: Mapped[str] = mapped_column(String(36), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)  # booker

    seats: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, confirmed, cancelled, checked-in
    payment_method: Mapped[str] = mapped_column(String(30), default="online")  # online, pay-at-event, bank_transfer, cashapp, paypal, bitcoin
    notes: Mapped[str] = mapped_column(String(500), default="")

    # [{"type": "vip", "quantity": 2, "price": 50}, ...]
    ticket_breakdown: Mapped[list] = mapped_column(JSON, default=list)
    attendee_info: Mapped[dict] = mapped_column(JSON, default=dict)  # name, email, phone

    total_amount: Mapped[float] = mapped_column(Numeric(12, 2), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, confirmed, rejected
    payment_confirmed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
