from sqlalchemy import String, Integer, DateTime, Text, JSON, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)  # null while "date TBA"
    time: Mapped[str] = mapped_column(String(20), default="")
    location: Mapped[str] = mapped_column(String(300))

    capacity: Mapped[int] = mapped_column(Integer, default=0)  # 0 = unlimited
    booked_slots: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[float] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    status: Mapped[str] = mapped_column(String(20), default="published", index=True)  # draft, published, cancelled, postponed
    status_details: Mapped[dict] = mapped_column(JSON, default=dict)  # message/newDate/originalDate...
    owner_id: Mapped[str] = mapped_column(String(36), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
