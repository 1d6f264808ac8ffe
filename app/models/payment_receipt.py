from sqlalchemy import String, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class PaymentReceipt(Base):
    __tablename__ = "payment_receipts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    event_id: Mapped[str] = mapped_column(String(36), index=True)
    event_creator_id: Mapped[str] = mapped_column(String(36), index=True)  # verifies the receipt
    booking_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)  # one receipt per booking

    receipt_image: Mapped[str] = mapped_column(String(1024))
    receipt_image_public_id: Mapped[str] = mapped_column(String(255), default="")

    amount: Mapped[float] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    payment_method: Mapped[str] = mapped_column(String(30), default="bank_transfer")  # bank_transfer, mobile_money, cash, card, other
    transaction_reference: Mapped[str] = mapped_column(String(100), default="")
    notes: Mapped[str] = mapped_column(String(500), default="")

    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, confirmed, rejected
    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str] = mapped_column(String(36), nullable=True)
    verification_notes: Mapped[str] = mapped_column(String(500), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
