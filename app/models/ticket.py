from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, func

from app.core.clock import as_utc, utcnow
from app.db.session import Base

TICKET_TYPES = ("vvip", "vip", "standard", "tableFor2", "tableFor5", "regular")


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True)
    ticket_id = Column(String(40), unique=True, nullable=False, index=True)  # public, printed on the QR

    event_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    booking_id = Column(String(36), nullable=False, index=True)
    # unique: the real at-most-one-ticket-per-receipt guarantee
    payment_receipt_id = Column(String(36), nullable=False, unique=True)

    ticket_type = Column(String(20), nullable=False, default="regular")
    quantity = Column(Integer, nullable=False, default=1)
    seat_number = Column(String(20), nullable=True)

    qr_code_data = Column(Text, nullable=False)  # JSON descriptor including hash
    verification_hash = Column(String(64), nullable=False)

    status = Column(String(20), nullable=False, default="active", index=True)  # active | used | cancelled | expired
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_by = Column(String(36), nullable=True)  # organizer who scanned it

    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False, index=True)

    download_count = Column(Integer, nullable=False, default=0)
    last_downloaded = Column(DateTime(timezone=True), nullable=True)

    generated_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def is_valid_at(self, now: datetime) -> bool:
        """Active and inside [valid_from, valid_until], both ends inclusive."""
        if self.status != "active":
            return False
        return as_utc(self.valid_from) <= as_utc(now) <= as_utc(self.valid_until)

    @property
    def is_valid(self) -> bool:
        return self.is_valid_at(utcnow())

    def record_download(self, now: datetime | None = None) -> None:
        self.download_count = (self.download_count or 0) + 1
        self.last_downloaded = now or utcnow()
