from pydantic import BaseModel, Field
from typing import List, Optional

class TicketBreakdownItem(BaseModel):
    type: str  # vvip | vip | standard | tableFor2 | tableFor5 | regular
    quantity: int = Field(ge=1)
    price: Optional[float] = None

class AttendeeInfo(BaseModel):
    name: Optional[str] = ""
    email: Optional[str] = ""
    phone: Optional[str] = ""

class BookingCreate(BaseModel):
    eventId: str
    seats: int = Field(default=1, ge=1)
    ticketBreakdown: List[TicketBreakdownItem] = []
    paymentMethod: str = "online"  # online | pay-at-event | bank_transfer | cashapp | paypal | bitcoin
    attendeeInfo: Optional[AttendeeInfo] = None
    notes: str = Field(default="", max_length=500)
