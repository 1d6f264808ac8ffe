from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class ReceiptUpload(BaseModel):
    eventId: str
    bookingId: str
    amount: Decimal = Field(gt=0)
    currency: str = "USD"
    receiptImage: str = Field(min_length=1)  # URL from the upload service
    receiptImagePublicId: str = ""
    paymentMethod: Literal["bank_transfer", "mobile_money", "cash", "card", "other"] = "bank_transfer"
    transactionReference: str = Field(default="", max_length=100)
    notes: str = Field(default="", max_length=500)


class ReceiptDecision(BaseModel):
    verificationNotes: str = Field(default="", max_length=500)
