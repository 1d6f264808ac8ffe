from typing import Any, Union

from pydantic import BaseModel


class TicketGenerateRequest(BaseModel):
    paymentReceiptId: str


class TicketValidateRequest(BaseModel):
    # Raw string scanned from the QR code, or the already-parsed object
    qrData: Union[str, dict[str, Any]]
