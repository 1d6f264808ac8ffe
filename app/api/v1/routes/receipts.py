from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_dispatcher
from app.db.session import get_db
from app.models.user import User
from app.schemas.receipt import ReceiptDecision, ReceiptUpload
from app.services.notification_service import NotificationDispatcher
from app.services.receipt_service import (
    confirm_receipt, get_receipt_for, list_creator_receipts, list_user_receipts,
    reject_receipt, serialize_receipt, upload_receipt,
)

router = APIRouter(tags=["payment-receipts"])


@router.post("/payment-receipts", status_code=201)
def upload(body: ReceiptUpload, db: Session = Depends(get_db), me: User = Depends(get_current_user),
           dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    r = upload_receipt(
        db, user=me, event_id=body.eventId, booking_id=body.bookingId, amount=body.amount,
        receipt_image=body.receiptImage, receipt_image_public_id=body.receiptImagePublicId,
        currency=body.currency, payment_method=body.paymentMethod,
        transaction_reference=body.transactionReference, notes=body.notes, dispatcher=dispatcher,
    )
    return {"message": "Payment receipt uploaded successfully", "receipt": serialize_receipt(r)}


@router.get("/payment-receipts")
def for_event_creator(status: str = "", eventId: str = "", page: int = 1, limit: int = 10,
                      db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    res = list_creator_receipts(db, me.id, status=status, event_id=eventId, page=page, limit=limit)
    return {"receipts": [serialize_receipt(r) for r in res["receipts"]], "pagination": res["pagination"]}


@router.get("/payment-receipts/mine")
def mine(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"receipts": [serialize_receipt(r) for r in list_user_receipts(db, me.id)]}


@router.get("/payment-receipts/{receipt_id}")
def get_one(receipt_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"receipt": serialize_receipt(get_receipt_for(db, receipt_id, me))}


@router.post("/payment-receipts/{receipt_id}/confirm")
def confirm(receipt_id: str, body: ReceiptDecision | None = None,
            db: Session = Depends(get_db), me: User = Depends(get_current_user),
            dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    notes = body.verificationNotes if body else ""
    receipt, issued = confirm_receipt(db, receipt_id, me, notes=notes, dispatcher=dispatcher)
    return {
        "message": "Payment receipt confirmed successfully",
        "receipt": serialize_receipt(receipt),
        "ticket": issued.as_dict(),
        "ticketCreated": issued.created,
    }


@router.post("/payment-receipts/{receipt_id}/reject")
def reject(receipt_id: str, body: ReceiptDecision | None = None,
           db: Session = Depends(get_db), me: User = Depends(get_current_user),
           dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    notes = body.verificationNotes if body else ""
    receipt = reject_receipt(db, receipt_id, me, notes=notes, dispatcher=dispatcher)
    return {"message": "Payment receipt rejected", "receipt": serialize_receipt(receipt)}
