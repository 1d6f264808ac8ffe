from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import Conflict, Forbidden, NotFound, PreconditionFailed
from app.models.booking import Booking
from app.models.event import Event
from app.models.payment_receipt import PaymentReceipt
from app.models.user import User
from app.services.audit_service import log_audit
from app.services.status_machine import can_transition, check_transition, transition
from app.services.ticket_service import IssuanceResult, issue_ticket_for_receipt

logger = logging.getLogger(__name__)

RECEIPT_PAYMENT_METHODS = ("bank_transfer", "mobile_money", "cash", "card", "other")


def upload_receipt(db: Session, *, user: User, event_id: str, booking_id: str, amount: Decimal,
                   receipt_image: str, receipt_image_public_id: str = "", currency: str = "USD",
                   payment_method: str = "bank_transfer", transaction_reference: str = "",
                   notes: str = "", dispatcher=None) -> PaymentReceipt:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise NotFound("Booking not found")
    if booking.user_id != user.id:
        raise Forbidden("You can only upload receipts for your own bookings")
    if booking.event_id != event_id:
        raise PreconditionFailed("Event ID does not match booking")
    event = db.get(Event, booking.event_id)
    if not event:
        raise NotFound("Event not found")

    if db.query(PaymentReceipt).filter(PaymentReceipt.booking_id == booking.id).first():
        raise Conflict("Payment receipt already uploaded for this booking")

    receipt = PaymentReceipt(
        id=str(uuid.uuid4()),
        user_id=user.id,
        event_id=event.id,
        event_creator_id=event.owner_id,
        booking_id=booking.id,
        receipt_image=receipt_image,
        receipt_image_public_id=receipt_image_public_id or "",
        amount=amount,
        currency=(currency or "USD").upper(),
        payment_method=payment_method or "bank_transfer",
        transaction_reference=transaction_reference or "",
        notes=notes or "",
        status="pending",
    )
    db.add(receipt)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Payment receipt already uploaded for this booking")
    db.refresh(receipt)

    if dispatcher is not None:
        method = payment_method or "bank_transfer"
        dispatcher.notify(
            event.owner_id,
            type="payment_receipt",
            title="New Payment Receipt Submitted",
            message=(
                f'{user.name} ({user.email}) has uploaded a payment receipt for "{event.title}"\n\n'
                f"Payment Details:\n- Amount: {receipt.currency} {amount}\n- Method: {method}\n"
                f"- Transaction Ref: {transaction_reference or 'Not provided'}"
                + (f"\n- Notes: {notes}" if notes else "")
            ),
            push_message=f'{user.name} has uploaded a payment receipt for "{event.title}"',
            data={
                "receiptId": receipt.id,
                "eventId": event.id,
                "eventTitle": event.title,
                "bookingId": booking.id,
                "amount": float(amount),
                "paymentMethod": method,
                "transactionReference": transaction_reference,
                "userName": user.name,
                "userEmail": user.email,
                "userPhone": user.phone or "Not provided",
                "submittedAt": utcnow().isoformat(),
            },
        )
    return receipt


def get_receipt_for(db: Session, receipt_id: str, caller: User) -> PaymentReceipt:
    r = db.get(PaymentReceipt, receipt_id)
    if not r:
        raise NotFound("Payment receipt not found")
    if caller.id not in (r.event_creator_id, r.user_id):
        raise Forbidden("You are not authorized to view this payment receipt")
    return r


def list_creator_receipts(db: Session, creator_id: str, status: str = "", event_id: str = "",
                          page: int = 1, limit: int = 10) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    query = db.query(PaymentReceipt).filter(PaymentReceipt.event_creator_id == creator_id)
    if status:
        query = query.filter(PaymentReceipt.status == status)
    if event_id:
        query = query.filter(PaymentReceipt.event_id == event_id)
    total = query.count()
    rows = query.order_by(PaymentReceipt.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "receipts": rows,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


def list_user_receipts(db: Session, user_id: str) -> list[PaymentReceipt]:
    return (
        db.query(PaymentReceipt)
        .filter(PaymentReceipt.user_id == user_id)
        .order_by(PaymentReceipt.created_at.desc())
        .all()
    )


def _load_for_verifier(db: Session, receipt_id: str, verifier: User, verb: str) -> PaymentReceipt:
    r = db.get(PaymentReceipt, receipt_id)
    if not r:
        raise NotFound("Payment receipt not found")
    if r.event_creator_id != verifier.id:
        raise Forbidden(f"You can only {verb} receipts for your own events")
    return r


def confirm_receipt(db: Session, receipt_id: str, verifier: User, notes: str = "",
                    dispatcher=None) -> tuple[PaymentReceipt, IssuanceResult]:
    """Confirm a pending receipt and issue its ticket.

    Re-confirming an already confirmed receipt skips the status change and
    returns the ticket issued the first time.
    """
    r = _load_for_verifier(db, receipt_id, verifier, "confirm")
    if r.status != "confirmed":
        now = utcnow()
        if _claim_pending(db, r, "confirmed", verifier, notes or "", now):
            booking = db.get(Booking, r.booking_id)
            if booking:
                booking.payment_status = "confirmed"
                booking.payment_confirmed_at = now
                if can_transition("booking", booking.status, "confirmed"):
                    transition("booking", booking, "confirmed")
            log_audit(db, verifier.id, "receipt.confirm", "receipt", r.id, {"notes": notes})
            db.commit()
            _notify_receipt_decision(db, r, verifier, dispatcher, confirmed=True)
        elif r.status != "confirmed":
            check_transition("receipt", r.status, "confirmed")

    try:
        result = issue_ticket_for_receipt(db, r.id, dispatcher=dispatcher)
    except Exception:
        # Receipt stays confirmed; the reconcile job or a repeated confirm retries issuance.
        logger.exception("receipt %s confirmed but ticket issuance failed", r.id)
        raise
    return r, result


def reject_receipt(db: Session, receipt_id: str, verifier: User, notes: str = "",
                   dispatcher=None) -> PaymentReceipt:
    r = _load_for_verifier(db, receipt_id, verifier, "reject")
    if not _claim_pending(db, r, "rejected", verifier, notes or "Receipt rejected by event organizer", utcnow()):
        check_transition("receipt", r.status, "rejected")
    booking = db.get(Booking, r.booking_id)
    if booking:
        booking.payment_status = "rejected"
    log_audit(db, verifier.id, "receipt.reject", "receipt", r.id, {"notes": r.verification_notes})
    db.commit()
    _notify_receipt_decision(db, r, verifier, dispatcher, confirmed=False)
    return r


def _claim_pending(db: Session, r: PaymentReceipt, target: str, verifier: User, notes: str, now) -> bool:
    """Move a pending receipt to ``target`` in one conditional UPDATE.

    Returns False when another session decided the receipt first; ``r`` is
    then reloaded so the caller sees the winning status.
    """
    check_transition("receipt", "pending", target)
    updated = (
        db.query(PaymentReceipt)
        .filter(PaymentReceipt.id == r.id, PaymentReceipt.status == "pending")
        .update(
            {
                PaymentReceipt.status: target,
                PaymentReceipt.verified_at: now,
                PaymentReceipt.verified_by: verifier.id,
                PaymentReceipt.verification_notes: notes,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        db.refresh(r)
        return False
    db.expire(r)
    return True


def _notify_receipt_decision(db: Session, r: PaymentReceipt, verifier: User, dispatcher, *, confirmed: bool) -> None:
    if dispatcher is None:
        return
    event = db.get(Event, r.event_id)
    title = event.title if event else ""
    data = {
        "receiptId": r.id,
        "eventId": r.event_id,
        "eventTitle": title,
        "eventDate": event.date.isoformat() if event and event.date else None,
        "eventTime": event.time if event else "",
        "eventLocation": event.location if event else "",
        "amount": float(r.amount),
        "paymentMethod": r.payment_method,
    }
    if confirmed:
        dispatcher.notify(
            r.user_id,
            type="payment_confirmed",
            title="Payment Confirmed",
            message=(
                f'Great news! Your payment for "{title}" has been confirmed by the event organizer.\n\n'
                f"Payment Details:\n- Amount: {r.currency} {r.amount}\n- Method: {r.payment_method}\n"
                f"- Confirmed by: {verifier.name}\n\nYour booking is now confirmed. See you at the event!"
            ),
            push_message=f'Your payment for "{title}" has been confirmed!',
            data={**data, "confirmedBy": verifier.name, "confirmedAt": utcnow().isoformat(),
                  "verificationNotes": r.verification_notes},
        )
    else:
        dispatcher.notify(
            r.user_id,
            type="payment_rejected",
            title="Payment Receipt Rejected",
            message=(
                f'Your payment receipt for "{title}" has been rejected by the event organizer.\n\n'
                f"Rejection Details:\n- Reason: {r.verification_notes}\n- Rejected by: {verifier.name}\n"
                f"- Original Amount: {r.currency} {r.amount}\n\n"
                "Please review the rejection reason and contact the event organizer for assistance."
            ),
            push_message=f'Your payment receipt for "{title}" has been rejected.',
            data={**data, "rejectionReason": r.verification_notes, "rejectedBy": verifier.name,
                  "rejectedAt": utcnow().isoformat(), "organizerEmail": verifier.email},
        )


def serialize_receipt(r: PaymentReceipt) -> dict:
    return {
        "id": r.id,
        "userId": r.user_id,
        "eventId": r.event_id,
        "eventCreatorId": r.event_creator_id,
        "bookingId": r.booking_id,
        "receiptImage": r.receipt_image,
        "amount": float(r.amount),
        "currency": r.currency,
        "paymentMethod": r.payment_method,
        "transactionReference": r.transaction_reference,
        "notes": r.notes,
        "status": r.status,
        "verifiedAt": r.verified_at.isoformat() if r.verified_at else None,
        "verifiedBy": r.verified_by,
        "verificationNotes": r.verification_notes,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    }
