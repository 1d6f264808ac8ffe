from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_dispatcher
from app.core.errors import Forbidden, NotFound
from app.db.session import get_db
from app.models.event import Event
from app.models.payment_receipt import PaymentReceipt
from app.models.ticket import Ticket
from app.models.user import User
from app.schemas.ticket import TicketGenerateRequest, TicketValidateRequest
from app.services.audit_service import audit_trail
from app.services.notification_service import NotificationDispatcher
from app.services.ticket_service import download_ticket, issue_ticket_for_receipt, list_user_tickets
from app.services.ticket_validation_service import use_ticket, validate_ticket

router = APIRouter(tags=["tickets"])

VALIDATION_STATUS = {
    "ok": 200,
    "invalid_format": 400,
    "invalid_signature": 400,
    "not_found": 404,
    "forbidden": 403,
    "already_used": 400,
    "not_valid": 400,
}


@router.post("/tickets/generate", status_code=201)
def generate(body: TicketGenerateRequest, db: Session = Depends(get_db), me: User = Depends(get_current_user),
             dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    """Issue (or return the already issued) ticket for a confirmed receipt."""
    receipt = db.get(PaymentReceipt, body.paymentReceiptId)
    if not receipt:
        raise NotFound("Payment receipt not found")
    if me.id not in (receipt.event_creator_id, receipt.user_id):
        raise Forbidden("You are not allowed to generate this ticket")
    result = issue_ticket_for_receipt(db, receipt.id, dispatcher=dispatcher)
    payload = {
        "message": "Ticket generated successfully" if result.created else "Ticket already generated for this payment",
        "ticket": result.as_dict(),
        "qrCodeImage": result.qr_code_image,
    }
    return JSONResponse(status_code=201 if result.created else 200, content=payload)


@router.get("/tickets/mine")
def my_tickets(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"tickets": list_user_tickets(db, me.id)}


@router.get("/tickets/{ticket_pk}/download")
def download(ticket_pk: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    filename, pdf = download_ticket(db, ticket_pk, me.id)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/tickets/validate")
def validate(body: TicketValidateRequest, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    outcome = validate_ticket(db, body.qrData, me)
    return JSONResponse(status_code=VALIDATION_STATUS.get(outcome.code, 400), content=outcome.as_dict())


@router.post("/tickets/{ticket_id}/use")
def use(ticket_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"message": "Ticket marked as used successfully", "ticket": use_ticket(db, ticket_id, me)}


@router.get("/tickets/{ticket_id}/history")
def history(ticket_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    """Audit entries for a ticket; visible to its holder and the event owner."""
    ticket = db.query(Ticket).filter(Ticket.ticket_id == ticket_id).first()
    if not ticket:
        raise NotFound("Ticket not found")
    event = db.get(Event, ticket.event_id)
    if me.id != ticket.user_id and (not event or event.owner_id != me.id):
        raise Forbidden("You are not allowed to view this ticket")
    return {"ticketId": ticket.ticket_id, "status": ticket.status, "history": audit_trail(db, "ticket", ticket.ticket_id)}
