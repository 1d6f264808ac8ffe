"""Door checks for scanned tickets.

``validate_ticket`` only reads and reports; ``use_ticket`` performs the
one-way ``active -> used`` transition as a single conditional UPDATE so two
scanners racing on the same ticket cannot both admit it.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.errors import Conflict, Forbidden, NotFound
from app.models.event import Event
from app.models.ticket import Ticket
from app.models.user import User
from app.services.audit_service import log_audit
from app.services.status_machine import check_transition
from app.services.ticket_hash import HASH_FIELD, verify_hash

logger = logging.getLogger(__name__)


@dataclass
class ValidationOutcome:
    valid: bool
    code: str = "ok"
    reason: str = "Ticket is valid"
    ticket: dict | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict:
        out: dict[str, Any] = {"valid": self.valid, "message": self.reason, "code": self.code}
        if self.ticket is not None:
            out["ticket"] = self.ticket
        if not self.valid:
            out["reason"] = self.reason
        out.update(self.extra)
        return out


def _reject(code: str, reason: str, **extra) -> ValidationOutcome:
    return ValidationOutcome(valid=False, code=code, reason=reason, extra=extra)


def parse_qr_data(qr_data: Any) -> dict | None:
    if isinstance(qr_data, dict):
        return qr_data
    if isinstance(qr_data, (str, bytes)):
        try:
            parsed = json.loads(qr_data)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _ticket_summary(ticket: Ticket, event: Event, attendee: User | None) -> dict:
    return {
        "ticketId": ticket.ticket_id,
        "eventTitle": event.title,
        "attendeeName": attendee.name if attendee else "",
        "attendeeEmail": attendee.email if attendee else "",
        "ticketType": ticket.ticket_type,
        "quantity": ticket.quantity,
        "eventDate": as_utc(event.date).isoformat() if event.date else None,
        "eventTime": event.time,
        "eventLocation": event.location,
    }


def validate_ticket(db: Session, qr_data: Any, caller: User, now: datetime | None = None) -> ValidationOutcome:
    payload = parse_qr_data(qr_data)
    if payload is None:
        return _reject("invalid_format", "Invalid QR code format")

    if not verify_hash(payload, payload.get(HASH_FIELD)):
        logger.warning("rejected scan with bad signature (caller %s)", caller.id)
        return _reject("invalid_signature", "Invalid ticket - security verification failed")

    ticket = db.query(Ticket).filter(Ticket.ticket_id == str(payload.get("ticketId"))).first()
    if not ticket:
        return _reject("not_found", "Ticket not found in database")

    event = db.get(Event, ticket.event_id)
    if not event or event.owner_id != caller.id:
        return _reject("forbidden", "Only event organizers can validate tickets")

    if ticket.status == "used":
        return _reject(
            "already_used", "Ticket has already been used",
            usedAt=as_utc(ticket.used_at).isoformat() if ticket.used_at else None,
            usedBy=ticket.used_by,
        )

    if not ticket.is_valid_at(now or utcnow()):
        return _reject("not_valid", f"Ticket is {ticket.status}", status=ticket.status)

    attendee = db.get(User, ticket.user_id)
    return ValidationOutcome(valid=True, ticket=_ticket_summary(ticket, event, attendee))


def use_ticket(db: Session, ticket_id: str, caller: User, now: datetime | None = None) -> dict:
    ticket = db.query(Ticket).filter(Ticket.ticket_id == ticket_id).first()
    if not ticket:
        raise NotFound("Ticket not found")

    event = db.get(Event, ticket.event_id)
    if not event or event.owner_id != caller.id:
        raise Forbidden("Only event organizers can mark tickets as used")

    if ticket.status == "used":
        raise Conflict("Ticket has already been used", usedAt=as_utc(ticket.used_at).isoformat() if ticket.used_at else None)
    now = now or utcnow()
    if not ticket.is_valid_at(now):
        raise Conflict("Ticket is not valid", status=ticket.status)
    check_transition("ticket", ticket.status, "used")

    updated = (
        db.query(Ticket)
        .filter(Ticket.id == ticket.id, Ticket.status == "active")
        .update({Ticket.status: "used", Ticket.used_at: now, Ticket.used_by: caller.id}, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        raise Conflict("Ticket has already been used")
    log_audit(db, caller.id, "ticket.use", "ticket", ticket.ticket_id)
    db.commit()
    db.refresh(ticket)

    attendee = db.get(User, ticket.user_id)
    logger.info("ticket %s admitted by %s", ticket.ticket_id, caller.id)
    return {
        "ticketId": ticket.ticket_id,
        "attendeeName": attendee.name if attendee else "",
        "usedAt": as_utc(ticket.used_at).isoformat(),
    }
