import logging

from sqlalchemy.exc import ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import TicketingError
from app.db.session import SessionLocal
from app.realtime.registry import SessionRegistry
from app.services.notification_service import NotificationDispatcher
from app.services import ticket_service

logger = logging.getLogger(__name__)


def _dispatcher(session_factory=SessionLocal) -> NotificationDispatcher:
    # Workers hold no sockets: notifications are stored and picked up by polling clients.
    return NotificationDispatcher(session_factory, SessionRegistry())


def issue_ticket(receipt_id: str, session_factory=SessionLocal) -> dict:
    """Issue the ticket for one confirmed receipt. Idempotent."""
    db: Session = session_factory()
    try:
        result = ticket_service.issue_ticket_for_receipt(db, receipt_id, dispatcher=_dispatcher(session_factory))
        return {"ticketId": result.ticket.ticket_id, "created": result.created}
    finally:
        db.close()


def reconcile_confirmed_receipts(limit: int = 100, session_factory=SessionLocal) -> dict:
    """Issue tickets for confirmed receipts that never got one."""
    db: Session = session_factory()
    try:
        try:
            receipt_ids = ticket_service.receipts_awaiting_ticket(db, limit=limit)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        dispatcher = _dispatcher(session_factory)
        issued, failed = 0, 0
        for rid in receipt_ids:
            try:
                result = ticket_service.issue_ticket_for_receipt(db, rid, dispatcher=dispatcher)
                issued += int(result.created)
            except TicketingError as e:
                db.rollback()
                failed += 1
                logger.error("reconcile: receipt %s still without ticket: %s", rid, e.message)
            except SQLAlchemyError:
                db.rollback()
                failed += 1
                logger.exception("reconcile: database error issuing ticket for receipt %s", rid)
        return {"checked": len(receipt_ids), "issued": issued, "failed": failed}
    finally:
        db.close()


def expire_tickets(session_factory=SessionLocal) -> dict:
    db: Session = session_factory()
    try:
        try:
            expired = ticket_service.expire_tickets(db)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if expired:
            logger.info("expired %d ticket(s)", expired)
        return {"expired": expired}
    finally:
        db.close()
