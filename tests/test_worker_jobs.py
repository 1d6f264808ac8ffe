from datetime import timedelta

from sqlalchemy.exc import OperationalError

from app.core.clock import utcnow
from app.models import Ticket
from app.services import ticket_service
from app.tasks import worker_jobs


def test_reconcile_issues_missing_tickets(db, session_factory, event, make_confirmed_receipt):
    _, r1 = make_confirmed_receipt(event)
    _, r2 = make_confirmed_receipt(event, seats=2)
    ticket_service.issue_ticket_for_receipt(db, r1.id)

    out = worker_jobs.reconcile_confirmed_receipts(limit=10, session_factory=session_factory)
    assert out == {"checked": 1, "issued": 1, "failed": 0}
    assert db.query(Ticket).count() == 2

    again = worker_jobs.reconcile_confirmed_receipts(limit=10, session_factory=session_factory)
    assert again == {"checked": 0, "issued": 0, "failed": 0}


def test_reconcile_counts_failures(session_factory, event, make_confirmed_receipt, monkeypatch):
    make_confirmed_receipt(event)

    def boom(*a, **kw):
        from app.core.errors import QRRenderError
        raise QRRenderError("Failed to generate QR code")

    monkeypatch.setattr(ticket_service, "render_image", boom)
    out = worker_jobs.reconcile_confirmed_receipts(limit=10, session_factory=session_factory)
    assert out == {"checked": 1, "issued": 0, "failed": 1}


def test_issue_ticket_job_is_idempotent(session_factory, confirmed_receipt):
    first = worker_jobs.issue_ticket(confirmed_receipt.id, session_factory=session_factory)
    second = worker_jobs.issue_ticket(confirmed_receipt.id, session_factory=session_factory)
    assert first["created"] is True
    assert second == {"ticketId": first["ticketId"], "created": False}


def test_expire_job(db, session_factory, confirmed_receipt):
    ticket = ticket_service.issue_ticket_for_receipt(db, confirmed_receipt.id).ticket
    ticket.valid_until = utcnow() - timedelta(minutes=1)
    db.commit()

    assert worker_jobs.expire_tickets(session_factory=session_factory) == {"expired": 1}
    db.refresh(ticket)
    assert ticket.status == "expired"
    assert worker_jobs.expire_tickets(session_factory=session_factory) == {"expired": 0}


def test_reconcile_survives_database_errors(db, session_factory, event, make_confirmed_receipt, monkeypatch):
    _, broken = make_confirmed_receipt(event)
    make_confirmed_receipt(event)
    real_issue = ticket_service.issue_ticket_for_receipt

    def flaky(session, receipt_id, **kw):
        if receipt_id == broken.id:
            raise OperationalError("INSERT INTO tickets", {}, Exception("deadlock detected"))
        return real_issue(session, receipt_id, **kw)

    monkeypatch.setattr(ticket_service, "issue_ticket_for_receipt", flaky)
    out = worker_jobs.reconcile_confirmed_receipts(limit=10, session_factory=session_factory)
    assert out == {"checked": 2, "issued": 1, "failed": 1}
    assert db.query(Ticket).count() == 1
