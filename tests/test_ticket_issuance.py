import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.clock import as_utc, utcnow
from app.core.errors import NotFound, PreconditionFailed, QRRenderError
from app.models import Notification, PaymentReceipt, Ticket
from app.services import ticket_service
from app.services.ticket_hash import verify_hash
from app.services.ticket_service import (
    generate_ticket_id, issue_ticket_for_receipt, resolve_validity_window,
)


def test_vip_breakdown_sets_type_and_quantity(db, confirmed_receipt):
    result = issue_ticket_for_receipt(db, confirmed_receipt.id)
    assert result.created
    assert result.ticket.ticket_type == "vip"
    assert result.ticket.quantity == 2
    assert result.qr_code_image.startswith("data:image/png;base64,")


def test_no_breakdown_uses_seat_count(db, event, make_confirmed_receipt):
    _, receipt = make_confirmed_receipt(event, seats=3)
    ticket = issue_ticket_for_receipt(db, receipt.id).ticket
    assert ticket.ticket_type == "regular"
    assert ticket.quantity == 3


def test_missing_event_date_uses_fallback_window(db, make_event, make_confirmed_receipt):
    ev = make_event(date=None)
    _, receipt = make_confirmed_receipt(ev)
    now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
    ticket = issue_ticket_for_receipt(db, receipt.id, now=now).ticket
    assert as_utc(ticket.valid_until) == now + timedelta(days=30, hours=24)


def test_unparsable_event_date_uses_fallback():
    now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
    _, until = resolve_validity_window("not-a-date", now)
    assert until == now + timedelta(days=30, hours=24)


def test_validity_ends_24h_after_event():
    now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
    event_date = datetime(2026, 11, 1, 19, 0, tzinfo=timezone.utc)
    valid_from, until = resolve_validity_window(event_date, now)
    assert valid_from == now
    assert until == event_date + timedelta(hours=24)


def test_unknown_breakdown_type_issued_as_regular(db, event, make_confirmed_receipt):
    booking, receipt = make_confirmed_receipt(event, seats=1)
    booking.ticket_breakdown = [{"type": "backstage", "quantity": 4}]
    db.commit()
    ticket = issue_ticket_for_receipt(db, receipt.id).ticket
    assert ticket.ticket_type == "regular"
    assert ticket.quantity == 4


def test_second_issue_returns_existing_ticket(db, confirmed_receipt):
    first = issue_ticket_for_receipt(db, confirmed_receipt.id)
    second = issue_ticket_for_receipt(db, confirmed_receipt.id)
    assert not second.created
    assert second.ticket.id == first.ticket.id
    assert db.query(Ticket).filter(Ticket.payment_receipt_id == confirmed_receipt.id).count() == 1


def test_stored_descriptor_is_signed(db, confirmed_receipt):
    ticket = issue_ticket_for_receipt(db, confirmed_receipt.id).ticket
    payload = json.loads(ticket.qr_code_data)
    assert payload["ticketId"] == ticket.ticket_id
    assert payload["hash"] == ticket.verification_hash
    assert verify_hash(payload, payload["hash"])


def test_fresh_ticket_is_valid(db, confirmed_receipt):
    ticket = issue_ticket_for_receipt(db, confirmed_receipt.id).ticket
    assert ticket.status == "active"
    assert ticket.is_valid


def test_pending_receipt_is_refused(db, confirmed_receipt):
    receipt = db.get(PaymentReceipt, confirmed_receipt.id)
    receipt.status = "pending"
    db.commit()
    with pytest.raises(PreconditionFailed):
        issue_ticket_for_receipt(db, receipt.id)
    assert db.query(Ticket).count() == 0


def test_unknown_receipt(db):
    with pytest.raises(NotFound):
        issue_ticket_for_receipt(db, "missing")


def test_qr_failure_persists_nothing(db, confirmed_receipt, monkeypatch):
    def boom(payload, size_px=None):
        raise QRRenderError("Failed to generate QR code")

    monkeypatch.setattr(ticket_service, "render_image", boom)
    with pytest.raises(QRRenderError):
        issue_ticket_for_receipt(db, confirmed_receipt.id)
    assert db.query(Ticket).count() == 0


def test_notification_failure_does_not_undo_ticket(db, confirmed_receipt):
    class ExplodingDispatcher:
        def notify(self, *a, **kw):
            raise RuntimeError("socket layer down")

    result = issue_ticket_for_receipt(db, confirmed_receipt.id, dispatcher=ExplodingDispatcher())
    assert result.created
    assert db.query(Ticket).count() == 1


def test_owner_notified_once(db, confirmed_receipt, dispatcher):
    issue_ticket_for_receipt(db, confirmed_receipt.id, dispatcher=dispatcher)
    issue_ticket_for_receipt(db, confirmed_receipt.id, dispatcher=dispatcher)
    rows = db.query(Notification).filter(Notification.type == "ticket_generated").all()
    assert len(rows) == 1
    assert rows[0].user_id == confirmed_receipt.user_id
    assert rows[0].data["downloadUrl"].endswith("/download")


def test_lost_race_returns_winner(db, confirmed_receipt, monkeypatch):
    """The pre-check misses a concurrent insert; the unique constraint catches it."""
    winner = issue_ticket_for_receipt(db, confirmed_receipt.id).ticket
    winner_id = winner.id

    real_query = db.query
    calls = {"n": 0}

    class _Miss:
        def filter(self, *a, **kw):
            return self

        def first(self):
            return None

    def query(*entities):
        if entities == (Ticket,) and calls["n"] == 0:
            calls["n"] += 1
            return _Miss()
        return real_query(*entities)

    monkeypatch.setattr(db, "query", query)
    result = issue_ticket_for_receipt(db, confirmed_receipt.id)
    assert not result.created
    assert result.ticket.id == winner_id
    assert real_query(Ticket).count() == 1


def test_unique_receipt_constraint(db, confirmed_receipt):
    ticket = issue_ticket_for_receipt(db, confirmed_receipt.id).ticket
    dup = Ticket(
        id="dup", ticket_id="TKT-2026-DUP000000000", event_id=ticket.event_id, user_id=ticket.user_id,
        booking_id=ticket.booking_id, payment_receipt_id=ticket.payment_receipt_id,
        ticket_type="regular", quantity=1, qr_code_data="{}", verification_hash="x" * 64,
        status="active", valid_from=utcnow(), valid_until=utcnow(), generated_at=utcnow(),
    )
    db.add(dup)
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_ticket_id_format():
    tid = generate_ticket_id(datetime(2026, 10, 17, tzinfo=timezone.utc))
    assert re.fullmatch(r"TKT-2026-[A-Z0-9]{6}\d{6}", tid)


def test_issuance_is_audited(db, confirmed_receipt):
    from app.services.audit_service import audit_trail

    ticket = issue_ticket_for_receipt(db, confirmed_receipt.id).ticket
    trail = audit_trail(db, "ticket", ticket.ticket_id)
    assert [e["action"] for e in trail] == ["ticket.issue"]
    assert trail[0]["actor"] == "system"


def test_ticket_model_matches_migration():
    source = (Path(__file__).resolve().parents[1] / "alembic" / "versions" / "0002_tickets_notifications.py").read_text()
    tickets_block = source.split("'tickets',", 1)[1].split("op.create_index", 1)[0]
    migrated = set(re.findall(r"sa\.Column\('(\w+)'", tickets_block))
    assert migrated == {c.name for c in Ticket.__table__.columns}
