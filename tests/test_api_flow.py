import json

import pytest
from starlette.websockets import WebSocketDisconnect

from app.models import AuditLog, Ticket, User


def _register(client, email, name):
    r = client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": "secret123"})
    assert r.status_code == 201, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def _setup_paid_booking(client):
    org = _register(client, "org@example.com", "Olu Organizer")
    guest = _register(client, "guest@example.com", "Ada Attendee")

    r = client.post("/api/v1/events", headers=org, json={
        "title": "Harbour Jazz Night", "location": "Pier 4",
        "date": "2030-06-01T19:00:00+00:00", "time": "19:00", "capacity": 50, "price": 40,
    })
    assert r.status_code == 201, r.text
    event_id = r.json()["id"]

    r = client.post("/api/v1/bookings", headers=guest, json={
        "eventId": event_id, "ticketBreakdown": [{"type": "vip", "quantity": 2, "price": 40}],
    })
    assert r.status_code == 201, r.text
    booking_id = r.json()["id"]

    r = client.post("/api/v1/payment-receipts", headers=guest, json={
        "eventId": event_id, "bookingId": booking_id, "amount": "80.00",
        "receiptImage": "https://img.example.com/r.png", "transactionReference": "TX-9",
    })
    assert r.status_code == 201, r.text
    return org, guest, event_id, r.json()["receipt"]["id"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_login_refresh_and_me(client):
    _register(client, "me@example.com", "Me")
    tokens = client.post("/api/v1/auth/login", json={"email": "me@example.com", "password": "secret123"}).json()
    r = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200
    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {r.json()['access_token']}"})
    assert me.json()["email"] == "me@example.com"


def test_refresh_token_is_not_an_access_token(client):
    _register(client, "me@example.com", "Me")
    tokens = client.post("/api/v1/auth/login", json={"email": "me@example.com", "password": "secret123"}).json()
    r = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert r.status_code == 401


def test_full_ticket_lifecycle(client, session_factory):
    org, guest, event_id, receipt_id = _setup_paid_booking(client)

    r = client.post(f"/api/v1/payment-receipts/{receipt_id}/confirm", headers=org, json={"verificationNotes": "ok"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["receipt"]["status"] == "confirmed"
    assert body["ticketCreated"] is True
    ticket = body["ticket"]
    assert ticket["ticketType"] == "vip"
    assert ticket["quantity"] == 2
    assert ticket["downloadUrl"].endswith(f"/api/v1/tickets/{ticket['id']}/download")

    # generate again: same ticket, 200
    r = client.post("/api/v1/tickets/generate", headers=guest, json={"paymentReceiptId": receipt_id})
    assert r.status_code == 200
    assert r.json()["ticket"]["ticketId"] == ticket["ticketId"]
    assert r.json()["qrCodeImage"].startswith("data:image/png;base64,")

    mine = client.get("/api/v1/tickets/mine", headers=guest).json()["tickets"]
    assert [t["ticketId"] for t in mine] == [ticket["ticketId"]]
    assert mine[0]["isValid"] is True
    assert mine[0]["event"]["id"] == event_id

    pdf = client.get(f"/api/v1/tickets/{ticket['id']}/download", headers=guest)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")
    assert client.get(f"/api/v1/tickets/{ticket['id']}/download", headers=org).status_code == 404

    # scan: organizer needs the raw QR string the attendee holds
    with session_factory() as s:
        qr = s.query(Ticket).filter(Ticket.ticket_id == ticket["ticketId"]).one().qr_code_data

    r = client.post("/api/v1/tickets/validate", headers=guest, json={"qrData": qr})
    assert r.status_code == 403

    r = client.post("/api/v1/tickets/validate", headers=org, json={"qrData": qr})
    assert r.status_code == 200
    assert r.json()["valid"] is True
    assert r.json()["ticket"]["attendeeName"] == "Ada Attendee"

    tampered = json.loads(qr)
    tampered["quantity"] = 9
    r = client.post("/api/v1/tickets/validate", headers=org, json={"qrData": tampered})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_signature"

    r = client.post(f"/api/v1/tickets/{ticket['ticketId']}/use", headers=org)
    assert r.status_code == 200
    assert r.json()["ticket"]["attendeeName"] == "Ada Attendee"

    r = client.post(f"/api/v1/tickets/{ticket['ticketId']}/use", headers=org)
    assert r.status_code == 409

    r = client.post("/api/v1/tickets/validate", headers=org, json={"qrData": qr})
    assert r.status_code == 400
    assert r.json()["code"] == "already_used"

    hist = client.get(f"/api/v1/tickets/{ticket['ticketId']}/history", headers=guest).json()
    assert hist["status"] == "used"
    assert [h["action"] for h in hist["history"]] == ["ticket.issue", "ticket.use"]

    notes = client.get("/api/v1/notifications", headers=guest).json()
    assert {n["type"] for n in notes} == {"payment_confirmed", "ticket_generated"}
    assert client.patch("/api/v1/notifications/read-all", headers=guest).json()["updated"] == 2


def test_generate_before_confirmation_is_refused(client):
    _, guest, _, receipt_id = _setup_paid_booking(client)
    r = client.post("/api/v1/tickets/generate", headers=guest, json={"paymentReceiptId": receipt_id})
    assert r.status_code == 400
    assert r.json()["code"] == "precondition_failed"


def test_rejected_receipt_then_confirm_conflicts(client):
    org, _, _, receipt_id = _setup_paid_booking(client)
    r = client.post(f"/api/v1/payment-receipts/{receipt_id}/reject", headers=org, json={"verificationNotes": "blurry"})
    assert r.status_code == 200
    assert r.json()["receipt"]["status"] == "rejected"
    r = client.post(f"/api/v1/payment-receipts/{receipt_id}/confirm", headers=org)
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_transition"


def test_attendee_cannot_confirm(client):
    _, guest, _, receipt_id = _setup_paid_booking(client)
    r = client.post(f"/api/v1/payment-receipts/{receipt_id}/confirm", headers=guest)
    assert r.status_code == 403


def test_validate_garbage(client):
    org = _register(client, "org@example.com", "Olu Organizer")
    r = client.post("/api/v1/tickets/validate", headers=org, json={"qrData": "not-json"})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_format"


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/api/v1/ws/notifications?token=nope") as ws:
            ws.receive_json()


def test_websocket_join_and_push(client):
    guest = _register(client, "guest@example.com", "Ada Attendee")
    token = guest["Authorization"].split(" ", 1)[1]
    with client.websocket_connect(f"/api/v1/ws/notifications?token={token}") as ws:
        ws.send_json({"event": "user:join"})
        joined = ws.receive_json()
        assert joined["event"] == "user:joined"

        status = client.get("/api/v1/realtime/status", headers=guest).json()
        assert status["connected"] is True

        me = client.get("/api/v1/auth/me", headers=guest).json()
        client.app.state.notification_dispatcher.notify(me["id"], type="event_update", title="Hi", message="m")
        frame = ws.receive_json()
        assert frame["event"] == "newNotification"
        assert frame["title"] == "Hi"


def test_websocket_token_lookup_runs_in_threadpool(client, monkeypatch):
    from app.api.v1.routes import realtime

    offloaded = []
    real = realtime.run_in_threadpool

    async def recording(func, *args, **kwargs):
        offloaded.append(func.__name__)
        return await real(func, *args, **kwargs)

    monkeypatch.setattr(realtime, "run_in_threadpool", recording)
    guest = _register(client, "guest@example.com", "Ada Attendee")
    token = guest["Authorization"].split(" ", 1)[1]
    with client.websocket_connect(f"/api/v1/ws/notifications?token={token}") as ws:
        ws.send_json({"event": "user:join"})
        assert ws.receive_json()["event"] == "user:joined"
    assert offloaded == ["_resolve_user_id"]


def _promote(session_factory, email, role="admin"):
    with session_factory() as s:
        s.query(User).filter(User.email == email).update({User.role: role})
        s.commit()


def test_admin_lists_and_bans_users(client, session_factory):
    admin = _register(client, "admin@example.com", "Ana Admin")
    guest = _register(client, "guest@example.com", "Ada Attendee")
    _promote(session_factory, "admin@example.com")

    assert client.get("/api/v1/admin/users", headers=guest).status_code == 403

    listing = client.get("/api/v1/admin/users", headers=admin).json()
    assert listing["total"] == 2
    assert [u["email"] for u in listing["items"]] == ["guest@example.com", "admin@example.com"]
    found = client.get("/api/v1/admin/users", headers=admin, params={"q": "ada"}).json()
    assert [u["email"] for u in found["items"]] == ["guest@example.com"]
    guest_id = found["items"][0]["id"]

    r = client.patch(f"/api/v1/admin/users/{guest_id}/ban", headers=guest)
    assert r.status_code == 403

    r = client.patch(f"/api/v1/admin/users/{guest_id}/ban", headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["user"]["isActive"] is False
    assert client.get("/api/v1/auth/me", headers=guest).status_code == 401

    me = client.get("/api/v1/auth/me", headers=admin).json()
    assert client.patch(f"/api/v1/admin/users/{me['id']}/ban", headers=admin).status_code == 400
    assert client.patch("/api/v1/admin/users/missing/ban", headers=admin).status_code == 404

    r = client.patch(f"/api/v1/admin/users/{guest_id}/ban", headers=admin, params={"banned": "false"})
    assert r.json()["user"]["isActive"] is True
    assert client.get("/api/v1/auth/me", headers=guest).status_code == 200

    with session_factory() as s:
        actions = [a for (a,) in s.query(AuditLog.action).filter(AuditLog.entity_id == guest_id)]
    assert sorted(actions) == ["user.ban", "user.unban"]


def test_organizer_lists_and_checks_in_bookings(client):
    org, guest, event_id, receipt_id = _setup_paid_booking(client)
    booking_id = client.get("/api/v1/bookings/mine", headers=guest).json()[0]["id"]

    assert client.get(f"/api/v1/bookings/event/{event_id}", headers=guest).status_code == 403
    assert client.get("/api/v1/bookings/event/missing", headers=org).status_code == 404
    rows = client.get(f"/api/v1/bookings/event/{event_id}", headers=org).json()
    assert [b["id"] for b in rows] == [booking_id]
    assert rows[0]["user"]["name"] == "Ada Attendee"
    assert rows[0]["user"]["email"] == "guest@example.com"

    # still pending payment
    r = client.patch(f"/api/v1/bookings/{booking_id}/checkin", headers=org)
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_transition"

    client.post(f"/api/v1/payment-receipts/{receipt_id}/confirm", headers=org)

    assert client.patch(f"/api/v1/bookings/{booking_id}/checkin", headers=guest).status_code == 403
    r = client.patch(f"/api/v1/bookings/{booking_id}/checkin", headers=org)
    assert r.status_code == 200, r.text
    assert r.json()["booking"]["status"] == "checked-in"

    r = client.patch(f"/api/v1/bookings/{booking_id}/checkin", headers=org)
    assert r.status_code == 409
    assert client.patch("/api/v1/bookings/missing/checkin", headers=org).status_code == 404


def test_host_edits_and_deletes_events(client):
    org, guest, booked_id, _ = _setup_paid_booking(client)
    r = client.post("/api/v1/events", headers=org, json={"title": "Rooftop Cinema", "location": "Block C"})
    spare_id = r.json()["id"]

    mine = client.get("/api/v1/events/host/my-events", headers=org).json()
    assert [e["id"] for e in mine] == [spare_id, booked_id]
    assert client.get("/api/v1/events/host/my-events", headers=guest).json() == []

    assert client.put(f"/api/v1/events/{booked_id}", headers=guest, json={"title": "Mine now"}).status_code == 403
    r = client.put(f"/api/v1/events/{booked_id}", headers=org,
                   json={"title": "Harbour Jazz Late", "capacity": 60, "currency": "eur"})
    assert r.status_code == 200, r.text
    assert r.json()["title"] == "Harbour Jazz Late"
    assert r.json()["capacity"] == 60
    assert r.json()["currency"] == "EUR"
    assert r.json()["location"] == "Pier 4"

    r = client.put(f"/api/v1/events/{booked_id}", headers=org, json={"capacity": 1})
    assert r.status_code == 409
    assert r.json()["bookedSlots"] == 2

    r = client.delete(f"/api/v1/events/{booked_id}", headers=org)
    assert r.status_code == 400
    assert r.json()["bookingCount"] == 1
    assert r.json()["canDelete"] is False

    assert client.delete(f"/api/v1/events/{spare_id}", headers=guest).status_code == 403
    r = client.delete(f"/api/v1/events/{spare_id}", headers=org)
    assert r.json() == {"message": "Event deleted successfully"}
    assert client.get(f"/api/v1/events/{spare_id}").status_code == 404


def test_organizer_broadcasts_to_attendees(client):
    org, guest, event_id, _ = _setup_paid_booking(client)
    r = client.post("/api/v1/events", headers=org, json={"title": "Empty Room", "location": "Hall B"})
    empty_id = r.json()["id"]

    r = client.post(f"/api/v1/events/{empty_id}/notify", headers=org, json={"type": "cancelled", "message": "Off"})
    assert r.json() == {"message": "No attendees to notify", "notificationsSent": 0}

    body = {"type": "postponed", "message": "Storm warning", "newDate": "2030-06-08T19:00:00+00:00", "newTime": "20:00"}
    assert client.post(f"/api/v1/events/{event_id}/notify", headers=guest, json=body).status_code == 403
    assert client.post("/api/v1/events/missing/notify", headers=org, json=body).status_code == 404
    assert client.post(f"/api/v1/events/{event_id}/notify", headers=org,
                       json={"type": "rescheduled", "message": "x"}).status_code == 422

    r = client.post(f"/api/v1/events/{event_id}/notify", headers=org, json=body)
    assert r.json()["notificationsSent"] == 1

    notes = [n for n in client.get("/api/v1/notifications", headers=guest).json() if n["type"] == "event_update"]
    assert len(notes) == 1
    assert notes[0]["title"] == "Event Postponed"
    assert notes[0]["message"] == "Storm warning"
    assert notes[0]["data"]["updateType"] == "postponed"
    assert notes[0]["data"]["newTime"] == "20:00"
