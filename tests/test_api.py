from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app import database
from app.application.services.payment_orchestrator import PaymentOrchestrator
from app.dependencies import build_appointments_service, get_payment_orchestrator
from app.infrastructure.persistence.sqlalchemy.repositories.payments_repository_sql import SqlPaymentAttemptsRepository
from app.infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimiter
from app.main import app

from payment_fakes import FakeAudit, FakePushGateway, FakeRedirectGateway

MONDAY = "2030-01-07"


@pytest.fixture
def client(engine, monkeypatch):
    monkeypatch.setattr(database, "engine", engine)
    orchestrator = PaymentOrchestrator(
        attempts=SqlPaymentAttemptsRepository(engine),
        appointments=build_appointments_service(engine),
        redirect_gateway=FakeRedirectGateway(["paid"]),
        push_gateway=FakePushGateway(["pending"]),
        rate_limiter=InMemoryRateLimiter(),
        audit=FakeAudit(),
        poll_interval=0.01,
        timeout=5.0,
    )
    app.dependency_overrides[get_payment_orchestrator] = lambda: orchestrator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def book(client, slot="10:00", patient_id=42):
    return client.post("/appointments/", json={
        "doctor_id": 1, "patient_id": patient_id, "appointment_date": MONDAY, "time_slot": slot,
    })


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "healthy"
    assert res.json()["payment_watchers"] == 0
    assert res.headers["X-Request-ID"]


def test_request_id_is_echoed(client):
    res = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert res.headers["X-Request-ID"] == "abc123"


def test_available_slots(client):
    res = client.get("/doctors/1/slots", params={"date": MONDAY})
    assert res.status_code == 200
    body = res.json()
    assert len(body["slots"]) == 12
    assert body["slots"][0]["label"] == "9:00 AM – 9:30 AM"

    assert client.get("/doctors/1/slots", params={"date": "2030-01-08"}).json()["slots"] == []


def test_unknown_doctor_uses_error_envelope(client):
    res = client.get("/doctors/99/slots", params={"date": MONDAY})
    assert res.status_code == 404
    assert res.json() == {"success": False, "data": None, "error": "Doctor 99 not found", "code": "doctor_not_found"}


def test_booking_flow(client):
    res = book(client)
    assert res.status_code == 201
    appt = res.json()
    assert appt["status"] == "Pending"
    assert Decimal(appt["total_amount"]) == Decimal("6500.00")

    clash = book(client, patient_id=43)
    assert clash.status_code == 409
    assert clash.json()["code"] == "slot_unavailable"

    slots = client.get("/doctors/1/slots", params={"date": MONDAY}).json()["slots"]
    assert "10:00:00" not in [s["start"] for s in slots]

    mine = client.get("/appointments/", params={"patient_id": 42}).json()
    assert [a["id"] for a in mine] == [appt["id"]]
    assert client.get(f"/appointments/{appt['id']}").json()["id"] == appt["id"]
    assert client.get("/appointments/999").status_code == 404


def test_status_changes(client):
    appt_id = book(client).json()["id"]
    res = client.patch(f"/appointments/{appt_id}/status", json={"status": "Confirmed"})
    assert res.status_code == 200
    assert res.json()["status"] == "Confirmed"

    back = client.patch(f"/appointments/{appt_id}/status", json={"status": "Pending"})
    assert back.status_code == 409
    assert back.json()["code"] == "illegal_transition"


def test_charges_and_total(client):
    appt_id = book(client).json()["id"]
    client.post(f"/appointments/{appt_id}/charges", json={"charge_id": "lab-1", "amount": "1000"})
    res = client.post(f"/appointments/{appt_id}/charges", json={"charge_id": "rx-1", "amount": "500"})
    assert Decimal(res.json()["total_amount"]) == Decimal("8000.00")

    total = client.get(f"/appointments/{appt_id}/total").json()
    assert Decimal(total["total_due"]) == Decimal("8000.00")
    assert Decimal(total["balance_due"]) == Decimal("8000.00")
    assert total["currency"] == "KES"

    res = client.delete(f"/appointments/{appt_id}/charges/rx-1")
    assert Decimal(res.json()["total_amount"]) == Decimal("7500.00")

    assert client.post(f"/appointments/{appt_id}/charges", json={"charge_id": "x", "amount": "-5"}).status_code == 422


def test_consultation_access_for_pending_appointment(client):
    appt_id = book(client).json()["id"]
    res = client.get(f"/appointments/{appt_id}/consultation")
    assert res.status_code == 200
    body = res.json()
    assert body["can_join"] is False
    assert body["label"] == "Awaiting doctor confirmation"
    assert body["video_url"] is None


def test_redirect_payment_return_settles(client):
    appt_id = book(client).json()["id"]
    res = client.post("/payments/initiate", json={"appointment_id": appt_id, "gateway": "Redirect"})
    assert res.status_code == 201
    body = res.json()
    assert body["checkout_url"] == "https://checkout.example/cs_test_1"
    assert body["attempt"]["status"] == "Initiated"

    ret = client.get("/payments/redirect/return", params={"session_id": "cs_test_1"})
    assert ret.status_code == 200
    assert ret.json()["outcome"] == "settled"

    appt = client.get(f"/appointments/{appt_id}").json()
    assert appt["status"] == "Confirmed"
    assert appt["payment_status"] == "Paid"
    assert appt["video_url"]

    again = client.post("/payments/initiate", json={"appointment_id": appt_id, "gateway": "Redirect"})
    assert again.status_code == 409
    assert again.json()["code"] == "payment_not_required"


def test_push_payment_with_bad_phone(client):
    appt_id = book(client).json()["id"]
    res = client.post("/payments/initiate", json={"appointment_id": appt_id, "gateway": "PushSTK", "phone": "123"})
    assert res.status_code == 422
    assert res.json()["code"] == "invalid_phone_format"


def test_push_payment_settled_by_callback(client):
    appt_id = book(client).json()["id"]
    res = client.post("/payments/initiate", json={"appointment_id": appt_id, "gateway": "PushSTK", "phone": "0712345678"})
    assert res.status_code == 201
    attempt_id = res.json()["attempt"]["id"]
    assert res.json()["attempt"]["status"] == "AwaitingConfirmation"

    callback = {"Body": {"stkCallback": {
        "MerchantRequestID": "1-1", "CheckoutRequestID": "ws_CO_1", "ResultCode": 0, "ResultDesc": "Processed",
    }}}
    ack = client.post("/payments/mpesa/callback", json=callback)
    assert ack.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    attempt = client.get(f"/payments/{attempt_id}").json()
    assert attempt["status"] == "Settled"
    outcome = client.get(f"/payments/{attempt_id}/outcome").json()
    assert outcome["outcome"] == "settled"
    history = client.get(f"/payments/appointment/{appt_id}").json()
    assert [a["id"] for a in history] == [attempt_id]


def test_stop_watching_push_payment(client):
    appt_id = book(client).json()["id"]
    attempt_id = client.post(
        "/payments/initiate", json={"appointment_id": appt_id, "gateway": "PushSTK", "phone": "+254712345678"},
    ).json()["attempt"]["id"]

    res = client.delete(f"/payments/{attempt_id}/watch")
    assert res.status_code == 200
    assert res.json()["status"] == "AwaitingConfirmation"
    assert client.get(f"/payments/{attempt_id}/outcome").json()["outcome"] == "pending"


def test_malformed_callback_and_unknown_attempt(client):
    assert client.post("/payments/mpesa/callback", json={"Body": {}}).status_code == 400
    res = client.get("/payments/999")
    assert res.status_code == 404
    assert res.json()["code"] == "payment_attempt_not_found"
