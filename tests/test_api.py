"""
HTTP surface: public browsing and booking, payment callback and admin tools,
driven through the Flask test client against the in-memory store.
"""

from datetime import date

import pytest

from config import Config
from errors import StorageError

CUSTOMER = {"first_name": "Ana", "last_name": "Petrova", "email": "ana@example.com", "phone": "+359888123456"}
JUNE = {"start_date": "2024-06-01", "end_date": "2024-06-03"}


def book(client, vehicle_id="car-1", headers=None, **extra):
    body = dict(JUNE, vehicle_id=vehicle_id, customer=CUSTOMER, **extra)
    return client.post("/reservations", json=body, headers=headers or {})


def test_root_and_health(client):
    assert client.get("/").status_code == 200
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["database"] == "connected"


def test_unknown_endpoint(client):
    assert client.get("/nowhere").status_code == 404


class TestBrowsing:

    def test_available_vehicles(self, client):
        resp = client.get("/vehicles", query_string=JUNE)
        assert resp.status_code == 200
        assert sorted(v["id"] for v in resp.get_json()["vehicles"]) == ["car-1", "car-2"]

    def test_dates_are_required(self, client):
        assert client.get("/vehicles").status_code == 400
        assert client.get("/vehicles", query_string={"start_date": "2024-06-01", "end_date": "June"}).status_code == 400

    def test_past_range_is_rejected(self, client):
        resp = client.get("/vehicles", query_string={"start_date": "2024-04-01", "end_date": "2024-04-03"})
        assert resp.status_code == 400

    def test_vehicle_detail_hides_inactive(self, client):
        assert client.get("/vehicles/car-1").get_json()["daily_rate"] == 300
        assert client.get("/vehicles/car-3").status_code == 404
        assert client.get("/vehicles/missing").status_code == 404

    def test_calendar(self, client, store):
        store.block_days("car-1", [date(2024, 6, 2)])
        resp = client.get("/vehicles/car-1/calendar", query_string=JUNE)
        assert resp.status_code == 200
        days = resp.get_json()["days"]
        assert days["2024-06-01"] == {"available": True, "reason": None, "price": 300}
        assert days["2024-06-02"]["reason"] == "manually_blocked"

    def test_calendar_range_limit(self, client):
        resp = client.get("/vehicles/car-1/calendar", query_string={"start_date": "2024-06-01", "end_date": "2024-12-31"})
        assert resp.status_code == 400

    def test_availability_with_quote(self, client):
        data = client.get("/vehicles/car-1/availability", query_string=JUNE).get_json()
        assert data["is_available"] is True
        assert data["quote"]["final_amount"] == 630

    def test_availability_reports_reason(self, client):
        book(client)
        data = client.get("/vehicles/car-1/availability", query_string=JUNE).get_json()
        assert data["is_available"] is False
        assert data["reason"] == "already_reserved"
        assert "quote" not in data

    def test_quote(self, client):
        data = client.get("/vehicles/car-1/quote", query_string=JUNE).get_json()
        assert (data["subtotal"], data["deposit_amount"], data["final_amount"]) == (900, 270, 630)


class TestReservations:

    def test_create(self, client):
        resp = book(client)
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["reservation"]["status"] == "provisional"
        assert "history" not in data["reservation"]
        assert data["payment"]["deposit_amount"] == 270
        assert data["payment"]["reservation_id"] == data["reservation"]["id"]

    def test_fetch(self, client):
        rid = book(client).get_json()["reservation"]["id"]
        assert client.get(f"/reservations/{rid}").get_json()["id"] == rid
        assert client.get("/reservations/missing").status_code == 404

    def test_fetch_omits_contact_details(self, client):
        rid = book(client).get_json()["reservation"]["id"]
        customer = client.get(f"/reservations/{rid}").get_json()["customer"]
        assert customer == {"first_name": "Ana", "last_name": "Petrova"}

    def test_slot_taken(self, client):
        book(client)
        resp = book(client)
        assert resp.status_code == 409
        assert resp.get_json()["reason"] == "already_reserved"

    def test_idempotent_retry(self, client, store):
        first = book(client, headers={"Idempotency-Key": "abc-123"})
        again = book(client, headers={"Idempotency-Key": "abc-123"})
        assert first.get_json()["reservation"]["id"] == again.get_json()["reservation"]["id"]
        assert len(store.reservations) == 1

    def test_quote_mismatch(self, client):
        stale = {"daily_rate": 250, "total_days": 3, "subtotal": 750, "deposit_amount": 225, "final_amount": 525}
        resp = book(client, quote=stale)
        assert resp.status_code == 409
        assert resp.get_json()["quote"]["subtotal"] == 900

    def test_non_finite_quote_is_rejected(self, client, store):
        quote = {"daily_rate": 300, "total_days": 3, "subtotal": "NaN", "deposit_amount": 270, "final_amount": 630}
        assert book(client, quote=quote).status_code == 400
        assert store.reservations == {}

    def test_invalid_payload(self, client):
        assert client.post("/reservations", json={}).status_code == 400
        resp = client.post("/reservations", json=dict(JUNE, vehicle_id="car-1", customer=dict(CUSTOMER, email="x")))
        assert resp.status_code == 400

    def test_unknown_vehicle(self, client):
        assert book(client, vehicle_id="missing").status_code == 404

    def test_rate_limit(self, client, monkeypatch):
        monkeypatch.setattr(Config, "RATE_LIMIT_MAX_REQUESTS", 2)
        book(client)
        book(client, vehicle_id="car-2")
        assert book(client, vehicle_id="car-4").status_code == 429


class TestPaymentWebhook:

    def test_requires_token(self, client):
        rid = book(client).get_json()["reservation"]["id"]
        resp = client.post("/webhooks/payment", json={"reservation_id": rid, "outcome": "succeeded"})
        assert resp.status_code == 401
        resp = client.post("/webhooks/payment", json={"reservation_id": rid, "outcome": "succeeded"},
                           headers={"X-Payment-Token": "wrong"})
        assert resp.status_code == 401

    def test_success_confirms(self, client):
        rid = book(client).get_json()["reservation"]["id"]
        resp = client.post("/webhooks/payment", json={"reservation_id": rid, "outcome": "succeeded"},
                           headers={"X-Payment-Token": "pay-token"})
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "confirmed"

    def test_failure_cancels(self, client):
        rid = book(client).get_json()["reservation"]["id"]
        resp = client.post("/webhooks/payment", json={"reservation_id": rid, "outcome": "failed"},
                           headers={"X-Payment-Token": "pay-token"})
        assert resp.get_json()["status"] == "cancelled"
        assert book(client).status_code == 201

    def test_late_success_is_rejected(self, client, clock, store):
        rid = book(client).get_json()["reservation"]["id"]
        clock.advance(minutes=45)
        resp = client.post("/webhooks/payment", json={"reservation_id": rid, "outcome": "succeeded"},
                           headers={"X-Payment-Token": "pay-token"})
        assert resp.status_code == 409
        assert resp.get_json()["current_status"] == "cancelled"
        assert store.get_reservation(rid).status.value == "cancelled"


class TestAdmin:

    def test_requires_login(self, client):
        assert client.get("/admin/reservations").status_code == 401
        assert client.patch("/admin/vehicles/car-1/blocks", json={"block": ["2024-06-02"]}).status_code == 401

    def test_wrong_password(self, client):
        resp = client.post("/admin/login", json={"username": "admin", "password": "nope"})
        assert resp.status_code == 401

    def test_status_and_logout(self, admin_client):
        assert admin_client.get("/admin/status").get_json()["logged_in"] is True
        admin_client.post("/admin/logout")
        assert admin_client.get("/admin/status").status_code == 401

    def test_toggle_blocks(self, admin_client):
        resp = admin_client.patch("/admin/vehicles/car-1/blocks", json={"block": ["2024-06-02", "2024-06-05"]})
        assert resp.status_code == 200
        admin_client.patch("/admin/vehicles/car-1/blocks", json={"unblock": ["2024-06-05"]})

        blocks = admin_client.get("/admin/vehicles/car-1/blocks",
                                  query_string={"start_date": "2024-06-01", "end_date": "2024-06-30"})
        assert blocks.get_json()["blocked_days"] == ["2024-06-02"]
        assert book(admin_client).get_json()["reason"] == "manually_blocked"

    def test_replace_blocks(self, admin_client, store):
        store.block_days("car-1", [date(2024, 6, 20)])
        resp = admin_client.put("/admin/vehicles/car-1/blocks", json={"dates": ["2024-06-10", "2024-06-11"]})
        assert resp.status_code == 200
        assert store.blocks["car-1"] == {date(2024, 6, 10), date(2024, 6, 11)}

    def test_blocks_for_unknown_vehicle(self, admin_client):
        resp = admin_client.patch("/admin/vehicles/missing/blocks", json={"block": ["2024-06-02"]})
        assert resp.status_code == 404

    def test_calendar_shows_reservations(self, admin_client):
        book(admin_client)
        data = admin_client.get("/admin/vehicles/car-1/calendar", query_string=JUNE).get_json()
        assert data["days"]["2024-06-02"]["reason"] == "already_reserved"
        assert data["reservations"][0]["customer_name"] == "Ana Petrova"
        assert data["reservations"][0]["status"] == "provisional"

    def test_calendar_drops_expired_holds(self, admin_client, clock):
        book(admin_client)
        clock.advance(minutes=40)
        data = admin_client.get("/admin/vehicles/car-1/calendar", query_string=JUNE).get_json()
        assert data["reservations"] == []
        assert data["days"]["2024-06-02"]["available"] is True

    def test_list_and_lifecycle(self, admin_client):
        rid = book(admin_client).get_json()["reservation"]["id"]

        listed = admin_client.get("/admin/reservations", query_string={"status": "provisional"}).get_json()
        assert [r["id"] for r in listed["reservations"]] == [rid]

        for action in ("confirm", "activate", "complete"):
            resp = admin_client.post(f"/admin/reservations/{rid}/{action}")
            assert resp.status_code == 200, action
        history = resp.get_json()["reservation"]["history"]
        assert history[-1]["performed_by"] == "admin"

        resp = admin_client.post(f"/admin/reservations/{rid}/cancel", json={"reason": "late"})
        assert resp.status_code == 409
        assert resp.get_json()["current_status"] == "completed"

    def test_unknown_action(self, admin_client):
        rid = book(admin_client).get_json()["reservation"]["id"]
        assert admin_client.post(f"/admin/reservations/{rid}/teleport").status_code == 400

    def test_expire_stale(self, admin_client, clock):
        rid = book(admin_client).get_json()["reservation"]["id"]
        clock.advance(minutes=40)
        data = admin_client.post("/admin/reservations/expire-stale").get_json()
        assert data["expired"] == [rid]


class TestDegradedStorage:

    def test_engine_not_configured(self, monkeypatch):
        monkeypatch.setattr(Config, "SECRET_KEY", "test-secret")
        monkeypatch.setattr(Config, "STORAGE_BACKEND", "supabase")
        monkeypatch.setattr(Config, "SUPABASE_URL", None)

        from app import create_app
        application = create_app()
        with application.test_client() as c:
            assert c.get("/vehicles", query_string=JUNE).status_code == 503
            assert c.get("/health").status_code == 503

    def test_storage_failure_is_503(self, client, store, monkeypatch):
        calls = []

        def broken(*args, **kwargs):
            calls.append(args)
            raise StorageError()

        monkeypatch.setattr(store, "get_vehicle", broken)
        assert client.get("/vehicles/car-1").status_code == 503
        assert len(calls) == Config.READ_RETRY_ATTEMPTS
