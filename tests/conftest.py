import sys, pathlib

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from admission import ReservationAdmission
from availability import AvailabilityResolver
from config import Config
from memory_store import InMemoryStore
from models import HistoryEntry, Quote, Reservation, ReservationStatus, Vehicle

# 2024-05-01 05:00 in the business timezone; bookings from 2024-05-01 on are valid
FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    from utils import rate_limit_storage
    rate_limit_storage.clear()
    yield
    rate_limit_storage.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    """In-memory store seeded with a small fleet."""
    st = InMemoryStore()
    st.upsert_vehicle(Vehicle(id="car-1", daily_rate=Decimal("300"), brand="Toyota", model="Corolla", year=2022))
    st.upsert_vehicle(Vehicle(id="car-2", daily_rate=Decimal("120.50"), brand="Skoda", model="Octavia", year=2021))
    st.upsert_vehicle(Vehicle(id="car-3", daily_rate=Decimal("80"), is_active=False, brand="Fiat", model="Panda"))
    st.upsert_vehicle(Vehicle(id="car-4", daily_rate=Decimal("95"), show_on_homepage=False,
                              brand="VW", model="Golf"))
    return st


@pytest.fixture
def resolver(store, clock):
    return AvailabilityResolver(store, clock=clock)


@pytest.fixture
def admission(store, resolver, clock):
    return ReservationAdmission(store, resolver=resolver, clock=clock)


@pytest.fixture
def seed_reservation(store, clock):
    """Insert a reservation straight into the store, bypassing admission."""

    def _seed(vehicle_id, start, end, status=ReservationStatus.CONFIRMED, created_at=None):
        created_at = created_at or clock()
        total_days = (end - start).days + 1
        subtotal = Decimal("300") * total_days
        reservation = Reservation(
            id=str(uuid.uuid4()),
            vehicle_id=vehicle_id,
            start_date=start,
            end_date=end,
            status=status,
            pricing=Quote(Decimal("300"), total_days, subtotal, subtotal * Decimal("0.3"),
                          subtotal * Decimal("0.7")),
            created_at=created_at,
            updated_at=created_at,
            customer={"first_name": "Ana", "last_name": "Petrova"},
            history=[HistoryEntry("created", "customer", created_at)],
        )
        store.reservations[reservation.id] = reservation
        return reservation

    return _seed


@pytest.fixture
def flask_app(store, clock, monkeypatch):
    monkeypatch.setattr(Config, "SECRET_KEY", "test-secret")
    monkeypatch.setattr(Config, "ADMIN_USERNAME", "admin")
    monkeypatch.setattr(Config, "ADMIN_PASSWORD", "s3cret-pass")
    monkeypatch.setattr(Config, "PAYMENT_CALLBACK_TOKEN", "pay-token")
    monkeypatch.setattr(Config, "READ_RETRY_BASE_DELAY", 0)

    from app import create_app
    application = create_app(store=store, clock=clock)
    application.config.update(TESTING=True, SESSION_COOKIE_SECURE=False)
    return application


@pytest.fixture
def client(flask_app):
    with flask_app.test_client() as c:
        yield c


@pytest.fixture
def admin_client(client):
    resp = client.post("/admin/login", json={"username": "admin", "password": "s3cret-pass"})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def june():
    """A three-day window one month after FIXED_NOW."""
    return date(2024, 6, 1), date(2024, 6, 3)
