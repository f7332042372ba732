import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["KAFKA_BOOTSTRAP"] = ""
os.environ["NOTIFICATIONS_ENABLED"] = "true"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.api import deps
from storefront.core.auth import create_access_token
from storefront.core.config import settings
from storefront.db.models import Fragrance, Variant
from storefront.db.session import Base
from storefront.main import app
from storefront.services.catalog import CatalogRepository
from storefront.services.identity import CustomerIdentity
from storefront.services.lifecycle import OrderLifecycle
from storefront.services.notifications import NotificationDispatcher
from storefront.services.repository import OrderRepository

START = datetime(2026, 10, 19, 10, 0, 0)

class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

class Outbox(list):
    def __call__(self, to, subject, body):
        self.append({"to": to, "subject": subject, "body": body})

    def subjects(self):
        return [m["subject"] for m in self]

@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()

@pytest.fixture
def clock():
    return FakeClock(START)

@pytest.fixture
def outbox():
    return Outbox()

@pytest.fixture
def notifier(outbox):
    return NotificationDispatcher(settings, mailer=outbox, publisher=None)

@pytest.fixture
def catalog_items(db):
    """One visible fragrance with four variants and one hidden fragrance."""
    oud = Fragrance(name="Oud Royal", slug="oud-royal", brand="Qotore", description="Smoky oud")
    oud.variants = [
        Variant(id=7, label="5ml", size_ml=5, price_cents=5000),
        Variant(id=8, label="10ml", size_ml=10, price_cents=9000, max_quantity=3),
        Variant(id=9, label="Whole Bottle", size_ml=100, price_cents=None, is_whole_bottle=True),
        Variant(id=10, label="2ml", size_ml=2, price_cents=2000, in_stock=False),
    ]
    rose = Fragrance(name="Rose Musk", slug="rose-musk", brand="Maison", hidden=True)
    rose.variants = [Variant(id=11, label="5ml", size_ml=5, price_cents=4000)]
    db.add_all([oud, rose])
    db.commit()
    return {"oud": oud.id, "rose": rose.id}

@pytest.fixture
def lifecycle(db, notifier, clock, catalog_items):
    return OrderLifecycle(OrderRepository(db, clock), CatalogRepository(db), notifier, settings, clock)

@pytest.fixture
def guest():
    return CustomerIdentity.guest("10.0.0.1")

@pytest.fixture
def client(session_factory, notifier, clock, catalog_items):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[deps.get_db] = _get_db
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[deps.get_clock] = lambda: clock
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token('admin', 'admin')}"}

def guest_headers(ip: str = "10.0.0.1") -> dict:
    return {"X-Forwarded-For": ip}

def user_headers(user_id: str = "42", email: str = "layla@example.com") -> dict:
    token = create_access_token(user_id, "customer", email=email)
    return {"Authorization": f"Bearer {token}", "X-Forwarded-For": "10.9.9.9"}

def order_payload(items=None, **overrides) -> dict:
    body = {
        "customer_first_name": "Layla",
        "customer_last_name": "Al-Harthy",
        "customer_phone": "+968 9123 4567",
        "customer_email": "layla@example.com",
        "delivery_city": "Muscat",
        "delivery_region": "Bawshar",
        "delivery_type": "home",
        "notes": "Call before delivery",
        "items": items if items is not None else [{"variant_id": 7, "quantity": 2}],
    }
    body.update(overrides)
    return body
