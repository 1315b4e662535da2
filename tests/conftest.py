import os

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
os.environ["DATABASE_URL"] = SQLALCHEMY_DATABASE_URL
os.environ["LOG_JSON"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import cloudus.auth
from cloudus.config import OzowConfig, PaystackConfig, Settings, StripeConfig, get_settings
from cloudus.database import Base
from cloudus.main import app as fastapi_app
from cloudus.models import Booking, Order, PayableKind, Payment, PaymentStatus, ProjectMilestone, Provider
from cloudus.registry import build_providers, get_providers

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

TEST_SETTINGS = Settings(
    database_url=SQLALCHEMY_DATABASE_URL,
    app_url="https://cloudus.test",
    jwt_secret="test-jwt-secret",
    log_json=False,
    stripe=StripeConfig(secret_key="sk_test_123", webhook_secret="whsec_test"),
    paystack=PaystackConfig(secret_key="sk_paystack_test", api_url="https://paystack.test"),
    ozow=OzowConfig(site_code="TSTSTE0001", private_key="ozow-private-key"),
)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def settings():
    return TEST_SETTINGS


def _wire(monkeypatch, settings):
    # Point every router at the test database
    for module in ("cloudus.routes", "cloudus.webhooks", "cloudus.reports"):
        monkeypatch.setattr(f"{module}.SessionLocal", TestingSessionLocal)
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    fastapi_app.dependency_overrides[get_providers] = lambda: build_providers(settings)


@pytest.fixture
def client(monkeypatch, settings):
    _wire(monkeypatch, settings)
    # Bypass auth verification for tests
    fastapi_app.dependency_overrides[cloudus.auth.verify_token] = lambda: {"sub": "admin"}

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(monkeypatch, settings):
    _wire(monkeypatch, settings)

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


def _add(instance):
    db = TestingSessionLocal()
    db.add(instance)
    db.commit()
    instance_id = instance.id
    db.close()
    return instance_id


@pytest.fixture
def make_order():
    def factory(**kwargs):
        values = {"name": "Wash & fold", "description": "5kg laundry", "price_cents": 30000,
                  "delivery_cents": 0, "currency": "ZAR", "customer_email": "customer@example.com"}
        values.update(kwargs)
        return _add(Order(**values))
    return factory


@pytest.fixture
def make_milestone():
    def factory(**kwargs):
        values = {"project_id": "proj-1", "project_name": "Landing page", "purpose": "Deposit",
                  "amount_cents": 150000, "currency": "ZAR"}
        values.update(kwargs)
        return _add(ProjectMilestone(**values))
    return factory


@pytest.fixture
def make_booking():
    def factory(**kwargs):
        values = {"room_id": "room-7", "room_title": "Sea view", "guest_email": "guest@example.com",
                  "total_cents": 90000, "currency": "ZAR"}
        values.update(kwargs)
        return _add(Booking(**values))
    return factory


@pytest.fixture
def make_payment():
    def factory(kind, entity_id, provider=Provider.STRIPE, status=PaymentStatus.PENDING, **kwargs):
        fk = {PayableKind.ORDER: "order_id", PayableKind.PROJECT: "milestone_id",
              PayableKind.BOOKING: "booking_id"}[kind]
        values = {"payable_kind": kind, fk: entity_id, "amount_cents": 30000, "currency": "ZAR",
                  "provider": provider, "status": status}
        values.update(kwargs)
        return _add(Payment(**values))
    return factory


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()
