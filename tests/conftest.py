import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.config import settings
from core.db import Base, get_db
from core.errors import GatewayError
from models.user import User
from schemas.payment import CheckoutSession
from security import jwt as jwt_utils
from security.password import hash_password
from services import email as email_service
from services import token_blacklist
from services.checkout_gateway import get_checkout_gateway
from services.order_store import OrderStore


class FakeGateway:
    """Stands in for the hosted checkout provider."""

    def __init__(self):
        self.calls = []
        self.fail_with = None
        self.next_session_id = None

    def create_session(self, line_items, customer_email, success_url, cancel_url, correlation_id, metadata=None):
        self.calls.append({
            "line_items": line_items,
            "customer_email": customer_email,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "correlation_id": correlation_id,
            "metadata": metadata,
        })
        if self.fail_with is not None:
            raise self.fail_with
        session_id = self.next_session_id or f"sess_{len(self.calls)}"
        self.next_session_id = None
        return CheckoutSession(session_id=session_id, redirect_url=f"https://checkout.example.com/pay/{session_id}")


@pytest.fixture()
def db_session_override():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield db
    finally:
        db.close()
        app.dependency_overrides.clear()
        engine.dispose()


@pytest.fixture()
def db(db_session_override):
    return db_session_override


@pytest.fixture()
def store(db):
    return OrderStore(db)


@pytest.fixture()
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_checkout_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_checkout_gateway, None)


@pytest.fixture()
def failing_gateway(gateway):
    gateway.fail_with = GatewayError("Payment provider timed out")
    return gateway


@pytest.fixture()
def client(db_session_override):
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def mock_email_send(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, body: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture(autouse=True)
def clear_token_blacklist():
    token_blacklist.redis_client.flushdb()
    yield


def _make_user(db, email, role="customer", first_name="Test", last_name="User"):
    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password_hash=hash_password("testpass123"),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def customer(db):
    return _make_user(db, "customer@example.com")


@pytest.fixture
def other_customer(db):
    return _make_user(db, "other@example.com", first_name="Other")


@pytest.fixture
def admin(db):
    return _make_user(db, "admin@example.com", role="admin", first_name="Admin")


def _headers(user):
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(user.id), role=user.role)}"}


@pytest.fixture
def customer_headers(customer):
    return _headers(customer)


@pytest.fixture
def other_headers(other_customer):
    return _headers(other_customer)


@pytest.fixture
def admin_headers(admin):
    return _headers(admin)


@pytest.fixture
def cart():
    """Two line items totalling 4999 minor units."""
    return {
        "items": [
            {"product_id": "prod_1", "name": "Mug", "description": "Stoneware mug", "quantity": 2,
             "unit_price": 1500, "images": ["https://img.example.com/mug.png"]},
            {"product_id": "prod_2", "name": "Poster", "description": "", "quantity": 1, "unit_price": 1999},
        ],
        "shipping_address": {"street": "1 High Street", "city": "London", "post_code": "N1 1AA",
                             "country": "GB"},
        "customer_email": "customer@example.com",
        "total": 4999,
        "metadata": {"order_ref": "ORD-1001"},
    }


def stripe_signature(raw, secret, timestamp=None):
    """A ``Stripe-Signature`` header value for ``raw``, computed the way Stripe does."""
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + raw, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _completion_event(order_id, session_id="sess_1", event_type="checkout.session.completed", event_id="evt_1"):
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": session_id, "object": "checkout.session", "client_reference_id": order_id}},
    }


def _signed_webhook(body, secret=None):
    """Encode ``body`` the way a provider would and sign the exact bytes."""
    raw = json.dumps(body, separators=(",", ":")).encode()
    header = stripe_signature(raw, secret or settings.STRIPE_WEBHOOK_SECRET)
    return raw, {"Stripe-Signature": header, "Content-Type": "application/json"}


@pytest.fixture
def completion_event():
    return _completion_event


@pytest.fixture
def signed_webhook():
    return _signed_webhook


@pytest.fixture
def sign():
    return stripe_signature
