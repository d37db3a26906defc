"""
Pytest configuration and fixtures.
"""
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, AsyncGenerator, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from booking_payments.api.main import create_app
from booking_payments.config import Settings
from booking_payments.core import (
    BookingService,
    CatalogService,
    IdempotencyGuard,
    ReconciliationEngine,
)
from booking_payments.database import LedgerStore

WEBHOOK_SECRET = "whsec_test_fake_secret"


def sign_payload(
    payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None
) -> str:
    """Build a Stripe-Signature header for a payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_completed_event(
    booking_id: Optional[str],
    amount_total: Any = 50000,
    event_id: Optional[str] = None,
    customer_email: str = "a@b.com",
    payment_intent: str = "pi_test_123",
) -> Dict[str, Any]:
    """A `checkout.session.completed` event as Stripe delivers it."""
    metadata = {"customer_email": customer_email}
    if booking_id is not None:
        metadata["booking_id"] = booking_id
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex}",
        "object": "event",
        "type": "checkout.session.completed",
        "created": int(time.time()),
        "livemode": False,
        "data": {
            "object": {
                "id": f"cs_test_{uuid.uuid4().hex}",
                "object": "checkout.session",
                "amount_total": amount_total,
                "currency": "usd",
                "customer_email": customer_email,
                "metadata": metadata,
                "payment_intent": payment_intent,
                "payment_status": "paid",
            }
        },
    }


def encode_event(event: Dict[str, Any]) -> bytes:
    return json.dumps(event).encode()


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        stripe_webhook_secret=WEBHOOK_SECRET,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        redis_url=None,
        client_url="https://app.test",
        app_name="booking-payments-test",
        app_env="test",
        log_level="DEBUG",
        booking_update_max_attempts=3,
        booking_update_base_delay=0,
        booking_update_max_delay=0,
    )


@pytest_asyncio.fixture
async def store(test_settings: Settings) -> AsyncGenerator[LedgerStore, Any]:
    """Ledger store on a fresh SQLite database."""
    ledger = LedgerStore.from_settings(test_settings)
    await ledger.create_all()
    yield ledger
    await ledger.close()


@pytest.fixture
def guard(store: LedgerStore, test_settings: Settings) -> IdempotencyGuard:
    return IdempotencyGuard(store, retention_days=test_settings.processed_event_retention_days)


@pytest.fixture
def engine(
    store: LedgerStore, guard: IdempotencyGuard, test_settings: Settings
) -> ReconciliationEngine:
    return ReconciliationEngine(store, guard, test_settings)


@pytest.fixture
def booking_service(store: LedgerStore) -> BookingService:
    return BookingService(store, CatalogService(store))


@pytest.fixture
def sample_booking_data() -> Dict[str, Any]:
    """Sample booking submission."""
    return {
        "user_name": "Ayesha",
        "email": "a@b.com",
        "service_id": "S1",
        "service_title": "Wedding stage decoration",
        "service_category": "wedding",
        "service_price": "500",
        "booking_date": "2024-06-01",
        "service_location": "Dhaka",
        "service_mode": "on-site",
    }


@pytest_asyncio.fixture
async def booking(
    booking_service: BookingService, sample_booking_data: Dict[str, Any]
) -> Dict[str, Any]:
    return await booking_service.create_booking(sample_booking_data)


@pytest.fixture
def mock_stripe_client() -> AsyncMock:
    """Stripe client whose checkout sessions always succeed."""
    client = AsyncMock()
    session = MagicMock()
    session.id = "cs_test_123"
    session.url = "https://checkout.stripe.test/c/pay/cs_test_123"
    client.create_checkout_session.return_value = session
    return client


@pytest.fixture
def app(test_settings: Settings, store: LedgerStore, mock_stripe_client: AsyncMock) -> Any:
    return create_app(settings=test_settings, store=store, stripe_client=mock_stripe_client)


@pytest_asyncio.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
