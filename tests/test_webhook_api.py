"""
Integration tests for the webhook endpoint and the end-to-end payment flow.
"""
import time
from decimal import Decimal
from typing import Any, Dict

import pytest
from httpx import AsyncClient

from booking_payments.database import LedgerStore
from conftest import checkout_completed_event, encode_event, sign_payload


async def deliver(client: AsyncClient, event: Dict[str, Any], **sign_kwargs: Any) -> Any:
    payload = encode_event(event)
    return await client.post(
        "/webhook",
        content=payload,
        headers={
            "Content-Type": "application/json",
            "Stripe-Signature": sign_payload(payload, **sign_kwargs),
        },
    )


@pytest.mark.integration
class TestWebhookEndpoint:
    """POST /webhook."""

    @pytest.mark.asyncio
    async def test_checkout_completed_is_reconciled(
        self, client: AsyncClient, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        response = await deliver(client, checkout_completed_event(booking["id"]))

        assert response.status_code == 200
        body = response.json()
        assert body["received"] is True
        assert body["status"] == "reconciled"
        assert body["trackingId"].startswith("TRK-")

        updated = await store.find_one("bookings", {"id": booking["id"]})
        assert updated["payment_status"] == "paid"

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_acknowledged(
        self, client: AsyncClient, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        event = checkout_completed_event(booking["id"], event_id="evt_dup")

        first = await deliver(client, event)
        second = await deliver(client, event)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json() == {"received": True, "eventId": "evt_dup", "status": "duplicate"}
        assert len(await store.find("payments")) == 1

    @pytest.mark.asyncio
    async def test_missing_booking_is_acknowledged(
        self, client: AsyncClient, store: LedgerStore
    ) -> None:
        response = await deliver(client, checkout_completed_event("0" * 32))

        assert response.status_code == 200
        assert response.json()["status"] == "booking_not_found"
        assert await store.find("payments") == []
        anomalies = await store.find("reconciliation_anomalies")
        assert [a["kind"] for a in anomalies] == ["booking_not_found"]

    @pytest.mark.asyncio
    async def test_other_event_types_are_ignored(
        self, client: AsyncClient, store: LedgerStore
    ) -> None:
        event = {
            "id": "evt_other",
            "type": "payment_intent.created",
            "created": int(time.time()),
            "data": {"object": {"id": "pi_1"}},
        }

        response = await deliver(client, event)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert await store.find("processed_events") == []

    @pytest.mark.asyncio
    async def test_tampered_payload_is_rejected(
        self, client: AsyncClient, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        payload = encode_event(checkout_completed_event(booking["id"]))
        signature = sign_payload(payload)

        response = await client.post(
            "/webhook",
            content=payload.replace(b"50000", b"100"),
            headers={"Stripe-Signature": signature},
        )

        assert response.status_code == 400
        assert "error" in response.json()
        assert await store.find("payments") == []
        assert await store.find("processed_events") == []

    @pytest.mark.asyncio
    async def test_missing_signature_is_rejected(self, client: AsyncClient) -> None:
        response = await client.post("/webhook", content=b"{}")

        assert response.status_code == 400
        assert response.json() == {"error": "Missing Stripe-Signature header"}

    @pytest.mark.asyncio
    async def test_expired_replay_is_rejected(
        self, client: AsyncClient, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        response = await deliver(
            client,
            checkout_completed_event(booking["id"]),
            timestamp=int(time.time()) - 3600,
        )

        assert response.status_code == 400
        assert await store.find("payments") == []

    @pytest.mark.asyncio
    async def test_malformed_checkout_session_is_rejected(
        self, client: AsyncClient, booking: Dict[str, Any]
    ) -> None:
        response = await deliver(
            client, checkout_completed_event(booking["id"], amount_total=None)
        )

        assert response.status_code == 400


@pytest.mark.integration
class TestPaymentScenario:
    """Booking submission through checkout and confirmation."""

    @pytest.mark.asyncio
    async def test_booking_checkout_and_confirmation(
        self, client: AsyncClient, mock_stripe_client: Any
    ) -> None:
        created = await client.post(
            "/bookings",
            json={
                "email": "a@b.com",
                "serviceId": "S1",
                "bookingDate": "2024-06-01",
                "serviceLocation": "Dhaka",
            },
        )
        assert created.status_code == 200
        booking = created.json()
        assert booking["status"] == "pending"
        assert booking["paymentStatus"] == "unpaid"

        checkout = await client.post(
            "/create-checkout-session",
            json={
                "cost": 500,
                "serviceTitle": "Stage decoration",
                "bookingId": booking["id"],
                "userEmail": "a@b.com",
            },
        )
        assert checkout.status_code == 200
        assert checkout.json() == {"url": "https://checkout.stripe.test/c/pay/cs_test_123"}
        metadata = mock_stripe_client.create_checkout_session.await_args.kwargs["metadata"]
        assert metadata["booking_id"] == booking["id"]

        event = checkout_completed_event(booking["id"], amount_total=50000, event_id="evt_s1")
        confirmed = await deliver(client, event)
        assert confirmed.status_code == 200

        payments = (await client.get("/payments", params={"email": "a@b.com"})).json()
        assert len(payments) == 1
        assert Decimal(str(payments[0]["amount"])) == Decimal("500")
        assert payments[0]["status"] == "paid"
        assert payments[0]["bookingId"] == booking["id"]

        bookings = (await client.get("/bookings", params={"bookingId": booking["id"]})).json()
        assert bookings[0]["paymentStatus"] == "paid"

        # Redelivery changes nothing further
        again = await deliver(client, event)
        assert again.json()["status"] == "duplicate"
        assert len((await client.get("/payments", params={"email": "a@b.com"})).json()) == 1
