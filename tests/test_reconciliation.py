"""
Tests for the reconciliation engine.
"""
import asyncio
import re
from decimal import Decimal
from typing import Any, Dict
from unittest.mock import AsyncMock, patch

import pytest

from booking_payments.config import Settings
from booking_payments.core.idempotency import IdempotencyGuard
from booking_payments.core.reconciliation import (
    ReconcileStatus,
    ReconciliationEngine,
    generate_tracking_id,
)
from booking_payments.core.verifier import CheckoutCompletedEvent
from booking_payments.database import LedgerStore, LedgerTransaction
from booking_payments.exceptions import StoreUnavailable


def make_event(
    booking_id: Any,
    amount_total: int = 50000,
    event_id: str = "evt_1",
    payment_intent_id: str = "pi_test_123",
) -> CheckoutCompletedEvent:
    return CheckoutCompletedEvent(
        event_id=event_id,
        booking_id=booking_id,
        customer_email="a@b.com",
        payment_intent_id=payment_intent_id,
        amount_total=amount_total,
    )


@pytest.mark.unit
def test_tracking_id_format() -> None:
    tracking_id = generate_tracking_id()

    assert re.fullmatch(r"TRK-[0-9A-Z]{8}", tracking_id)


class TestReconciliationEngine:
    """Applying checkout completions to bookings and payments."""

    @pytest.mark.asyncio
    async def test_payment_recorded_and_booking_paid(
        self, engine: ReconciliationEngine, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        outcome = await engine.reconcile(make_event(booking["id"]))

        assert outcome.status is ReconcileStatus.RECONCILED
        assert outcome.anomalies == []

        payments = await store.find("payments", {"booking_id": booking["id"]})
        assert len(payments) == 1
        payment = payments[0]
        assert payment["amount"] == Decimal("500.00")
        assert payment["status"] == "paid"
        assert payment["customer_email"] == "a@b.com"
        assert payment["payment_intent_id"] == "pi_test_123"
        assert payment["event_id"] == "evt_1"
        assert re.fullmatch(r"TRK-[0-9A-Z]{8}", payment["tracking_id"])

        updated = await store.find_one("bookings", {"id": booking["id"]})
        assert updated["payment_status"] == "paid"
        assert updated["status"] == "pending"

    @pytest.mark.asyncio
    async def test_redelivery_changes_nothing(
        self, engine: ReconciliationEngine, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        await engine.reconcile(make_event(booking["id"]))
        outcome = await engine.reconcile(make_event(booking["id"]))

        assert outcome.status is ReconcileStatus.DUPLICATE
        assert outcome.payment is None
        assert len(await store.find("payments")) == 1

    @pytest.mark.asyncio
    async def test_second_checkout_for_paid_booking_is_a_duplicate_payment(
        self, engine: ReconciliationEngine, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        first = await engine.reconcile(make_event(booking["id"], event_id="evt_1"))
        second = await engine.reconcile(
            make_event(booking["id"], event_id="evt_2", payment_intent_id="pi_second")
        )

        assert first.status is ReconcileStatus.RECONCILED
        assert second.status is ReconcileStatus.DUPLICATE_PAYMENT
        assert second.payment is None

        payments = await store.find("payments", {"booking_id": booking["id"]})
        assert len(payments) == 1
        assert payments[0]["event_id"] == "evt_1"

        anomalies = await store.find("reconciliation_anomalies")
        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly["kind"] == "duplicate_payment"
        assert anomaly["event_id"] == "evt_2"
        assert anomaly["booking_id"] == booking["id"]
        assert anomaly["payment_intent_id"] == "pi_second"
        assert anomaly["amount"] == Decimal("500.00")
        assert payments[0]["id"] in anomaly["detail"]

        # The second event is claimed with its anomaly
        again = await engine.reconcile(
            make_event(booking["id"], event_id="evt_2", payment_intent_id="pi_second")
        )
        assert again.status is ReconcileStatus.DUPLICATE
        assert len(await store.find("reconciliation_anomalies")) == 1

    @pytest.mark.asyncio
    async def test_missing_booking_records_anomaly_without_payment(
        self, engine: ReconciliationEngine, store: LedgerStore
    ) -> None:
        outcome = await engine.reconcile(make_event("0" * 32))

        assert outcome.status is ReconcileStatus.BOOKING_NOT_FOUND
        assert await store.find("payments") == []

        anomalies = await store.find("reconciliation_anomalies")
        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly["kind"] == "booking_not_found"
        assert anomaly["event_id"] == "evt_1"
        assert anomaly["payment_intent_id"] == "pi_test_123"
        assert anomaly["amount"] == Decimal("500.00")
        assert anomaly["customer_email"] == "a@b.com"
        assert anomaly["resolved"] is False

        # The event is claimed; a redelivery does not add a second anomaly
        again = await engine.reconcile(make_event("0" * 32))
        assert again.status is ReconcileStatus.DUPLICATE
        assert len(await store.find("reconciliation_anomalies")) == 1

    @pytest.mark.asyncio
    async def test_event_without_booking_id_is_an_anomaly(
        self, engine: ReconciliationEngine, store: LedgerStore
    ) -> None:
        outcome = await engine.reconcile(make_event(None))

        assert outcome.status is ReconcileStatus.BOOKING_NOT_FOUND
        assert await store.find("payments") == []

    @pytest.mark.asyncio
    async def test_amount_mismatch_is_flagged(
        self, engine: ReconciliationEngine, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        outcome = await engine.reconcile(make_event(booking["id"], amount_total=45000))

        assert outcome.status is ReconcileStatus.RECONCILED
        assert [a["kind"] for a in outcome.anomalies] == ["amount_mismatch"]
        assert (await store.find_one("bookings", {"id": booking["id"]}))["payment_status"] == "paid"
        assert len(await store.find("payments")) == 1

    @pytest.mark.asyncio
    async def test_booking_update_retried_then_succeeds(
        self, engine: ReconciliationEngine, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        real_update = store.update_one
        calls = {"count": 0}

        async def flaky_update(*args: Any, **kwargs: Any) -> int:
            calls["count"] += 1
            if calls["count"] == 1:
                raise StoreUnavailable("Store update_one timed out")
            return await real_update(*args, **kwargs)

        with patch.object(store, "update_one", side_effect=flaky_update):
            outcome = await engine.reconcile(make_event(booking["id"]))

        assert outcome.status is ReconcileStatus.RECONCILED
        assert calls["count"] == 2
        assert (await store.find_one("bookings", {"id": booking["id"]}))["payment_status"] == "paid"

    @pytest.mark.asyncio
    async def test_booking_update_failure_keeps_payment_and_records_anomaly(
        self, engine: ReconciliationEngine, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        failing = AsyncMock(side_effect=StoreUnavailable("Store update_one timed out"))

        with patch.object(store, "update_one", failing):
            outcome = await engine.reconcile(make_event(booking["id"]))

        assert outcome.status is ReconcileStatus.BOOKING_UPDATE_FAILED
        assert failing.await_count == engine.max_attempts
        assert outcome.payment is not None

        payments = await store.find("payments")
        assert len(payments) == 1

        anomalies = await store.find("reconciliation_anomalies")
        assert [a["kind"] for a in anomalies] == ["booking_update_failed"]
        assert anomalies[0]["booking_id"] == booking["id"]

        stale = await store.find_one("bookings", {"id": booking["id"]})
        assert stale["payment_status"] == "unpaid"

    @pytest.mark.asyncio
    async def test_claim_failure_writes_nothing(
        self, engine: ReconciliationEngine, store: LedgerStore, booking: Dict[str, Any]
    ) -> None:
        """If the payment insert fails the claim is rolled back with it."""
        real_insert = LedgerTransaction.insert

        async def failing_insert(txn: LedgerTransaction, collection: str, document: Any) -> Any:
            if collection == "payments":
                raise StoreUnavailable("Store insert timed out")
            return await real_insert(txn, collection, document)

        with patch.object(LedgerTransaction, "insert", failing_insert):
            with pytest.raises(StoreUnavailable):
                await engine.reconcile(make_event(booking["id"]))

        assert await store.find("payments") == []
        assert await store.find_one("processed_events", {"event_id": "evt_1"}) is None

        outcome = await engine.reconcile(make_event(booking["id"]))
        assert outcome.status is ReconcileStatus.RECONCILED

    @pytest.mark.asyncio
    async def test_open_anomalies_lists_unresolved(
        self, engine: ReconciliationEngine, store: LedgerStore
    ) -> None:
        await engine.reconcile(make_event("0" * 32, event_id="evt_1"))
        await engine.reconcile(make_event("f" * 32, event_id="evt_2"))
        first = (await store.find("reconciliation_anomalies"))[0]
        await store.update_one("reconciliation_anomalies", {"id": first["id"]}, {"resolved": True})

        open_anomalies = await engine.open_anomalies()

        assert [a["event_id"] for a in open_anomalies] == ["evt_2"]

    @pytest.mark.asyncio
    async def test_stalled_cache_does_not_block_reconcile(
        self, store: LedgerStore, test_settings: Settings, booking: Dict[str, Any]
    ) -> None:
        async def stall(*args: object) -> None:
            await asyncio.sleep(3600)

        redis_client = AsyncMock()
        redis_client.exists.side_effect = stall
        redis_client.setex.side_effect = stall
        guard = IdempotencyGuard(store, redis_client=redis_client, cache_timeout_seconds=0.05)
        engine = ReconciliationEngine(store, guard, test_settings)

        outcome = await asyncio.wait_for(engine.reconcile(make_event(booking["id"])), timeout=5)

        assert outcome.status is ReconcileStatus.RECONCILED
        assert len(await store.find("payments")) == 1
