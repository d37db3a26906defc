"""
Reconciliation engine: applies a completed checkout to the ledger.

For a verified, not yet processed checkout event it:
- records exactly one paid Payment per booking; a second completion for
  an already paid booking becomes a `duplicate_payment` anomaly
- moves the booking's payment status to "paid"
- records an anomaly whenever money was received but the booking could not
  be brought in line automatically

The Payment insert and the Booking update are separate writes. The event
claim commits atomically with the Payment insert, so an event can never be
claimed without its payment being recorded. The Booking update follows with
bounded retries; if it still fails the payment stays recorded, the booking
status is stale, and an anomaly carries everything needed to repair it.
"""
import secrets
import string
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from booking_payments.config import Settings
from booking_payments.database import LedgerStore, LedgerTransaction
from booking_payments.database.models import new_id, utcnow
from booking_payments.exceptions import TransientError
from booking_payments.monitoring.metrics import metrics

from .idempotency import IdempotencyGuard
from .verifier import CHECKOUT_COMPLETED, CheckoutCompletedEvent

logger = structlog.get_logger(__name__)

TRACKING_ALPHABET = string.digits + string.ascii_uppercase


class ReconcileStatus(str, Enum):
    RECONCILED = "reconciled"
    DUPLICATE = "duplicate"
    BOOKING_NOT_FOUND = "booking_not_found"
    BOOKING_UPDATE_FAILED = "booking_update_failed"
    DUPLICATE_PAYMENT = "duplicate_payment"


@dataclass
class ReconcileOutcome:
    """Result of reconciling one checkout event."""

    status: ReconcileStatus
    event_id: str
    payment: Optional[Dict[str, Any]] = None
    anomalies: List[Dict[str, Any]] = field(default_factory=list)


class BookingUpdateNotApplied(Exception):
    """The booking update matched no document."""


def generate_tracking_id(prefix: str = "TRK-", length: int = 8) -> str:
    """
    Human-facing payment tracking code: prefix + random base-36 characters.

    Uniqueness is not enforced.
    """
    return prefix + "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(length))


class ReconciliationEngine:
    """
    Applies checkout completion events to bookings and payments.

    Steps per event:
    1. Resolve the booking
    2. Claim the event and insert the Payment in one transaction, unless the
       booking already has a paid Payment (then record a duplicate instead)
    3. Mark the booking paid, retrying with exponential backoff
    4. Record anomalies for anything left unresolved
    """

    def __init__(
        self,
        store: LedgerStore,
        guard: IdempotencyGuard,
        settings: Settings,
    ):
        """
        Initialize reconciliation engine.

        Args:
            store: Ledger store
            guard: Idempotency guard sharing the same store
            settings: Retry, tolerance and tracking code options
        """
        self.store = store
        self.guard = guard
        self.max_attempts = settings.booking_update_max_attempts
        self.base_delay = settings.booking_update_base_delay
        self.max_delay = settings.booking_update_max_delay
        self.amount_tolerance = settings.amount_tolerance
        self.tracking_prefix = settings.tracking_prefix

    def build_payment(self, event: CheckoutCompletedEvent, booking_id: str) -> Dict[str, Any]:
        """Construct the complete Payment document before anything is written."""
        return {
            "id": new_id(),
            "booking_id": booking_id,
            "customer_email": event.customer_email,
            "payment_intent_id": event.payment_intent_id,
            "amount": event.amount,
            "currency": event.currency,
            "tracking_id": generate_tracking_id(self.tracking_prefix),
            "status": "paid",
            "event_id": event.event_id,
            "created_at": utcnow(),
        }

    @staticmethod
    def build_anomaly(
        kind: str, event: CheckoutCompletedEvent, detail: Optional[str] = None
    ) -> Dict[str, Any]:
        return {
            "id": new_id(),
            "kind": kind,
            "event_id": event.event_id,
            "booking_id": event.booking_id,
            "payment_intent_id": event.payment_intent_id,
            "amount": event.amount,
            "customer_email": event.customer_email,
            "detail": detail,
            "resolved": False,
            "created_at": utcnow(),
        }

    async def reconcile(self, event: CheckoutCompletedEvent) -> ReconcileOutcome:
        """
        Reconcile one checkout completion event.

        Args:
            event: Decoded checkout event

        Returns:
            ReconcileOutcome: What happened; anomalies are reported, not raised

        Raises:
            StoreUnavailable: If the claim or payment insert could not be
                committed; nothing was written and the delivery can be retried
        """
        log = logger.bind(
            event_id=event.event_id,
            booking_id=event.booking_id,
            payment_intent_id=event.payment_intent_id,
        )

        booking = None
        if event.booking_id:
            booking = await self.store.find_one("bookings", {"id": event.booking_id})

        if booking is None:
            outcome = await self._reconcile_missing_booking(event)
            metrics.record_reconciliation(outcome.status.value)
            return outcome

        payment = self.build_payment(event, booking["id"])
        duplicate = None
        async with self.store.transaction() as txn:
            if await self.guard.claim_once(event.event_id, CHECKOUT_COMPLETED, transaction=txn):
                metrics.record_reconciliation(ReconcileStatus.DUPLICATE.value)
                return ReconcileOutcome(ReconcileStatus.DUPLICATE, event.event_id)
            # Row lock serializes completions for the same booking
            await txn.find_one("bookings", {"id": booking["id"]}, for_update=True)
            existing = await txn.find_one(
                "payments", {"booking_id": booking["id"], "status": "paid"}
            )
            if existing is not None:
                duplicate = self.build_anomaly(
                    "duplicate_payment",
                    event,
                    detail=(
                        f"Booking already paid by payment {existing['id']} "
                        f"({existing['tracking_id']})"
                    ),
                )
                await self._insert_anomaly(duplicate, txn)
            else:
                await txn.insert("payments", payment)
        await self.guard.confirm(event.event_id)

        if duplicate is not None:
            self._log_anomaly(duplicate)
            metrics.record_reconciliation(ReconcileStatus.DUPLICATE_PAYMENT.value)
            return ReconcileOutcome(
                ReconcileStatus.DUPLICATE_PAYMENT, event.event_id, anomalies=[duplicate]
            )

        log.info(
            "payment_recorded",
            payment_id=payment["id"],
            tracking_id=payment["tracking_id"],
            amount=str(payment["amount"]),
        )

        outcome = ReconcileOutcome(ReconcileStatus.RECONCILED, event.event_id, payment=payment)

        price = booking.get("service_price")
        if price is not None and abs(Decimal(price) - event.amount) > self.amount_tolerance:
            anomaly = await self._record_anomaly(
                "amount_mismatch",
                event,
                detail=f"Booking price {price} differs from paid amount {event.amount}",
            )
            if anomaly is not None:
                outcome.anomalies.append(anomaly)

        if not await self._mark_booking_paid(booking["id"], log):
            outcome.status = ReconcileStatus.BOOKING_UPDATE_FAILED
            anomaly = await self._record_anomaly(
                "booking_update_failed",
                event,
                detail=f"Booking payment status not updated after {self.max_attempts} attempts",
            )
            if anomaly is not None:
                outcome.anomalies.append(anomaly)
        else:
            log.info("booking_marked_paid")

        metrics.record_reconciliation(outcome.status.value)
        return outcome

    async def open_anomalies(self) -> List[Dict[str, Any]]:
        """Anomalies awaiting operator review."""
        return await self.store.find("reconciliation_anomalies", {"resolved": False})

    async def _reconcile_missing_booking(self, event: CheckoutCompletedEvent) -> ReconcileOutcome:
        """Claim the event and record the anomaly; no Payment is created."""
        anomaly = self.build_anomaly(
            "booking_not_found",
            event,
            detail="Payment received for a booking that does not exist",
        )
        async with self.store.transaction() as txn:
            if await self.guard.claim_once(event.event_id, CHECKOUT_COMPLETED, transaction=txn):
                return ReconcileOutcome(ReconcileStatus.DUPLICATE, event.event_id)
            await self._insert_anomaly(anomaly, txn)
        await self.guard.confirm(event.event_id)
        self._log_anomaly(anomaly)
        return ReconcileOutcome(
            ReconcileStatus.BOOKING_NOT_FOUND, event.event_id, anomalies=[anomaly]
        )

    async def _insert_anomaly(
        self, anomaly: Dict[str, Any], transaction: Optional[LedgerTransaction] = None
    ) -> None:
        if transaction is not None:
            await transaction.insert("reconciliation_anomalies", anomaly)
        else:
            await self.store.insert("reconciliation_anomalies", anomaly)

    @staticmethod
    def _log_anomaly(anomaly: Dict[str, Any]) -> None:
        metrics.record_anomaly(anomaly["kind"])
        logger.error(
            "reconciliation_anomaly",
            anomaly_id=anomaly["id"],
            kind=anomaly["kind"],
            event_id=anomaly["event_id"],
            booking_id=anomaly["booking_id"],
            payment_intent_id=anomaly["payment_intent_id"],
            amount=str(anomaly["amount"]),
            customer_email=anomaly["customer_email"],
            detail=anomaly["detail"],
        )

    async def _record_anomaly(
        self, kind: str, event: CheckoutCompletedEvent, detail: str
    ) -> Optional[Dict[str, Any]]:
        """
        Persist an anomaly after the payment has been committed.

        Returns:
            The anomaly document, or None if it could not be stored. In that
            case the full context is logged at critical level instead.
        """
        anomaly = self.build_anomaly(kind, event, detail=detail)
        try:
            await self._insert_anomaly(anomaly)
        except TransientError as e:
            logger.critical(
                "reconciliation_anomaly_unrecorded",
                kind=kind,
                event_id=event.event_id,
                booking_id=event.booking_id,
                payment_intent_id=event.payment_intent_id,
                amount=str(event.amount),
                customer_email=event.customer_email,
                detail=detail,
                error=str(e),
            )
            return None
        self._log_anomaly(anomaly)
        return anomaly

    @staticmethod
    def _before_retry(retry_state: RetryCallState) -> None:
        metrics.record_booking_update_retry()
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "booking_update_retry",
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    async def _mark_booking_paid(self, booking_id: str, log: Any) -> bool:
        """
        Set the booking's payment status to paid, with backoff.

        Returns:
            bool: False once all attempts are exhausted
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((TransientError, BookingUpdateNotApplied)),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            before_sleep=self._before_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    matched = await self.store.update_one(
                        "bookings", {"id": booking_id}, {"payment_status": "paid"}
                    )
                    if not matched:
                        raise BookingUpdateNotApplied(f"Booking {booking_id} not matched")
        except (TransientError, BookingUpdateNotApplied) as e:
            log.error(
                "booking_payment_status_update_failed",
                attempts=self.max_attempts,
                error=str(e),
            )
            return False
        return True
