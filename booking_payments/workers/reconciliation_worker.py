"""
Reconciliation background worker.

Runs a periodic sweep that:
- marks bookings paid when a paid Payment exists but the booking update
  never landed, and resolves the matching anomalies
- prunes processed event markers past the retention window
"""
import asyncio
import signal
from dataclasses import dataclass
from typing import Optional

import structlog

from booking_payments.config import Settings, get_settings
from booking_payments.core.idempotency import IdempotencyGuard
from booking_payments.database import LedgerStore
from booking_payments.database.models import utcnow
from booking_payments.monitoring.logging import setup_logging
from booking_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    repaired: int = 0
    pruned: int = 0


class BookingSweep:
    """Repairs bookings whose payment status lags behind their payments."""

    def __init__(self, store: LedgerStore, guard: IdempotencyGuard, batch_size: int = 500):
        self.store = store
        self.guard = guard
        self.batch_size = batch_size

    async def repair_stale_bookings(self) -> int:
        """
        Set `payment_status=paid` on bookings that have a paid Payment.

        Only bookings still behind their payments are selected, oldest
        payment first; anything beyond `batch_size` waits for the next sweep.

        Returns:
            int: Number of bookings repaired
        """
        repaired = 0
        for payment in await self.store.find_unapplied_payments(self.batch_size):
            booking_id = payment["booking_id"]
            await self.store.update_one("bookings", {"id": booking_id}, {"payment_status": "paid"})
            resolved = await self._resolve_update_failures(booking_id)
            repaired += 1
            logger.info(
                "stale_booking_repaired",
                booking_id=booking_id,
                payment_id=payment["id"],
                tracking_id=payment["tracking_id"],
                anomalies_resolved=resolved,
            )
        return repaired

    async def _resolve_update_failures(self, booking_id: str) -> int:
        anomalies = await self.store.find(
            "reconciliation_anomalies",
            {"booking_id": booking_id, "kind": "booking_update_failed", "resolved": False},
        )
        for anomaly in anomalies:
            await self.store.update_one(
                "reconciliation_anomalies",
                {"id": anomaly["id"]},
                {"resolved": True, "resolved_at": utcnow()},
            )
        return len(anomalies)

    async def prune_processed_events(self) -> int:
        return await self.guard.prune()

    async def run(self) -> SweepResult:
        result = SweepResult(
            repaired=await self.repair_stale_bookings(),
            pruned=await self.prune_processed_events(),
        )
        metrics.record_sweep(result.repaired, result.pruned)
        logger.info(
            "reconciliation_sweep_completed", repaired=result.repaired, pruned=result.pruned
        )
        return result


async def run_sweep(
    settings: Optional[Settings] = None, store: Optional[LedgerStore] = None
) -> SweepResult:
    """Run a single sweep."""
    settings = settings or get_settings()
    owns_store = store is None
    store = store or LedgerStore.from_settings(settings)
    try:
        guard = IdempotencyGuard(store, retention_days=settings.processed_event_retention_days)
        return await BookingSweep(store, guard, batch_size=settings.sweep_batch_size).run()
    finally:
        if owns_store:
            await store.close()


async def start_reconciliation_worker(interval_seconds: Optional[int] = None) -> None:
    """
    Start the reconciliation worker.

    Args:
        interval_seconds: Seconds between sweeps (default from settings)
    """
    settings = get_settings()
    setup_logging(settings)
    interval = interval_seconds or settings.sweep_interval_seconds

    logger.info("reconciliation_worker_starting", interval_seconds=interval)

    store = LedgerStore.from_settings(settings)
    guard = IdempotencyGuard(store, retention_days=settings.processed_event_retention_days)
    sweep = BookingSweep(store, guard, batch_size=settings.sweep_batch_size)
    stop = asyncio.Event()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("reconciliation_worker_shutdown_signal_received", signal=sig.name)
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        await store.create_all()
        while not stop.is_set():
            try:
                await sweep.run()
            except Exception as e:
                # Keep running; the next sweep retries
                logger.error("reconciliation_sweep_failed", error=str(e))

            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await store.close()
        logger.info("reconciliation_worker_stopped")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Reconciliation sweep worker")
    parser.add_argument(
        "--interval", type=int, default=None, help="Seconds between sweeps"
    )
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()

    if args.once:
        setup_logging(get_settings())
        asyncio.run(run_sweep())
    else:
        asyncio.run(start_reconciliation_worker(interval_seconds=args.interval))


if __name__ == "__main__":
    main()
