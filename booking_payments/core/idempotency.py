"""
Idempotency guard for webhook deliveries.

Stripe delivers events at least once and possibly concurrently. An event is
claimed by inserting a ProcessedEvent row keyed by the event id; the first
insert wins and every later delivery sees a duplicate key.

Two tiers, as for request idempotency:
1. Redis cache for fast duplicate detection (optional)
2. Database unique key, which is authoritative
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as aioredis
import structlog

from booking_payments.database import LedgerStore, LedgerTransaction
from booking_payments.database.models import utcnow
from booking_payments.exceptions import DuplicateKeyError
from booking_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PROCESSED_EVENTS = "processed_events"


class IdempotencyGuard:
    """
    Claims provider events exactly once.

    A claim made inside a store transaction commits with the rest of that
    transaction, which lets the claim and the payment insert succeed or fail
    together.
    """

    def __init__(
        self,
        store: LedgerStore,
        redis_client: Optional[aioredis.Redis] = None,
        retention_days: int = 30,
        cache_timeout_seconds: float = 1.0,
    ):
        """
        Initialize idempotency guard.

        Args:
            store: Ledger store holding the processed event markers
            redis_client: Optional Redis client for the fast-path cache
            retention_days: How long markers are kept
            cache_timeout_seconds: Upper bound for a single Redis call; a slow
                cache is treated like a missing one
        """
        self.store = store
        self.redis_client = redis_client
        self.retention_days = retention_days
        self.cache_timeout_seconds = cache_timeout_seconds

    @staticmethod
    def cache_key(event_id: str) -> str:
        return f"webhook:processed:{event_id}"

    async def _seen_in_cache(self, event_id: str) -> bool:
        if self.redis_client is None:
            return False
        try:
            return bool(
                await asyncio.wait_for(
                    self.redis_client.exists(self.cache_key(event_id)),
                    timeout=self.cache_timeout_seconds,
                )
            )
        except Exception as e:
            # The database claim still decides
            logger.warning("webhook_dedup_cache_error", error=str(e), event_id=event_id)
            return False

    async def _remember_in_cache(self, event_id: str) -> None:
        if self.redis_client is None:
            return
        try:
            await asyncio.wait_for(
                self.redis_client.setex(
                    self.cache_key(event_id),
                    int(timedelta(days=self.retention_days).total_seconds()),
                    "1",
                ),
                timeout=self.cache_timeout_seconds,
            )
        except Exception as e:
            logger.warning("webhook_dedup_cache_store_error", error=str(e), event_id=event_id)

    async def claim_once(
        self,
        event_id: str,
        event_type: Optional[str] = None,
        transaction: Optional[LedgerTransaction] = None,
    ) -> bool:
        """
        Claim an event for processing.

        Args:
            event_id: Provider event id
            event_type: Provider event type, stored for operators
            transaction: Store transaction the claim belongs to; the claim
                must be its first write

        Returns:
            bool: True if the event was already processed, False if this
            call claimed it

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        if await self._seen_in_cache(event_id):
            logger.info("webhook_event_already_processed", event_id=event_id, source="redis")
            metrics.record_idempotency_hit("redis")
            return True

        marker = {"event_id": event_id, "event_type": event_type, "processed_at": utcnow()}
        try:
            if transaction is not None:
                await transaction.insert(PROCESSED_EVENTS, marker)
            else:
                await self.store.insert(PROCESSED_EVENTS, marker)
        except DuplicateKeyError:
            logger.info("webhook_event_already_processed", event_id=event_id, source="database")
            metrics.record_idempotency_hit("database")
            await self._remember_in_cache(event_id)
            return True

        logger.info("webhook_event_claimed", event_id=event_id, event_type=event_type)
        return False

    async def confirm(self, event_id: str) -> None:
        """Record a committed claim in the cache."""
        await self._remember_in_cache(event_id)

    async def prune(self, older_than: Optional[datetime] = None) -> int:
        """
        Delete markers older than the retention window.

        Returns:
            int: Number of markers deleted
        """
        cutoff = older_than or datetime.now(timezone.utc) - timedelta(days=self.retention_days)
        deleted = await self.store.delete_older_than(PROCESSED_EVENTS, "processed_at", cutoff)
        logger.info("processed_events_pruned", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted
