"""Service container and FastAPI dependency accessors."""
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Request

from booking_payments.config import Settings
from booking_payments.core import (
    BookingService,
    CatalogService,
    CheckoutInitiator,
    IdempotencyGuard,
    NotificationVerifier,
    ReconciliationEngine,
)
from booking_payments.database import LedgerStore
from booking_payments.integrations import StripeClient, WebhookHandler
from booking_payments.monitoring.health import HealthCheck


@dataclass
class ServiceContainer:
    """Components built once per application."""

    settings: Settings
    store: LedgerStore
    redis_client: Optional[aioredis.Redis]
    stripe_client: StripeClient
    guard: IdempotencyGuard
    engine: ReconciliationEngine
    webhook_handler: WebhookHandler
    checkout: CheckoutInitiator
    catalog: CatalogService
    bookings: BookingService
    health: HealthCheck


def build_services(
    settings: Settings,
    store: LedgerStore,
    stripe_client: StripeClient,
    redis_client: Optional[aioredis.Redis] = None,
) -> ServiceContainer:
    """Wire every component from its collaborators."""
    guard = IdempotencyGuard(
        store,
        redis_client=redis_client,
        retention_days=settings.processed_event_retention_days,
        cache_timeout_seconds=settings.store_timeout_seconds,
    )
    engine = ReconciliationEngine(store, guard, settings)
    verifier = NotificationVerifier(tolerance_seconds=settings.webhook_tolerance_seconds)
    catalog = CatalogService(store)

    return ServiceContainer(
        settings=settings,
        store=store,
        redis_client=redis_client,
        stripe_client=stripe_client,
        guard=guard,
        engine=engine,
        webhook_handler=WebhookHandler(verifier, engine, settings.stripe_webhook_secret),
        checkout=CheckoutInitiator(stripe_client, settings),
        catalog=catalog,
        bookings=BookingService(store, catalog),
        health=HealthCheck(store, redis_client=redis_client),
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
