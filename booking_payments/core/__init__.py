"""Core payment confirmation and booking logic."""
from .bookings import BookingService
from .catalog import CatalogService
from .checkout import CheckoutInitiator
from .idempotency import IdempotencyGuard
from .reconciliation import ReconcileOutcome, ReconcileStatus, ReconciliationEngine
from .verifier import CheckoutCompletedEvent, NotificationVerifier, WebhookEvent

__all__ = [
    "BookingService",
    "CatalogService",
    "CheckoutInitiator",
    "IdempotencyGuard",
    "ReconciliationEngine",
    "ReconcileOutcome",
    "ReconcileStatus",
    "NotificationVerifier",
    "CheckoutCompletedEvent",
    "WebhookEvent",
]
