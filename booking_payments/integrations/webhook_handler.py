"""
Stripe webhook handler.

Implements:
- Signature and replay verification
- Event type routing (checkout completion goes to the reconciliation engine)
- Processing that outlives the HTTP request, so a dropped connection does
  not abort a reconciliation halfway
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog

from booking_payments.core.reconciliation import ReconciliationEngine
from booking_payments.core.verifier import (
    CHECKOUT_COMPLETED,
    CheckoutCompletedEvent,
    NotificationVerifier,
    WebhookEvent,
)
from booking_payments.exceptions import VerificationError
from booking_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[[WebhookEvent], Awaitable[Dict[str, Any]]]


class WebhookHandler:
    """
    Handles Stripe webhook deliveries.

    Every verified event is acknowledged, including types with no registered
    handler; only verification failures and transient errors are reported
    back to Stripe as failures.
    """

    def __init__(
        self,
        verifier: NotificationVerifier,
        engine: ReconciliationEngine,
        webhook_secret: str,
    ):
        """
        Initialize webhook handler.

        Args:
            verifier: Signature and payload verifier
            engine: Reconciliation engine for checkout completions
            webhook_secret: Stripe webhook signing secret
        """
        self.verifier = verifier
        self.engine = engine
        self.webhook_secret = webhook_secret
        self.event_handlers: Dict[str, EventHandler] = {}
        self._tasks: Set[asyncio.Task] = set()

        self.register_handler(CHECKOUT_COMPLETED, self.handle_checkout_completed)
        logger.info("webhook_handler_initialized")

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Stripe event type (e.g., 'checkout.session.completed')
            handler: Async callable receiving the verified event
        """
        self.event_handlers[event_type] = handler
        logger.info("webhook_handler_registered", event_type=event_type)

    async def handle_checkout_completed(self, event: WebhookEvent) -> Dict[str, Any]:
        checkout = CheckoutCompletedEvent.from_webhook_event(event)
        outcome = await self.engine.reconcile(checkout)
        result: Dict[str, Any] = {"status": outcome.status.value}
        if outcome.payment is not None:
            result["tracking_id"] = outcome.payment["tracking_id"]
        return result

    async def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and process one webhook delivery.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            Dict[str, Any]: Acknowledgement, `received` is always True

        Raises:
            VerificationError: Delivery rejected
            TransientError: Processing could not complete; Stripe should retry
        """
        start_time = time.time()

        try:
            event = self.verifier.verify(payload, signature, self.webhook_secret)
        except VerificationError as e:
            metrics.record_webhook_rejection(e.error_code)
            logger.warning(
                "webhook_rejected",
                reason=e.error_code,
                error=e.message,
                payload_bytes=len(payload),
            )
            raise

        logger.info("webhook_signature_verified", event_id=event.id, event_type=event.type)

        handler = self.event_handlers.get(event.type)
        if handler is None:
            logger.info("webhook_event_ignored", event_id=event.id, event_type=event.type)
            metrics.record_webhook_event(event.type, "ignored", time.time() - start_time)
            return {"received": True, "event_id": event.id, "status": "ignored"}

        try:
            result = await handler(event)
        except Exception as e:
            metrics.record_webhook_event(event.type, "error", time.time() - start_time)
            logger.error(
                "webhook_event_processing_failed",
                event_id=event.id,
                event_type=event.type,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        metrics.record_webhook_event(event.type, result["status"], time.time() - start_time)
        logger.info(
            "webhook_event_processed",
            event_id=event.id,
            event_type=event.type,
            status=result["status"],
        )
        return {"received": True, "event_id": event.id, **result}

    async def handle_shielded(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Run `handle` in its own task, shielded from cancellation of the caller.

        The task is kept referenced until it finishes even if the caller
        goes away.
        """
        task = asyncio.ensure_future(self.handle(payload, signature))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for in-flight deliveries to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
