"""
Stripe API client with circuit breaker and error classification.

Implements:
- Hosted Checkout session creation
- Circuit breaker pattern
- Classification of Stripe errors for logging and metrics
"""
import asyncio
import threading
import time
from enum import Enum
from typing import Any, Dict, Optional

import stripe
import structlog

from booking_payments.config import Settings
from booking_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class StripeErrorType(Enum):
    """Classification of Stripe errors."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMIT = "rate_limit"


class StripeError(Exception):
    """Base exception for Stripe-related errors."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize Stripe error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Original Stripe exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Stops calling Stripe for `timeout` seconds after `failure_threshold`
    consecutive failures. Calls run in worker threads, so state changes are
    made under a lock; the wrapped call itself runs outside it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open
        self._lock = threading.Lock()

    def call(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """
        Execute function with circuit breaker protection.

        Raises:
            StripeError: If circuit is open
        """
        with self._lock:
            if self.state == "open":
                if (
                    self.last_failure_time
                    and time.time() - self.last_failure_time > self.timeout
                ):
                    self._set_state("half_open")
                    self.success_count = 0
                    logger.info("circuit_breaker_half_open")
                else:
                    raise StripeError(
                        "Circuit breaker is open",
                        StripeErrorType.TRANSIENT,
                    )

        try:
            result = func(*args, **kwargs)
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)

    def on_success(self) -> None:
        """Record successful call."""
        with self._lock:
            self.failure_count = 0
            if self.state == "half_open":
                self.success_count += 1
                if self.success_count >= self.success_threshold:
                    self._set_state("closed")
                    logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()
            if self.failure_count >= self.failure_threshold:
                self._set_state("open")
                logger.warning(
                    "circuit_breaker_opened",
                    failure_count=self.failure_count,
                )


class StripeClient:
    """
    Wrapper for the Stripe API.

    Stripe's client is synchronous; calls run in a worker thread so the
    event loop is not blocked.
    """

    def __init__(self, settings: Settings, circuit_breaker: Optional[CircuitBreaker] = None):
        """Initialize Stripe client."""
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

        logger.info(
            "stripe_client_initialized",
            api_version=stripe.api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        """Classify a Stripe error."""
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.CardError,
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _handle_stripe_error(self, error: stripe.StripeError) -> StripeError:
        """Classify, log and wrap a Stripe error."""
        error_type = self._classify_error(error)
        metrics.record_stripe_api_error(error_type.value)

        logger.error(
            "stripe_api_error",
            error_type=error_type.value,
            error_code=getattr(error, "code", None),
            error_message=str(error),
        )

        return StripeError(
            message=str(error),
            error_type=error_type,
            original_error=error,
        )

    async def create_checkout_session(
        self,
        line_item: Dict[str, Any],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> Any:
        """
        Create a hosted Checkout session.

        Args:
            line_item: Single Checkout line item (price_data + quantity)
            success_url: Redirect after a completed payment
            cancel_url: Redirect after the customer cancels
            metadata: Opaque values echoed back in the completion webhook
            customer_email: Prefilled customer email

        Returns:
            stripe.checkout.Session: Created session

        Raises:
            StripeError: If session creation fails
        """
        logger.info(
            "creating_checkout_session",
            unit_amount=line_item.get("price_data", {}).get("unit_amount"),
            metadata=metadata,
        )

        def _create() -> Any:
            kwargs: Dict[str, Any] = {
                "mode": "payment",
                "payment_method_types": ["card"],
                "line_items": [line_item],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
            }
            if customer_email:
                kwargs["customer_email"] = customer_email
            return stripe.checkout.Session.create(**kwargs)

        start_time = time.time()
        try:
            session = await asyncio.to_thread(self.circuit_breaker.call, _create)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(e) from e
        finally:
            metrics.record_stripe_api_call("create_checkout_session", time.time() - start_time)

        logger.info("checkout_session_created", session_id=session.id)
        return session
