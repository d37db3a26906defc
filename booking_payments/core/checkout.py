"""Checkout initiation: hosted Stripe Checkout sessions for bookings."""
import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from booking_payments.config import Settings
from booking_payments.exceptions import ProviderUnavailable, ValidationFailed
from booking_payments.integrations.stripe_client import StripeClient, StripeError
from booking_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def to_minor_units(amount: Any) -> int:
    """
    Convert a currency amount to minor units, rounding half up.

    Raises:
        ValidationFailed: If the amount is not a finite positive number
    """
    if isinstance(amount, bool):
        raise ValidationFailed("Invalid amount")
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid amount") from None
    if not math.isfinite(value) or value <= 0:
        raise ValidationFailed("Invalid amount")
    try:
        minor = (Decimal(str(amount).strip()) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationFailed("Invalid amount") from None
    if minor <= 0:
        raise ValidationFailed("Invalid amount")
    return int(minor)


class CheckoutInitiator:
    """
    Starts hosted payment sessions.

    No internal state changes: the booking id and customer email travel to
    Stripe as session metadata and come back unchanged in the completion
    webhook, which is how the reconciliation engine finds the booking.
    """

    def __init__(self, stripe_client: StripeClient, settings: Settings):
        self.stripe_client = stripe_client
        self.client_url = settings.client_url
        self.currency = settings.currency

    async def start_checkout(
        self,
        booking_id: Optional[str],
        service_title: Optional[str],
        amount: Any,
        customer_email: Optional[str],
    ) -> str:
        """
        Create a Checkout session for a booking.

        Args:
            booking_id: Booking being paid for
            service_title: Line item name shown on the payment page
            amount: Price in currency units (number or numeric string)
            customer_email: Customer email, prefilled and echoed as metadata

        Returns:
            str: Redirect URL of the hosted payment page

        Raises:
            ValidationFailed: Missing fields or invalid amount
            ProviderUnavailable: Stripe request failed
        """
        if amount in (None, "") or not service_title or not booking_id or not customer_email:
            metrics.record_checkout_session("invalid")
            raise ValidationFailed("Missing required fields")

        try:
            unit_amount = to_minor_units(amount)
        except ValidationFailed:
            metrics.record_checkout_session("invalid")
            raise

        line_item = {
            "price_data": {
                "currency": self.currency,
                "unit_amount": unit_amount,
                "product_data": {"name": service_title},
            },
            "quantity": 1,
        }

        try:
            session = await self.stripe_client.create_checkout_session(
                line_item=line_item,
                success_url=(
                    f"{self.client_url}/dashboard/payments?success=true&bookingId={booking_id}"
                ),
                cancel_url=f"{self.client_url}/dashboard/payments?canceled=true",
                metadata={"booking_id": booking_id, "customer_email": customer_email},
                customer_email=customer_email,
            )
        except StripeError as e:
            metrics.record_checkout_session("provider_error")
            logger.error(
                "checkout_session_failed",
                booking_id=booking_id,
                error_type=e.error_type.value,
                error=str(e),
            )
            raise ProviderUnavailable("Stripe checkout session failed") from e

        metrics.record_checkout_session("created")
        logger.info(
            "checkout_started",
            booking_id=booking_id,
            session_id=session.id,
            unit_amount=unit_amount,
        )
        return session.url
