"""
Webhook notification verification.

Checks that an inbound payload was signed by Stripe with the shared webhook
secret, rejects stale signatures (replay protection) and decodes the body
into a typed event. Verification is a pure function of its inputs.
"""
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import stripe
from pydantic import BaseModel, ConfigDict, ValidationError

from booking_payments.exceptions import PayloadMalformed, SignatureInvalid, TimestampExpired

CHECKOUT_COMPLETED = "checkout.session.completed"


class EventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: Dict[str, Any]


class WebhookEvent(BaseModel):
    """Verified provider event."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    created: Optional[int] = None
    livemode: bool = False
    data: EventData


@dataclass(frozen=True)
class CheckoutCompletedEvent:
    """
    Decoded `checkout.session.completed` event.

    `booking_id` and `customer_email` come from the session metadata set by
    the checkout initiator; they are the only link back to the booking.
    """

    event_id: str
    booking_id: Optional[str]
    customer_email: Optional[str]
    payment_intent_id: Optional[str]
    amount_total: int
    currency: str = "usd"

    @property
    def amount(self) -> Decimal:
        """Amount in currency units."""
        return (Decimal(self.amount_total) / Decimal(100)).quantize(Decimal("0.01"))

    @classmethod
    def from_webhook_event(cls, event: WebhookEvent) -> "CheckoutCompletedEvent":
        """
        Decode the checkout session carried by a verified event.

        Raises:
            PayloadMalformed: If the session has no integer `amount_total`
        """
        session = event.data.object
        metadata = session.get("metadata") or {}

        amount_total = session.get("amount_total")
        if not isinstance(amount_total, int) or isinstance(amount_total, bool):
            raise PayloadMalformed(
                f"Checkout session in event {event.id} has no amount_total",
                event_id=event.id,
            )

        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")

        customer_email = (
            metadata.get("customer_email")
            or session.get("customer_email")
            or (session.get("customer_details") or {}).get("email")
        )

        return cls(
            event_id=event.id,
            booking_id=metadata.get("booking_id"),
            customer_email=customer_email,
            payment_intent_id=payment_intent,
            amount_total=amount_total,
            currency=session.get("currency") or "usd",
        )


def _signature_timestamp(signature_header: str) -> int:
    for item in signature_header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            return int(value)
    raise SignatureInvalid("Signature header has no timestamp")


class NotificationVerifier:
    """
    Verifies Stripe webhook deliveries.

    Order of checks: signature, then timestamp tolerance, then payload
    structure. The signature covers the raw bytes exactly as received.
    """

    def __init__(
        self,
        tolerance_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize verifier.

        Args:
            tolerance_seconds: Maximum signature age; 0 disables the check
            clock: Source of the current Unix time
        """
        self.tolerance_seconds = tolerance_seconds
        self.clock = clock

    def verify(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        shared_secret: str,
    ) -> WebhookEvent:
        """
        Verify a webhook delivery and decode its event.

        Args:
            raw_payload: Request body bytes as received on the wire
            signature_header: Stripe-Signature header value
            shared_secret: Webhook signing secret

        Returns:
            WebhookEvent: Verified event

        Raises:
            SignatureInvalid: Missing, unparseable or mismatching signature
            TimestampExpired: Signature older than the tolerance window
            PayloadMalformed: Body is not a valid event
        """
        if not signature_header:
            raise SignatureInvalid("Missing Stripe-Signature header")

        try:
            payload = raw_payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PayloadMalformed("Payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, shared_secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(f"Invalid webhook signature: {e}") from e

        timestamp = _signature_timestamp(signature_header)
        if self.tolerance_seconds and timestamp < self.clock() - self.tolerance_seconds:
            raise TimestampExpired(
                f"Signature timestamp {timestamp} is outside the tolerance zone "
                f"({self.tolerance_seconds}s)"
            )

        try:
            return WebhookEvent.model_validate_json(payload)
        except ValidationError as e:
            raise PayloadMalformed(f"Invalid event payload: {e.error_count()} error(s)") from e
