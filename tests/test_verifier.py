"""
Tests for webhook notification verification.
"""
import json
import time
from decimal import Decimal

import pytest

from booking_payments.core.verifier import (
    CheckoutCompletedEvent,
    NotificationVerifier,
    WebhookEvent,
)
from booking_payments.exceptions import PayloadMalformed, SignatureInvalid, TimestampExpired
from conftest import WEBHOOK_SECRET, checkout_completed_event, encode_event, sign_payload


@pytest.mark.unit
class TestNotificationVerifier:
    """Signature, replay and payload checks."""

    def test_valid_delivery_is_decoded(self) -> None:
        payload = encode_event(checkout_completed_event("b1", event_id="evt_1"))
        event = NotificationVerifier().verify(payload, sign_payload(payload), WEBHOOK_SECRET)

        assert event.id == "evt_1"
        assert event.type == "checkout.session.completed"
        assert event.data.object["metadata"]["booking_id"] == "b1"

    def test_tampered_payload_is_rejected(self) -> None:
        payload = encode_event(checkout_completed_event("b1", amount_total=50000))
        signature = sign_payload(payload)
        tampered = payload.replace(b"50000", b"50")

        with pytest.raises(SignatureInvalid):
            NotificationVerifier().verify(tampered, signature, WEBHOOK_SECRET)

    def test_reformatted_payload_is_rejected(self) -> None:
        """The signature covers raw bytes, not the decoded JSON."""
        event = checkout_completed_event("b1")
        payload = encode_event(event)
        signature = sign_payload(payload)
        reformatted = json.dumps(event, indent=2).encode()

        with pytest.raises(SignatureInvalid):
            NotificationVerifier().verify(reformatted, signature, WEBHOOK_SECRET)

    def test_wrong_secret_is_rejected(self) -> None:
        payload = encode_event(checkout_completed_event("b1"))
        signature = sign_payload(payload, secret="whsec_other")

        with pytest.raises(SignatureInvalid):
            NotificationVerifier().verify(payload, signature, WEBHOOK_SECRET)

    @pytest.mark.parametrize("header", [None, "", "garbage", "v1=abc"])
    def test_missing_or_unparseable_header_is_rejected(self, header: str) -> None:
        payload = encode_event(checkout_completed_event("b1"))

        with pytest.raises(SignatureInvalid):
            NotificationVerifier().verify(payload, header, WEBHOOK_SECRET)

    def test_expired_timestamp_is_rejected(self) -> None:
        payload = encode_event(checkout_completed_event("b1"))
        stale = int(time.time()) - 301
        signature = sign_payload(payload, timestamp=stale)

        with pytest.raises(TimestampExpired):
            NotificationVerifier(tolerance_seconds=300).verify(payload, signature, WEBHOOK_SECRET)

    def test_timestamp_inside_window_is_accepted(self) -> None:
        payload = encode_event(checkout_completed_event("b1"))
        signature = sign_payload(payload, timestamp=1_700_000_000)
        verifier = NotificationVerifier(tolerance_seconds=300, clock=lambda: 1_700_000_299)

        assert verifier.verify(payload, signature, WEBHOOK_SECRET).type == (
            "checkout.session.completed"
        )

    def test_zero_tolerance_disables_replay_check(self) -> None:
        payload = encode_event(checkout_completed_event("b1"))
        signature = sign_payload(payload, timestamp=1)

        NotificationVerifier(tolerance_seconds=0).verify(payload, signature, WEBHOOK_SECRET)

    def test_signed_non_event_payload_is_malformed(self) -> None:
        payload = b'{"hello": "world"}'

        with pytest.raises(PayloadMalformed):
            NotificationVerifier().verify(payload, sign_payload(payload), WEBHOOK_SECRET)

    def test_signed_non_json_payload_is_malformed(self) -> None:
        payload = b"not json at all"

        with pytest.raises(PayloadMalformed):
            NotificationVerifier().verify(payload, sign_payload(payload), WEBHOOK_SECRET)


@pytest.mark.unit
class TestCheckoutCompletedEvent:
    """Decoding the checkout session carried by an event."""

    def test_fields_are_extracted(self) -> None:
        event = WebhookEvent.model_validate(
            checkout_completed_event("b1", amount_total=50000, event_id="evt_1")
        )
        checkout = CheckoutCompletedEvent.from_webhook_event(event)

        assert checkout.event_id == "evt_1"
        assert checkout.booking_id == "b1"
        assert checkout.customer_email == "a@b.com"
        assert checkout.payment_intent_id == "pi_test_123"
        assert checkout.amount == Decimal("500.00")

    def test_amount_is_converted_from_minor_units(self) -> None:
        event = WebhookEvent.model_validate(checkout_completed_event("b1", amount_total=1999))

        assert CheckoutCompletedEvent.from_webhook_event(event).amount == Decimal("19.99")

    def test_expanded_payment_intent(self) -> None:
        raw = checkout_completed_event("b1")
        raw["data"]["object"]["payment_intent"] = {"id": "pi_expanded", "object": "payment_intent"}
        event = WebhookEvent.model_validate(raw)

        assert CheckoutCompletedEvent.from_webhook_event(event).payment_intent_id == "pi_expanded"

    def test_email_falls_back_to_customer_details(self) -> None:
        raw = checkout_completed_event("b1")
        del raw["data"]["object"]["metadata"]["customer_email"]
        raw["data"]["object"]["customer_email"] = None
        raw["data"]["object"]["customer_details"] = {"email": "details@b.com"}
        event = WebhookEvent.model_validate(raw)

        assert CheckoutCompletedEvent.from_webhook_event(event).customer_email == "details@b.com"

    def test_missing_booking_id_is_none(self) -> None:
        event = WebhookEvent.model_validate(checkout_completed_event(None))

        assert CheckoutCompletedEvent.from_webhook_event(event).booking_id is None

    @pytest.mark.parametrize("amount_total", [None, "50000", 500.0, True])
    def test_non_integer_amount_is_malformed(self, amount_total: object) -> None:
        event = WebhookEvent.model_validate(
            checkout_completed_event("b1", amount_total=amount_total)
        )

        with pytest.raises(PayloadMalformed):
            CheckoutCompletedEvent.from_webhook_event(event)
