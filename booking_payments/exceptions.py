"""
Exception classes for booking payments.

Every exception carries the HTTP status the API layer responds with and a
machine-readable error code, so the boundary can map any of them without
knowing the raising component.
"""
from typing import Any, Dict


class BookingPaymentsError(Exception):
    """Base exception for all service errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {"error": self.message, "code": self.error_code}


class ValidationFailed(BookingPaymentsError):
    """Caller supplied missing or invalid input. Not retried."""

    status_code = 400
    error_code = "validation_failed"


class NotFound(BookingPaymentsError):
    """Referenced entity does not exist."""

    status_code = 404
    error_code = "not_found"


# ============================================================================
# WEBHOOK VERIFICATION ERRORS
# ============================================================================


class VerificationError(BookingPaymentsError):
    """
    Webhook payload rejected.

    Terminal for the request: the provider must see a client error so it
    does not treat the rejection as a transient failure.
    """

    status_code = 400
    error_code = "verification_failed"


class SignatureInvalid(VerificationError):
    """Signature header missing, unparseable or not matching the payload."""

    error_code = "signature_invalid"


class PayloadMalformed(VerificationError):
    """Payload is not valid structured event data."""

    error_code = "payload_malformed"


class TimestampExpired(VerificationError):
    """Signature timestamp is outside the replay tolerance window."""

    error_code = "timestamp_expired"


# ============================================================================
# TRANSIENT ERRORS
# ============================================================================


class TransientError(BookingPaymentsError):
    """
    Storage or network hiccup.

    Surfaced as a server error so the payment provider retries delivery.
    """

    status_code = 500
    error_code = "transient_failure"


class StoreUnavailable(TransientError):
    """Ledger store timed out or could not be reached."""

    error_code = "store_unavailable"


class ProviderUnavailable(TransientError):
    """Payment provider request failed."""

    error_code = "provider_unavailable"


class DuplicateKeyError(BookingPaymentsError):
    """Insert violated a uniqueness constraint."""

    status_code = 409
    error_code = "duplicate_key"


class IntegrityViolation(BookingPaymentsError):
    """Write rejected by a check or not-null constraint. Not retried."""

    status_code = 500
    error_code = "integrity_violation"
