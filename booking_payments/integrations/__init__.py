"""External integrations for booking payments."""
from .stripe_client import CircuitBreaker, StripeClient, StripeError, StripeErrorType
from .webhook_handler import WebhookHandler

__all__ = [
    "CircuitBreaker",
    "StripeClient",
    "StripeError",
    "StripeErrorType",
    "WebhookHandler",
]
