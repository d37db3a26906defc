"""Service bookings with Stripe payment confirmation and booking reconciliation."""

__version__ = "1.0.0"
