"""Database package for booking payments."""
from .connection import create_engine, create_session_factory
from .models import (
    Base,
    Booking,
    Payment,
    ProcessedEvent,
    ReconciliationAnomaly,
    Service,
    User,
)
from .store import LedgerStore, LedgerTransaction

__all__ = [
    "Base",
    "Booking",
    "Payment",
    "ProcessedEvent",
    "ReconciliationAnomaly",
    "Service",
    "User",
    "LedgerStore",
    "LedgerTransaction",
    "create_engine",
    "create_session_factory",
]
