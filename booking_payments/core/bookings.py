"""Booking submission, queries and administrative status updates."""
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import structlog

from booking_payments.database import LedgerStore
from booking_payments.database.models import BOOKING_STATUSES, new_id, utcnow
from booking_payments.exceptions import NotFound, ValidationFailed

from .catalog import CatalogService

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("email", "service_id", "booking_date", "service_location")


def validate_booking_id(booking_id: Optional[str]) -> str:
    """
    Check that a booking id is well formed.

    Raises:
        ValidationFailed: If the id is not a UUID
    """
    try:
        return uuid.UUID(str(booking_id)).hex
    except ValueError:
        raise ValidationFailed("Invalid booking ID") from None


def _price(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationFailed("Invalid service price") from None


class BookingService:
    """
    Customer bookings.

    Only the lifecycle `status` is changed here; `payment_status` belongs to
    the reconciliation engine.
    """

    def __init__(self, store: LedgerStore, catalog: CatalogService):
        self.store = store
        self.catalog = catalog

    async def create_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a booking.

        The service title, category and price are snapshotted: from the
        catalog when the service exists there, otherwise as submitted.

        Raises:
            ValidationFailed: If a required field is missing
        """
        if any(not data.get(name) for name in REQUIRED_FIELDS):
            raise ValidationFailed("Missing required fields")

        snapshot = {
            "service_title": data.get("service_title"),
            "service_category": data.get("service_category"),
            "service_price": _price(data.get("service_price")),
        }
        service = await self.catalog.find_service(str(data["service_id"]))
        if service is not None:
            snapshot = {
                "service_title": service["title"],
                "service_category": service["category"],
                "service_price": service["price"],
            }

        booking = {
            "id": new_id(),
            "user_name": data.get("user_name"),
            "email": data["email"],
            "service_id": str(data["service_id"]),
            **snapshot,
            "booking_date": str(data["booking_date"]),
            "service_location": data["service_location"],
            "service_mode": data.get("service_mode"),
            "note": data.get("note") or "",
            "status": "pending",
            "payment_status": "unpaid",
            "created_at": utcnow(),
        }
        await self.store.insert("bookings", booking)

        logger.info(
            "booking_created",
            booking_id=booking["id"],
            service_id=booking["service_id"],
            email=booking["email"],
        )
        return booking

    async def list_for_email(self, email: str) -> List[Dict[str, Any]]:
        return await self.store.find("bookings", {"email": email})

    async def get_booking(self, booking_id: str) -> Dict[str, Any]:
        """
        Raises:
            ValidationFailed: Malformed id
            NotFound: No such booking
        """
        booking = await self.store.find_one("bookings", {"id": validate_booking_id(booking_id)})
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    async def list_all(self) -> List[Dict[str, Any]]:
        return await self.store.find("bookings")

    async def update_status(self, booking_id: str, status: Optional[str]) -> Dict[str, Any]:
        """
        Administrative lifecycle update.

        Raises:
            ValidationFailed: Malformed id or unknown status
            NotFound: No such booking
        """
        booking_id = validate_booking_id(booking_id)
        if status not in BOOKING_STATUSES:
            raise ValidationFailed(
                f"Invalid status. Must be one of: {', '.join(BOOKING_STATUSES)}"
            )

        matched = await self.store.update_one("bookings", {"id": booking_id}, {"status": status})
        if not matched:
            raise NotFound(f"Booking {booking_id} not found")

        logger.info("booking_status_updated", booking_id=booking_id, status=status)
        return await self.get_booking(booking_id)

    async def list_payments(self, email: str) -> List[Dict[str, Any]]:
        """Payment history for a customer."""
        return await self.store.find("payments", {"customer_email": email})
