"""Service catalog and user registration."""
from typing import Any, Dict, List, Optional

import structlog

from booking_payments.database import LedgerStore
from booking_payments.database.models import new_id, utcnow
from booking_payments.exceptions import DuplicateKeyError, NotFound, ValidationFailed

logger = structlog.get_logger(__name__)

FEATURED_LIMIT = 6


class CatalogService:
    """Read access to bookable services, plus customer registration."""

    def __init__(self, store: LedgerStore):
        self.store = store

    async def list_services(self) -> List[Dict[str, Any]]:
        return await self.store.find("services")

    async def featured_services(self, limit: int = FEATURED_LIMIT) -> List[Dict[str, Any]]:
        return await self.store.find("services", limit=limit)

    async def find_service(self, service_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.find_one("services", {"id": service_id})

    async def get_service(self, service_id: str) -> Dict[str, Any]:
        service = await self.find_service(service_id)
        if service is None:
            raise NotFound(f"Service {service_id} not found")
        return service

    async def register_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register a customer unless the email is already known.

        Returns:
            dict: `inserted_id` (None for an existing user) and the user
        """
        email = data.get("email")
        if not email:
            raise ValidationFailed("Missing required fields")

        existing = await self.store.find_one("users", {"email": email})
        if existing is not None:
            return {"message": "User already exists", "inserted_id": None, "user": existing}

        user = {
            "id": new_id(),
            "email": email,
            "name": data.get("name"),
            "photo_url": data.get("photo_url"),
            "role": "user",
            "created_at": utcnow(),
        }
        try:
            await self.store.insert("users", user)
        except DuplicateKeyError:
            # Registered concurrently
            existing = await self.store.find_one("users", {"email": email})
            return {"message": "User already exists", "inserted_id": None, "user": existing}

        logger.info("user_registered", user_id=user["id"], email=email)
        return {"message": "User created", "inserted_id": user["id"], "user": user}
