"""
Pydantic schemas for API request/response models.

Field names are camelCase on the wire. Request fields are optional at the
schema level; required-field checks live in the services so every API
answers with the same `{"error": ...}` shape.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateBookingRequest(CamelModel):
    """Request schema for submitting a booking."""

    user_name: Optional[str] = None
    email: Optional[str] = None
    service_id: Optional[str] = None
    service_title: Optional[str] = None
    service_category: Optional[str] = None
    service_price: Optional[Decimal] = None
    booking_date: Optional[str] = None
    service_location: Optional[str] = None
    service_mode: Optional[str] = None
    note: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "userName": "Ayesha",
                    "email": "a@b.com",
                    "serviceId": "S1",
                    "bookingDate": "2024-06-01",
                    "serviceLocation": "Dhaka",
                }
            ]
        },
    )


class BookingResponse(CamelModel):
    """Booking as returned to clients."""

    id: str
    user_name: Optional[str] = None
    email: str
    service_id: str
    service_title: Optional[str] = None
    service_category: Optional[str] = None
    service_price: Optional[Decimal] = None
    booking_date: str
    service_location: str
    service_mode: Optional[str] = None
    note: str = ""
    status: str
    payment_status: str
    created_at: datetime


class UpdateBookingStatusRequest(CamelModel):
    status: Optional[str] = Field(
        default=None, description="Lifecycle status (pending/confirmed/cancelled/completed)"
    )


class CheckoutRequest(CamelModel):
    """Request schema for starting a checkout."""

    cost: Any = Field(default=None, description="Price in currency units")
    service_title: Optional[str] = None
    booking_id: Optional[str] = None
    user_email: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "cost": 500,
                    "serviceTitle": "Wedding stage decoration",
                    "bookingId": "8c1f0b7e4b9a4d2f9a3e6c5d4b3a2f10",
                    "userEmail": "a@b.com",
                }
            ]
        },
    )


class CheckoutResponse(CamelModel):
    url: str = Field(..., description="Hosted payment page URL")


class PaymentResponse(CamelModel):
    """Payment record."""

    id: str
    booking_id: str
    customer_email: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount: Decimal
    currency: str
    tracking_id: str
    status: str
    created_at: datetime


class AnomalyResponse(CamelModel):
    """Reconciliation anomaly awaiting review."""

    id: str
    kind: str
    event_id: Optional[str] = None
    booking_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount: Optional[Decimal] = None
    customer_email: Optional[str] = None
    detail: Optional[str] = None
    resolved: bool
    created_at: datetime


class RegisterUserRequest(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None
    photo_url: Optional[str] = None


class UserResponse(CamelModel):
    id: str
    email: str
    name: Optional[str] = None
    photo_url: Optional[str] = None
    role: str
    created_at: datetime


class RegisterUserResponse(CamelModel):
    message: str
    inserted_id: Optional[str] = None
    user: Optional[UserResponse] = None


class ServiceResponse(CamelModel):
    id: str
    title: str
    category: Optional[str] = None
    price: Optional[Decimal] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    created_at: datetime


class WebhookResponse(CamelModel):
    """Response schema for webhook processing."""

    received: bool = Field(..., description="Delivery acknowledged")
    event_id: Optional[str] = Field(default=None, description="Stripe event ID")
    status: Optional[str] = Field(default=None, description="Processing outcome")
    tracking_id: Optional[str] = Field(default=None, description="Payment tracking code")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
