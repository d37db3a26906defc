"""
API routes for booking payments.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from booking_payments.exceptions import ValidationFailed

from .dependencies import ServiceContainer, get_services
from .schemas import (
    AnomalyResponse,
    BookingResponse,
    CheckoutRequest,
    CheckoutResponse,
    CreateBookingRequest,
    HealthCheckResponse,
    PaymentResponse,
    RegisterUserRequest,
    RegisterUserResponse,
    ServiceResponse,
    UpdateBookingStatusRequest,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
webhook_router = APIRouter(tags=["webhooks"])
checkout_router = APIRouter(tags=["checkout"])
booking_router = APIRouter(prefix="/bookings", tags=["bookings"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
user_router = APIRouter(prefix="/users", tags=["users"])
service_router = APIRouter(prefix="/services", tags=["services"])
monitoring_router = APIRouter(tags=["monitoring"])


@webhook_router.post(
    "/webhook",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
    summary="Stripe webhook endpoint",
    description="Verify and reconcile Stripe webhook events",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    """
    Handle Stripe webhook events.

    The body is read raw; the signature covers the exact bytes received.
    Duplicate and ignored events are acknowledged with 200.
    """
    body = await request.body()
    return await services.webhook_handler.handle_shielded(body, stripe_signature)


@checkout_router.post(
    "/create-checkout-session",
    response_model=CheckoutResponse,
    summary="Start checkout",
    description="Create a hosted Stripe Checkout session for a booking",
)
async def create_checkout_session(
    request: CheckoutRequest,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    url = await services.checkout.start_checkout(
        booking_id=request.booking_id,
        service_title=request.service_title,
        amount=request.cost,
        customer_email=request.user_email,
    )
    return {"url": url}


@booking_router.post("", response_model=BookingResponse, summary="Submit a booking")
async def create_booking(
    request: CreateBookingRequest,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    return await services.bookings.create_booking(request.model_dump())


@booking_router.get(
    "",
    response_model=List[BookingResponse],
    summary="List bookings",
    description="Bookings for a customer email, or the booking with the given id",
)
async def list_bookings(
    email: Optional[str] = None,
    booking_id: Optional[str] = Query(default=None, alias="bookingId"),
    services: ServiceContainer = Depends(get_services),
) -> List[Dict[str, Any]]:
    if email:
        return await services.bookings.list_for_email(email)
    if booking_id:
        return [await services.bookings.get_booking(booking_id)]
    raise ValidationFailed("Missing query params")


@admin_router.get("/bookings", response_model=List[BookingResponse], summary="All bookings")
async def admin_list_bookings(
    services: ServiceContainer = Depends(get_services),
) -> List[Dict[str, Any]]:
    return await services.bookings.list_all()


@admin_router.patch(
    "/bookings/{booking_id}",
    response_model=BookingResponse,
    summary="Update booking status",
    description="Administrative lifecycle update; payment status is not editable",
)
async def admin_update_booking(
    booking_id: str,
    request: UpdateBookingStatusRequest,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    return await services.bookings.update_status(booking_id, request.status)


@admin_router.get(
    "/anomalies",
    response_model=List[AnomalyResponse],
    summary="Open reconciliation anomalies",
)
async def admin_list_anomalies(
    services: ServiceContainer = Depends(get_services),
) -> List[Dict[str, Any]]:
    return await services.engine.open_anomalies()


@payment_router.get("", response_model=List[PaymentResponse], summary="Payment history")
async def list_payments(
    email: Optional[str] = None,
    services: ServiceContainer = Depends(get_services),
) -> List[Dict[str, Any]]:
    if not email:
        raise ValidationFailed("Missing query params")
    return await services.bookings.list_payments(email)


@user_router.post("", response_model=RegisterUserResponse, summary="Register a user")
async def register_user(
    request: RegisterUserRequest,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    return await services.catalog.register_user(request.model_dump())


@service_router.get("", response_model=List[ServiceResponse], summary="All services")
async def list_services(
    services: ServiceContainer = Depends(get_services),
) -> List[Dict[str, Any]]:
    return await services.catalog.list_services()


@service_router.get("/featured", response_model=List[ServiceResponse], summary="Featured services")
async def featured_services(
    services: ServiceContainer = Depends(get_services),
) -> List[Dict[str, Any]]:
    return await services.catalog.featured_services()


@service_router.get("/details/{service_id}", response_model=ServiceResponse)
async def service_details(
    service_id: str,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    return await services.catalog.get_service(service_id)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await services.health.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await services.health.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await services.health.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
