"""SQLAlchemy database models for bookings and their payments."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Tuple

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

BOOKING_STATUSES = ("pending", "confirmed", "cancelled", "completed")
PAYMENT_STATUSES = ("unpaid", "paid", "failed", "refunded")
ANOMALY_KINDS = (
    "booking_not_found",
    "booking_update_failed",
    "amount_mismatch",
    "duplicate_payment",
)


def _one_of(column: str, values: Tuple[str, ...]) -> str:
    return f"{column} IN (" + ", ".join(f"'{value}'" for value in values) + ")"


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    def to_document(self) -> Dict[str, Any]:
        """Column values keyed by attribute name."""
        return {column.key: getattr(self, column.key) for column in self.__table__.columns}


class Booking(Base):
    """
    Service booking.

    Title, category and price are a snapshot taken at submission time.
    `status` is the operational lifecycle (administrative updates only);
    `payment_status` is advanced only by the reconciliation engine.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    booking_date: Mapped[str] = mapped_column(String(64), nullable=False)
    service_location: Mapped[str] = mapped_column(String(255), nullable=False)
    service_mode: Mapped[str | None] = mapped_column(String(64), nullable=True)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(_one_of("status", BOOKING_STATUSES), name="valid_booking_status"),
        CheckConstraint(
            _one_of("payment_status", PAYMENT_STATUSES), name="valid_payment_status"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, email={self.email}, "
            f"status={self.status}, payment_status={self.payment_status})>"
        )


class Payment(Base):
    """
    Payment records table.

    One row per successfully reconciled provider event. Immutable once
    written; refunds and disputes would add rows rather than edit this one.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    booking_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    tracking_id: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="non_negative_amount"),
        Index("idx_payments_booking_event", "booking_id", "event_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, booking_id={self.booking_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class ProcessedEvent(Base):
    """
    Idempotency marker for provider webhook events.

    The primary key is the provider event id; a failed insert means the
    event was already claimed.
    """

    __tablename__ = "processed_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )


class ReconciliationAnomaly(Base):
    """
    Reconciliation outcome that needs manual follow-up.

    Written whenever money was received but the booking could not be
    brought in line automatically.
    """

    __tablename__ = "reconciliation_anomalies"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(_one_of("kind", ANOMALY_KINDS), name="valid_anomaly_kind"),
    )

    def __repr__(self) -> str:
        return (
            f"<ReconciliationAnomaly(id={self.id}, kind={self.kind}, "
            f"booking_id={self.booking_id})>"
        )


class User(Base):
    """Registered customer."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Service(Base):
    """Bookable service in the catalog."""

    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


COLLECTIONS = {
    "bookings": Booking,
    "payments": Payment,
    "processed_events": ProcessedEvent,
    "reconciliation_anomalies": ReconciliationAnomaly,
    "users": User,
    "services": Service,
}
