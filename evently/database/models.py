"""SQLAlchemy database models for the registration and payment ledgers."""
import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Column ceilings for BigInteger money and Integer quantity columns
MAX_AMOUNT = 2**63 - 1
MAX_QUANTITY = 2**31 - 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class RegistrationRole(str, enum.Enum):
    ATTENDEE = "ATTENDEE"
    SPEAKER = "SPEAKER"
    ORGANIZER = "ORGANIZER"
    MANAGER = "MANAGER"


class RegistrationStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NotificationKind(str, enum.Enum):
    REGISTRATION_CONFIRMED = "REGISTRATION_CONFIRMED"
    REGISTRATION_PENDING = "REGISTRATION_PENDING"
    REGISTRATION_REQUESTED = "REGISTRATION_REQUESTED"
    REGISTRATION_APPROVED = "REGISTRATION_APPROVED"
    REGISTRATION_REJECTED = "REGISTRATION_REJECTED"
    REGISTRATION_CANCELLED = "REGISTRATION_CANCELLED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    OVERBOOKED_SETTLEMENT = "OVERBOOKED_SETTLEMENT"
    GENERAL = "GENERAL"


def _in_clause(column: str, values: type[enum.Enum]) -> str:
    quoted = ", ".join(f"'{member.value}'" for member in values)
    return f"{column} IN ({quoted})"


class Event(Base):
    """
    Events with optional capacity, approval gating and ticket price.

    ``attendee_count`` is a cached counter. It is only ever changed through
    the conditional updates in ``core.event_store``.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    organizer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attendee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    require_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ticket_price: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("attendee_count >= 0", name="non_negative_attendee_count"),
        CheckConstraint("capacity IS NULL OR capacity > 0", name="positive_capacity"),
        CheckConstraint(
            "capacity IS NULL OR attendee_count <= capacity", name="attendee_count_within_capacity"
        ),
        CheckConstraint("ticket_price >= 0", name="non_negative_ticket_price"),
    )

    def __repr__(self) -> str:
        return (
            f"<Event(id={self.id}, capacity={self.capacity}, "
            f"attendee_count={self.attendee_count})>"
        )


class Registration(Base):
    """One row per (event, user) pair."""

    __tablename__ = "registrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(16), nullable=False, default=RegistrationRole.ATTENDEE.value
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_registrations_event_user"),
        CheckConstraint(_in_clause("role", RegistrationRole), name="valid_registration_role"),
        CheckConstraint(
            _in_clause("status", RegistrationStatus), name="valid_registration_status"
        ),
        Index("idx_registrations_event_status", "event_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Registration(event_id={self.event_id}, user_id={self.user_id}, "
            f"role={self.role}, status={self.status})>"
        )


class Payment(Base):
    """
    Ticket purchases.

    Written by the reconciliation engine only. ``overbooked`` flags a
    COMPLETED payment whose seats could not be reserved at settlement.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    external_reference_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    external_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    buyer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    buyer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    buyer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    overbooked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="positive_quantity"),
        CheckConstraint("amount >= 0", name="non_negative_amount"),
        CheckConstraint(_in_clause("status", PaymentStatus), name="valid_payment_status"),
        Index("idx_payments_event_status", "event_id", "status"),
        Index("idx_payments_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, reference={self.external_reference_id}, "
            f"quantity={self.quantity}, status={self.status})>"
        )


class PaymentEvent(Base):
    """
    Settlement audit trail.

    One row per gateway delivery, including duplicates. Immutable once written.
    """

    __tablename__ = "payment_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    payment_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    correlation_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentEvent(id={self.id}, payment_id={self.payment_id}, "
            f"type={self.event_type})>"
        )


class Notification(Base):
    """
    Notification outbox.

    Rows are written best-effort after the primary transaction commits and
    published asynchronously by the notification publisher worker.
    """

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_notifications_unpublished", "published", "created_at"),)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, kind={self.kind}, published={self.published})>"


class CounterAudit(Base):
    """Results of recomputing an event's attendee counter from source rows."""

    __tablename__ = "counter_audits"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    event_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    cached_count: Mapped[int] = mapped_column(Integer, nullable=False)
    confirmed_registrations: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    discrepancy: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    audited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("status IN ('consistent', 'drifted')", name="valid_audit_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<CounterAudit(event_id={self.event_id}, cached={self.cached_count}, "
            f"discrepancy={self.discrepancy})>"
        )
