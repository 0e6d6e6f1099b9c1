"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from evently.database.models import MAX_AMOUNT, MAX_QUANTITY


class CreateEventRequest(BaseModel):
    """Request schema for creating an event."""

    name: str = Field(..., min_length=1, max_length=255, description="Event name")
    capacity: Optional[int] = Field(
        default=None, gt=0, description="Maximum attendees (unlimited if not specified)"
    )
    require_approval: bool = Field(
        default=False, description="Registrations wait for organizer approval"
    )
    ticket_price: int = Field(
        default=0, ge=0, le=MAX_AMOUNT, description="Ticket price (0 for free events)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"name": "PyCon Meetup", "capacity": 120, "require_approval": False},
                {"name": "Workshop", "capacity": 30, "ticket_price": 50000},
            ]
        }
    }


class EventResponse(BaseModel):
    """Response schema for an event."""

    event_id: str = Field(..., description="Event ID")
    name: str = Field(..., description="Event name")
    organizer_id: str = Field(..., description="Organizer user ID")
    capacity: Optional[int] = Field(default=None, description="Capacity (null = unlimited)")
    attendee_count: int = Field(..., description="Seats currently taken")
    available_seats: Optional[int] = Field(default=None, description="Seats left")
    require_approval: bool = Field(..., description="Approval gating")
    ticket_price: int = Field(..., description="Ticket price")
    created_at: datetime = Field(..., description="Creation timestamp")


class RegistrationResponse(BaseModel):
    """Response schema for a registration."""

    registration_id: str = Field(..., description="Registration ID")
    event_id: str = Field(..., description="Event ID")
    user_id: str = Field(..., description="User ID")
    role: str = Field(..., description="ATTENDEE, SPEAKER, ORGANIZER or MANAGER")
    status: str = Field(..., description="PENDING, CONFIRMED or REJECTED")
    registered_at: datetime = Field(..., description="Registration timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    attendee_count: Optional[int] = Field(
        default=None, description="Event attendee count after the operation"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "registration_id": "5f0c6d7e-2a43-4a49-9b0e-0f7f3d1b2c11",
                    "event_id": "0d3c1f8e-6b7a-4a3e-8a63-2d5a1f0b9c22",
                    "user_id": "user-42",
                    "role": "ATTENDEE",
                    "status": "CONFIRMED",
                    "registered_at": "2025-01-06T10:00:00Z",
                    "updated_at": "2025-01-06T10:00:00Z",
                    "attendee_count": 17,
                }
            ]
        }
    }


class UnregisterResponse(BaseModel):
    """Response schema for a cancelled registration."""

    event_id: str = Field(..., description="Event ID")
    user_id: str = Field(..., description="User ID")
    seats_released: int = Field(..., description="Seats returned to the event")
    attendee_count: int = Field(..., description="Event attendee count after release")


class PurchaseRequest(BaseModel):
    """Request schema for buying tickets to a paid event."""

    event_id: str = Field(..., description="Event ID")
    quantity: int = Field(default=1, gt=0, le=MAX_QUANTITY, description="Number of tickets")
    payment_method: str = Field(..., description="va, cc, qris or convenience_store")
    buyer_name: Optional[str] = Field(default=None, max_length=255)
    buyer_email: Optional[str] = Field(default=None, max_length=255)
    buyer_phone: Optional[str] = Field(default=None, max_length=64)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "event_id": "0d3c1f8e-6b7a-4a3e-8a63-2d5a1f0b9c22",
                    "quantity": 2,
                    "payment_method": "qris",
                    "buyer_name": "Ayu",
                    "buyer_email": "ayu@example.com",
                }
            ]
        }
    }


class PaymentResponse(BaseModel):
    """Response schema for a payment."""

    payment_id: str = Field(..., description="Payment ID")
    event_id: str = Field(..., description="Event ID")
    user_id: str = Field(..., description="Buyer user ID")
    quantity: int = Field(..., description="Tickets purchased")
    amount: int = Field(..., description="Total amount")
    status: str = Field(..., description="PENDING, COMPLETED or FAILED")
    payment_method: str = Field(..., description="Payment method")
    reference_id: str = Field(..., description="Gateway reference ID")
    transaction_id: Optional[str] = Field(default=None, description="Gateway transaction ID")
    buyer_name: Optional[str] = None
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None
    overbooked: bool = Field(..., description="Settled after the event filled up")
    settled_at: Optional[datetime] = Field(default=None, description="Settlement timestamp")
    created_at: datetime = Field(..., description="Creation timestamp")


class PaymentEventResponse(BaseModel):
    event_type: str
    event_data: Dict[str, Any]
    created_at: datetime


class PaymentDetailResponse(PaymentResponse):
    """Payment with its settlement audit trail."""

    events: List[PaymentEventResponse] = Field(default_factory=list)


class PaymentCheckResponse(BaseModel):
    """Response schema for the has-paid check."""

    event_id: str
    user_id: str
    has_paid: bool
    payment: Optional[PaymentResponse] = None


class SettlementResponse(BaseModel):
    """Response schema for settlement processing."""

    reference_id: str = Field(..., description="Gateway reference ID")
    outcome: str = Field(
        ..., description="completed, duplicate, failed, overbooked, unchanged or ignored"
    )
    payment_id: Optional[str] = Field(default=None, description="Payment ID")
    status: Optional[str] = Field(default=None, description="Payment status after processing")
    overbooked: Optional[bool] = Field(default=None, description="Overbooked flag")
    anomaly: Optional[Dict[str, Any]] = Field(
        default=None, description="Present when the settlement could not get seats"
    )
    message: Optional[str] = Field(default=None, description="Status message")


class CounterAuditResponse(BaseModel):
    """Response schema for an event counter audit."""

    event_id: str
    capacity: Optional[int] = None
    cached_count: int
    confirmed_registrations: int
    paid_seats: int
    expected_count: int
    discrepancy: int
    status: str
    within_capacity: bool


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
