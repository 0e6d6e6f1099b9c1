"""
Domain error taxonomy for the registration engine.

Every error carries an ErrorCode so callers (HTTP layer, workers) can map
outcomes without string matching. ``expected`` separates routine business
outcomes such as a full event from genuine faults.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Domain error codes."""

    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    REGISTRATION_NOT_FOUND = "REGISTRATION_NOT_FOUND"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    EVENT_FULL = "EVENT_FULL"
    OVERBOOKED_SETTLEMENT = "OVERBOOKED_SETTLEMENT"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    INVALID_PURCHASE = "INVALID_PURCHASE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INVALID_CALLBACK = "INVALID_CALLBACK"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    expected = True

    def __init__(self, code: ErrorCode, message: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.message = message
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API error bodies."""
        return {"error": self.code.value, "message": self.message, **self.context}


class NotFound(DomainError):
    """Base for absent events, registrations and payments."""


class EventNotFound(NotFound):
    """Raised when an event does not exist."""

    def __init__(self, event_id: str):
        super().__init__(ErrorCode.EVENT_NOT_FOUND, "Event not found", event_id=event_id)
        self.event_id = event_id


class RegistrationNotFound(NotFound):
    """Raised when no registration in the required state exists."""

    def __init__(self, event_id: str, user_id: str, message: str = "Registration not found"):
        super().__init__(
            ErrorCode.REGISTRATION_NOT_FOUND, message, event_id=event_id, user_id=user_id
        )
        self.event_id = event_id
        self.user_id = user_id


class PaymentNotFound(NotFound):
    """Raised when a payment cannot be found by id or gateway reference."""

    def __init__(self, reference: str):
        super().__init__(ErrorCode.PAYMENT_NOT_FOUND, "Payment not found", reference=reference)
        self.reference = reference


class Forbidden(DomainError):
    """Raised when the actor is not allowed to perform the operation."""

    def __init__(self, message: str = "Only the event organizer can perform this action"):
        super().__init__(ErrorCode.FORBIDDEN, message)


class AlreadyRegistered(DomainError):
    """Raised when an active registration already exists for the pair."""

    def __init__(self, event_id: str, user_id: str, status: Optional[str] = None):
        super().__init__(
            ErrorCode.ALREADY_REGISTERED,
            "Already registered for this event",
            event_id=event_id,
            user_id=user_id,
            status=status,
        )


class EventFull(DomainError):
    """Raised when the atomic reservation finds no remaining capacity."""

    def __init__(self, event_id: str, requested: int = 1):
        super().__init__(
            ErrorCode.EVENT_FULL, "Event is full", event_id=event_id, requested=requested
        )
        self.event_id = event_id


class OverbookedSettlement(DomainError):
    """
    A payment settled after the event was filled by other means.

    The payment stays COMPLETED; this marks the anomaly an operator must resolve.
    """

    def __init__(self, reference_id: str, event_id: str, quantity: int):
        super().__init__(
            ErrorCode.OVERBOOKED_SETTLEMENT,
            "Payment settled but the event has no capacity left for its seats",
            reference_id=reference_id,
            event_id=event_id,
            quantity=quantity,
        )
        self.reference_id = reference_id


class PaymentRequired(DomainError):
    """Raised when registering for a paid event without going through checkout."""

    def __init__(self, event_id: str):
        super().__init__(
            ErrorCode.PAYMENT_REQUIRED,
            "This event requires a ticket purchase",
            event_id=event_id,
        )


class InvalidPurchase(DomainError):
    """Raised when a purchase request cannot be accepted."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.INVALID_PURCHASE, message)


class InvalidSignature(DomainError):
    """Raised when a settlement callback fails signature verification."""

    def __init__(self, message: str = "Invalid callback signature"):
        super().__init__(ErrorCode.INVALID_SIGNATURE, message)


class InvalidCallback(DomainError):
    """Raised when a settlement callback body cannot be parsed."""

    def __init__(self, message: str = "Malformed settlement callback"):
        super().__init__(ErrorCode.INVALID_CALLBACK, message)


class StoreUnavailable(DomainError):
    """Transient persistence failure; retried before it reaches the caller."""

    expected = False

    def __init__(self, operation: str, detail: str):
        super().__init__(
            ErrorCode.STORE_UNAVAILABLE,
            "Storage temporarily unavailable",
            operation=operation,
        )
        self.operation = operation
        self.detail = detail
