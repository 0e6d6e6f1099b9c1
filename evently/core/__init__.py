"""Core registration and settlement logic."""
from .counter_audit import CounterAuditor
from .errors import DomainError, ErrorCode
from .event_store import EventStore, ReservationResult
from .outbox import NotificationPublisher
from .payment_ledger import PaymentLedger
from .payment_reconciliation import PaymentReconciliationEngine
from .registration_engine import RegistrationEngine
from .registration_ledger import RegistrationLedger

__all__ = [
    "CounterAuditor",
    "DomainError",
    "ErrorCode",
    "EventStore",
    "NotificationPublisher",
    "PaymentLedger",
    "PaymentReconciliationEngine",
    "RegistrationEngine",
    "RegistrationLedger",
    "ReservationResult",
]
