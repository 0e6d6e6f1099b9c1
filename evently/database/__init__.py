"""Database package for the registration engine."""
from .connection import (
    build_session_factory,
    close_db,
    configure_sqlite,
    get_session_factory,
    init_db,
)
from .models import (
    Base,
    CounterAudit,
    Event,
    Notification,
    NotificationKind,
    Payment,
    PaymentEvent,
    PaymentStatus,
    Registration,
    RegistrationRole,
    RegistrationStatus,
)

__all__ = [
    "Base",
    "Event",
    "Registration",
    "Payment",
    "PaymentEvent",
    "Notification",
    "CounterAudit",
    "RegistrationRole",
    "RegistrationStatus",
    "PaymentStatus",
    "NotificationKind",
    "build_session_factory",
    "close_db",
    "configure_sqlite",
    "get_session_factory",
    "init_db",
]
