"""Background workers for async processing."""
from .counter_audit_worker import run_counter_audit, start_counter_audit_worker
from .notification_publisher import start_notification_publisher

__all__ = ["run_counter_audit", "start_counter_audit_worker", "start_notification_publisher"]
