"""External integrations: notification sink and settlement webhook."""
from .notification_sink import (
    DatabaseNotificationSink,
    NotificationSink,
    RecordingNotificationSink,
    notify_safely,
)
from .webhook_handler import SettlementCallback, SettlementWebhookHandler

__all__ = [
    "DatabaseNotificationSink",
    "NotificationSink",
    "RecordingNotificationSink",
    "SettlementCallback",
    "SettlementWebhookHandler",
    "notify_safely",
]
