"""
Notification Sink: fire-and-forget user notifications.

Engines call ``notify`` only after their transaction has committed. The
database sink writes to the ``notifications`` outbox in its own session;
delivery to users is handled by the notification publisher worker.
"""
import asyncio
from typing import Dict, List, Optional, Protocol, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evently.config import get_settings
from evently.database.connection import get_session_factory
from evently.database.models import Notification, NotificationKind, utcnow
from evently.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

NOTIFICATION_TITLES: Dict[NotificationKind, str] = {
    NotificationKind.REGISTRATION_CONFIRMED: "Registration Confirmed",
    NotificationKind.REGISTRATION_PENDING: "Registration Pending Approval",
    NotificationKind.REGISTRATION_REQUESTED: "New Registration Request",
    NotificationKind.REGISTRATION_APPROVED: "Registration Approved",
    NotificationKind.REGISTRATION_REJECTED: "Registration Rejected",
    NotificationKind.REGISTRATION_CANCELLED: "Registration Cancelled",
    NotificationKind.PAYMENT_COMPLETED: "Payment Completed",
    NotificationKind.PAYMENT_FAILED: "Payment Failed",
    NotificationKind.OVERBOOKED_SETTLEMENT: "Paid Seats Need Attention",
    NotificationKind.GENERAL: "Notification",
}


class NotificationSink(Protocol):
    """External collaborator receiving best-effort notifications."""

    async def notify(
        self, user_id: str, kind: NotificationKind, event_id: Optional[str], text: str
    ) -> None:
        ...


class DatabaseNotificationSink:
    """Writes notifications to the outbox table in a dedicated session."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def notify(
        self, user_id: str, kind: NotificationKind, event_id: Optional[str], text: str
    ) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                db.add(
                    Notification(
                        user_id=user_id,
                        event_id=event_id,
                        kind=kind.value,
                        title=NOTIFICATION_TITLES.get(kind, "Notification"),
                        message=text,
                        published=False,
                        created_at=utcnow(),
                    )
                )
        logger.info("notification_queued", user_id=user_id, kind=kind.value, event_id=event_id)


class RecordingNotificationSink:
    """In-memory sink, used by tests and local tooling."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, NotificationKind, Optional[str], str]] = []

    async def notify(
        self, user_id: str, kind: NotificationKind, event_id: Optional[str], text: str
    ) -> None:
        self.sent.append((user_id, kind, event_id, text))

    def kinds_for(self, user_id: str) -> List[NotificationKind]:
        return [kind for recipient, kind, _, _ in self.sent if recipient == user_id]


async def notify_safely(
    sink: NotificationSink,
    user_id: str,
    kind: NotificationKind,
    event_id: Optional[str],
    text: str,
) -> bool:
    """
    Deliver a notification without letting failures reach the caller.

    Returns:
        bool: Whether the sink accepted the notification
    """
    timeout = get_settings().notification_timeout_seconds
    try:
        await asyncio.wait_for(sink.notify(user_id, kind, event_id, text), timeout=timeout)
        return True
    except Exception as e:
        metrics.record_notification_failure(kind.value)
        logger.warning(
            "notification_failed",
            user_id=user_id,
            kind=kind.value,
            event_id=event_id,
            error=str(e) or type(e).__name__,
        )
        return False
