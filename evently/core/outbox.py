"""
Notification outbox publisher.

Notifications are written to the ``notifications`` table after the primary
transaction commits, then published asynchronously:
1. Read unpublished notifications in batches
2. Hand each one to the publisher function
3. Mark the delivered ones as published and count failed attempts

Rows that fail ``notification_max_attempts`` times are parked: they stay
unpublished but are no longer fetched, so they cannot stall the batch.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evently.config import get_settings
from evently.database.connection import get_session_factory
from evently.database.models import Notification, utcnow
from evently.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PublisherFunc = Callable[[Dict[str, Any]], Awaitable[None]]


class NotificationPublisher:
    """
    Publishes notifications from the outbox table.

    Delivery is at-least-once: a notification published right before a
    crash may be published again on restart.
    """

    def __init__(
        self,
        publisher_func: Optional[PublisherFunc] = None,
        batch_size: Optional[int] = None,
        poll_interval_seconds: Optional[float] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        max_attempts: Optional[int] = None,
    ):
        """
        Initialize notification publisher.

        Args:
            publisher_func: Coroutine delivering one notification (push, email, ...)
            batch_size: Notifications per batch
            poll_interval_seconds: Polling interval when the outbox is empty
            session_factory: Optional session factory
            max_attempts: Failed publishes before a notification is parked
        """
        settings = get_settings()
        self.publisher_func = publisher_func or self._default_publisher
        self.batch_size = batch_size or settings.notification_batch_size
        self.poll_interval_seconds = (
            poll_interval_seconds or settings.notification_poll_interval_seconds
        )
        self.max_attempts = max_attempts or settings.notification_max_attempts
        self._session_factory = session_factory
        self._running = False

        logger.info(
            "notification_publisher_initialized",
            batch_size=self.batch_size,
            poll_interval=self.poll_interval_seconds,
        )

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def _default_publisher(self, notification: Dict[str, Any]) -> None:
        """Log-only publisher, used until a delivery channel is configured."""
        logger.info(
            "notification_delivered_default",
            user_id=notification["user_id"],
            kind=notification["kind"],
            event_id=notification["event_id"],
        )

    async def _fetch_unpublished(self, db: AsyncSession) -> List[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.published.is_(False))
            .where(Notification.attempts < self.max_attempts)
            .order_by(Notification.created_at, Notification.id)
            .limit(self.batch_size)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def _publish(self, notification: Notification) -> Optional[str]:
        """
        Publish a single notification.

        Returns:
            Optional[str]: None if published, otherwise the error text
        """
        try:
            await self.publisher_func(
                {
                    "id": notification.id,
                    "user_id": notification.user_id,
                    "event_id": notification.event_id,
                    "kind": notification.kind,
                    "title": notification.title,
                    "message": notification.message,
                    "created_at": notification.created_at.isoformat(),
                }
            )
        except Exception as e:
            logger.error(
                "notification_publish_failed",
                notification_id=notification.id,
                kind=notification.kind,
                attempt=notification.attempts + 1,
                error=str(e),
            )
            metrics.record_notification_failure(notification.kind)
            return str(e) or type(e).__name__

        metrics.record_notification_published(notification.kind)
        return None

    async def _mark_as_published(self, db: AsyncSession, notification_ids: List[int]) -> None:
        if not notification_ids:
            return

        stmt = (
            update(Notification)
            .where(Notification.id.in_(notification_ids))
            .values(published=True, published_at=utcnow())
        )
        await db.execute(stmt)

        logger.info("notifications_marked_published", count=len(notification_ids))

    async def _record_failures(self, db: AsyncSession, failures: Dict[int, str]) -> None:
        for notification_id, error in failures.items():
            stmt = (
                update(Notification)
                .where(Notification.id == notification_id)
                .values(attempts=Notification.attempts + 1, last_error=error[:1000])
            )
            await db.execute(stmt)

    async def get_parked_count(self) -> int:
        """Notifications that exhausted their publish attempts."""
        async with self.session_factory() as db:
            stmt = (
                select(func.count(Notification.id))
                .where(Notification.published.is_(False))
                .where(Notification.attempts >= self.max_attempts)
            )
            return int(await db.scalar(stmt) or 0)

    async def process_batch(self) -> int:
        """
        Process a batch of unpublished notifications.

        Returns:
            int: Number of notifications published
        """
        async with self.session_factory() as db:
            try:
                pending = await self._fetch_unpublished(db)
                if not pending:
                    return 0

                logger.info("notification_batch_processing_started", batch_size=len(pending))

                published_ids = []
                failures: Dict[int, str] = {}
                for notification in pending:
                    error = await self._publish(notification)
                    if error is None:
                        published_ids.append(notification.id)
                    else:
                        failures[notification.id] = error

                await self._mark_as_published(db, published_ids)
                await self._record_failures(db, failures)
                await db.commit()

                logger.info(
                    "notification_batch_processed",
                    total=len(pending),
                    published=len(published_ids),
                    failed=len(failures),
                )
                return len(published_ids)

            except Exception as e:
                logger.error("notification_batch_processing_error", error=str(e))
                await db.rollback()
                return 0

    async def start(self) -> None:
        """Poll the outbox until ``stop`` is called."""
        self._running = True
        logger.info("notification_publisher_started")

        try:
            while self._running:
                published_count = await self.process_batch()
                if published_count == 0:
                    await asyncio.sleep(self.poll_interval_seconds)
                else:
                    await asyncio.sleep(0.1)
        finally:
            logger.info("notification_publisher_stopped")

    def stop(self) -> None:
        self._running = False
        logger.info("notification_publisher_stop_requested")

    async def get_pending_count(self) -> int:
        async with self.session_factory() as db:
            stmt = select(func.count(Notification.id)).where(Notification.published.is_(False))
            return int(await db.scalar(stmt) or 0)
