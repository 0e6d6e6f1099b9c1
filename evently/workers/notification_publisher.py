"""
Notification publisher background worker.

Continuously polls the notifications outbox and delivers new notifications.
"""
import asyncio
import signal
from typing import Any, Dict

import structlog

from evently.core.outbox import NotificationPublisher
from evently.database.connection import close_db, init_db
from evently.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def deliver_notification(notification: Dict[str, Any]) -> None:
    """
    Deliver one notification to the user.

    Push and email channels plug in here; the default delivery is the log.
    """
    logger.info(
        "notification_delivered",
        notification_id=notification["id"],
        user_id=notification["user_id"],
        kind=notification["kind"],
        title=notification["title"],
    )


async def start_notification_publisher() -> None:
    """
    Start the notification publisher worker.

    Runs until SIGINT or SIGTERM.
    """
    setup_logging()

    logger.info("notification_publisher_worker_starting")
    await init_db()

    publisher = NotificationPublisher(publisher_func=deliver_notification)

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("notification_publisher_worker_shutdown_signal_received", signal=sig)
        publisher.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await publisher.start()
    except Exception as e:
        logger.error("notification_publisher_worker_error", error=str(e))
        raise
    finally:
        await close_db()
        logger.info("notification_publisher_worker_stopped")


def main() -> None:
    asyncio.run(start_notification_publisher())


if __name__ == "__main__":
    main()
