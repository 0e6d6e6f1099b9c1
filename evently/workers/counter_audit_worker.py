"""
Counter audit background worker.

Periodically recomputes every event's attendee counter from the ledgers and
reports drift. It never repairs counters.
"""
import asyncio
import signal
from typing import Any, Optional

import structlog

from evently.config import get_settings
from evently.core.counter_audit import CounterAuditor
from evently.database.connection import close_db, init_db
from evently.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_counter_audit(auditor: Optional[CounterAuditor] = None) -> dict[str, Any]:
    """Run one audit sweep over all events."""
    auditor = auditor or CounterAuditor()
    result = await auditor.audit_all()

    if result["drifted"]:
        logger.warning(
            "counter_audit_drift_detected",
            drifted=result["drifted"],
            event_ids=[d["event_id"] for d in result["discrepancies"]],
        )
    return result


async def start_counter_audit_worker() -> None:
    """
    Start the counter audit worker.

    Runs a sweep every ``counter_audit_interval_seconds`` until stopped.
    """
    setup_logging()
    settings = get_settings()

    logger.info(
        "counter_audit_worker_starting",
        interval_seconds=settings.counter_audit_interval_seconds,
    )
    await init_db()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("counter_audit_worker_shutdown_signal_received", signal=sig)
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    auditor = CounterAuditor()
    try:
        while not stop_event.is_set():
            try:
                await run_counter_audit(auditor)
            except Exception as e:
                logger.error("counter_audit_failed", error=str(e))

            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=settings.counter_audit_interval_seconds
                )
            except asyncio.TimeoutError:
                pass
    finally:
        await close_db()
        logger.info("counter_audit_worker_stopped")


def main() -> None:
    asyncio.run(start_counter_audit_worker())


if __name__ == "__main__":
    main()
