"""
Counter audit: recompute each event's attendee counter from source rows.

Expected count for an event:
- CONFIRMED registrations with the ATTENDEE role
- plus quantities of COMPLETED payments whose seats were reserved

The audit only reports and records drift. It never repairs the counter.
"""
import time
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evently.core.errors import EventNotFound
from evently.core.event_store import EventStore
from evently.core.payment_ledger import PaymentLedger
from evently.core.registration_ledger import RegistrationLedger
from evently.core.transactions import run_in_transaction
from evently.database.connection import get_session_factory
from evently.database.models import CounterAudit, Event, utcnow
from evently.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CONSISTENT = "consistent"
DRIFTED = "drifted"


class CounterAuditor:
    """
    Compares ``events.attendee_count`` with the registration and payment ledgers.

    Each audited event gets a ``counter_audits`` row.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory
        logger.info("counter_auditor_initialized")

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @staticmethod
    async def _audit(db: AsyncSession, event_id: str) -> Dict[str, Any]:
        event = await EventStore(db).get_event(event_id)
        confirmed = await RegistrationLedger(db).count_confirmed_attendees(event_id)
        paid = await PaymentLedger(db).sum_paid_seats(event_id)

        expected = confirmed + paid
        discrepancy = event.attendee_count - expected
        status = CONSISTENT if discrepancy == 0 else DRIFTED

        audit = CounterAudit(
            event_id=event_id,
            cached_count=event.attendee_count,
            confirmed_registrations=confirmed,
            paid_seats=paid,
            discrepancy=discrepancy,
            status=status,
            audited_at=utcnow(),
        )
        db.add(audit)
        await db.flush()

        return {
            "event_id": event_id,
            "capacity": event.capacity,
            "cached_count": event.attendee_count,
            "confirmed_registrations": confirmed,
            "paid_seats": paid,
            "expected_count": expected,
            "discrepancy": discrepancy,
            "status": status,
            "within_capacity": event.capacity is None or event.attendee_count <= event.capacity,
        }

    async def audit_event(self, event_id: str) -> Dict[str, Any]:
        """
        Audit a single event.

        Args:
            event_id: Event identifier

        Returns:
            Dict[str, Any]: Cached vs. recomputed counter

        Raises:
            EventNotFound: If the event does not exist
        """
        report = await run_in_transaction(
            self.session_factory,
            "audit_event",
            lambda db: self._audit(db, event_id),
        )

        if report["status"] == DRIFTED:
            logger.warning("counter_drift_detected", **report)
        else:
            logger.info("counter_consistent", event_id=event_id, count=report["cached_count"])
        return report

    async def audit_all(self) -> Dict[str, Any]:
        """
        Audit every event.

        Returns:
            Dict[str, Any]: Summary with the drifted events
        """
        logger.info("counter_audit_started")

        async def list_event_ids(db: AsyncSession) -> List[str]:
            result = await db.execute(select(Event.id).order_by(Event.created_at))
            return list(result.scalars().all())

        event_ids = await run_in_transaction(
            self.session_factory, "list_events_for_audit", list_event_ids
        )

        drifted: List[Dict[str, Any]] = []
        for event_id in event_ids:
            try:
                report = await self.audit_event(event_id)
            except EventNotFound:
                logger.info("counter_audit_event_vanished", event_id=event_id)
                continue
            if report["status"] == DRIFTED:
                drifted.append(report)

        metrics.set_counter_audit_result(len(drifted), time.time())

        logger.info(
            "counter_audit_completed",
            audited=len(event_ids),
            drifted=len(drifted),
        )

        return {
            "audited": len(event_ids),
            "drifted": len(drifted),
            "discrepancies": drifted,
        }
