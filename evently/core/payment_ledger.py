"""
Payment Ledger: ticket purchases and their settlement audit trail.

Settlement transitions are conditional on the current status. The
COMPLETED transition in particular is ``UPDATE ... WHERE status <> 'COMPLETED'``:
of two concurrent deliveries only one sees rowcount 1, and only that one
goes on to reserve seats.
"""
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from evently.database.models import Payment, PaymentEvent, PaymentStatus, utcnow

logger = structlog.get_logger(__name__)


class PaymentLedger:
    """Session-bound access to payment rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        event_id: str,
        user_id: str,
        quantity: int,
        amount: int,
        payment_method: str,
        external_reference_id: str,
        buyer_name: Optional[str] = None,
        buyer_email: Optional[str] = None,
        buyer_phone: Optional[str] = None,
    ) -> Payment:
        now = utcnow()
        payment = Payment(
            event_id=event_id,
            user_id=user_id,
            quantity=quantity,
            amount=amount,
            status=PaymentStatus.PENDING.value,
            payment_method=payment_method,
            external_reference_id=external_reference_id,
            buyer_name=buyer_name,
            buyer_email=buyer_email,
            buyer_phone=buyer_phone,
            overbooked=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def get(self, payment_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_reference(self, reference_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.external_reference_id == reference_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_completed(self, reference_id: str, transaction_id: Optional[str]) -> bool:
        """
        Transition into COMPLETED from any other status.

        Returns:
            bool: True only for the delivery that performed the transition
        """
        now = utcnow()
        stmt = (
            update(Payment)
            .where(
                Payment.external_reference_id == reference_id,
                Payment.status != PaymentStatus.COMPLETED.value,
            )
            .values(
                status=PaymentStatus.COMPLETED.value,
                external_transaction_id=func.coalesce(
                    transaction_id, Payment.external_transaction_id
                ),
                settled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def mark_failed(self, reference_id: str, transaction_id: Optional[str]) -> bool:
        """Transition PENDING into FAILED. COMPLETED and FAILED rows are left alone."""
        stmt = (
            update(Payment)
            .where(
                Payment.external_reference_id == reference_id,
                Payment.status == PaymentStatus.PENDING.value,
            )
            .values(
                status=PaymentStatus.FAILED.value,
                external_transaction_id=func.coalesce(
                    transaction_id, Payment.external_transaction_id
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def set_overbooked(self, payment_id: str, overbooked: bool) -> bool:
        """Set or clear the overbooked flag on a COMPLETED payment."""
        stmt = (
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.COMPLETED.value,
                Payment.overbooked.is_(not overbooked),
            )
            .values(overbooked=overbooked, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def record_event(
        self,
        payment_id: str,
        event_type: str,
        event_data: Dict[str, Any],
        correlation_id: str | uuid.UUID,
    ) -> None:
        """Append a row to the settlement audit trail."""
        await self.db.execute(
            insert(PaymentEvent).values(
                payment_id=payment_id,
                event_type=event_type,
                event_data=event_data,
                correlation_id=str(correlation_id),
                created_at=utcnow(),
            )
        )

    async def list_events(self, payment_id: str) -> List[PaymentEvent]:
        stmt = (
            select(PaymentEvent)
            .where(PaymentEvent.payment_id == payment_id)
            .order_by(PaymentEvent.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_overbooked(self) -> List[Payment]:
        stmt = (
            select(Payment)
            .where(
                Payment.status == PaymentStatus.COMPLETED.value,
                Payment.overbooked.is_(True),
            )
            .order_by(Payment.settled_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_for_user(self, user_id: str) -> List[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_completed(self, event_id: str, user_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(
                Payment.event_id == event_id,
                Payment.user_id == user_id,
                Payment.status == PaymentStatus.COMPLETED.value,
            )
            .order_by(Payment.settled_at)
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def sum_paid_seats(self, event_id: str) -> int:
        """Seats held by COMPLETED payments whose reservation succeeded."""
        stmt = select(func.coalesce(func.sum(Payment.quantity), 0)).where(
            Payment.event_id == event_id,
            Payment.status == PaymentStatus.COMPLETED.value,
            Payment.overbooked.is_(False),
        )
        return int(await self.db.scalar(stmt) or 0)
