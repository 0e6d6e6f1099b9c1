"""
Registration Ledger: per-(event, user) registration rows.

State changes are conditional UPDATE/DELETE statements keyed on the
expected current status, so a concurrent change shows up as a zero
rowcount instead of a lost update.
"""
from typing import List, Optional

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from evently.core.errors import AlreadyRegistered
from evently.database.models import (
    Registration,
    RegistrationRole,
    RegistrationStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = (RegistrationStatus.PENDING.value, RegistrationStatus.CONFIRMED.value)


class RegistrationLedger:
    """Session-bound access to registration rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find(self, event_id: str, user_id: str) -> Optional[Registration]:
        stmt = (
            select(Registration)
            .where(Registration.event_id == event_id, Registration.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def insert(
        self,
        event_id: str,
        user_id: str,
        status: RegistrationStatus,
        role: RegistrationRole = RegistrationRole.ATTENDEE,
    ) -> Registration:
        """
        Insert a new row.

        Raises:
            AlreadyRegistered: If a concurrent request created the pair first
        """
        now = utcnow()
        row = Registration(
            event_id=event_id,
            user_id=user_id,
            role=role.value,
            status=status.value,
            registered_at=now,
            updated_at=now,
        )
        self.db.add(row)
        try:
            await self.db.flush()
        except IntegrityError as e:
            logger.info("registration_insert_conflict", event_id=event_id, user_id=user_id)
            raise AlreadyRegistered(event_id, user_id) from e
        return row

    async def reactivate(self, registration_id: str, status: RegistrationStatus) -> bool:
        """Move a REJECTED row back into the flow, in place."""
        now = utcnow()
        stmt = (
            update(Registration)
            .where(
                Registration.id == registration_id,
                Registration.status == RegistrationStatus.REJECTED.value,
            )
            .values(
                status=status.value,
                role=RegistrationRole.ATTENDEE.value,
                registered_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def transition(
        self,
        event_id: str,
        user_id: str,
        from_status: RegistrationStatus,
        to_status: RegistrationStatus,
    ) -> bool:
        """Change status only if the row is currently in ``from_status``."""
        stmt = (
            update(Registration)
            .where(
                Registration.event_id == event_id,
                Registration.user_id == user_id,
                Registration.status == from_status.value,
            )
            .values(status=to_status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def delete_confirmed(self, registration_id: str) -> bool:
        """Delete the row only while it is still CONFIRMED."""
        stmt = (
            delete(Registration)
            .where(
                Registration.id == registration_id,
                Registration.status == RegistrationStatus.CONFIRMED.value,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def list_for_event(
        self, event_id: str, status: Optional[RegistrationStatus] = None
    ) -> List[Registration]:
        stmt = select(Registration).where(Registration.event_id == event_id)
        if status is not None:
            stmt = stmt.where(Registration.status == status.value)
        stmt = stmt.order_by(Registration.registered_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_for_user(self, user_id: str) -> List[Registration]:
        stmt = (
            select(Registration)
            .where(Registration.user_id == user_id)
            .order_by(Registration.registered_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_confirmed_attendees(self, event_id: str) -> int:
        """Seats occupied by registrations: CONFIRMED rows with the ATTENDEE role."""
        stmt = select(func.count(Registration.id)).where(
            Registration.event_id == event_id,
            Registration.role == RegistrationRole.ATTENDEE.value,
            Registration.status == RegistrationStatus.CONFIRMED.value,
        )
        return int(await self.db.scalar(stmt) or 0)
