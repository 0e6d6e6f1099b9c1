"""
Event Store: event lookup and the atomic seat reservation primitive.

``try_reserve_seats`` and ``release_seats`` are the only code paths that
change ``events.attendee_count``. Both are single conditional UPDATE
statements, so the capacity check and the increment are evaluated by the
database as one step (row lock on PostgreSQL, database write lock on SQLite).
"""
from enum import Enum
from typing import Optional

import structlog
from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from evently.core.errors import EventNotFound
from evently.database.models import (
    MAX_AMOUNT,
    Event,
    Registration,
    RegistrationRole,
    RegistrationStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


class ReservationResult(Enum):
    """Outcome of an atomic seat reservation."""

    RESERVED = "reserved"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    NOT_FOUND = "not_found"


class EventStore:
    """Session-bound access to events and their seat counter."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_event(self, event_id: str) -> Optional[Event]:
        """Return the event with fresh column values, or None."""
        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_event(self, event_id: str) -> Event:
        """
        Return the event.

        Raises:
            EventNotFound: If the event does not exist
        """
        found = await self.find_event(event_id)
        if found is None:
            raise EventNotFound(event_id)
        return found

    async def create_event(
        self,
        name: str,
        organizer_id: str,
        capacity: Optional[int] = None,
        require_approval: bool = False,
        ticket_price: int = 0,
    ) -> Event:
        """
        Create an event and record its organizer.

        The organizer row is CONFIRMED with the ORGANIZER role and never
        occupies a seat.
        """
        if capacity is not None and capacity < 1:
            raise ValueError("Capacity must be positive")
        if ticket_price < 0:
            raise ValueError("Ticket price cannot be negative")
        if ticket_price > MAX_AMOUNT:
            raise ValueError("Ticket price is too large")

        created = Event(
            name=name,
            organizer_id=organizer_id,
            capacity=capacity,
            attendee_count=0,
            require_approval=require_approval,
            ticket_price=ticket_price,
        )
        self.db.add(created)
        await self.db.flush()

        self.db.add(
            Registration(
                event_id=created.id,
                user_id=organizer_id,
                role=RegistrationRole.ORGANIZER.value,
                status=RegistrationStatus.CONFIRMED.value,
            )
        )
        await self.db.flush()

        logger.info(
            "event_created",
            event_id=created.id,
            organizer_id=organizer_id,
            capacity=capacity,
            require_approval=require_approval,
            ticket_price=ticket_price,
        )
        return created

    async def try_reserve_seats(self, event_id: str, seats: int) -> ReservationResult:
        """
        Increment the counter by ``seats`` only if capacity allows it.

        Args:
            event_id: Event identifier
            seats: Number of seats to reserve (positive)

        Returns:
            ReservationResult: RESERVED, CAPACITY_EXCEEDED or NOT_FOUND
        """
        if seats < 1:
            raise ValueError("seats must be positive")

        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .where(
                or_(
                    Event.capacity.is_(None),
                    Event.attendee_count + seats <= Event.capacity,
                )
            )
            .values(attendee_count=Event.attendee_count + seats, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 1:
            logger.info("seats_reserved", event_id=event_id, seats=seats)
            return ReservationResult.RESERVED

        exists = await self.db.scalar(select(Event.id).where(Event.id == event_id))
        if exists is None:
            logger.warning("seat_reservation_event_missing", event_id=event_id)
            return ReservationResult.NOT_FOUND

        logger.info("seat_reservation_capacity_exceeded", event_id=event_id, seats=seats)
        return ReservationResult.CAPACITY_EXCEEDED

    async def release_seats(self, event_id: str, seats: int) -> bool:
        """
        Decrement the counter by ``seats``, floored at zero.

        Returns:
            bool: False if the event no longer exists
        """
        if seats < 1:
            raise ValueError("seats must be positive")

        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .values(
                attendee_count=case(
                    (Event.attendee_count >= seats, Event.attendee_count - seats),
                    else_=0,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        released = result.rowcount == 1
        logger.info("seats_released", event_id=event_id, seats=seats, released=released)
        return released
