"""
Registration Engine: register, unregister, approve and reject.

Each operation is one unit of work:
1. Load and validate the event and the (event, user) row
2. Reserve or release seats through the atomic Event Store primitive
3. Persist the registration transition
4. Commit
5. Notify (best effort, after commit)

Seats are reserved only when a registration becomes CONFIRMED, so PENDING
requests never consume capacity.
"""
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evently.config import get_settings
from evently.core.errors import (
    AlreadyRegistered,
    DomainError,
    EventFull,
    EventNotFound,
    Forbidden,
    PaymentRequired,
    RegistrationNotFound,
)
from evently.core.event_store import EventStore, ReservationResult
from evently.core.registration_ledger import ACTIVE_STATUSES, RegistrationLedger
from evently.core.transactions import run_in_transaction
from evently.database.connection import get_session_factory
from evently.database.models import (
    Event,
    NotificationKind,
    Registration,
    RegistrationRole,
    RegistrationStatus,
)
from evently.integrations.notification_sink import (
    DatabaseNotificationSink,
    NotificationSink,
    notify_safely,
)
from evently.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def registration_to_dict(row: Registration) -> Dict[str, Any]:
    return {
        "registration_id": row.id,
        "event_id": row.event_id,
        "user_id": row.user_id,
        "role": row.role,
        "status": row.status,
        "registered_at": row.registered_at,
        "updated_at": row.updated_at,
    }


def event_to_dict(event: Event) -> Dict[str, Any]:
    available = None if event.capacity is None else max(event.capacity - event.attendee_count, 0)
    return {
        "event_id": event.id,
        "name": event.name,
        "organizer_id": event.organizer_id,
        "capacity": event.capacity,
        "attendee_count": event.attendee_count,
        "available_seats": available,
        "require_approval": event.require_approval,
        "ticket_price": event.ticket_price,
        "created_at": event.created_at,
    }


class RegistrationEngine:
    """
    Orchestrates registration state and the seat counter.

    The engine owns its transactions; callers pass identifiers only.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        notification_sink: Optional[NotificationSink] = None,
    ):
        """
        Initialize registration engine.

        Args:
            session_factory: Optional session factory (defaults to the global one)
            notification_sink: Optional sink (defaults to the notifications outbox)
        """
        self.settings = get_settings()
        self._session_factory = session_factory
        self.notification_sink = notification_sink or DatabaseNotificationSink(session_factory)

        logger.info("registration_engine_initialized")

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        **log_context: Any,
    ) -> T:
        """Run a unit of work, recording its outcome and duration."""
        start_time = time.perf_counter()
        try:
            result = await run_in_transaction(self.session_factory, operation, work)
        except DomainError as e:
            metrics.record_registration_operation(
                operation, e.code.value.lower(), time.perf_counter() - start_time
            )
            log = logger.info if e.expected else logger.error
            log(f"{operation}_rejected", error_code=e.code.value, **log_context)
            raise

        metrics.record_registration_operation(
            operation, "success", time.perf_counter() - start_time
        )
        return result

    @staticmethod
    async def _reserve_one(events: EventStore, event_id: str) -> None:
        result = await events.try_reserve_seats(event_id, 1)
        metrics.record_seat_reservation(result.value)
        if result is ReservationResult.CAPACITY_EXCEEDED:
            raise EventFull(event_id)
        if result is ReservationResult.NOT_FOUND:
            raise EventNotFound(event_id)

    @staticmethod
    def _ensure_organizer(event: Event, actor_id: str) -> None:
        if event.organizer_id != actor_id:
            raise Forbidden()

    async def _notify(
        self, user_id: str, kind: NotificationKind, event_id: Optional[str], text: str
    ) -> None:
        await notify_safely(self.notification_sink, user_id, kind, event_id, text)

    async def register(self, event_id: str, user_id: str) -> Dict[str, Any]:
        """
        Register a user for a free event.

        Args:
            event_id: Event identifier
            user_id: Registering user

        Returns:
            Dict[str, Any]: The registration and the event's attendee count

        Raises:
            EventNotFound: If the event does not exist
            PaymentRequired: If the event has a ticket price
            AlreadyRegistered: If a PENDING or CONFIRMED row exists
            EventFull: If no seat is left for an immediate confirmation
        """
        logger.info("registration_started", event_id=event_id, user_id=user_id)

        async def work(db: AsyncSession) -> Dict[str, Any]:
            events = EventStore(db)
            ledger = RegistrationLedger(db)

            event = await events.get_event(event_id)
            if event.ticket_price > 0:
                raise PaymentRequired(event_id)

            existing = await ledger.find(event_id, user_id)
            if existing is not None and existing.status in ACTIVE_STATUSES:
                raise AlreadyRegistered(event_id, user_id, status=existing.status)

            target = (
                RegistrationStatus.PENDING
                if event.require_approval
                else RegistrationStatus.CONFIRMED
            )
            if target is RegistrationStatus.CONFIRMED:
                await self._reserve_one(events, event_id)

            if existing is None:
                await ledger.insert(event_id, user_id, target)
            elif not await ledger.reactivate(existing.id, target):
                # Another request reactivated the row first
                raise AlreadyRegistered(event_id, user_id)

            row = await ledger.find(event_id, user_id)
            fresh = await events.get_event(event_id)
            return {
                **registration_to_dict(row),
                "attendee_count": fresh.attendee_count,
                "reregistered": existing is not None,
                "event_name": fresh.name,
                "organizer_id": fresh.organizer_id,
            }

        result = await self._run("register", work, event_id=event_id, user_id=user_id)

        logger.info(
            "registration_completed",
            event_id=event_id,
            user_id=user_id,
            status=result["status"],
            reregistered=result["reregistered"],
            attendee_count=result["attendee_count"],
        )

        if result["status"] == RegistrationStatus.CONFIRMED.value:
            await self._notify(
                user_id,
                NotificationKind.REGISTRATION_CONFIRMED,
                event_id,
                f'Your registration for "{result["event_name"]}" is confirmed.',
            )
        else:
            await self._notify(
                user_id,
                NotificationKind.REGISTRATION_PENDING,
                event_id,
                f'Your registration for "{result["event_name"]}" is waiting for approval.',
            )
            await self._notify(
                result["organizer_id"],
                NotificationKind.REGISTRATION_REQUESTED,
                event_id,
                f'A new registration for "{result["event_name"]}" needs your approval.',
            )
        return result

    async def unregister(self, event_id: str, user_id: str) -> Dict[str, Any]:
        """
        Cancel a CONFIRMED registration and release its seat.

        The row delete and the seat release commit together.

        Raises:
            EventNotFound: If the event no longer exists (nothing is mutated)
            RegistrationNotFound: If there is no CONFIRMED row
            Forbidden: If the user organizes the event
        """
        logger.info("unregistration_started", event_id=event_id, user_id=user_id)

        async def work(db: AsyncSession) -> Dict[str, Any]:
            events = EventStore(db)
            ledger = RegistrationLedger(db)

            event = await events.get_event(event_id)

            row = await ledger.find(event_id, user_id)
            if row is None:
                raise RegistrationNotFound(event_id, user_id)
            if row.status != RegistrationStatus.CONFIRMED.value:
                raise RegistrationNotFound(
                    event_id, user_id, message="Only confirmed registrations can be cancelled"
                )
            if row.role == RegistrationRole.ORGANIZER.value:
                raise Forbidden("Organizers cannot unregister from their own event")

            if not await ledger.delete_confirmed(row.id):
                raise RegistrationNotFound(event_id, user_id)

            seats_released = 0
            if row.role == RegistrationRole.ATTENDEE.value:
                await events.release_seats(event_id, 1)
                seats_released = 1

            fresh = await events.get_event(event_id)
            return {
                "event_id": event_id,
                "user_id": user_id,
                "seats_released": seats_released,
                "attendee_count": fresh.attendee_count,
                "event_name": event.name,
            }

        result = await self._run("unregister", work, event_id=event_id, user_id=user_id)
        if result["seats_released"]:
            metrics.record_seats_released(result["seats_released"])

        logger.info(
            "unregistration_completed",
            event_id=event_id,
            user_id=user_id,
            attendee_count=result["attendee_count"],
        )

        await self._notify(
            user_id,
            NotificationKind.REGISTRATION_CANCELLED,
            event_id,
            f'Your registration for "{result["event_name"]}" has been cancelled.',
        )
        return result

    async def approve(self, event_id: str, user_id: str, actor_id: str) -> Dict[str, Any]:
        """
        Approve a PENDING registration, reserving its seat.

        On EventFull the row stays PENDING.

        Raises:
            EventNotFound: If the event does not exist
            Forbidden: If the actor is not the organizer
            RegistrationNotFound: If there is no PENDING row
            EventFull: If the event has no seat left
        """

        async def work(db: AsyncSession) -> Dict[str, Any]:
            events = EventStore(db)
            ledger = RegistrationLedger(db)

            event = await events.get_event(event_id)
            self._ensure_organizer(event, actor_id)

            row = await ledger.find(event_id, user_id)
            if row is None or row.status != RegistrationStatus.PENDING.value:
                raise RegistrationNotFound(
                    event_id, user_id, message="No pending registration found"
                )

            if not await ledger.transition(
                event_id, user_id, RegistrationStatus.PENDING, RegistrationStatus.CONFIRMED
            ):
                raise RegistrationNotFound(
                    event_id, user_id, message="No pending registration found"
                )
            if row.role == RegistrationRole.ATTENDEE.value:
                await self._reserve_one(events, event_id)

            row = await ledger.find(event_id, user_id)
            fresh = await events.get_event(event_id)
            return {
                **registration_to_dict(row),
                "attendee_count": fresh.attendee_count,
                "event_name": fresh.name,
            }

        result = await self._run(
            "approve", work, event_id=event_id, user_id=user_id, actor_id=actor_id
        )

        logger.info(
            "registration_approved",
            event_id=event_id,
            user_id=user_id,
            actor_id=actor_id,
            attendee_count=result["attendee_count"],
        )

        await self._notify(
            user_id,
            NotificationKind.REGISTRATION_APPROVED,
            event_id,
            f'Your registration for "{result["event_name"]}" has been approved.',
        )
        return result

    async def reject(self, event_id: str, user_id: str, actor_id: str) -> Dict[str, Any]:
        """
        Reject a PENDING registration. No seat changes hands.

        Raises:
            EventNotFound: If the event does not exist
            Forbidden: If the actor is not the organizer
            RegistrationNotFound: If there is no PENDING row
        """

        async def work(db: AsyncSession) -> Dict[str, Any]:
            events = EventStore(db)
            ledger = RegistrationLedger(db)

            event = await events.get_event(event_id)
            self._ensure_organizer(event, actor_id)

            if not await ledger.transition(
                event_id, user_id, RegistrationStatus.PENDING, RegistrationStatus.REJECTED
            ):
                raise RegistrationNotFound(
                    event_id, user_id, message="No pending registration found"
                )

            row = await ledger.find(event_id, user_id)
            return {
                **registration_to_dict(row),
                "attendee_count": event.attendee_count,
                "event_name": event.name,
            }

        result = await self._run(
            "reject", work, event_id=event_id, user_id=user_id, actor_id=actor_id
        )

        logger.info("registration_rejected", event_id=event_id, user_id=user_id, actor_id=actor_id)

        await self._notify(
            user_id,
            NotificationKind.REGISTRATION_REJECTED,
            event_id,
            f'Your registration for "{result["event_name"]}" was not approved.',
        )
        return result

    async def get_registration(self, event_id: str, user_id: str) -> Dict[str, Any]:
        """Return the caller's registration for an event."""

        async def work(db: AsyncSession) -> Dict[str, Any]:
            row = await RegistrationLedger(db).find(event_id, user_id)
            if row is None:
                raise RegistrationNotFound(event_id, user_id)
            return registration_to_dict(row)

        return await run_in_transaction(self.session_factory, "get_registration", work)

    async def list_registrations(
        self,
        event_id: str,
        actor_id: str,
        status: Optional[RegistrationStatus] = None,
    ) -> List[Dict[str, Any]]:
        """List an event's registrations. Organizer only."""

        async def work(db: AsyncSession) -> List[Dict[str, Any]]:
            event = await EventStore(db).get_event(event_id)
            self._ensure_organizer(event, actor_id)
            rows = await RegistrationLedger(db).list_for_event(event_id, status)
            return [registration_to_dict(row) for row in rows]

        return await run_in_transaction(self.session_factory, "list_registrations", work)

    async def list_user_registrations(self, user_id: str) -> List[Dict[str, Any]]:
        async def work(db: AsyncSession) -> List[Dict[str, Any]]:
            rows = await RegistrationLedger(db).list_for_user(user_id)
            return [registration_to_dict(row) for row in rows]

        return await run_in_transaction(self.session_factory, "list_user_registrations", work)

    async def create_event(
        self,
        organizer_id: str,
        name: str,
        capacity: Optional[int] = None,
        require_approval: bool = False,
        ticket_price: int = 0,
    ) -> Dict[str, Any]:
        """Create an event with its organizer row."""

        async def work(db: AsyncSession) -> Dict[str, Any]:
            created = await EventStore(db).create_event(
                name=name,
                organizer_id=organizer_id,
                capacity=capacity,
                require_approval=require_approval,
                ticket_price=ticket_price,
            )
            return event_to_dict(created)

        return await run_in_transaction(self.session_factory, "create_event", work)

    async def get_event(self, event_id: str) -> Dict[str, Any]:
        async def work(db: AsyncSession) -> Dict[str, Any]:
            return event_to_dict(await EventStore(db).get_event(event_id))

        return await run_in_transaction(self.session_factory, "get_event", work)
