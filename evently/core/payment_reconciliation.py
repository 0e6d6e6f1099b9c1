"""
Payment Reconciliation Engine: ticket purchases and gateway settlements.

Purchases never hold seats. Seats for a paid event are reserved exactly once,
by the settlement delivery that wins the conditional transition into
COMPLETED. Deliveries are at-least-once and unordered, so every rule below
is expressed as a status-guarded update:

- COMPLETED is terminal
- PENDING -> FAILED
- FAILED -> COMPLETED (money moved late)
- PENDING never overwrites FAILED or COMPLETED

A payment that settles after the event filled up stays COMPLETED and is
flagged ``overbooked`` for an operator.
"""
import secrets
import time
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evently.config import get_settings
from evently.core.errors import (
    DomainError,
    EventFull,
    Forbidden,
    InvalidPurchase,
    OverbookedSettlement,
    PaymentNotFound,
)
from evently.core.event_store import EventStore, ReservationResult
from evently.core.payment_ledger import PaymentLedger
from evently.core.transactions import run_in_transaction
from evently.database.connection import get_session_factory
from evently.database.models import (
    MAX_AMOUNT,
    MAX_QUANTITY,
    NotificationKind,
    Payment,
    PaymentStatus,
)
from evently.integrations.notification_sink import (
    DatabaseNotificationSink,
    NotificationSink,
    notify_safely,
)
from evently.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EXTERNAL_STATUS_MAP: Dict[str, PaymentStatus] = {
    "berhasil": PaymentStatus.COMPLETED,
    "success": PaymentStatus.COMPLETED,
    "succeeded": PaymentStatus.COMPLETED,
    "completed": PaymentStatus.COMPLETED,
    "paid": PaymentStatus.COMPLETED,
    "settlement": PaymentStatus.COMPLETED,
    "pending": PaymentStatus.PENDING,
    "expired": PaymentStatus.FAILED,
    "dibatalkan": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "canceled": PaymentStatus.FAILED,
    "failed": PaymentStatus.FAILED,
    "deny": PaymentStatus.FAILED,
}


class SettlementOutcome:
    """Labels recorded for every settlement delivery."""

    COMPLETED = "completed"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    OVERBOOKED = "overbooked"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "payment_id": payment.id,
        "event_id": payment.event_id,
        "user_id": payment.user_id,
        "quantity": payment.quantity,
        "amount": payment.amount,
        "status": payment.status,
        "payment_method": payment.payment_method,
        "reference_id": payment.external_reference_id,
        "transaction_id": payment.external_transaction_id,
        "buyer_name": payment.buyer_name,
        "buyer_email": payment.buyer_email,
        "buyer_phone": payment.buyer_phone,
        "overbooked": payment.overbooked,
        "settled_at": payment.settled_at,
        "created_at": payment.created_at,
    }


class PaymentReconciliationEngine:
    """
    Owns every write to the payment ledger.

    The registration engine never touches payments; the only effect a
    payment has on an event is through ``try_reserve_seats`` at settlement.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        notification_sink: Optional[NotificationSink] = None,
    ):
        self.settings = get_settings()
        self._session_factory = session_factory
        self.notification_sink = notification_sink or DatabaseNotificationSink(session_factory)

        logger.info("payment_reconciliation_engine_initialized")

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @staticmethod
    def map_external_status(external_status: str) -> Optional[PaymentStatus]:
        """
        Map the gateway vocabulary to the internal tri-state.

        Returns:
            Optional[PaymentStatus]: None for statuses we do not act on
        """
        if not external_status:
            return None
        return EXTERNAL_STATUS_MAP.get(external_status.strip().lower())

    def _new_reference(self, event_id: str) -> str:
        epoch_ms = int(time.time() * 1000)
        prefix = self.settings.payment_reference_prefix
        return f"{prefix}-{event_id}-{epoch_ms}-{secrets.token_hex(3)}"

    def _validate_purchase(self, quantity: int, payment_method: str) -> None:
        """
        Validate purchase request parameters.

        Raises:
            InvalidPurchase: If validation fails
        """
        if quantity < 1:
            raise InvalidPurchase("Quantity must be at least 1")
        if quantity > MAX_QUANTITY:
            raise InvalidPurchase("Quantity is too large")

        accepted = self.settings.get_payment_methods_list()
        if payment_method not in accepted:
            raise InvalidPurchase(
                f"Unsupported payment method. Must be one of: {', '.join(accepted)}"
            )

    async def initiate_purchase(
        self,
        event_id: str,
        user_id: str,
        quantity: int,
        payment_method: str,
        buyer_name: Optional[str] = None,
        buyer_email: Optional[str] = None,
        buyer_phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a PENDING payment for a paid event.

        No seat is reserved. The availability check here is advisory only;
        the authoritative check happens when the payment settles.

        Args:
            event_id: Event identifier
            user_id: Purchasing user
            quantity: Seats to buy
            payment_method: One of the configured payment methods
            buyer_name: Optional buyer name passed to the gateway
            buyer_email: Optional buyer email
            buyer_phone: Optional buyer phone

        Returns:
            Dict[str, Any]: The payment, including its gateway reference id

        Raises:
            InvalidPurchase: Bad quantity, unknown method or free event
            EventNotFound: If the event does not exist
            EventFull: If the event is already visibly sold out
        """
        correlation_id = uuid.uuid4()

        logger.info(
            "purchase_started",
            correlation_id=str(correlation_id),
            event_id=event_id,
            user_id=user_id,
            quantity=quantity,
            payment_method=payment_method,
        )

        self._validate_purchase(quantity, payment_method)

        async def work(db: AsyncSession) -> Dict[str, Any]:
            event = await EventStore(db).get_event(event_id)
            if event.ticket_price <= 0:
                raise InvalidPurchase("This is a free event, no payment required")

            if event.capacity is not None and event.attendee_count + quantity > event.capacity:
                raise EventFull(event_id, requested=quantity)

            amount = event.ticket_price * quantity
            if amount > MAX_AMOUNT:
                raise InvalidPurchase("Order total is too large")

            payments = PaymentLedger(db)
            payment = await payments.create(
                event_id=event_id,
                user_id=user_id,
                quantity=quantity,
                amount=amount,
                payment_method=payment_method,
                external_reference_id=self._new_reference(event_id),
                buyer_name=buyer_name,
                buyer_email=buyer_email,
                buyer_phone=buyer_phone,
            )
            await payments.record_event(
                payment_id=payment.id,
                event_type="payment.created",
                event_data={
                    "quantity": quantity,
                    "amount": amount,
                    "payment_method": payment_method,
                    "status": PaymentStatus.PENDING.value,
                },
                correlation_id=correlation_id,
            )
            return payment_to_dict(payment)

        try:
            result = await run_in_transaction(self.session_factory, "initiate_purchase", work)
        except DomainError as e:
            logger.info(
                "purchase_rejected",
                correlation_id=str(correlation_id),
                event_id=event_id,
                user_id=user_id,
                error_code=e.code.value,
            )
            raise

        logger.info(
            "purchase_created",
            correlation_id=str(correlation_id),
            payment_id=result["payment_id"],
            reference_id=result["reference_id"],
            amount=result["amount"],
        )
        return result

    async def apply_settlement(
        self,
        reference_id: str,
        external_status: str,
        external_tx_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fold one gateway delivery into the payment and seat counter.

        Safe under duplicate, concurrent and out-of-order delivery: the
        status guard and the seat reservation commit in one transaction.

        Args:
            reference_id: Gateway reference id of the payment
            external_status: Gateway status string
            external_tx_id: Gateway transaction id, kept for audit

        Returns:
            Dict[str, Any]: Outcome label and the payment's resulting state

        Raises:
            PaymentNotFound: If no payment has this reference
        """
        correlation_id = uuid.uuid4()
        start_time = time.perf_counter()
        target = self.map_external_status(external_status)

        logger.info(
            "settlement_received",
            correlation_id=str(correlation_id),
            reference_id=reference_id,
            external_status=external_status,
            external_tx_id=external_tx_id,
        )

        async def work(db: AsyncSession) -> Dict[str, Any]:
            payments = PaymentLedger(db)
            events = EventStore(db)

            payment = await payments.find_by_reference(reference_id)
            if payment is None:
                raise PaymentNotFound(reference_id)
            previous_status = payment.status

            if target is None:
                outcome = SettlementOutcome.IGNORED
            elif target is PaymentStatus.COMPLETED:
                if await payments.mark_completed(reference_id, external_tx_id):
                    reservation = await events.try_reserve_seats(
                        payment.event_id, payment.quantity
                    )
                    metrics.record_seat_reservation(reservation.value)
                    if reservation is ReservationResult.RESERVED:
                        outcome = SettlementOutcome.COMPLETED
                    else:
                        await payments.set_overbooked(payment.id, True)
                        outcome = SettlementOutcome.OVERBOOKED
                else:
                    outcome = SettlementOutcome.DUPLICATE
            elif target is PaymentStatus.FAILED:
                if await payments.mark_failed(reference_id, external_tx_id):
                    outcome = SettlementOutcome.FAILED
                elif previous_status == PaymentStatus.FAILED.value:
                    outcome = SettlementOutcome.DUPLICATE
                else:
                    outcome = SettlementOutcome.UNCHANGED
            else:
                outcome = SettlementOutcome.UNCHANGED

            await payments.record_event(
                payment_id=payment.id,
                event_type=f"settlement.{outcome}",
                event_data={
                    "external_status": external_status,
                    "external_tx_id": external_tx_id,
                    "previous_status": previous_status,
                },
                correlation_id=correlation_id,
            )

            settled = await payments.get(payment.id)
            event = await events.find_event(payment.event_id)
            return {
                **payment_to_dict(settled),
                "outcome": outcome,
                "previous_status": previous_status,
                "event_name": event.name if event else None,
                "organizer_id": event.organizer_id if event else None,
            }

        try:
            result = await run_in_transaction(self.session_factory, "apply_settlement", work)
        except DomainError as e:
            logger.warning(
                "settlement_rejected",
                correlation_id=str(correlation_id),
                reference_id=reference_id,
                error_code=e.code.value,
            )
            raise

        outcome = result["outcome"]
        metrics.record_settlement(outcome, time.perf_counter() - start_time)

        logger.info(
            "settlement_applied",
            correlation_id=str(correlation_id),
            reference_id=reference_id,
            payment_id=result["payment_id"],
            outcome=outcome,
            status=result["status"],
        )

        if outcome == SettlementOutcome.OVERBOOKED:
            anomaly = OverbookedSettlement(reference_id, result["event_id"], result["quantity"])
            result["anomaly"] = anomaly.to_dict()
            logger.warning(
                "overbooked_settlement",
                correlation_id=str(correlation_id),
                reference_id=reference_id,
                event_id=result["event_id"],
                quantity=result["quantity"],
            )
            await self._refresh_overbooked_gauge()

        await self._notify_settlement(result)
        return result

    async def _notify_settlement(self, result: Dict[str, Any]) -> None:
        outcome = result["outcome"]
        event_label = result["event_name"] or "your event"

        if outcome in (SettlementOutcome.COMPLETED, SettlementOutcome.OVERBOOKED):
            await notify_safely(
                self.notification_sink,
                result["user_id"],
                NotificationKind.PAYMENT_COMPLETED,
                result["event_id"],
                f'Payment for {result["quantity"]} ticket(s) to "{event_label}" completed.',
            )
        elif outcome == SettlementOutcome.FAILED:
            await notify_safely(
                self.notification_sink,
                result["user_id"],
                NotificationKind.PAYMENT_FAILED,
                result["event_id"],
                f'Payment for "{event_label}" failed or expired.',
            )

        if outcome == SettlementOutcome.OVERBOOKED and result["organizer_id"]:
            await notify_safely(
                self.notification_sink,
                result["organizer_id"],
                NotificationKind.OVERBOOKED_SETTLEMENT,
                result["event_id"],
                f'Payment {result["reference_id"]} settled for {result["quantity"]} seat(s) '
                f'but "{event_label}" is full. Please decide whether to honor or refund it.',
            )

    async def retry_overbooked_settlement(self, reference_id: str) -> Dict[str, Any]:
        """
        Try to reserve seats for an overbooked payment again.

        Clears the flag only if the reservation succeeds.

        Raises:
            PaymentNotFound: If no payment has this reference
            OverbookedSettlement: If the event still has no room
        """
        correlation_id = uuid.uuid4()

        async def work(db: AsyncSession) -> Dict[str, Any]:
            payments = PaymentLedger(db)
            events = EventStore(db)

            payment = await payments.find_by_reference(reference_id)
            if payment is None:
                raise PaymentNotFound(reference_id)

            if not await payments.set_overbooked(payment.id, False):
                return {**payment_to_dict(payment), "outcome": SettlementOutcome.UNCHANGED}

            reservation = await events.try_reserve_seats(payment.event_id, payment.quantity)
            metrics.record_seat_reservation(reservation.value)
            if reservation is not ReservationResult.RESERVED:
                raise OverbookedSettlement(reference_id, payment.event_id, payment.quantity)

            await payments.record_event(
                payment_id=payment.id,
                event_type="settlement.overbooked_resolved",
                event_data={"quantity": payment.quantity},
                correlation_id=correlation_id,
            )
            resolved = await payments.get(payment.id)
            return {**payment_to_dict(resolved), "outcome": SettlementOutcome.COMPLETED}

        try:
            result = await run_in_transaction(
                self.session_factory, "retry_overbooked_settlement", work
            )
        except OverbookedSettlement:
            logger.warning("overbooked_settlement_still_unresolved", reference_id=reference_id)
            raise

        logger.info(
            "overbooked_settlement_retried",
            correlation_id=str(correlation_id),
            reference_id=reference_id,
            outcome=result["outcome"],
        )
        await self._refresh_overbooked_gauge()
        return result

    async def list_overbooked_settlements(self) -> List[Dict[str, Any]]:
        async def work(db: AsyncSession) -> List[Dict[str, Any]]:
            return [payment_to_dict(p) for p in await PaymentLedger(db).list_overbooked()]

        overbooked = await run_in_transaction(
            self.session_factory, "list_overbooked_settlements", work
        )
        metrics.set_overbooked_open(len(overbooked))
        return overbooked

    async def _refresh_overbooked_gauge(self) -> None:
        """Best-effort: runs after the settlement has committed."""
        try:
            await self.list_overbooked_settlements()
        except Exception as e:
            logger.warning("overbooked_gauge_refresh_failed", error=str(e))

    async def get_payment(self, payment_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Return a payment with its settlement audit trail.

        Raises:
            PaymentNotFound: If the payment does not exist
            Forbidden: If ``actor_id`` is given and does not own the payment
        """

        async def work(db: AsyncSession) -> Dict[str, Any]:
            payments = PaymentLedger(db)
            payment = await payments.get(payment_id)
            if payment is None:
                raise PaymentNotFound(payment_id)
            if actor_id is not None and payment.user_id != actor_id:
                raise Forbidden("You can only view your own payments")

            history = await payments.list_events(payment.id)
            return {
                **payment_to_dict(payment),
                "events": [
                    {
                        "event_type": e.event_type,
                        "event_data": e.event_data,
                        "created_at": e.created_at,
                    }
                    for e in history
                ],
            }

        return await run_in_transaction(self.session_factory, "get_payment", work)

    async def list_user_payments(self, user_id: str) -> List[Dict[str, Any]]:
        async def work(db: AsyncSession) -> List[Dict[str, Any]]:
            return [payment_to_dict(p) for p in await PaymentLedger(db).list_for_user(user_id)]

        return await run_in_transaction(self.session_factory, "list_user_payments", work)

    async def has_paid(self, event_id: str, user_id: str) -> Dict[str, Any]:
        """Check whether the user holds a completed payment for the event."""

        async def work(db: AsyncSession) -> Dict[str, Any]:
            payment = await PaymentLedger(db).find_completed(event_id, user_id)
            return {
                "event_id": event_id,
                "user_id": user_id,
                "has_paid": payment is not None,
                "payment": payment_to_dict(payment) if payment else None,
            }

        return await run_in_transaction(self.session_factory, "has_paid", work)
