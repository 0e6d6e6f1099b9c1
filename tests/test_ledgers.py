"""
Tests for the registration and payment ledgers' guarded transitions.
"""
import pytest

from evently.core.errors import AlreadyRegistered
from evently.core.payment_ledger import PaymentLedger
from evently.core.registration_ledger import RegistrationLedger
from evently.database.models import PaymentStatus, RegistrationStatus


@pytest.mark.unit
@pytest.mark.asyncio
async def test_insert_duplicate_pair_raises_already_registered(session_factory, make_event):
    event = await make_event()

    async with session_factory() as db:
        async with db.begin():
            await RegistrationLedger(db).insert(
                event["event_id"], "user-1", RegistrationStatus.CONFIRMED
            )

    with pytest.raises(AlreadyRegistered):
        async with session_factory() as db:
            async with db.begin():
                await RegistrationLedger(db).insert(
                    event["event_id"], "user-1", RegistrationStatus.PENDING
                )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transition_requires_expected_status(session_factory, make_event):
    event = await make_event(require_approval=True)

    async with session_factory() as db:
        async with db.begin():
            ledger = RegistrationLedger(db)
            await ledger.insert(event["event_id"], "user-1", RegistrationStatus.PENDING)

            assert await ledger.transition(
                event["event_id"], "user-1", RegistrationStatus.PENDING, RegistrationStatus.REJECTED
            )
            assert not await ledger.transition(
                event["event_id"],
                "user-1",
                RegistrationStatus.PENDING,
                RegistrationStatus.CONFIRMED,
            )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reactivate_only_from_rejected(session_factory, make_event):
    event = await make_event()

    async with session_factory() as db:
        async with db.begin():
            ledger = RegistrationLedger(db)
            row = await ledger.insert(event["event_id"], "user-1", RegistrationStatus.CONFIRMED)
            assert not await ledger.reactivate(row.id, RegistrationStatus.CONFIRMED)

            await ledger.transition(
                event["event_id"],
                "user-1",
                RegistrationStatus.CONFIRMED,
                RegistrationStatus.REJECTED,
            )
            assert await ledger.reactivate(row.id, RegistrationStatus.PENDING)

            refreshed = await ledger.find(event["event_id"], "user-1")
            assert refreshed.status == RegistrationStatus.PENDING.value


async def _create_payment(session_factory, event_id, reference="REF-1", quantity=2):
    async with session_factory() as db:
        async with db.begin():
            payment = await PaymentLedger(db).create(
                event_id=event_id,
                user_id="buyer-1",
                quantity=quantity,
                amount=1000 * quantity,
                payment_method="va",
                external_reference_id=reference,
            )
            return payment.id


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mark_completed_wins_once(session_factory, make_event):
    event = await make_event(ticket_price=1000)
    await _create_payment(session_factory, event["event_id"])

    async with session_factory() as db:
        async with db.begin():
            payments = PaymentLedger(db)
            assert await payments.mark_completed("REF-1", "trx-1") is True
            assert await payments.mark_completed("REF-1", "trx-2") is False

            payment = await payments.find_by_reference("REF-1")
            assert payment.status == PaymentStatus.COMPLETED.value
            assert payment.external_transaction_id == "trx-1"
            assert payment.settled_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mark_failed_only_from_pending(session_factory, make_event):
    event = await make_event(ticket_price=1000)
    await _create_payment(session_factory, event["event_id"])

    async with session_factory() as db:
        async with db.begin():
            payments = PaymentLedger(db)
            assert await payments.mark_failed("REF-1", None) is True
            assert await payments.mark_failed("REF-1", None) is False
            assert await payments.mark_completed("REF-1", "late") is True
            assert await payments.mark_failed("REF-1", None) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sum_paid_seats_excludes_overbooked(session_factory, make_event):
    event = await make_event(ticket_price=1000)
    first = await _create_payment(session_factory, event["event_id"], "REF-1", quantity=2)
    second = await _create_payment(session_factory, event["event_id"], "REF-2", quantity=3)
    await _create_payment(session_factory, event["event_id"], "REF-3", quantity=4)

    async with session_factory() as db:
        async with db.begin():
            payments = PaymentLedger(db)
            await payments.mark_completed("REF-1", None)
            await payments.mark_completed("REF-2", None)
            assert await payments.set_overbooked(second, True) is True
            assert await payments.set_overbooked(first, False) is False

            assert await payments.sum_paid_seats(event["event_id"]) == 2
            assert [p.id for p in await payments.list_overbooked()] == [second]
