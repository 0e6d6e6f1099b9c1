"""
Concurrency tests: many units of work against the same event at once.

Each coroutine opens its own session and connection, so the database is the
only thing serializing them.
"""
import asyncio

import pytest

from evently.core.counter_audit import CONSISTENT
from evently.core.errors import AlreadyRegistered, EventFull
from evently.core.payment_reconciliation import SettlementOutcome
from evently.database.models import RegistrationStatus

ORGANIZER_ID = "organizer-1"


def _split(results):
    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    return successes, failures


@pytest.mark.race
@pytest.mark.asyncio
async def test_last_seat_goes_to_exactly_one_user(registration_engine, make_event, counter_auditor):
    event = await make_event(capacity=1)

    results = await asyncio.gather(
        registration_engine.register(event["event_id"], "user-a"),
        registration_engine.register(event["event_id"], "user-b"),
        return_exceptions=True,
    )

    successes, failures = _split(results)
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], EventFull)

    audit = await counter_auditor.audit_event(event["event_id"])
    assert audit["cached_count"] == 1
    assert audit["status"] == CONSISTENT


@pytest.mark.race
@pytest.mark.asyncio
async def test_burst_never_exceeds_capacity(registration_engine, make_event, counter_auditor):
    """Twenty users, five seats."""
    event = await make_event(capacity=5)

    results = await asyncio.gather(
        *(registration_engine.register(event["event_id"], f"user-{i}") for i in range(20)),
        return_exceptions=True,
    )

    successes, failures = _split(results)
    assert len(successes) == 5
    assert len(failures) == 15
    assert all(isinstance(f, EventFull) for f in failures)

    audit = await counter_auditor.audit_event(event["event_id"])
    assert audit["cached_count"] == 5
    assert audit["confirmed_registrations"] == 5
    assert audit["within_capacity"] is True
    assert audit["status"] == CONSISTENT


@pytest.mark.race
@pytest.mark.asyncio
async def test_same_user_registering_concurrently_holds_one_seat(
    registration_engine, make_event, counter_auditor
):
    event = await make_event(capacity=10)

    results = await asyncio.gather(
        *(registration_engine.register(event["event_id"], "user-a") for _ in range(5)),
        return_exceptions=True,
    )

    successes, failures = _split(results)
    assert len(successes) == 1
    assert all(isinstance(f, AlreadyRegistered) for f in failures)

    audit = await counter_auditor.audit_event(event["event_id"])
    assert audit["cached_count"] == 1
    assert audit["status"] == CONSISTENT


@pytest.mark.race
@pytest.mark.asyncio
async def test_concurrent_approvals_respect_capacity(
    registration_engine, make_event, counter_auditor
):
    event = await make_event(capacity=2, require_approval=True)
    users = [f"user-{i}" for i in range(5)]
    for user_id in users:
        await registration_engine.register(event["event_id"], user_id)

    results = await asyncio.gather(
        *(
            registration_engine.approve(event["event_id"], user_id, actor_id=ORGANIZER_ID)
            for user_id in users
        ),
        return_exceptions=True,
    )

    successes, failures = _split(results)
    assert len(successes) == 2
    assert all(isinstance(f, EventFull) for f in failures)

    pending = await registration_engine.list_registrations(
        event["event_id"], ORGANIZER_ID, RegistrationStatus.PENDING
    )
    assert len(pending) == 3

    audit = await counter_auditor.audit_event(event["event_id"])
    assert audit["cached_count"] == 2
    assert audit["status"] == CONSISTENT


@pytest.mark.race
@pytest.mark.asyncio
async def test_unregister_and_register_interleave(
    registration_engine, make_event, counter_auditor
):
    event = await make_event(capacity=3)
    for user_id in ("user-a", "user-b", "user-c"):
        await registration_engine.register(event["event_id"], user_id)

    await asyncio.gather(
        registration_engine.unregister(event["event_id"], "user-a"),
        registration_engine.unregister(event["event_id"], "user-b"),
        registration_engine.register(event["event_id"], "user-d"),
        registration_engine.register(event["event_id"], "user-e"),
        registration_engine.register(event["event_id"], "user-f"),
        return_exceptions=True,
    )

    audit = await counter_auditor.audit_event(event["event_id"])
    assert audit["cached_count"] <= 3
    assert audit["status"] == CONSISTENT


@pytest.mark.race
@pytest.mark.asyncio
async def test_duplicate_success_callbacks_reserve_once(
    payment_engine, make_event, counter_auditor
):
    """Ten copies of the same success callback arrive at once."""
    event = await make_event(capacity=5, ticket_price=25000)
    payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 2, "qris")

    results = await asyncio.gather(
        *(
            payment_engine.apply_settlement(payment["reference_id"], "berhasil", "TRX-1")
            for _ in range(10)
        ),
    )

    outcomes = [r["outcome"] for r in results]
    assert outcomes.count(SettlementOutcome.COMPLETED) == 1
    assert outcomes.count(SettlementOutcome.DUPLICATE) == 9

    audit = await counter_auditor.audit_event(event["event_id"])
    assert audit["cached_count"] == 2
    assert audit["paid_seats"] == 2
    assert audit["status"] == CONSISTENT


@pytest.mark.race
@pytest.mark.asyncio
async def test_competing_settlements_for_last_seats(
    payment_engine, make_event, counter_auditor
):
    """Settlements that lose the race are flagged, never over-counted."""
    event = await make_event(capacity=3, ticket_price=25000)
    payments = [
        await payment_engine.initiate_purchase(event["event_id"], f"buyer-{i}", 1, "va")
        for i in range(6)
    ]

    results = await asyncio.gather(
        *(payment_engine.apply_settlement(p["reference_id"], "berhasil") for p in payments),
    )

    outcomes = [r["outcome"] for r in results]
    assert outcomes.count(SettlementOutcome.COMPLETED) == 3
    assert outcomes.count(SettlementOutcome.OVERBOOKED) == 3
    assert len(await payment_engine.list_overbooked_settlements()) == 3

    audit = await counter_auditor.audit_event(event["event_id"])
    assert audit["cached_count"] == 3
    assert audit["within_capacity"] is True
    assert audit["status"] == CONSISTENT
