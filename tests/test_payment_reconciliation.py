"""
Tests for ticket purchases and settlement reconciliation.
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update

from evently.core.errors import (
    EventFull,
    EventNotFound,
    Forbidden,
    InvalidPurchase,
    OverbookedSettlement,
    PaymentNotFound,
)
from evently.core.payment_reconciliation import PaymentReconciliationEngine, SettlementOutcome
from evently.database.models import (
    MAX_QUANTITY,
    Event,
    NotificationKind,
    PaymentStatus,
)

ORGANIZER_ID = "organizer-1"
TICKET_PRICE = 50000


@pytest.fixture
def paid_event(make_event):
    async def _make(capacity=2):
        return await make_event(capacity=capacity, ticket_price=TICKET_PRICE, name="Paid Event")

    return _make


async def _set_capacity(session_factory, event_id: str, capacity: int) -> None:
    async with session_factory() as db:
        async with db.begin():
            await db.execute(update(Event).where(Event.id == event_id).values(capacity=capacity))


class TestStatusMapping:
    """Test suite for the gateway status vocabulary."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "external,expected",
        [
            ("berhasil", PaymentStatus.COMPLETED),
            ("SUCCESS", PaymentStatus.COMPLETED),
            (" paid ", PaymentStatus.COMPLETED),
            ("pending", PaymentStatus.PENDING),
            ("expired", PaymentStatus.FAILED),
            ("dibatalkan", PaymentStatus.FAILED),
            ("Cancelled", PaymentStatus.FAILED),
            ("refund_requested", None),
            ("", None),
        ],
    )
    def test_map_external_status(self, external, expected):
        assert PaymentReconciliationEngine.map_external_status(external) is expected


class TestInitiatePurchase:
    """Test suite for purchase creation."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_purchase_creates_pending_payment_without_seats(
        self, payment_engine, registration_engine, paid_event
    ):
        event = await paid_event(capacity=5)

        payment = await payment_engine.initiate_purchase(
            event["event_id"], "buyer-1", quantity=2, payment_method="qris",
            buyer_name="Ayu", buyer_email="ayu@example.com",
        )

        assert payment["status"] == PaymentStatus.PENDING.value
        assert payment["amount"] == 2 * TICKET_PRICE
        assert payment["overbooked"] is False
        assert payment["reference_id"].startswith(f"EVT-{event['event_id']}-")
        assert payment["buyer_email"] == "ayu@example.com"

        refreshed = await registration_engine.get_event(event["event_id"])
        assert refreshed["attendee_count"] == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reference_ids_are_unique(self, payment_engine, paid_event):
        event = await paid_event(capacity=10)

        refs = {
            (await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "va"))[
                "reference_id"
            ]
            for _ in range(5)
        }
        assert len(refs) == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "quantity,method", [(0, "qris"), (-1, "va"), (1, "bitcoin"), (MAX_QUANTITY + 1, "va")]
    )
    async def test_invalid_purchase_parameters(self, payment_engine, paid_event, quantity, method):
        event = await paid_event()

        with pytest.raises(InvalidPurchase):
            await payment_engine.initiate_purchase(event["event_id"], "buyer-1", quantity, method)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_order_total_beyond_amount_column_is_rejected(self, payment_engine, make_event):
        event = await make_event(ticket_price=10**15)

        with pytest.raises(InvalidPurchase, match="too large"):
            await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 10**6, "va")

        assert await payment_engine.list_user_payments("buyer-1") == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_free_event_rejects_purchase(self, payment_engine, make_event):
        event = await make_event(capacity=5)

        with pytest.raises(InvalidPurchase, match="free event"):
            await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "qris")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_event(self, payment_engine):
        with pytest.raises(EventNotFound):
            await payment_engine.initiate_purchase("missing", "buyer-1", 1, "qris")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_visibly_sold_out_event_is_refused(self, payment_engine, paid_event):
        event = await paid_event(capacity=2)
        payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 2, "qris")
        await payment_engine.apply_settlement(payment["reference_id"], "berhasil")

        with pytest.raises(EventFull):
            await payment_engine.initiate_purchase(event["event_id"], "buyer-2", 1, "qris")


class TestApplySettlement:
    """Test suite for settlement deliveries."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_completed_settlement_reserves_seats_once(
        self, payment_engine, registration_engine, paid_event, notification_sink
    ):
        """Duplicate delivery of a success callback leaves the counter unchanged."""
        event = await paid_event(capacity=2)
        payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 2, "qris")

        first = await payment_engine.apply_settlement(payment["reference_id"], "berhasil", "TRX-1")
        assert first["outcome"] == SettlementOutcome.COMPLETED
        assert first["status"] == PaymentStatus.COMPLETED.value
        assert first["transaction_id"] == "TRX-1"
        assert first["settled_at"] is not None

        second = await payment_engine.apply_settlement(payment["reference_id"], "berhasil", "TRX-1")
        assert second["outcome"] == SettlementOutcome.DUPLICATE

        refreshed = await registration_engine.get_event(event["event_id"])
        assert refreshed["attendee_count"] == 2
        assert notification_sink.kinds_for("buyer-1") == [NotificationKind.PAYMENT_COMPLETED]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_reference(self, payment_engine):
        with pytest.raises(PaymentNotFound):
            await payment_engine.apply_settlement("EVT-nope", "berhasil")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_then_late_success(
        self, payment_engine, registration_engine, paid_event, notification_sink
    ):
        event = await paid_event(capacity=3)
        payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "va")
        ref = payment["reference_id"]

        failed = await payment_engine.apply_settlement(ref, "expired")
        assert failed["outcome"] == SettlementOutcome.FAILED
        assert failed["status"] == PaymentStatus.FAILED.value

        again = await payment_engine.apply_settlement(ref, "expired")
        assert again["outcome"] == SettlementOutcome.DUPLICATE

        late = await payment_engine.apply_settlement(ref, "berhasil", "TRX-LATE")
        assert late["outcome"] == SettlementOutcome.COMPLETED
        assert late["previous_status"] == PaymentStatus.FAILED.value

        refreshed = await registration_engine.get_event(event["event_id"])
        assert refreshed["attendee_count"] == 1
        assert notification_sink.kinds_for("buyer-1") == [
            NotificationKind.PAYMENT_FAILED,
            NotificationKind.PAYMENT_COMPLETED,
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stale_deliveries_do_not_reopen_completed_payment(
        self, payment_engine, registration_engine, paid_event
    ):
        event = await paid_event(capacity=3)
        payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "cc")
        ref = payment["reference_id"]
        await payment_engine.apply_settlement(ref, "berhasil")

        pending = await payment_engine.apply_settlement(ref, "pending")
        expired = await payment_engine.apply_settlement(ref, "expired")

        assert pending["outcome"] == SettlementOutcome.UNCHANGED
        assert expired["outcome"] == SettlementOutcome.UNCHANGED
        assert expired["status"] == PaymentStatus.COMPLETED.value

        refreshed = await registration_engine.get_event(event["event_id"])
        assert refreshed["attendee_count"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unrecognised_status_is_ignored(self, payment_engine, paid_event):
        event = await paid_event()
        payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "qris")

        result = await payment_engine.apply_settlement(payment["reference_id"], "refund_requested")

        assert result["outcome"] == SettlementOutcome.IGNORED
        assert result["status"] == PaymentStatus.PENDING.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_every_delivery_is_audited(self, payment_engine, paid_event):
        event = await paid_event()
        payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "qris")
        ref = payment["reference_id"]
        await payment_engine.apply_settlement(ref, "pending")
        await payment_engine.apply_settlement(ref, "berhasil", "TRX-9")
        await payment_engine.apply_settlement(ref, "berhasil", "TRX-9")

        detail = await payment_engine.get_payment(payment["payment_id"], actor_id="buyer-1")

        assert [e["event_type"] for e in detail["events"]] == [
            "payment.created",
            "settlement.unchanged",
            "settlement.completed",
            "settlement.duplicate",
        ]
        assert detail["events"][2]["event_data"]["external_tx_id"] == "TRX-9"


class TestOverbookedSettlement:
    """Test suite for payments settling after the event filled up."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_late_settlement_is_flagged_not_reverted(
        self, payment_engine, registration_engine, paid_event, notification_sink
    ):
        event = await paid_event(capacity=2)
        first = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 2, "qris")
        second = await payment_engine.initiate_purchase(event["event_id"], "buyer-2", 1, "qris")

        await payment_engine.apply_settlement(first["reference_id"], "berhasil")
        late = await payment_engine.apply_settlement(second["reference_id"], "berhasil")

        assert late["outcome"] == SettlementOutcome.OVERBOOKED
        assert late["status"] == PaymentStatus.COMPLETED.value
        assert late["overbooked"] is True
        assert late["anomaly"]["error"] == "OVERBOOKED_SETTLEMENT"
        assert late["anomaly"]["reference_id"] == second["reference_id"]

        refreshed = await registration_engine.get_event(event["event_id"])
        assert refreshed["attendee_count"] == 2

        open_items = await payment_engine.list_overbooked_settlements()
        assert [p["reference_id"] for p in open_items] == [second["reference_id"]]

        assert NotificationKind.PAYMENT_COMPLETED in notification_sink.kinds_for("buyer-2")
        assert NotificationKind.OVERBOOKED_SETTLEMENT in notification_sink.kinds_for(ORGANIZER_ID)

        duplicate = await payment_engine.apply_settlement(second["reference_id"], "berhasil")
        assert duplicate["outcome"] == SettlementOutcome.DUPLICATE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retry_after_capacity_is_raised(
        self, payment_engine, registration_engine, paid_event, session_factory
    ):
        event = await paid_event(capacity=1)
        first = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "qris")
        second = await payment_engine.initiate_purchase(event["event_id"], "buyer-2", 1, "qris")
        await payment_engine.apply_settlement(first["reference_id"], "berhasil")
        await payment_engine.apply_settlement(second["reference_id"], "berhasil")

        with pytest.raises(OverbookedSettlement):
            await payment_engine.retry_overbooked_settlement(second["reference_id"])
        assert len(await payment_engine.list_overbooked_settlements()) == 1

        await _set_capacity(session_factory, event["event_id"], 2)
        resolved = await payment_engine.retry_overbooked_settlement(second["reference_id"])

        assert resolved["outcome"] == SettlementOutcome.COMPLETED
        assert resolved["overbooked"] is False
        assert await payment_engine.list_overbooked_settlements() == []

        refreshed = await registration_engine.get_event(event["event_id"])
        assert refreshed["attendee_count"] == 2

        again = await payment_engine.retry_overbooked_settlement(second["reference_id"])
        assert again["outcome"] == SettlementOutcome.UNCHANGED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gauge_refresh_failure_after_commit_is_not_raised(
        self, payment_engine, paid_event, notification_sink, monkeypatch
    ):
        event = await paid_event(capacity=1)
        first = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "qris")
        second = await payment_engine.initiate_purchase(event["event_id"], "buyer-2", 1, "qris")
        await payment_engine.apply_settlement(first["reference_id"], "berhasil")

        monkeypatch.setattr(
            payment_engine,
            "list_overbooked_settlements",
            AsyncMock(side_effect=RuntimeError("db blip")),
        )
        late = await payment_engine.apply_settlement(second["reference_id"], "berhasil")

        assert late["outcome"] == SettlementOutcome.OVERBOOKED
        assert NotificationKind.OVERBOOKED_SETTLEMENT in notification_sink.kinds_for(ORGANIZER_ID)

        monkeypatch.undo()
        open_items = await payment_engine.list_overbooked_settlements()
        assert [p["reference_id"] for p in open_items] == [second["reference_id"]]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retry_unknown_reference(self, payment_engine):
        with pytest.raises(PaymentNotFound):
            await payment_engine.retry_overbooked_settlement("EVT-nope")


class TestPaymentQueries:
    """Test suite for payment lookups."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_has_paid(self, payment_engine, paid_event):
        event = await paid_event()
        payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "qris")

        before = await payment_engine.has_paid(event["event_id"], "buyer-1")
        assert before["has_paid"] is False
        assert before["payment"] is None

        await payment_engine.apply_settlement(payment["reference_id"], "berhasil")

        after = await payment_engine.has_paid(event["event_id"], "buyer-1")
        assert after["has_paid"] is True
        assert after["payment"]["payment_id"] == payment["payment_id"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_payment_is_owner_only(self, payment_engine, paid_event):
        event = await paid_event()
        payment = await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "qris")

        with pytest.raises(Forbidden):
            await payment_engine.get_payment(payment["payment_id"], actor_id="someone-else")
        with pytest.raises(PaymentNotFound):
            await payment_engine.get_payment("missing", actor_id="buyer-1")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_user_payments(self, payment_engine, paid_event):
        event = await paid_event(capacity=10)
        await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 1, "qris")
        await payment_engine.initiate_purchase(event["event_id"], "buyer-1", 2, "va")
        await payment_engine.initiate_purchase(event["event_id"], "buyer-2", 1, "va")

        mine = await payment_engine.list_user_payments("buyer-1")
        assert len(mine) == 2
        assert {p["user_id"] for p in mine} == {"buyer-1"}
