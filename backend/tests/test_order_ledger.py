"""
Tests for the order ledger: numbering, state machine, immutability, lookups.
"""

import re
from decimal import Decimal

import pytest

from core.exceptions import DuplicateOrderNumber, ImmutableOrderError, InvalidTransition, OrderNotFound
from orders import ledger as ledger_module
from orders.ledger import OrderLedger, can_transition, generate_order_number
from pricing.calculator import PricedLine, Totals

LINE = PricedLine(
    product_id="00000000-0000-0000-0000-0000000000a1",
    variant_sku="RED-M",
    title="Viral Hoodie",
    color="Red",
    size="M",
    image="https://cdn.example.com/hoodie.jpg",
    unit_price=Decimal("20.00"),
    quantity=2,
    line_total=Decimal("40.00"),
)
TOTALS = Totals(subtotal=Decimal("40.00"), shipping=Decimal("5.99"), tax=Decimal("3.20"), total=Decimal("49.19"))
ADDRESS = {"line1": "12 Analytical Way", "city": "London", "state": "LN", "zip": "10001", "country": "US"}


async def _create(ledger: OrderLedger, **kwargs):
    params = {
        "customer_email": "ada@example.com",
        "customer_name": "Ada Lovelace",
        "shipping_address": ADDRESS,
        "lines": [LINE],
        "totals": TOTALS,
    }
    params.update(kwargs)
    return await ledger.create(**params)


class TestOrderNumbers:
    def test_format(self):
        number = generate_order_number("VG")
        assert re.fullmatch(r"VG-[0-9A-Z]+-[0-9A-Z]{4}", number)

    def test_numbers_are_distinct(self):
        assert len({generate_order_number("VG") for _ in range(200)}) == 200


class TestStateMachine:
    @pytest.mark.parametrize(
        "current,new",
        [
            ("pending", "processing"),
            ("processing", "shipped"),
            ("shipped", "delivered"),
            ("pending", "cancelled"),
            ("processing", "cancelled"),
        ],
    )
    def test_allowed(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            ("shipped", "cancelled"),
            ("delivered", "shipped"),
            ("cancelled", "processing"),
            ("pending", "shipped"),
            ("processing", "processing"),
        ],
    )
    def test_rejected(self, current, new):
        assert not can_transition(current, new)


@pytest.mark.asyncio
class TestOrderLedger:
    async def test_create_freezes_lines_and_totals(self, test_db):
        order = await _create(OrderLedger(test_db))
        await test_db.commit()

        found = await OrderLedger(test_db).find_by_number(order.order_number)
        assert found.status == "processing"
        assert found.total == Decimal("49.19")
        assert [(i.variant_sku, i.quantity, i.line_total) for i in found.items] == [("RED-M", 2, Decimal("40.00"))]
        history = await OrderLedger(test_db).status_history(order.order_number)
        assert [(h.from_status, h.to_status) for h in history] == [(None, "processing")]

    async def test_reserved_number_is_used(self, test_db):
        order = await _create(OrderLedger(test_db), order_number="VG-RESERVED-0001")
        assert order.order_number == "VG-RESERVED-0001"

    async def test_collision_retries_with_fresh_number(self, test_db):
        ledger = OrderLedger(test_db)
        await _create(ledger, order_number="VG-TAKEN-0001")
        await test_db.commit()

        second = await _create(ledger, order_number="VG-TAKEN-0001")
        await test_db.commit()
        assert second.order_number != "VG-TAKEN-0001"
        assert len(await ledger.find_by_customer("ada@example.com")) == 2

    async def test_collision_exhaustion(self, test_db, monkeypatch):
        ledger = OrderLedger(test_db)
        await _create(ledger, order_number="VG-TAKEN-0001")
        await test_db.commit()

        monkeypatch.setattr(ledger_module, "generate_order_number", lambda prefix=None: "VG-TAKEN-0001")
        with pytest.raises(DuplicateOrderNumber):
            await _create(ledger)

    async def test_status_walk_records_history_and_notifies(self, test_db, notifier):
        ledger = OrderLedger(test_db, notifier=notifier)
        order = await _create(ledger)
        await test_db.commit()

        order = await ledger.update_status(
            order.order_number, "shipped", tracking_number="1Z999", carrier="UPS", actor="ops@storefront.local"
        )
        await test_db.commit()
        assert await ledger.notify_status_change(order, "shipped")
        assert order.shipped_at is not None
        assert order.tracking_number == "1Z999"

        await ledger.update_status(order.order_number, "delivered")
        await test_db.commit()

        history = await ledger.status_history(order.order_number)
        assert [h.to_status for h in history] == ["processing", "shipped", "delivered"]
        assert history[1].changed_by == "ops@storefront.local"
        assert notifier.shipping_updates == [(order.order_number, "shipped")]

    async def test_invalid_transition(self, test_db):
        ledger = OrderLedger(test_db)
        order = await _create(ledger)
        await ledger.update_status(order.order_number, "shipped")
        with pytest.raises(InvalidTransition) as exc_info:
            await ledger.update_status(order.order_number, "cancelled")
        assert exc_info.value.current == "shipped"

    async def test_cancelled_is_terminal(self, test_db):
        ledger = OrderLedger(test_db)
        order = await _create(ledger)
        cancelled = await ledger.update_status(order.order_number, "cancelled")
        assert cancelled.cancelled_at is not None
        with pytest.raises(InvalidTransition):
            await ledger.update_status(order.order_number, "processing")

    async def test_cancellation_is_not_emailed(self, test_db, notifier):
        ledger = OrderLedger(test_db, notifier=notifier)
        order = await _create(ledger)
        await ledger.update_status(order.order_number, "cancelled")
        assert not await ledger.notify_status_change(order, "cancelled")
        assert notifier.shipping_updates == []

    async def test_placed_order_totals_are_immutable(self, test_db):
        order = await _create(OrderLedger(test_db))
        await test_db.commit()

        order.total = Decimal("1.00")
        with pytest.raises(ImmutableOrderError):
            await test_db.flush()

    async def test_placed_order_items_are_immutable(self, test_db):
        order = await _create(OrderLedger(test_db))
        await test_db.commit()

        order.items[0].quantity = 50
        with pytest.raises(ImmutableOrderError):
            await test_db.flush()

    async def test_pending_order_can_still_be_edited(self, test_db):
        order = await _create(OrderLedger(test_db), status="pending")
        await test_db.commit()

        order.shipping = Decimal("0.00")
        await test_db.flush()
        assert order.shipping == Decimal("0.00")

    async def test_unknown_order(self, test_db):
        with pytest.raises(OrderNotFound):
            await OrderLedger(test_db).find_by_number("VG-NOPE-0000")

    async def test_customer_lookup_is_case_insensitive(self, test_db):
        ledger = OrderLedger(test_db)
        await _create(ledger, customer_email="Ada@Example.com")
        await test_db.commit()
        assert len(await ledger.find_by_customer("ada@example.COM")) == 1
        assert await ledger.find_by_customer("someone@else.com") == []

    async def test_payment_session_lookup(self, test_db):
        ledger = OrderLedger(test_db)
        order = await _create(ledger, payment_session_id="cs_test_1")
        await test_db.commit()
        assert (await ledger.find_by_payment_session("cs_test_1")).order_id == order.order_id
        assert await ledger.find_by_payment_session("cs_missing") is None

    async def test_summary_excludes_cancelled_revenue(self, test_db):
        ledger = OrderLedger(test_db)
        await _create(ledger)
        cancelled = await _create(ledger)
        await ledger.update_status(cancelled.order_number, "cancelled")
        await test_db.commit()

        summary = await ledger.summary()
        assert summary["total_orders"] == 2
        assert summary["by_status"]["processing"] == 1
        assert summary["by_status"]["cancelled"] == 1
        assert summary["revenue"] == pytest.approx(49.19)
