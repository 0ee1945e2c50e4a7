"""
Tests for the inventory ledger: atomic stock counters and alert lifecycle.
"""

import pytest
from sqlalchemy import select

from core.exceptions import (
    AlertAlreadyResolved,
    AlertNotFound,
    AutoReorderNotConfigured,
    InsufficientStock,
    ValidationError,
    VariantNotFound,
)
from db.models import InventoryAlert
from inventory.ledger import InventoryLedger


async def _alerts(db, **filters) -> list[InventoryAlert]:
    query = select(InventoryAlert)
    for name, value in filters.items():
        query = query.where(getattr(InventoryAlert, name) == value)
    result = await db.execute(query.order_by(InventoryAlert.created_at))
    return list(result.scalars().all())


@pytest.mark.asyncio
class TestStockCounters:
    async def test_decrement_reduces_stock(self, test_db, seeded_product, read_stock):
        ledger = InventoryLedger(test_db)
        assert await ledger.decrement(seeded_product["product_id"], "RED-M", 2, check=False) == 3
        await test_db.commit()
        assert await read_stock("RED-M") == 3

    async def test_decrement_refreshes_loaded_variant(self, test_db, seeded_product):
        ledger = InventoryLedger(test_db)
        variant = await ledger.get_variant(seeded_product["product_id"], "BLU-L")
        await ledger.decrement(seeded_product["product_id"], "BLU-L", 4, check=False)
        assert variant.stock == 36

    async def test_decrement_beyond_stock_fails_and_reports_available(self, test_db, seeded_product, read_stock):
        ledger = InventoryLedger(test_db)
        with pytest.raises(InsufficientStock) as exc_info:
            await ledger.decrement(seeded_product["product_id"], "RED-M", 6)
        assert exc_info.value.available == 5
        assert exc_info.value.requested == 6
        await test_db.rollback()
        assert await read_stock("RED-M") == 5

    async def test_stock_never_goes_negative(self, test_db, seeded_product, read_stock):
        ledger = InventoryLedger(test_db)
        await ledger.decrement(seeded_product["product_id"], "RED-M", 3, check=False)
        with pytest.raises(InsufficientStock) as exc_info:
            await ledger.decrement(seeded_product["product_id"], "RED-M", 3, check=False)
        assert exc_info.value.available == 2
        await test_db.commit()
        assert await read_stock("RED-M") == 2

    async def test_unknown_sku(self, test_db, seeded_product):
        with pytest.raises(VariantNotFound):
            await InventoryLedger(test_db).decrement(seeded_product["product_id"], "NOPE", 1)
        with pytest.raises(VariantNotFound):
            await InventoryLedger(test_db).increment(seeded_product["product_id"], "NOPE", 1)

    async def test_non_positive_quantity_rejected(self, test_db, seeded_product):
        ledger = InventoryLedger(test_db)
        with pytest.raises(ValidationError):
            await ledger.decrement(seeded_product["product_id"], "RED-M", 0)
        with pytest.raises(ValidationError):
            await ledger.increment(seeded_product["product_id"], "RED-M", -5)

    async def test_increment_adds_stock(self, test_db, seeded_product, read_stock):
        ledger = InventoryLedger(test_db)
        assert await ledger.increment(seeded_product["product_id"], "RED-M", 20) == 25
        await test_db.commit()
        assert await read_stock("RED-M") == 25


@pytest.mark.asyncio
class TestLevelChecks:
    async def test_low_stock_alert_created_once(self, test_db, seeded_product, notifier):
        ledger = InventoryLedger(test_db, notifier=notifier, threshold=10)
        first = await ledger.check_levels(seeded_product["product_id"])
        second = await ledger.check_levels(seeded_product["product_id"])
        await test_db.commit()

        assert [(a.variant_sku, a.alert_type) for a in first.created] == [("RED-M", "low_stock")]
        assert second.created == []
        assert len(await _alerts(test_db, is_resolved=False)) == 1

        assert await ledger.dispatch_notifications() == 1
        assert notifier.inventory_alerts == [("Viral Hoodie", "RED-M", "low_stock", 5)]
        assert await ledger.dispatch_notifications() == 0

    async def test_out_of_stock_supersedes_low_stock(self, test_db, seeded_product):
        ledger = InventoryLedger(test_db, threshold=10)
        await ledger.check_levels(seeded_product["product_id"])
        await ledger.decrement(seeded_product["product_id"], "RED-M", 5)
        await test_db.commit()

        low = (await _alerts(test_db, alert_type="low_stock"))[0]
        out = (await _alerts(test_db, alert_type="out_of_stock"))[0]
        assert low.is_resolved and low.resolution == "superseded"
        assert not out.is_resolved
        assert out.current_stock == 0

    async def test_restock_back_to_low_resolves_out_of_stock(self, test_db, seeded_product):
        ledger = InventoryLedger(test_db, threshold=10)
        await ledger.decrement(seeded_product["product_id"], "RED-M", 5)
        await ledger.increment(seeded_product["product_id"], "RED-M", 3)
        outcome = await ledger.check_levels(seeded_product["product_id"])
        await test_db.commit()

        out = (await _alerts(test_db, alert_type="out_of_stock"))[0]
        assert out.is_resolved and out.resolution == "restock"
        assert [(a.variant_sku, a.alert_type) for a in outcome.created] == [("RED-M", "low_stock")]

    async def test_stock_above_threshold_resolves_everything(self, test_db, seeded_product):
        ledger = InventoryLedger(test_db, threshold=10)
        await ledger.check_levels(seeded_product["product_id"])
        await ledger.increment(seeded_product["product_id"], "RED-M", 50, resolution="restock")
        await ledger.check_levels(seeded_product["product_id"])
        await test_db.commit()
        assert await _alerts(test_db, is_resolved=False) == []

    async def test_threshold_override(self, test_db, seeded_product):
        outcome = await InventoryLedger(test_db, threshold=10).check_levels(seeded_product["product_id"], threshold=50)
        assert {a.variant_sku for a in outcome.created} == {"RED-M", "BLU-L"}

    async def test_sweep_skips_inactive_products(self, test_db, seeded_product):
        summary = await InventoryLedger(test_db, threshold=10).sweep()
        await test_db.commit()
        assert summary == {"products_checked": 1, "alerts_created": 1, "alerts_resolved": 0}

    async def test_unknown_product_is_a_no_op(self, test_db, seeded_product):
        outcome = await InventoryLedger(test_db).check_levels("00000000-0000-0000-0000-00000000ffff")
        assert outcome.created == [] and outcome.resolved == []


@pytest.mark.asyncio
class TestAlerts:
    async def _low_stock_alert(self, db, product_id) -> InventoryAlert:
        outcome = await InventoryLedger(db, threshold=10).check_levels(product_id)
        await db.commit()
        return outcome.created[0]

    async def test_auto_reorder_restocks_and_records_event(self, test_db, seeded_product, read_stock):
        alert = await self._low_stock_alert(test_db, seeded_product["product_id"])
        ledger = InventoryLedger(test_db)
        await ledger.configure_auto_reorder(alert.alert_id, True, 30)
        event = await ledger.auto_reorder(alert.alert_id)
        await test_db.commit()

        assert await read_stock("RED-M") == 35
        assert alert.is_resolved and alert.resolution == "reorder"
        assert event.alert_type == "reorder"
        assert event.reorder_quantity == 30
        assert event.current_stock == 35
        assert event.is_resolved

    async def test_auto_reorder_requires_configuration(self, test_db, seeded_product):
        alert = await self._low_stock_alert(test_db, seeded_product["product_id"])
        with pytest.raises(AutoReorderNotConfigured):
            await InventoryLedger(test_db).auto_reorder(alert.alert_id)

    async def test_explicit_quantity_reorders_without_configuration(self, test_db, seeded_product, read_stock):
        alert = await self._low_stock_alert(test_db, seeded_product["product_id"])
        await InventoryLedger(test_db).auto_reorder(alert.alert_id, quantity=10)
        await test_db.commit()
        assert await read_stock("RED-M") == 15

    async def test_reorder_on_resolved_alert_fails(self, test_db, seeded_product):
        alert = await self._low_stock_alert(test_db, seeded_product["product_id"])
        ledger = InventoryLedger(test_db)
        await ledger.resolve_alert(alert.alert_id)
        with pytest.raises(AlertAlreadyResolved):
            await ledger.auto_reorder(alert.alert_id, quantity=5)
        with pytest.raises(AlertAlreadyResolved):
            await ledger.resolve_alert(alert.alert_id)

    async def test_unknown_alert(self, test_db, seeded_product):
        with pytest.raises(AlertNotFound):
            await InventoryLedger(test_db).auto_reorder("00000000-0000-0000-0000-00000000dead")

    async def test_process_auto_reorders_batch(self, test_db, seeded_product, read_stock):
        ledger = InventoryLedger(test_db, threshold=50)
        outcome = await ledger.check_levels(seeded_product["product_id"])
        for alert in outcome.created:
            await ledger.configure_auto_reorder(alert.alert_id, True, 25)
        await test_db.commit()

        summary = await ledger.process_auto_reorders()
        await test_db.commit()

        assert summary == {"reordered": 2, "errors": 0}
        assert await read_stock("RED-M") == 30
        assert await read_stock("BLU-L") == 65
        assert await ledger.list_open_alerts() == []

    async def test_history_and_stats(self, test_db, seeded_product):
        alert = await self._low_stock_alert(test_db, seeded_product["product_id"])
        ledger = InventoryLedger(test_db)
        await ledger.auto_reorder(alert.alert_id, quantity=10)
        await test_db.commit()

        history = await ledger.alert_history()
        assert {a.alert_type for a in history} == {"low_stock", "reorder"}
        assert await ledger.alert_stats() == {"active": 0, "resolved": 2}

    async def test_failed_notification_does_not_raise(self, test_db, seeded_product):
        class BrokenNotifier:
            async def send_inventory_alert(self, *args):
                raise RuntimeError("mail relay down")

        ledger = InventoryLedger(test_db, notifier=BrokenNotifier(), threshold=10)
        await ledger.check_levels(seeded_product["product_id"])
        await test_db.commit()
        assert await ledger.dispatch_notifications() == 0
        assert len(await ledger.list_open_alerts()) == 1
