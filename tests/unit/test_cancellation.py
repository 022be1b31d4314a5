"""
Unit Tests - Cancellation Compensator
"""
from decimal import Decimal

from order_engine.database.models import AlertStatus, FulfillmentOrigin, InventoryItem, OrderStatus
from order_engine.fulfillment.cancellation import CancellationCompensator
from order_engine.fulfillment.orders import OrderAggregateWriter, OrderLineItem
from order_engine.ingestion.payloads import parse_order
from order_engine.inventory.alerts import PurchaseAlertEmitter
from order_engine.inventory.ledger import StockLedger


async def fulfill(db, order_payload, item, quantity, alert_quantity=None):
    """Write an order with one owned line, deduct it and optionally raise one alert"""
    order = parse_order(order_payload())
    lines = [
        OrderLineItem(
            external_product_ref="901",
            name=item.name,
            quantity=quantity,
            unit_price=Decimal("50.00"),
            origin=FulfillmentOrigin.OWNED_STOCK,
            matched_inventory_item_id=item.id,
        )
    ]
    written = await OrderAggregateWriter(db).write_if_absent(order, lines, 3)
    await StockLedger(db).deduct(item.id, quantity, order.id)
    if alert_quantity:
        await PurchaseAlertEmitter(db).raise_alert(order.id, alert_quantity)
    await OrderAggregateWriter(db).transition(written.order, OrderStatus.FULFILLED)
    return written.order


class TestCancellationCompensator:
    """Tests for CancellationCompensator"""

    async def test_restores_deducted_units(self, test_db, make_item, order_payload):
        """Test cancelling after a sale of N returns exactly N"""
        item = await make_item(owned_quantity=10)
        order = await fulfill(test_db, order_payload, item, 2, alert_quantity=1)

        outcome = await CancellationCompensator(test_db).cancel(order.external_order_id)

        assert outcome.found and not outcome.already_cancelled
        assert outcome.restored == {item.id: 2}
        assert outcome.alerts_voided == 1
        assert outcome.touched_item_ids == [item.id]
        assert order.status == OrderStatus.CANCELLED
        assert (await test_db.get(InventoryItem, item.id)).owned_quantity == 10
        alerts = await PurchaseAlertEmitter(test_db).for_order(order.external_order_id)
        assert [a.status for a in alerts] == [AlertStatus.CANCELLED]

    async def test_restore_after_clamp(self, test_db, make_item, order_payload):
        """Test a clamped sale restores only the units actually taken"""
        item = await make_item(owned_quantity=1)
        order = await fulfill(test_db, order_payload, item, 3)

        compensator = CancellationCompensator(test_db)
        assert await compensator.net_deltas(order.external_order_id) == {item.id: -1}

        outcome = await compensator.cancel(order.external_order_id)

        assert outcome.restored == {item.id: 1}
        assert (await test_db.get(InventoryItem, item.id)).owned_quantity == 1

    async def test_second_cancel_is_noop(self, test_db, make_item, order_payload):
        """Test a repeated cancellation restores nothing"""
        item = await make_item(owned_quantity=10)
        order = await fulfill(test_db, order_payload, item, 2)
        compensator = CancellationCompensator(test_db)
        await compensator.cancel(order.external_order_id)

        again = await compensator.cancel(order.external_order_id)

        assert again.already_cancelled
        assert again.message == "Order already cancelled"
        assert again.restored == {}
        assert await compensator.net_deltas(order.external_order_id) == {item.id: 0}
        assert (await test_db.get(InventoryItem, item.id)).owned_quantity == 10

    async def test_unknown_order(self, test_db):
        """Test an order never written is reported not found"""
        outcome = await CancellationCompensator(test_db).cancel("404")

        assert not outcome.found
        assert outcome.touched_item_ids == []
        assert outcome.message == "Order not found, nothing to cancel"

    async def test_order_without_stock(self, test_db, order_payload):
        """Test an order of drop-ship lines only is cancelled with no movements"""
        order = parse_order(order_payload())
        await OrderAggregateWriter(test_db).write_if_absent(order, [], 7)
        await PurchaseAlertEmitter(test_db).raise_alert(order.id, 2)

        outcome = await CancellationCompensator(test_db).cancel(order.id)

        assert outcome.restored == {}
        assert outcome.alerts_voided == 1
        assert outcome.message == "Order cancelled"
