"""
Unit Tests - Order Aggregate Writer
"""
from decimal import Decimal
import uuid

import pytest
from sqlalchemy import func, select

from order_engine.config.settings import FulfillmentSettings
from order_engine.database.models import FulfillmentOrigin, NormalizedOrder, OrderStatus
from order_engine.exceptions import InvalidStatusTransition
from order_engine.fulfillment.orders import (
    OrderAggregateWriter,
    OrderLineItem,
    check_transition,
    estimate_ship_days,
    load_line_items,
)
from order_engine.ingestion.payloads import parse_order


def owned_line(item_id=None) -> OrderLineItem:
    return OrderLineItem(
        external_product_ref="901",
        name="Kite Rebel 9m",
        quantity=2,
        unit_price=Decimal("50.00"),
        origin=FulfillmentOrigin.OWNED_STOCK,
        matched_inventory_item_id=item_id or uuid.uuid4(),
    )


def dropship_line() -> OrderLineItem:
    return OrderLineItem(
        external_product_ref="555",
        name="Wetsuit 4/3",
        quantity=1,
        unit_price=Decimal("80.00"),
        origin=FulfillmentOrigin.SUPPLIER_DROPSHIP,
    )


class TestEstimateShipDays:
    """Tests for estimate_ship_days"""

    def test_all_owned(self):
        """Test the short window when everything is in stock"""
        assert estimate_ship_days([owned_line()], FulfillmentSettings()) == 3

    def test_any_dropship(self):
        """Test one drop-ship line switches to the long window"""
        assert estimate_ship_days([owned_line(), dropship_line()], FulfillmentSettings()) == 7


class TestStatusMachine:
    """Tests for the order status transitions"""

    @pytest.mark.parametrize("current,requested", [
        (OrderStatus.PENDING, OrderStatus.FULFILLED),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.FULFILLED, OrderStatus.CANCELLED),
    ])
    def test_allowed(self, current, requested):
        """Test forward transitions are accepted"""
        check_transition(current, requested)

    @pytest.mark.parametrize("current,requested", [
        (OrderStatus.CANCELLED, OrderStatus.PENDING),
        (OrderStatus.CANCELLED, OrderStatus.FULFILLED),
        (OrderStatus.FULFILLED, OrderStatus.PENDING),
    ])
    def test_rejected(self, current, requested):
        """Test nothing re-enters pending or leaves cancelled"""
        with pytest.raises(InvalidStatusTransition):
            check_transition(current, requested)


class TestOrderAggregateWriter:
    """Tests for OrderAggregateWriter"""

    async def test_write_if_absent_creates(self, test_db, order_payload):
        """Test the first write creates a pending order"""
        order = parse_order(order_payload())
        item_id = uuid.uuid4()

        result = await OrderAggregateWriter(test_db).write_if_absent(
            order, [owned_line(item_id), dropship_line()], 7
        )

        assert result.created
        assert result.order.status == OrderStatus.PENDING
        assert result.order.customer_name == "Ana Souza"
        assert result.order.estimated_ship_days == 7
        lines = load_line_items(result.order)
        assert [line.origin for line in lines] == [
            FulfillmentOrigin.OWNED_STOCK,
            FulfillmentOrigin.SUPPLIER_DROPSHIP,
        ]
        assert lines[0].matched_inventory_item_id == item_id
        assert lines[1].unit_price == Decimal("80.00")

    async def test_second_write_is_gated(self, test_db, order_payload):
        """Test a second write for the same id returns the stored order"""
        writer = OrderAggregateWriter(test_db)
        order = parse_order(order_payload())

        first = await writer.write_if_absent(order, [owned_line()], 3)
        second = await writer.write_if_absent(order, [dropship_line()], 7)

        assert first.created and not second.created
        assert second.order.id == first.order.id
        assert second.order.estimated_ship_days == 3
        count = (await test_db.execute(select(func.count(NormalizedOrder.id)))).scalar()
        assert count == 1

    async def test_transition(self, test_db, order_payload):
        """Test the writer moves an order and rejects illegal moves"""
        writer = OrderAggregateWriter(test_db)
        result = await writer.write_if_absent(parse_order(order_payload()), [owned_line()], 3)

        await writer.transition(result.order, OrderStatus.FULFILLED)
        await writer.transition(result.order, OrderStatus.FULFILLED)
        await writer.transition(result.order, OrderStatus.CANCELLED)

        assert result.order.status == OrderStatus.CANCELLED
        with pytest.raises(InvalidStatusTransition):
            await writer.transition(result.order, OrderStatus.FULFILLED)
