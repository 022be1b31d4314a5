"""
Unit Tests - Stock Ledger
"""
import uuid

import pytest
from sqlalchemy import select

from order_engine.database.models import InventoryItem, MovementReason, StockMovement
from order_engine.exceptions import ImmutableRecordError, InventoryItemNotFound
from order_engine.inventory.ledger import StockLedger


class TestStockLedger:
    """Tests for StockLedger"""

    async def test_deduct_writes_movement(self, make_item, session_factory):
        """Test a deduction lowers owned stock and logs a signed movement"""
        kite = await make_item(owned_quantity=10)

        async with session_factory() as db:
            movement = await StockLedger(db).deduct(kite.id, 2, "5001")
            await db.commit()

        assert movement.delta == -2
        assert movement.reason == MovementReason.SALE
        assert movement.quantity_before == 10
        assert movement.quantity_after == 8
        assert not movement.clamped

        async with session_factory() as db:
            assert (await db.get(InventoryItem, kite.id)).owned_quantity == 8

    async def test_deduct_clamps_at_zero(self, make_item, session_factory):
        """Test deducting past zero clamps and flags the movement"""
        kite = await make_item(owned_quantity=1)

        async with session_factory() as db:
            movement = await StockLedger(db).deduct(kite.id, 3, "5002")
            await db.commit()

        assert movement.quantity_after == 0
        assert movement.delta == -1
        assert movement.requested_delta == -3
        assert movement.clamped
        assert "clamped" in movement.notes

    async def test_restore_adds_stock(self, make_item, session_factory):
        """Test a restore increases owned stock with a cancellation reason"""
        kite = await make_item(owned_quantity=4)

        async with session_factory() as db:
            movement = await StockLedger(db).restore(kite.id, 2, "5003")
            await db.commit()

        assert movement.delta == 2
        assert movement.reason == MovementReason.SALE_CANCELLED
        assert movement.quantity_after == 6

    async def test_movements_replay_to_owned_quantity(self, make_item, session_factory):
        """Test the movement log sums to the change in owned stock"""
        kite = await make_item(owned_quantity=5)

        async with session_factory() as db:
            ledger = StockLedger(db)
            await ledger.deduct(kite.id, 2, "a")
            await ledger.deduct(kite.id, 9, "b")
            await ledger.restore(kite.id, 3, "b")
            await db.commit()

        async with session_factory() as db:
            deltas = (await db.execute(
                select(StockMovement.delta).where(StockMovement.inventory_item_id == kite.id)
            )).scalars().all()
            owned = (await db.get(InventoryItem, kite.id)).owned_quantity

        assert owned == 3
        assert 5 + sum(deltas) == owned

    async def test_unknown_item_raises(self, test_db):
        """Test a missing inventory item raises"""
        with pytest.raises(InventoryItemNotFound):
            await StockLedger(test_db).deduct(uuid.uuid4(), 1, "5004")

    async def test_movements_are_immutable(self, make_item, session_factory):
        """Test an update to a stored movement is refused"""
        kite = await make_item(owned_quantity=5)

        async with session_factory() as db:
            movement = await StockLedger(db).deduct(kite.id, 1, "5005")
            await db.commit()

            movement.delta = -5
            with pytest.raises(ImmutableRecordError):
                await db.flush()
