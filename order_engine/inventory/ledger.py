"""
Stock Ledger

The only writer of InventoryItem.owned_quantity. Every change is a locked
read-modify-write on the item row plus one append-only StockMovement in the
same transaction.

Deductions past zero are clamped rather than rejected (the storefront may
sell the last unit twice before stock is pushed back); the clamp is flagged on
the movement and logged as a warning.
"""

from typing import Optional
import uuid

import structlog
from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.database.models import InventoryItem, MovementReason, StockMovement
from order_engine.exceptions import InventoryItemNotFound

logger = structlog.get_logger(__name__)

STOCK_MOVEMENTS = Counter(
    "order_engine_stock_movements_total",
    "Stock movements written by the ledger",
    ["reason"],
)

STOCK_CLAMPS = Counter(
    "order_engine_stock_clamps_total",
    "Deductions clamped at zero owned stock",
)


class StockLedger:
    """
    Owned-stock ledger bound to one session (one unit of work).

    Example:
        ledger = StockLedger(db)
        await ledger.deduct(item.id, 2, related_order_id="5001")
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def deduct(self, inventory_item_id: uuid.UUID, quantity: int, related_order_id: str) -> StockMovement:
        """Remove `quantity` sold units (clamped at zero)"""
        return await self._apply(inventory_item_id, -abs(quantity), MovementReason.SALE, related_order_id)

    async def restore(self, inventory_item_id: uuid.UUID, quantity: int, related_order_id: str) -> StockMovement:
        """Return `quantity` units from a cancelled sale"""
        return await self._apply(inventory_item_id, abs(quantity), MovementReason.SALE_CANCELLED, related_order_id)

    async def _apply(
        self,
        inventory_item_id: uuid.UUID,
        requested_delta: int,
        reason: MovementReason,
        related_order_id: Optional[str],
    ) -> StockMovement:
        result = await self.db.execute(
            select(InventoryItem)
            .where(InventoryItem.id == inventory_item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)

        before = item.owned_quantity or 0
        target = before + requested_delta
        after = max(target, 0)
        clamped = target < 0

        notes = None
        if clamped:
            notes = f"clamped: requested {requested_delta}, applied {after - before} (owned was {before})"
            STOCK_CLAMPS.inc()
            logger.warning(
                "stock_clamped",
                inventory_item_id=str(inventory_item_id),
                related_order_id=related_order_id,
                requested_delta=requested_delta,
                applied_delta=after - before,
                owned_before=before,
            )

        item.owned_quantity = after
        movement = StockMovement(
            inventory_item_id=item.id,
            delta=after - before,
            requested_delta=requested_delta,
            reason=reason,
            related_order_id=related_order_id,
            quantity_before=before,
            quantity_after=after,
            clamped=clamped,
            notes=notes,
        )
        self.db.add(movement)
        await self.db.flush()

        STOCK_MOVEMENTS.labels(reason=reason.value).inc()
        logger.info(
            "Stock movement applied",
            inventory_item_id=str(inventory_item_id),
            related_order_id=related_order_id,
            reason=reason.value,
            delta=movement.delta,
            owned_after=after,
        )
        return movement
