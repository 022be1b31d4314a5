"""
Cancellation Compensator

Undoes what the fulfillment path did for an order: owned stock goes back
through the ledger, pending purchase alerts are voided and the order becomes
cancelled. The revenue transaction is left as posted.
"""

from dataclasses import dataclass, field
from typing import Dict, List
import uuid

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.database.models import MovementReason, OrderStatus, StockMovement
from order_engine.fulfillment.orders import OrderAggregateWriter, load_line_items
from order_engine.inventory.alerts import PurchaseAlertEmitter
from order_engine.inventory.ledger import StockLedger

logger = structlog.get_logger(__name__)


@dataclass
class CancellationOutcome:
    external_order_id: str
    found: bool
    already_cancelled: bool = False
    restored: Dict[uuid.UUID, int] = field(default_factory=dict)
    alerts_voided: int = 0

    @property
    def touched_item_ids(self) -> List[uuid.UUID]:
        return sorted(self.restored, key=str)

    @property
    def message(self) -> str:
        if not self.found:
            return "Order not found, nothing to cancel"
        if self.already_cancelled:
            return "Order already cancelled"
        return "Order cancelled"


class CancellationCompensator:
    """
    Compensating actions for a cancelled order, bound to one session.

    Stock is restored from the order's own movement log: the net applied delta
    per item is negated, so a clamped deduction restores only what was
    actually taken and a second cancellation finds nothing left to restore.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.orders = OrderAggregateWriter(db)
        self.ledger = StockLedger(db)
        self.alerts = PurchaseAlertEmitter(db)

    async def net_deltas(self, external_order_id: str) -> Dict[uuid.UUID, int]:
        """Sum of applied sale/cancellation deltas per item for one order"""
        result = await self.db.execute(
            select(StockMovement.inventory_item_id, func.sum(StockMovement.delta))
            .where(StockMovement.related_order_id == external_order_id)
            .where(StockMovement.inventory_item_id.is_not(None))
            .where(StockMovement.reason.in_([MovementReason.SALE, MovementReason.SALE_CANCELLED]))
            .group_by(StockMovement.inventory_item_id)
        )
        return {item_id: int(total or 0) for item_id, total in result.all()}

    async def cancel(self, external_order_id: str) -> CancellationOutcome:
        order = await self.orders.get(external_order_id, lock=True)
        if order is None:
            logger.info("Cancellation for unknown order ignored", external_order_id=external_order_id)
            return CancellationOutcome(external_order_id, found=False)

        if order.status == OrderStatus.CANCELLED:
            logger.info("Order already cancelled", external_order_id=external_order_id)
            return CancellationOutcome(external_order_id, found=True, already_cancelled=True)

        outcome = CancellationOutcome(external_order_id, found=True)
        owned_items = {
            line.matched_inventory_item_id
            for line in load_line_items(order)
            if line.is_owned and line.matched_inventory_item_id is not None
        }

        net_deltas = await self.net_deltas(external_order_id)
        # Same lock order as the deduction path
        for item_id, net in sorted(net_deltas.items(), key=lambda entry: str(entry[0])):
            if net >= 0:
                continue
            if item_id not in owned_items:
                logger.warning(
                    "Restoring stock for item absent from order lines",
                    external_order_id=external_order_id,
                    inventory_item_id=str(item_id),
                )
            await self.ledger.restore(item_id, -net, external_order_id)
            outcome.restored[item_id] = -net

        outcome.alerts_voided = await self.alerts.void_for_order(external_order_id)
        await self.orders.transition(order, OrderStatus.CANCELLED)

        logger.info(
            "Order cancellation compensated",
            external_order_id=external_order_id,
            units_restored=sum(outcome.restored.values()),
            items=len(outcome.restored),
            alerts_voided=outcome.alerts_voided,
        )
        return outcome
