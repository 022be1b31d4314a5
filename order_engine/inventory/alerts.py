"""
Purchase-Alert Emitter

Raises a pending replenishment alert for every drop-ship line item of a newly
processed order, and voids an order's pending alerts when it is cancelled.
"""

from typing import List, Optional
import uuid

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.database.models import AlertStatus, PurchaseAlert
from order_engine.exceptions import InvalidStatusTransition

logger = structlog.get_logger(__name__)

# pending is the only state an alert can leave
ALERT_TRANSITIONS = {
    AlertStatus.PENDING: {AlertStatus.CANCELLED, AlertStatus.RESOLVED},
    AlertStatus.CANCELLED: set(),
    AlertStatus.RESOLVED: set(),
}


class PurchaseAlertEmitter:
    """Purchase alert writer bound to one session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def raise_alert(
        self,
        related_order_id: str,
        quantity_needed: int,
        inventory_item_id: Optional[uuid.UUID] = None,
        supplier_sku: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> uuid.UUID:
        """Create a pending alert and return its id"""
        alert = PurchaseAlert(
            inventory_item_id=inventory_item_id,
            related_order_id=related_order_id,
            quantity_needed=quantity_needed,
            supplier_sku=supplier_sku,
            status=AlertStatus.PENDING,
            notes=notes,
        )
        self.db.add(alert)
        await self.db.flush()

        logger.info(
            "Purchase alert raised",
            alert_id=str(alert.id),
            related_order_id=related_order_id,
            inventory_item_id=str(inventory_item_id) if inventory_item_id else None,
            quantity_needed=quantity_needed,
        )
        return alert.id

    async def void_for_order(self, related_order_id: str) -> int:
        """
        Cancel every pending alert of an order.

        Already cancelled or resolved alerts are left untouched.

        Returns:
            Number of alerts cancelled by this call
        """
        result = await self.db.execute(
            update(PurchaseAlert)
            .where(PurchaseAlert.related_order_id == related_order_id)
            .where(PurchaseAlert.status == AlertStatus.PENDING)
            .values(status=AlertStatus.CANCELLED)
            .execution_options(synchronize_session="fetch")
        )
        voided = result.rowcount or 0
        logger.info("Purchase alerts voided", related_order_id=related_order_id, voided=voided)
        return voided

    async def for_order(self, related_order_id: str) -> List[PurchaseAlert]:
        result = await self.db.execute(
            select(PurchaseAlert)
            .where(PurchaseAlert.related_order_id == related_order_id)
            .order_by(PurchaseAlert.created_at)
        )
        return list(result.scalars().all())

    async def transition(self, alert_id: uuid.UUID, status: AlertStatus) -> Optional[PurchaseAlert]:
        """
        Move one alert to `status`.

        Re-applying the current status is a no-op.

        Raises:
            InvalidStatusTransition: when leaving a terminal state
        """
        result = await self.db.execute(
            select(PurchaseAlert)
            .where(PurchaseAlert.id == alert_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            return None
        if alert.status == status:
            return alert
        if status not in ALERT_TRANSITIONS[alert.status]:
            raise InvalidStatusTransition(alert.status.value, status.value)

        alert.status = status
        await self.db.flush()
        logger.info("Purchase alert updated", alert_id=str(alert_id), status=status.value)
        return alert
