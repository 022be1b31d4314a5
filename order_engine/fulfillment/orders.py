"""
Order Aggregate Writer

Persists the NormalizedOrder once per external order id. The conditional
insert is the master idempotency gate of the order path: when the order
already exists nothing downstream (stock, alerts, accounting) runs again.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence
import uuid

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.config.settings import FulfillmentSettings
from order_engine.database.models import FulfillmentOrigin, NormalizedOrder, OrderStatus
from order_engine.database.statements import insert_if_absent
from order_engine.exceptions import InvalidStatusTransition
from order_engine.ingestion.payloads import StorefrontOrder

logger = structlog.get_logger(__name__)

# cancelled is terminal; nothing re-enters pending
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.FULFILLED, OrderStatus.CANCELLED},
    OrderStatus.FULFILLED: {OrderStatus.CANCELLED},
    OrderStatus.CANCELLED: set(),
}


class OrderLineItem(BaseModel):
    """Line item as stored on the normalized order"""
    external_product_ref: Optional[str] = None
    external_variant_ref: Optional[str] = None
    name: str
    quantity: int
    unit_price: Decimal
    origin: FulfillmentOrigin
    matched_inventory_item_id: Optional[uuid.UUID] = None
    supplier_sku: Optional[str] = None

    @property
    def is_owned(self) -> bool:
        return self.origin == FulfillmentOrigin.OWNED_STOCK


def load_line_items(order: NormalizedOrder) -> List[OrderLineItem]:
    """Typed view of the order's stored line items"""
    return [OrderLineItem.model_validate(raw) for raw in (order.line_items or [])]


def estimate_ship_days(line_items: Sequence[OrderLineItem], settings: FulfillmentSettings) -> int:
    """Longer window as soon as one item is drop-shipped"""
    if any(item.origin == FulfillmentOrigin.SUPPLIER_DROPSHIP for item in line_items):
        return settings.dropship_ship_days
    return settings.owned_ship_days


def check_transition(current: OrderStatus, requested: OrderStatus) -> None:
    """
    Raises:
        InvalidStatusTransition: when `requested` is not reachable from `current`
    """
    if requested not in ORDER_TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, requested.value)


@dataclass
class WriteResult:
    order: NormalizedOrder
    created: bool


class OrderAggregateWriter:
    """Normalized order repository bound to one session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, external_order_id: str, lock: bool = False) -> Optional[NormalizedOrder]:
        query = select(NormalizedOrder).where(NormalizedOrder.external_order_id == external_order_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def write_if_absent(
        self,
        external_order: StorefrontOrder,
        line_items: Sequence[OrderLineItem],
        estimated_ship_days: int,
    ) -> WriteResult:
        """
        Insert the order unless one exists for its external id.

        Returns:
            WriteResult with created=False when the order was already stored.
        """
        customer = external_order.customer
        order_id = await insert_if_absent(
            self.db,
            NormalizedOrder,
            values={
                "id": uuid.uuid4(),
                "external_order_id": external_order.id,
                "order_number": external_order.number,
                "status": OrderStatus.PENDING,
                "customer_name": customer.name if customer else None,
                "customer_email": customer.email if customer else None,
                "customer_phone": customer.phone if customer else None,
                "shipping_address": external_order.shipping_address.render() if external_order.shipping_address else None,
                "line_items": [item.model_dump(mode="json") for item in line_items],
                "total_amount": external_order.total,
                "currency": external_order.currency,
                "estimated_ship_days": estimated_ship_days,
            },
            conflict_columns=["external_order_id"],
        )

        order = await self.get(external_order.id)
        if order_id is None:
            logger.info(
                "Order already recorded, skipping fulfillment",
                external_order_id=external_order.id,
                status=order.status.value if order else None,
            )
            return WriteResult(order=order, created=False)

        logger.info(
            "Order recorded",
            external_order_id=external_order.id,
            order_id=str(order_id),
            items=len(line_items),
            estimated_ship_days=estimated_ship_days,
        )
        return WriteResult(order=order, created=True)

    async def transition(self, order: NormalizedOrder, status: OrderStatus) -> NormalizedOrder:
        """
        Move `order` to `status` (no-op when already there).

        Raises:
            InvalidStatusTransition: for illegal moves
        """
        if order.status == status:
            return order
        check_transition(order.status, status)
        previous = order.status
        order.status = status
        await self.db.flush()
        logger.info(
            "Order status changed",
            external_order_id=order.external_order_id,
            previous=previous.value,
            status=status.value,
        )
        return order
