"""
Order fulfillment path.

Runs inside the caller's unit of work: match and decide every line item, gate
on the order insert, then deduct owned stock, raise purchase alerts for
drop-ship items, post revenue and mark the order fulfilled.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.accounting.poster import AccountingPoster
from order_engine.config.settings import Settings
from order_engine.database.models import NormalizedOrder, OrderStatus
from order_engine.fulfillment.decider import decide
from order_engine.fulfillment.matcher import LineItemMatcher
from order_engine.fulfillment.orders import (
    OrderAggregateWriter,
    OrderLineItem,
    estimate_ship_days,
)
from order_engine.ingestion.payloads import StorefrontOrder
from order_engine.inventory.alerts import PurchaseAlertEmitter
from order_engine.inventory.ledger import StockLedger

logger = structlog.get_logger(__name__)


@dataclass
class FulfillmentOutcome:
    """What one pass over an order did"""
    external_order_id: str
    processed: bool
    message: str
    order: Optional[NormalizedOrder] = None
    transaction_id: Optional[uuid.UUID] = None
    alert_ids: List[uuid.UUID] = field(default_factory=list)
    touched_item_ids: List[uuid.UUID] = field(default_factory=list)


class FulfillmentService:
    """
    Order-created/paid handler bound to one session.

    Example:
        async with session_scope(factory) as db:
            outcome = await FulfillmentService(db, settings).process_order(order, "order/paid")
    """

    def __init__(self, db: AsyncSession, settings: Settings, matcher: Optional[LineItemMatcher] = None):
        self.db = db
        self.settings = settings
        self.matcher = matcher or LineItemMatcher(token_count=settings.fulfillment.fuzzy_token_count)
        self.orders = OrderAggregateWriter(db)
        self.ledger = StockLedger(db)
        self.alerts = PurchaseAlertEmitter(db)
        self.poster = AccountingPoster(db, settings.accounting)

    async def process_order(self, order: StorefrontOrder, event_type: Optional[str] = None) -> FulfillmentOutcome:
        if not order.is_paid(event_type):
            logger.info(
                "Order not paid yet, stored only",
                external_order_id=order.id,
                event_type=event_type,
                payment_status=order.payment_status,
            )
            return FulfillmentOutcome(order.id, processed=False, message="Order not paid, skipped")

        line_items: List[OrderLineItem] = []
        cost_basis_total = Decimal("0")
        category: Optional[str] = None
        allocated: Dict[uuid.UUID, int] = {}

        for product in order.products:
            result = await self.matcher.match(product, self.db)
            item = result.item
            decision = decide(product, item, allocated.get(item.id, 0) if item is not None else 0)

            if item is not None:
                if category is None and item.fiscal_category:
                    category = item.fiscal_category
                if decision.is_owned:
                    allocated[item.id] = allocated.get(item.id, 0) + product.quantity

            cost_basis_total += decision.cost_basis
            line_items.append(
                OrderLineItem(
                    external_product_ref=product.product_id,
                    external_variant_ref=product.variant_id,
                    name=product.name,
                    quantity=product.quantity,
                    unit_price=product.price,
                    origin=decision.origin,
                    matched_inventory_item_id=item.id if item is not None else None,
                    supplier_sku=item.supplier_sku if item is not None else product.sku,
                )
            )

        ship_days = estimate_ship_days(line_items, self.settings.fulfillment)
        written = await self.orders.write_if_absent(order, line_items, ship_days)
        if not written.created:
            return FulfillmentOutcome(
                order.id,
                processed=True,
                message="Order already processed",
                order=written.order,
            )

        outcome = FulfillmentOutcome(order.id, processed=True, message="Order processed", order=written.order)
        touched = set()
        owned_lines: List[OrderLineItem] = []

        for line in line_items:
            if line.is_owned and line.matched_inventory_item_id is not None:
                owned_lines.append(line)
                continue

            alert_id = await self.alerts.raise_alert(
                related_order_id=order.id,
                quantity_needed=line.quantity,
                inventory_item_id=line.matched_inventory_item_id,
                supplier_sku=line.supplier_sku,
                notes=f"Pedido #{order.display_number} - {line.name}",
            )
            outcome.alert_ids.append(alert_id)
            if line.matched_inventory_item_id is not None:
                touched.add(line.matched_inventory_item_id)

        # Item rows are locked in id order
        for line in sorted(owned_lines, key=lambda owned_line: str(owned_line.matched_inventory_item_id)):
            await self.ledger.deduct(line.matched_inventory_item_id, line.quantity, order.id)
            touched.add(line.matched_inventory_item_id)

        outcome.transaction_id, _ = await self.poster.post(
            written.order,
            cost_basis_total,
            category=category,
            payment_method=order.gateway,
            transaction_date=order.order_date,
        )
        await self.orders.transition(written.order, OrderStatus.FULFILLED)

        outcome.touched_item_ids = sorted(touched, key=str)
        logger.info(
            "Order fulfilled",
            external_order_id=order.id,
            items=len(line_items),
            owned=sum(1 for line in line_items if line.is_owned),
            alerts=len(outcome.alert_ids),
            cost_basis=str(cost_basis_total),
        )
        return outcome
