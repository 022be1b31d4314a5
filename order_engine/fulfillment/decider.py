"""
Fulfillment Decider

Chooses the authoritative origin of a line item by comparing the requested
quantity with owned physical stock. Only owned-stock items contribute a cost
basis; drop-ship cost is realized when the supplier purchase is made.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

import structlog

from order_engine.database.models import FulfillmentOrigin, InventoryItem, ItemSourceType
from order_engine.ingestion.payloads import StorefrontLineItem

logger = structlog.get_logger(__name__)


class DecisionReason(str, Enum):
    """Why an origin was chosen"""
    IN_STOCK = "in_stock"
    SUPPLIER_VIRTUAL = "supplier_virtual"
    INSUFFICIENT_STOCK = "insufficient_stock"
    UNKNOWN_PRODUCT = "unknown_product"


@dataclass
class FulfillmentDecision:
    """Origin and cost contribution of one line item"""
    origin: FulfillmentOrigin
    cost_basis: Decimal
    reason: DecisionReason

    @property
    def is_owned(self) -> bool:
        return self.origin == FulfillmentOrigin.OWNED_STOCK


def decide(
    line_item: StorefrontLineItem,
    matched_item: Optional[InventoryItem],
    allocated: int = 0,
) -> FulfillmentDecision:
    """
    Decide how a line item is fulfilled.

    `allocated` is owned stock of the same item already promised to earlier
    lines of the same order.

    - matched and owned stock covers the quantity: owned stock, cost = cost_price * quantity
    - matched, supplier-virtual or carrying virtual/safety stock: drop-ship
    - otherwise (unknown product or short on stock): drop-ship fallback
    """
    quantity = line_item.quantity
    available = (matched_item.owned_quantity or 0) - allocated if matched_item is not None else 0

    if matched_item is not None and available >= quantity:
        unit_cost = matched_item.cost_price or Decimal("0")
        return FulfillmentDecision(
            origin=FulfillmentOrigin.OWNED_STOCK,
            cost_basis=unit_cost * quantity,
            reason=DecisionReason.IN_STOCK,
        )

    if matched_item is not None and (
        matched_item.source_type == ItemSourceType.SUPPLIER_VIRTUAL
        or (matched_item.virtual_safe_quantity or 0) > 0
    ):
        reason = DecisionReason.SUPPLIER_VIRTUAL
    elif matched_item is None:
        reason = DecisionReason.UNKNOWN_PRODUCT
    else:
        reason = DecisionReason.INSUFFICIENT_STOCK

    logger.info(
        "Line item routed to drop-ship",
        reason=reason.value,
        inferred=reason == DecisionReason.UNKNOWN_PRODUCT,
        product_id=line_item.product_id,
        inventory_item_id=str(matched_item.id) if matched_item is not None else None,
        requested=quantity,
        available=available if matched_item is not None else None,
    )
    return FulfillmentDecision(
        origin=FulfillmentOrigin.SUPPLIER_DROPSHIP,
        cost_basis=Decimal("0"),
        reason=reason,
    )
