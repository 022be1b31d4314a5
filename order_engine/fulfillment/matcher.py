"""
Line-Item Matcher

Maps a storefront line item to an internal inventory record. Webhook payloads
rarely carry a clean foreign key, so the matcher walks an ordered list of
strategies and stops at the first hit:

1. storefront variant id  -> InventoryItem.external_variant_ref
2. storefront product id  -> InventoryItem.external_product_ref
3. SKU / barcode          -> InventoryItem.sku or InventoryItem.ean
4. product name           -> case-insensitive substring on the first name tokens

A miss is not an error: the item is reported unmatched with an inferred
drop-ship origin so the order can still be recorded.
"""

import re
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.database.models import FulfillmentOrigin, InventoryItem, ItemSourceType
from order_engine.ingestion.payloads import StorefrontLineItem

logger = structlog.get_logger(__name__)

_SKU_DISALLOWED = re.compile(r"[^A-Za-z0-9._/\-]")
MAX_SKU_LENGTH = 100

Strategy = Callable[[StorefrontLineItem, AsyncSession], Awaitable[Optional[InventoryItem]]]


def sanitize_sku(value: Optional[str]) -> Optional[str]:
    """
    Reduce a SKU to letters, digits and `. _ / -`.

    Returns None when nothing usable is left.
    """
    if not value:
        return None
    cleaned = _SKU_DISALLOWED.sub("", value.strip())[:MAX_SKU_LENGTH]
    return cleaned or None


def name_phrase(name: str, token_count: int = 3) -> Optional[str]:
    """First `token_count` whitespace-separated tokens of a product name, lowercased"""
    tokens = name.split()
    if not tokens:
        return None
    return " ".join(tokens[:token_count]).lower()


@dataclass
class MatchResult:
    """Outcome of matching one line item"""
    item: Optional[InventoryItem]
    origin: FulfillmentOrigin
    strategy: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.item is not None


async def _first(db: AsyncSession, query) -> Optional[InventoryItem]:
    result = await db.execute(query.limit(1))
    return result.scalars().first()


async def match_by_variant(line_item: StorefrontLineItem, db: AsyncSession) -> Optional[InventoryItem]:
    if not line_item.variant_id:
        return None
    return await _first(
        db,
        select(InventoryItem)
        .where(InventoryItem.external_variant_ref == line_item.variant_id)
        .order_by(InventoryItem.created_at),
    )


async def match_by_product(line_item: StorefrontLineItem, db: AsyncSession) -> Optional[InventoryItem]:
    if not line_item.product_id:
        return None
    return await _first(
        db,
        select(InventoryItem)
        .where(InventoryItem.external_product_ref == line_item.product_id)
        .order_by(InventoryItem.created_at),
    )


async def match_by_sku(line_item: StorefrontLineItem, db: AsyncSession) -> Optional[InventoryItem]:
    codes = [c for c in (sanitize_sku(line_item.sku), sanitize_sku(line_item.barcode)) if c]
    if not codes:
        return None
    return await _first(
        db,
        select(InventoryItem)
        .where(or_(InventoryItem.sku.in_(codes), InventoryItem.ean.in_(codes)))
        .order_by(InventoryItem.created_at),
    )


def fuzzy_name_strategy(token_count: int = 3) -> Strategy:
    """Build the name strategy for a given token window"""

    async def match_by_name(line_item: StorefrontLineItem, db: AsyncSession) -> Optional[InventoryItem]:
        phrase = name_phrase(line_item.name, token_count)
        if phrase is None:
            return None
        return await _first(
            db,
            select(InventoryItem)
            .where(func.lower(InventoryItem.name).contains(phrase, autoescape=True))
            .order_by(InventoryItem.name),
        )

    match_by_name.__name__ = "match_by_name"
    return match_by_name


def default_strategies(token_count: int = 3) -> List[Tuple[str, Strategy]]:
    """Strategies in precedence order"""
    return [
        ("variant", match_by_variant),
        ("product", match_by_product),
        ("sku", match_by_sku),
        ("name", fuzzy_name_strategy(token_count)),
    ]


def classify(item: Optional[InventoryItem]) -> FulfillmentOrigin:
    """Origin implied by the record itself, before quantities are considered"""
    if item is not None and item.source_type == ItemSourceType.OWNED:
        return FulfillmentOrigin.OWNED_STOCK
    return FulfillmentOrigin.SUPPLIER_DROPSHIP


class LineItemMatcher:
    """
    Cascading line-item matcher.

    Example:
        matcher = LineItemMatcher()
        result = await matcher.match(line_item, db)
        if result.matched:
            ...
    """

    def __init__(self, strategies: Optional[Sequence[Tuple[str, Strategy]]] = None, token_count: int = 3):
        self.strategies = list(strategies) if strategies is not None else default_strategies(token_count)

    async def match(self, line_item: StorefrontLineItem, db: AsyncSession) -> MatchResult:
        for name, strategy in self.strategies:
            item = await strategy(line_item, db)
            if item is not None:
                logger.debug(
                    "Line item matched",
                    strategy=name,
                    product_id=line_item.product_id,
                    inventory_item_id=str(item.id),
                )
                return MatchResult(item=item, origin=classify(item), strategy=name)

        logger.info(
            "Line item unmatched",
            product_id=line_item.product_id,
            variant_id=line_item.variant_id,
            name=line_item.name,
            inferred_dropship=True,
        )
        return MatchResult(item=None, origin=FulfillmentOrigin.SUPPLIER_DROPSHIP)
