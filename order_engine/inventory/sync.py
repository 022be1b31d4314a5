"""
Storefront inventory sync.

Pushes the advertised stock of touched items back to the storefront after an
order was processed or cancelled:

    virtual_safe = supplier_qty - 1 when supplier_qty > 1, else 0
    site_stock   = owned_quantity + virtual_safe

Runs as a background task after the order transaction committed; a failure
is logged and recorded on the item, never raised.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple
import uuid

import httpx
import structlog
from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.config.settings import FulfillmentSettings, Settings, StorefrontSettings
from order_engine.database.connection import session_scope
from order_engine.database.models import InventoryItem, SupplierCatalogEntry

logger = structlog.get_logger(__name__)

SYNC_PUSHES = Counter(
    "order_engine_storefront_sync_total",
    "Stock pushes to the storefront",
    ["result"],
)


@dataclass(frozen=True)
class SiteStock:
    owned: int
    virtual_safe: int
    site: int


def compute_site_stock(owned_quantity: int, supplier_qty: Optional[int]) -> SiteStock:
    """Advertised stock keeps the supplier's last unit out of the listing"""
    owned = max(owned_quantity or 0, 0)
    supplier = supplier_qty or 0
    virtual_safe = supplier - 1 if supplier > 1 else 0
    return SiteStock(owned=owned, virtual_safe=virtual_safe, site=owned + virtual_safe)


def listing_ship_days(stock: SiteStock, settings: FulfillmentSettings) -> int:
    if stock.owned > 0:
        return settings.listing_base_days
    if stock.virtual_safe > 0:
        return settings.listing_base_days + settings.listing_virtual_extra_days
    return settings.listing_base_days


@dataclass
class ItemSyncResult:
    inventory_item_id: uuid.UUID
    site_stock: int
    api_called: bool
    synced: bool
    error: Optional[str] = None


class InventorySyncClient:
    """
    Storefront stock writer.

    Example:
        async with InventorySyncClient(settings.storefront, settings.fulfillment) as client:
            await client.sync_item(db, item)
    """

    def __init__(
        self,
        storefront: StorefrontSettings,
        fulfillment: FulfillmentSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.storefront = storefront
        self.fulfillment = fulfillment
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "InventorySyncClient":
        headers = {
            "User-Agent": self.storefront.user_agent,
            "Content-Type": "application/json",
        }
        if self.storefront.access_token is not None:
            headers["Authentication"] = f"bearer {self.storefront.access_token.get_secret_value()}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=self.storefront.sync_timeout_seconds,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def endpoint(self, product_ref: str, variant_ref: Optional[str] = None) -> str:
        base = f"{self.storefront.api_base.rstrip('/')}/{self.storefront.store_id}/products/{product_ref}"
        if variant_ref:
            return f"{base}/variants/{variant_ref}"
        return base

    async def push_stock(self, product_ref: str, variant_ref: Optional[str], stock: int) -> Tuple[bool, Optional[str]]:
        """PUT the stock level of one product or variant"""
        if self._client is None:
            raise RuntimeError("InventorySyncClient used outside its context")

        url = self.endpoint(product_ref, variant_ref)
        try:
            response = await self._client.put(url, json={"stock_management": True, "stock": stock})
        except httpx.HTTPError as e:
            logger.warning("Storefront stock push failed", url=url, error=str(e))
            return False, str(e)

        if response.status_code >= 400:
            error = f"{response.status_code}: {response.text[:200]}"
            logger.warning("Storefront rejected stock push", url=url, status_code=response.status_code)
            return False, error

        logger.info("Storefront stock updated", url=url, stock=stock)
        return True, None

    async def supplier_quantity(self, db: AsyncSession, supplier_sku: Optional[str]) -> Optional[int]:
        if not supplier_sku:
            return None
        result = await db.execute(
            select(SupplierCatalogEntry.supplier_stock_qty).where(SupplierCatalogEntry.sku == supplier_sku)
        )
        return result.scalar_one_or_none()

    async def sync_item(self, db: AsyncSession, item: InventoryItem) -> ItemSyncResult:
        """
        Recompute the listing of one item and push it when possible.

        Local fields are updated even when no storefront call is made.
        """
        stock = compute_site_stock(item.owned_quantity, await self.supplier_quantity(db, item.supplier_sku))
        item.virtual_safe_quantity = stock.virtual_safe
        item.listing_ship_days = listing_ship_days(stock, self.fulfillment)

        if not (item.external_product_ref and self.storefront.has_credentials):
            SYNC_PUSHES.labels(result="skipped").inc()
            return ItemSyncResult(item.id, stock.site, api_called=False, synced=False)

        synced, error = await self.push_stock(item.external_product_ref, item.external_variant_ref, stock.site)
        item.storefront_stock = stock.site
        item.last_synced_at = datetime.now(timezone.utc)
        item.sync_status = "synced" if synced else "error"
        SYNC_PUSHES.labels(result="synced" if synced else "error").inc()
        return ItemSyncResult(item.id, stock.site, api_called=True, synced=synced, error=error)


async def sync_items(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    item_ids: Iterable[uuid.UUID],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[ItemSyncResult]:
    """
    Background task: sync every touched item in its own transaction.

    Never raises; failures end up in the log and on the item's sync_status.
    """
    item_ids = list(dict.fromkeys(item_ids))
    if not item_ids or not settings.storefront.sync_enabled:
        return []

    results: List[ItemSyncResult] = []
    async with InventorySyncClient(settings.storefront, settings.fulfillment, transport=transport) as client:
        for item_id in item_ids:
            try:
                async with session_scope(session_factory) as db:
                    item = await db.get(InventoryItem, item_id)
                    if item is None:
                        logger.warning("Sync skipped, item not found", inventory_item_id=str(item_id))
                        continue
                    results.append(await client.sync_item(db, item))
            except Exception as e:
                SYNC_PUSHES.labels(result="error").inc()
                logger.error(
                    "Inventory sync failed",
                    inventory_item_id=str(item_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    logger.info(
        "Inventory sync finished",
        items=len(item_ids),
        pushed=sum(1 for r in results if r.api_called),
        failed=sum(1 for r in results if r.api_called and not r.synced),
    )
    return results
