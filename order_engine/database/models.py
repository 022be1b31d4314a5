"""
Database Models - Order Fulfillment Schema

Tables owned or consumed by the webhook pipeline:

Audit:
- RawEvent: every inbound storefront delivery, one row per external order id

Inventory:
- InventoryItem: internal catalog with owned stock and storefront references
- StockMovement: append-only history of every owned-stock change
- SupplierCatalogEntry: read-only supplier reference data (cost, supplier stock)
- PurchaseAlert: replenishment requests raised for drop-ship line items

Orders and accounting:
- NormalizedOrder: internal order aggregate with embedded line items
- FinancialTransaction: one immutable revenue posting per order
- TaxRule / FinancialConfig: read-only rate configuration
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from order_engine.exceptions import ImmutableRecordError

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class ItemSourceType(str, Enum):
    """How an inventory record is backed"""
    OWNED = "owned"
    SUPPLIER_VIRTUAL = "supplier_virtual"


class FulfillmentOrigin(str, Enum):
    """Where a sold line item is fulfilled from"""
    OWNED_STOCK = "owned_stock"
    SUPPLIER_DROPSHIP = "supplier_dropship"


class MovementReason(str, Enum):
    """Reason codes for stock movements"""
    SALE = "sale"
    SALE_CANCELLED = "sale_cancelled"
    MANUAL = "manual"


class OrderStatus(str, Enum):
    """Normalized order status"""
    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class AlertStatus(str, Enum):
    """Purchase alert status"""
    PENDING = "pending"
    CANCELLED = "cancelled"
    RESOLVED = "resolved"


class TransactionKind(str, Enum):
    """Financial transaction kind"""
    REVENUE = "revenue"


# =============================================================================
# AUDIT
# =============================================================================

class RawEvent(Base):
    """
    Raw Storefront Event

    Durable copy of the latest delivery for an external order. Written before
    any business logic runs and updated with the outcome afterwards.
    """
    __tablename__ = "storefront_events_raw"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    delivery_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_storefront_events_raw_processed", "processed"),
    )


# =============================================================================
# INVENTORY
# =============================================================================

class InventoryItem(Base):
    """
    Inventory Item

    Internal catalog record. `owned_quantity` is only ever written by the
    stock ledger; storefront references are used by the line-item matcher.
    """
    __tablename__ = "inventory_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Stock
    owned_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    virtual_safe_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source_type: Mapped[ItemSourceType] = mapped_column(
        SQLEnum(ItemSourceType), default=ItemSourceType.OWNED, nullable=False
    )

    # Pricing
    cost_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    sale_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    fiscal_category: Mapped[Optional[str]] = mapped_column(String(50))

    # Identifiers
    supplier_sku: Mapped[Optional[str]] = mapped_column(String(100))
    sku: Mapped[Optional[str]] = mapped_column(String(100))
    ean: Mapped[Optional[str]] = mapped_column(String(32))
    external_product_ref: Mapped[Optional[str]] = mapped_column(String(64))
    external_variant_ref: Mapped[Optional[str]] = mapped_column(String(64))

    # Storefront sync state
    storefront_stock: Mapped[Optional[int]] = mapped_column(Integer)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sync_status: Mapped[Optional[str]] = mapped_column(String(20))
    listing_ship_days: Mapped[Optional[int]] = mapped_column(Integer)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    movements: Mapped[List["StockMovement"]] = relationship(back_populates="inventory_item")

    __table_args__ = (
        CheckConstraint("owned_quantity >= 0", name="ck_inventory_items_owned_non_negative"),
        Index("ix_inventory_items_variant_ref", "external_variant_ref"),
        Index("ix_inventory_items_product_ref", "external_product_ref"),
        Index("ix_inventory_items_sku", "sku"),
        Index("ix_inventory_items_ean", "ean"),
    )


class StockMovement(Base):
    """
    Stock Movement

    Append-only. Replaying the signed deltas of an item rebuilds its
    `owned_quantity`.
    """
    __tablename__ = "stock_movements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    inventory_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("inventory_items.id")
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[MovementReason] = mapped_column(SQLEnum(MovementReason), nullable=False)
    related_order_id: Mapped[Optional[str]] = mapped_column(String(64))

    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    clamped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    inventory_item: Mapped[Optional["InventoryItem"]] = relationship(back_populates="movements")

    __table_args__ = (
        Index("ix_stock_movements_item", "inventory_item_id"),
        Index("ix_stock_movements_order", "related_order_id"),
    )


class SupplierCatalogEntry(Base):
    """
    Supplier Catalog Entry

    Reference data populated by the supplier spreadsheet importer; read-only here.
    """
    __tablename__ = "supplier_catalog"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(100))
    cost_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    supplier_stock_qty: Mapped[Optional[int]] = mapped_column(Integer)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class PurchaseAlert(Base):
    """
    Purchase Alert

    Pending replenishment request for a drop-ship line item. Cancelled, never
    deleted, when its order is cancelled.
    """
    __tablename__ = "purchase_alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    inventory_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("inventory_items.id")
    )
    related_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity_needed: Mapped[int] = mapped_column(Integer, nullable=False)
    supplier_sku: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[AlertStatus] = mapped_column(
        SQLEnum(AlertStatus), default=AlertStatus.PENDING, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_purchase_alerts_order", "related_order_id"),
        Index("ix_purchase_alerts_status", "status"),
    )


# =============================================================================
# ORDERS AND ACCOUNTING
# =============================================================================

class NormalizedOrder(Base):
    """
    Normalized Order

    Created exactly once per external order id. `line_items` holds the
    serialized OrderLineItem list in payload order.
    """
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    order_number: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False
    )

    # Customer snapshot
    customer_name: Mapped[Optional[str]] = mapped_column(String(200))
    customer_email: Mapped[Optional[str]] = mapped_column(String(200))
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50))
    shipping_address: Mapped[Optional[str]] = mapped_column(Text)

    line_items: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="BRL")
    estimated_ship_days: Mapped[int] = mapped_column(Integer, nullable=False)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_orders_status", "status"),
    )


class FinancialTransaction(Base):
    """
    Financial Transaction

    Revenue posting for an order. Derived amounts are computed once at insert
    and never rewritten.
    """
    __tablename__ = "financial_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[TransactionKind] = mapped_column(
        SQLEnum(TransactionKind), default=TransactionKind.REVENUE, nullable=False
    )
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    related_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # Amounts
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cost_of_goods: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    card_fee_estimate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_provision: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_profit: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Classification
    cost_center: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(50))
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    customer_email: Mapped[Optional[str]] = mapped_column(String(200))
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("kind", "source", "related_order_id", name="uq_financial_transactions_order"),
        Index("ix_financial_transactions_date", "transaction_date"),
    )


class TaxRule(Base):
    """Category-specific tax and card fee rates (percent)"""
    __tablename__ = "tax_rules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    category: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(100))
    card_fee_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), default=0, nullable=False)
    estimated_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class FinancialConfig(Base):
    """Global rate defaults (single row)"""
    __tablename__ = "financial_config"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    default_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    default_card_fee_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# =============================================================================
# APPEND-ONLY GUARDS
# =============================================================================

@event.listens_for(StockMovement, "before_update")
@event.listens_for(FinancialTransaction, "before_update")
def _reject_update(mapper, connection, target) -> None:
    raise ImmutableRecordError(f"{type(target).__name__} rows are immutable")
