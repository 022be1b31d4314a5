"""
Orders API Endpoints

Read access to normalized orders plus the operator status change. A
cancellation here runs the same compensation as a storefront
`order/cancelled` event.
"""

from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.config import Settings, get_settings
from order_engine.database.connection import get_db_dependency, get_session_factory_dependency
from order_engine.database.models import (
    FinancialTransaction,
    FulfillmentOrigin,
    NormalizedOrder,
    OrderStatus,
    PurchaseAlert,
)
from order_engine.exceptions import InvalidStatusTransition
from order_engine.fulfillment.cancellation import CancellationCompensator
from order_engine.fulfillment.orders import OrderAggregateWriter, OrderLineItem, load_line_items
from order_engine.serving.api.routes.webhooks import schedule_followups
from order_engine.serving.cache import orders_cache

router = APIRouter()


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class OrderSummary(BaseModel):
    """Order summary response"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_order_id: str
    order_number: Optional[str]
    status: OrderStatus
    customer_name: Optional[str]
    total_amount: float
    currency: str
    estimated_ship_days: int
    created_at: Optional[datetime]


class TransactionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    gross_amount: float
    cost_of_goods: float
    card_fee_estimate: float
    tax_provision: float
    net_profit: float
    category: Optional[str]
    transaction_date: Optional[date] = None


class OrderDetail(OrderSummary):
    """Detailed order response"""
    customer_email: Optional[str]
    customer_phone: Optional[str]
    shipping_address: Optional[str]
    updated_at: Optional[datetime]
    line_items: List[OrderLineItem] = []
    transaction: Optional[TransactionSummary] = None
    alert_ids: List[UUID] = []


class OrderListResponse(BaseModel):
    """Paginated order list"""
    items: List[OrderSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


class OrderStats(BaseModel):
    """Order counts and revenue"""
    total_orders: int
    by_status: Dict[str, int]
    total_revenue: float
    total_net_profit: float
    units_by_origin: Dict[str, int] = {}


class StatusUpdate(BaseModel):
    status: OrderStatus


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    db: AsyncSession = Depends(get_db_dependency),
) -> OrderListResponse:
    """List orders, newest first, optionally filtered by status."""
    query = select(NormalizedOrder)
    count_query = select(func.count(NormalizedOrder.id))
    if status is not None:
        query = query.where(NormalizedOrder.status == status)
        count_query = count_query.where(NormalizedOrder.status == status)

    total = (await db.execute(count_query)).scalar() or 0

    offset = (page - 1) * page_size
    result = await db.execute(
        query.order_by(NormalizedOrder.created_at.desc()).offset(offset).limit(page_size)
    )
    orders = result.scalars().all()

    return OrderListResponse(
        items=[OrderSummary.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get("/stats", response_model=OrderStats)
async def get_order_stats(db: AsyncSession = Depends(get_db_dependency)) -> OrderStats:
    """Order counts per status, units by fulfillment origin and posted revenue (cached)."""

    async def compute() -> dict:
        rows = await db.execute(
            select(NormalizedOrder.status, func.count(NormalizedOrder.id)).group_by(NormalizedOrder.status)
        )
        by_status = {status.value: count for status, count in rows.all()}
        units_by_origin = {origin.value: 0 for origin in FulfillmentOrigin}
        for line_items in (await db.execute(select(NormalizedOrder.line_items))).scalars():
            for line in line_items or []:
                units_by_origin[line["origin"]] = units_by_origin.get(line["origin"], 0) + int(line["quantity"])
        totals = (
            await db.execute(
                select(
                    func.coalesce(func.sum(FinancialTransaction.gross_amount), 0),
                    func.coalesce(func.sum(FinancialTransaction.net_profit), 0),
                )
            )
        ).one()
        return OrderStats(
            total_orders=sum(by_status.values()),
            by_status=by_status,
            total_revenue=float(totals[0]),
            total_net_profit=float(totals[1]),
            units_by_origin=units_by_origin,
        ).model_dump()

    return OrderStats(**await orders_cache.get_or_set("stats", compute))


@router.get("/{external_order_id}", response_model=OrderDetail)
async def get_order(
    external_order_id: str,
    db: AsyncSession = Depends(get_db_dependency),
) -> OrderDetail:
    """Order with its line items, revenue transaction and purchase alerts."""
    order = await OrderAggregateWriter(db).get(external_order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    transaction = (
        await db.execute(
            select(FinancialTransaction).where(FinancialTransaction.related_order_id == external_order_id)
        )
    ).scalars().first()
    alert_ids = (
        await db.execute(select(PurchaseAlert.id).where(PurchaseAlert.related_order_id == external_order_id))
    ).scalars().all()

    detail = OrderDetail.model_validate(order)
    detail.line_items = load_line_items(order)
    detail.transaction = TransactionSummary.model_validate(transaction) if transaction else None
    detail.alert_ids = list(alert_ids)
    return detail


@router.patch("/{external_order_id}/status", response_model=OrderSummary)
async def update_order_status(
    external_order_id: str,
    update: StatusUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_dependency),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dependency),
    settings: Settings = Depends(get_settings),
) -> OrderSummary:
    """
    Move an order along its state machine.

    Cancelling restores owned stock and voids pending purchase alerts.
    """
    writer = OrderAggregateWriter(db)
    order = await writer.get(external_order_id, lock=True)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    touched: List[UUID] = []
    try:
        if update.status == OrderStatus.CANCELLED:
            outcome = await CancellationCompensator(db).cancel(external_order_id)
            touched = outcome.touched_item_ids
        else:
            await writer.transition(order, update.status)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))

    await db.commit()
    schedule_followups(background_tasks, session_factory, settings, True, touched)
    return OrderSummary.model_validate(order)
