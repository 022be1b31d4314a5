"""
Purchase Alert Endpoints

Buyers work the drop-ship replenishment queue here: list pending alerts and
resolve (or cancel) them once the supplier purchase is made.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.database.connection import get_db_dependency
from order_engine.database.models import AlertStatus, PurchaseAlert
from order_engine.exceptions import InvalidStatusTransition
from order_engine.inventory.alerts import PurchaseAlertEmitter
from order_engine.serving.cache import alerts_cache, invalidate_order_views

router = APIRouter()


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    inventory_item_id: Optional[UUID]
    related_order_id: str
    quantity_needed: int
    supplier_sku: Optional[str]
    status: AlertStatus
    notes: Optional[str]
    created_at: Optional[datetime]


class AlertListResponse(BaseModel):
    items: List[AlertResponse]
    total: int
    page: int
    page_size: int


class AlertStats(BaseModel):
    by_status: Dict[str, int]
    pending_units: int


class AlertUpdate(BaseModel):
    status: AlertStatus
    notes: Optional[str] = Field(default=None, max_length=2000)


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    status: Optional[AlertStatus] = None,
    related_order_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db_dependency),
) -> AlertListResponse:
    """List purchase alerts, oldest first."""
    conditions = []
    if status is not None:
        conditions.append(PurchaseAlert.status == status)
    if related_order_id:
        conditions.append(PurchaseAlert.related_order_id == related_order_id)

    total = (await db.execute(select(func.count(PurchaseAlert.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(PurchaseAlert)
        .where(*conditions)
        .order_by(PurchaseAlert.created_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return AlertListResponse(
        items=[AlertResponse.model_validate(a) for a in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=AlertStats)
async def get_alert_stats(db: AsyncSession = Depends(get_db_dependency)) -> AlertStats:
    """Alert counts per status and units still to purchase (cached)."""

    async def compute() -> dict:
        rows = await db.execute(
            select(PurchaseAlert.status, func.count(PurchaseAlert.id)).group_by(PurchaseAlert.status)
        )
        pending_units = (
            await db.execute(
                select(func.coalesce(func.sum(PurchaseAlert.quantity_needed), 0))
                .where(PurchaseAlert.status == AlertStatus.PENDING)
            )
        ).scalar()
        return AlertStats(
            by_status={status.value: count for status, count in rows.all()},
            pending_units=int(pending_units or 0),
        ).model_dump()

    return AlertStats(**await alerts_cache.get_or_set("stats", compute))


@router.patch("/{alert_id}", response_model=AlertResponse)
async def update_alert(
    alert_id: UUID,
    update: AlertUpdate,
    db: AsyncSession = Depends(get_db_dependency),
) -> AlertResponse:
    """Resolve or cancel a pending alert."""
    try:
        alert = await PurchaseAlertEmitter(db).transition(alert_id, update.status)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")

    if update.notes is not None:
        alert.notes = update.notes
    await db.commit()
    await invalidate_order_views()
    return AlertResponse.model_validate(alert)
