"""
Storefront Webhook Endpoints

The platform posts every order event here. The response always carries
`{"success", "event", "message"}`; business skips answer 200 so the platform
does not retry them, while 500 invites a retry that the idempotency gates
make safe.
"""

from typing import List
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.config import Settings, get_settings
from order_engine.database.connection import get_session_factory_dependency
from order_engine.ingestion.dispatcher import WebhookDispatcher, WebhookOutcome
from order_engine.inventory.sync import sync_items
from order_engine.serving.cache import invalidate_order_views

router = APIRouter()


def schedule_followups(
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    success: bool,
    touched_item_ids: List[uuid.UUID],
) -> None:
    """Cache invalidation and storefront stock push, after the response"""
    if not success:
        return
    background_tasks.add_task(invalidate_order_views)
    if touched_item_ids:
        background_tasks.add_task(sync_items, session_factory, settings, touched_item_ids)


def _respond(outcome: WebhookOutcome, background_tasks, session_factory, settings) -> JSONResponse:
    schedule_followups(background_tasks, session_factory, settings, outcome.success, outcome.touched_item_ids)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@router.post("/storefront")
async def receive_storefront_event(
    request: Request,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dependency),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Receive one storefront order event."""
    dispatcher = WebhookDispatcher(session_factory, settings)
    outcome = await dispatcher.handle(
        await request.body(),
        request.headers.get(settings.storefront.webhook_secret_header),
    )
    return _respond(outcome, background_tasks, session_factory, settings)


@router.post("/replay/{external_order_id}")
async def replay_storefront_event(
    external_order_id: str,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dependency),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Re-run the stored delivery of an order (operator action); secret-rejected deliveries answer 401."""
    dispatcher = WebhookDispatcher(session_factory, settings)
    outcome = await dispatcher.replay(external_order_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail="No stored event for this order")
    return _respond(outcome, background_tasks, session_factory, settings)
