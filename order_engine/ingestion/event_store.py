"""
Raw Event Store

Durable audit copy of every storefront delivery, keyed by external order id.
Each call runs in its own short transaction so the record survives a failed
business path.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.database.connection import session_scope
from order_engine.database.models import RawEvent
from order_engine.database.statements import upsert

logger = structlog.get_logger(__name__)

# error_message column is Text, keep log-sized
MAX_ERROR_LENGTH = 2000

# Rejected deliveries are never replayed
AUTH_REJECTED_MESSAGE = "unauthorized: webhook secret mismatch"


class EventStore:
    """
    Raw event repository.

    Example:
        store = EventStore(session_factory)
        await store.record_raw("5001", "order/paid", body)
        ...
        await store.mark_processed("5001", success=True)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record_raw(
        self,
        external_order_id: str,
        event_type: str,
        payload: Dict[str, Any],
    ) -> Optional[uuid.UUID]:
        """
        Upsert the delivery for `external_order_id`.

        A redelivery replaces the stored payload and resets the outcome fields.
        Best-effort: a failure is logged and None is returned so processing
        can continue.
        """
        try:
            async with session_scope(self._session_factory) as db:
                raw_event_id = await upsert(
                    db,
                    RawEvent,
                    values={
                        "external_order_id": external_order_id,
                        "event_type": event_type,
                        "payload": payload,
                        "processed": False,
                        "processed_at": None,
                        "error_message": None,
                        "delivery_count": 1,
                    },
                    conflict_columns=["external_order_id"],
                    update_columns=["event_type", "payload", "processed", "processed_at", "error_message"],
                    extra_updates={"delivery_count": RawEvent.delivery_count + 1},
                )
            logger.debug(
                "Raw event recorded",
                external_order_id=external_order_id,
                event_type=event_type,
                raw_event_id=str(raw_event_id),
            )
            return raw_event_id
        except Exception as e:
            logger.warning(
                "Failed to record raw event",
                external_order_id=external_order_id,
                event_type=event_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def mark_processed(
        self,
        external_order_id: str,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Record the outcome of processing.

        `processed` reflects success; failures keep processed=False so the
        event shows up for replay, with the error message attached.
        """
        message = None if success else (error_message or "unknown error")[:MAX_ERROR_LENGTH]
        try:
            async with session_scope(self._session_factory) as db:
                await db.execute(
                    update(RawEvent)
                    .where(RawEvent.external_order_id == external_order_id)
                    .values(
                        processed=success,
                        processed_at=datetime.now(timezone.utc),
                        error_message=message,
                    )
                )
        except Exception as e:
            logger.warning(
                "Failed to mark raw event",
                external_order_id=external_order_id,
                success=success,
                error=str(e),
            )

    async def get(self, external_order_id: str) -> Optional[RawEvent]:
        """Fetch the stored delivery for an order"""
        async with session_scope(self._session_factory) as db:
            result = await db.execute(
                select(RawEvent).where(RawEvent.external_order_id == external_order_id)
            )
            return result.scalar_one_or_none()

    async def unprocessed(self, limit: int = 100) -> List[RawEvent]:
        """Deliveries not yet processed successfully, oldest first (auth rejections excluded)"""
        async with session_scope(self._session_factory) as db:
            result = await db.execute(
                select(RawEvent)
                .where(RawEvent.processed.is_(False))
                .where(
                    (RawEvent.error_message.is_(None))
                    | (RawEvent.error_message != AUTH_REJECTED_MESSAGE)
                )
                .order_by(RawEvent.received_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())
