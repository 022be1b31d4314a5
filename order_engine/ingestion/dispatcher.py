"""
Webhook Dispatcher

Top-level handler for storefront deliveries:

1. decode the body and key it by external order id
2. record the raw event (before anything else, including the secret check)
3. validate the shared secret
4. run the event's processor in one unit of work
5. record the outcome on the raw event

Nothing raises past `handle`; every path ends in a WebhookOutcome carrying the
HTTP status and JSON body to answer with.
"""

from dataclasses import dataclass, field
import hmac
import json
import time
from typing import Any, Dict, List, Optional, Union
import uuid

import structlog
from prometheus_client import Counter, Histogram
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.config.settings import Settings
from order_engine.database.connection import session_scope
from order_engine.exceptions import PayloadValidationError, WebhookAuthError
from order_engine.ingestion.event_store import AUTH_REJECTED_MESSAGE, EventStore
from order_engine.ingestion.payloads import extract_event_type, extract_order_id, parse_order
from order_engine.ingestion.processors import EventProcessor, EventType, build_registry

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

WEBHOOKS_RECEIVED = Counter(
    "order_engine_webhooks_total",
    "Storefront webhook deliveries by outcome",
    ["event_type", "outcome"],
)

WEBHOOK_PROCESSING_TIME = Histogram(
    "order_engine_webhook_processing_seconds",
    "Time spent processing webhook deliveries",
    ["event_type"],
)


@dataclass
class WebhookOutcome:
    """HTTP answer plus the items whose storefront stock must be pushed"""
    status_code: int
    success: bool
    event: str
    message: str
    external_order_id: Optional[str] = None
    touched_item_ids: List[uuid.UUID] = field(default_factory=list)

    @property
    def body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success, "event": self.event, "message": self.message}
        if self.external_order_id is not None:
            body["order_id"] = self.external_order_id
        return body


def _metric_label(event_type: str) -> str:
    parsed = EventType.parse(event_type)
    return parsed.value if parsed is not None else "unknown"


class WebhookDispatcher:
    """
    Storefront webhook entry point.

    Example:
        dispatcher = WebhookDispatcher(session_factory, settings)
        outcome = await dispatcher.handle(await request.body(), request.headers.get("x-webhook-secret"))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        processors: Optional[List[EventProcessor]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.store = EventStore(session_factory)
        self.registry = build_registry(settings, processors)

    def verify_secret(self, provided: Optional[str]) -> None:
        """
        Raises:
            WebhookAuthError: when a secret is configured and `provided` differs
        """
        expected = self.settings.storefront.webhook_secret
        if expected is None or not expected.get_secret_value():
            return
        if provided is None or not hmac.compare_digest(
            provided.encode("utf-8"), expected.get_secret_value().encode("utf-8")
        ):
            raise WebhookAuthError(AUTH_REJECTED_MESSAGE)

    async def handle(
        self,
        raw_body: Union[bytes, str, Dict[str, Any]],
        provided_secret: Optional[str] = None,
    ) -> WebhookOutcome:
        """Process one delivery end to end"""
        try:
            body = json.loads(raw_body) if isinstance(raw_body, (bytes, str)) else raw_body
        except (ValueError, UnicodeDecodeError) as e:
            WEBHOOKS_RECEIVED.labels(event_type="unknown", outcome="invalid").inc()
            logger.warning("Webhook body is not valid JSON", error=str(e))
            return WebhookOutcome(400, False, "unknown", "Invalid JSON body")

        event_type = extract_event_type(body)
        try:
            external_order_id = extract_order_id(body)
        except PayloadValidationError as e:
            WEBHOOKS_RECEIVED.labels(event_type=_metric_label(event_type), outcome="invalid").inc()
            logger.warning("Webhook body rejected", event_type=event_type, error=str(e))
            return WebhookOutcome(400, False, event_type, str(e))

        log = logger.bind(external_order_id=external_order_id, event_type=event_type)
        await self.store.record_raw(external_order_id, event_type, body)

        try:
            self.verify_secret(provided_secret)
        except WebhookAuthError as e:
            WEBHOOKS_RECEIVED.labels(event_type=_metric_label(event_type), outcome="unauthorized").inc()
            log.warning("Webhook secret mismatch")
            await self.store.mark_processed(external_order_id, success=False, error_message=str(e))
            return WebhookOutcome(401, False, event_type, "Unauthorized", external_order_id)

        return await self._dispatch(external_order_id, event_type, body)

    async def replay(self, external_order_id: str) -> Optional[WebhookOutcome]:
        """
        Re-run the stored delivery of an order.

        A delivery stored after failing the secret check is refused with 401
        and never reaches its processor.

        Returns:
            None when nothing is stored for the order.
        """
        raw_event = await self.store.get(external_order_id)
        if raw_event is None:
            return None
        if raw_event.error_message == AUTH_REJECTED_MESSAGE:
            WEBHOOKS_RECEIVED.labels(event_type=_metric_label(raw_event.event_type), outcome="unauthorized").inc()
            logger.warning(
                "Refusing replay of unauthorized delivery",
                external_order_id=external_order_id,
                event_type=raw_event.event_type,
            )
            return WebhookOutcome(401, False, raw_event.event_type, "Unauthorized", external_order_id)
        logger.info("Replaying stored event", external_order_id=external_order_id, event_type=raw_event.event_type)
        return await self._dispatch(raw_event.external_order_id, raw_event.event_type, raw_event.payload)

    async def replay_pending(self, limit: int = 100) -> List[WebhookOutcome]:
        """Replay every stored delivery that has not succeeded yet"""
        outcomes = []
        for raw_event in await self.store.unprocessed(limit=limit):
            outcomes.append(
                await self._dispatch(raw_event.external_order_id, raw_event.event_type, raw_event.payload)
            )
        return outcomes

    async def _dispatch(self, external_order_id: str, event_type: str, body: Dict[str, Any]) -> WebhookOutcome:
        log = logger.bind(external_order_id=external_order_id, event_type=event_type)
        label = _metric_label(event_type)

        parsed_type = EventType.parse(event_type)
        processor = self.registry.get(parsed_type) if parsed_type is not None else None
        if processor is None:
            log.info("Unhandled event type acknowledged")
            await self.store.mark_processed(external_order_id, success=True)
            WEBHOOKS_RECEIVED.labels(event_type=label, outcome="ignored").inc()
            return WebhookOutcome(200, True, event_type, "Event type not handled", external_order_id)

        try:
            order = parse_order(body)
        except PayloadValidationError as e:
            log.warning("Webhook payload invalid", error=str(e))
            await self.store.mark_processed(external_order_id, success=False, error_message=str(e))
            WEBHOOKS_RECEIVED.labels(event_type=label, outcome="invalid").inc()
            return WebhookOutcome(400, False, event_type, str(e), external_order_id)

        start = time.perf_counter()
        try:
            async with session_scope(self.session_factory) as db:
                result = await processor.process(order, parsed_type, db)
        except Exception as e:
            log.error("Webhook processing failed", error=str(e), error_type=type(e).__name__)
            await self.store.mark_processed(
                external_order_id,
                success=False,
                error_message=f"{type(e).__name__}: {e}",
            )
            WEBHOOKS_RECEIVED.labels(event_type=label, outcome="error").inc()
            return WebhookOutcome(500, False, event_type, "Internal error while processing event", external_order_id)
        finally:
            WEBHOOK_PROCESSING_TIME.labels(event_type=label).observe(time.perf_counter() - start)

        await self.store.mark_processed(external_order_id, success=True)
        WEBHOOKS_RECEIVED.labels(event_type=label, outcome="processed" if result.processed else "skipped").inc()
        log.info("Webhook handled", message=result.message, touched_items=len(result.touched_item_ids))
        return WebhookOutcome(
            200,
            True,
            event_type,
            result.message,
            external_order_id,
            touched_item_ids=result.touched_item_ids,
        )
