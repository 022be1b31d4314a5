"""
Storefront event processors.

Each processor handles a set of event types and runs inside the dispatcher's
unit of work. Errors propagate to the dispatcher, which records them on the
raw event.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.config.settings import Settings
from order_engine.fulfillment.cancellation import CancellationCompensator
from order_engine.fulfillment.service import FulfillmentService
from order_engine.ingestion.payloads import StorefrontOrder

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    """Storefront order events"""
    ORDER_CREATED = "order/created"
    ORDER_PAID = "order/paid"
    ORDER_CANCELLED = "order/cancelled"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass
class ProcessingResult:
    """Business outcome of one event; skips are successes"""
    message: str
    processed: bool = True
    touched_item_ids: List[uuid.UUID] = field(default_factory=list)


class EventProcessor(ABC):
    """Abstract base class for event processors"""

    def __init__(self, settings: Settings):
        self.settings = settings

    @abstractmethod
    async def process(self, order: StorefrontOrder, event_type: EventType, db: AsyncSession) -> ProcessingResult:
        """
        Process a single event.

        Args:
            order: The validated webhook body
            event_type: The recognized event type
            db: Session of the event's unit of work

        Returns:
            ProcessingResult describing what was done
        """

    @abstractmethod
    def get_event_types(self) -> List[EventType]:
        """Return list of event types this processor handles"""


class OrderPaymentProcessor(EventProcessor):
    """order/created and order/paid: fulfillment runs once the order is paid"""

    def get_event_types(self) -> List[EventType]:
        return [EventType.ORDER_CREATED, EventType.ORDER_PAID]

    async def process(self, order: StorefrontOrder, event_type: EventType, db: AsyncSession) -> ProcessingResult:
        outcome = await FulfillmentService(db, self.settings).process_order(order, event_type.value)
        return ProcessingResult(
            message=outcome.message,
            processed=outcome.processed,
            touched_item_ids=outcome.touched_item_ids,
        )


class OrderCancellationProcessor(EventProcessor):
    """order/cancelled: compensate whatever the order did"""

    def get_event_types(self) -> List[EventType]:
        return [EventType.ORDER_CANCELLED]

    async def process(self, order: StorefrontOrder, event_type: EventType, db: AsyncSession) -> ProcessingResult:
        outcome = await CancellationCompensator(db).cancel(order.id)
        return ProcessingResult(message=outcome.message, touched_item_ids=outcome.touched_item_ids)


def build_registry(settings: Settings, processors: Optional[List[EventProcessor]] = None) -> Dict[EventType, EventProcessor]:
    """Map every handled event type to its processor"""
    registry: Dict[EventType, EventProcessor] = {}
    for processor in processors or [OrderPaymentProcessor(settings), OrderCancellationProcessor(settings)]:
        for event_type in processor.get_event_types():
            registry[event_type] = processor
    return registry
