"""
Domain exceptions raised by the order engine.

The webhook dispatcher is the single place these are translated into
RawEvent error messages and HTTP status codes.
"""


class OrderEngineError(Exception):
    """Base class for all order engine errors"""


class PayloadValidationError(OrderEngineError):
    """Webhook body is not JSON or lacks the fields needed to key it"""


class WebhookAuthError(OrderEngineError):
    """Shared-secret header did not match the configured secret"""


class InvalidStatusTransition(OrderEngineError):
    """Requested status change is not allowed by the order/alert state machine"""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move from '{current}' to '{requested}'")


class InventoryItemNotFound(OrderEngineError):
    """Stock ledger was asked to move stock on an unknown inventory item"""

    def __init__(self, inventory_item_id):
        self.inventory_item_id = inventory_item_id
        super().__init__(f"Inventory item not found: {inventory_item_id}")


class ImmutableRecordError(OrderEngineError):
    """An append-only row (stock movement, revenue transaction) was modified"""
