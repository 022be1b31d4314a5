"""
Storefront Webhook Payloads

Typed view over the storefront's order webhook body. Fields that the platform
sends inconsistently (variant ids, SKUs, numeric ids as ints or strings, blank
strings) are normalized here so that downstream code never probes raw dicts.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from order_engine.exceptions import PayloadValidationError

# external_order_id columns are String(64)
MAX_ORDER_ID_LENGTH = 64


def _optional_str(value: Any) -> Optional[str]:
    """Ids arrive as ints, strings or blanks; keep a trimmed string or None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _money(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"not a monetary amount: {value!r}")


class StorefrontCustomer(BaseModel):
    """Customer block of an order webhook"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("id", "name", "email", "phone", mode="before")
    @classmethod
    def _strings(cls, v: Any) -> Optional[str]:
        return _optional_str(v)


class StorefrontAddress(BaseModel):
    """Shipping address block; only a flattened string is persisted"""
    model_config = ConfigDict(extra="ignore")

    address: Optional[str] = None
    number: Optional[str] = None
    floor: Optional[str] = None
    locality: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = Field(default=None, validation_alias=AliasChoices("province", "state"))
    zipcode: Optional[str] = None
    country: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _strings(cls, v: Any) -> Optional[str]:
        return _optional_str(v)

    def render(self) -> Optional[str]:
        """Single-line address, e.g. 'Rua A, 10 - Centro - Florianopolis - SC - 88000-000'"""
        street = ", ".join(p for p in (self.address, self.number, self.floor) if p)
        parts = [p for p in (street, self.locality, self.city, self.province, self.zipcode, self.country) if p]
        return " - ".join(parts) or None


class StorefrontLineItem(BaseModel):
    """One purchased product of an order webhook"""
    model_config = ConfigDict(extra="ignore")

    product_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("product_id", "id"))
    variant_id: Optional[str] = None
    name: str = ""
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Decimal("0")
    sku: Optional[str] = None
    barcode: Optional[str] = None

    @field_validator("product_id", "variant_id", "sku", "barcode", mode="before")
    @classmethod
    def _ids(cls, v: Any) -> Optional[str]:
        return _optional_str(v)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _optional_str(v) or ""

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, v: Any) -> Decimal:
        return _money(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v: Any) -> Any:
        if v is None or v == "":
            return 1
        return v

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class StorefrontOrder(BaseModel):
    """
    Order webhook body.

    `event` may be sent as `event` or `type`. The order id is the only
    mandatory field: it keys the raw event store and every idempotency gate.
    """
    model_config = ConfigDict(extra="ignore")

    event: Optional[str] = Field(default=None, validation_alias=AliasChoices("event", "type"))
    id: str
    number: Optional[str] = None
    store_id: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    gateway: Optional[str] = None
    total: Decimal = Decimal("0")
    currency: str = "BRL"
    created_at: Optional[str] = None
    customer: Optional[StorefrontCustomer] = None
    products: List[StorefrontLineItem] = Field(default_factory=list)
    shipping_address: Optional[StorefrontAddress] = None

    @field_validator("id", mode="before")
    @classmethod
    def _order_id(cls, v: Any) -> str:
        text = _optional_str(v)
        if text is None:
            raise ValueError("order id is required")
        if len(text) > MAX_ORDER_ID_LENGTH:
            raise ValueError(f"order id longer than {MAX_ORDER_ID_LENGTH} characters")
        return text

    @field_validator("event", "number", "store_id", "status", "payment_status", "gateway", "created_at", mode="before")
    @classmethod
    def _strings(cls, v: Any) -> Optional[str]:
        return _optional_str(v)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v: Any) -> str:
        return (_optional_str(v) or "BRL").upper()[:3]

    @field_validator("total", mode="before")
    @classmethod
    def _total(cls, v: Any) -> Decimal:
        return _money(v)

    @field_validator("products", mode="before")
    @classmethod
    def _products(cls, v: Any) -> Any:
        return v or []

    @property
    def display_number(self) -> str:
        return self.number or self.id

    @property
    def order_date(self) -> date:
        """Date part of `created_at`, today when absent or unparseable"""
        if self.created_at:
            try:
                return datetime.fromisoformat(self.created_at.replace("Z", "+00:00")).date()
            except ValueError:
                try:
                    return date.fromisoformat(self.created_at[:10])
                except ValueError:
                    pass
        return date.today()

    def is_paid(self, event_type: Optional[str] = None) -> bool:
        """Fulfillment only runs for paid orders"""
        return (event_type or self.event) == "order/paid" or (self.payment_status or "").lower() == "paid"


def extract_order_id(body: Dict[str, Any]) -> str:
    """Order id from a raw body, before full validation."""
    order_id = _optional_str(body.get("id")) if isinstance(body, dict) else None
    if order_id is None:
        raise PayloadValidationError("Webhook body has no order id")
    if len(order_id) > MAX_ORDER_ID_LENGTH:
        raise PayloadValidationError(f"Order id longer than {MAX_ORDER_ID_LENGTH} characters")
    return order_id


def extract_event_type(body: Dict[str, Any]) -> str:
    """Event name from a raw body (`event` or `type`), 'unknown' when absent."""
    if not isinstance(body, dict):
        return "unknown"
    return _optional_str(body.get("event")) or _optional_str(body.get("type")) or "unknown"


def parse_order(body: Dict[str, Any]) -> StorefrontOrder:
    """
    Validate a webhook body into a StorefrontOrder.

    Raises:
        PayloadValidationError: when the body cannot be interpreted
    """
    try:
        return StorefrontOrder.model_validate(body)
    except ValidationError as e:
        raise PayloadValidationError(f"Invalid order payload: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e
