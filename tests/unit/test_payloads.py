"""
Unit Tests - Webhook Payloads
"""
from datetime import date
from decimal import Decimal

import pytest

from order_engine.exceptions import PayloadValidationError
from order_engine.ingestion.payloads import (
    StorefrontLineItem,
    extract_event_type,
    extract_order_id,
    parse_order,
)


class TestParseOrder:
    """Tests for parse_order"""

    def test_numeric_ids_become_strings(self, order_payload):
        """Test ids sent as integers are normalized to strings"""
        order = parse_order(order_payload(order_id=5001))

        assert order.id == "5001"
        assert order.customer.id == "77"
        assert order.products[0].product_id == "901"
        assert order.products[0].variant_id == "9011"

    def test_amounts_are_decimals(self, order_payload):
        """Test money fields are parsed as Decimal"""
        order = parse_order(order_payload(total="1000.00"))

        assert order.total == Decimal("1000.00")
        assert order.products[0].price == Decimal("50.00")
        assert order.products[0].line_total == Decimal("100.00")

    def test_event_accepted_under_type_key(self, order_payload):
        """Test the event name may arrive as `type`"""
        body = order_payload()
        body["type"] = body.pop("event")

        assert parse_order(body).event == "order/paid"

    def test_blank_optional_fields_become_none(self, order_payload):
        """Test blank SKU and variant are treated as absent"""
        order = parse_order(order_payload(products=[
            {"product_id": 1, "variant_id": "", "name": "Board", "quantity": 1, "price": "10", "sku": "  "},
        ]))

        assert order.products[0].variant_id is None
        assert order.products[0].sku is None

    def test_missing_products_defaults_to_empty(self, order_payload):
        """Test a body without products still parses"""
        body = order_payload()
        body["products"] = None

        assert parse_order(body).products == []

    def test_missing_id_raises(self, order_payload):
        """Test a body without id is rejected"""
        body = order_payload()
        del body["id"]

        with pytest.raises(PayloadValidationError):
            parse_order(body)

    def test_overlong_id_raises(self, order_payload):
        """Test an id wider than the stored column is rejected"""
        with pytest.raises(PayloadValidationError, match="longer than 64"):
            parse_order(order_payload(order_id="9" * 65))

    def test_zero_quantity_raises(self, order_payload):
        """Test quantities below one are rejected"""
        with pytest.raises(PayloadValidationError):
            parse_order(order_payload(products=[{"product_id": 1, "name": "Board", "quantity": 0, "price": "1"}]))

    def test_invalid_total_raises(self, order_payload):
        """Test a non-numeric total is rejected"""
        with pytest.raises(PayloadValidationError):
            parse_order(order_payload(total="abc"))

    def test_shipping_address_rendered(self, order_payload):
        """Test the address block flattens to one line"""
        order = parse_order(order_payload())

        assert order.shipping_address.render() == (
            "Rua das Gaivotas, 120 - Campeche - Florianopolis - SC - 88063-000 - BR"
        )

    def test_order_date_from_created_at(self, order_payload):
        """Test the transaction date comes from created_at"""
        assert parse_order(order_payload()).order_date == date(2026, 3, 10)

    def test_order_date_defaults_to_today(self, order_payload):
        """Test an unparseable created_at falls back to today"""
        assert parse_order(order_payload(created_at="not a date")).order_date == date.today()


class TestIsPaid:
    """Tests for the paid check"""

    def test_paid_event(self, order_payload):
        """Test order/paid always counts as paid"""
        order = parse_order(order_payload(event="order/paid", payment_status="pending"))
        assert order.is_paid()

    def test_created_event_with_paid_status(self, order_payload):
        """Test order/created with payment_status paid counts as paid"""
        order = parse_order(order_payload(event="order/created", payment_status="paid"))
        assert order.is_paid()

    def test_created_event_pending(self, order_payload):
        """Test order/created with a pending payment is not paid"""
        order = parse_order(order_payload(event="order/created"))
        assert not order.is_paid()


class TestExtractors:
    """Tests for raw body extractors"""

    def test_extract_order_id(self):
        """Test the order id is read before full validation"""
        assert extract_order_id({"id": 42}) == "42"

    def test_extract_order_id_missing(self):
        """Test a missing id raises"""
        with pytest.raises(PayloadValidationError):
            extract_order_id({"event": "order/paid"})

    def test_extract_order_id_not_a_dict(self):
        """Test a JSON array body raises"""
        with pytest.raises(PayloadValidationError):
            extract_order_id(["id"])

    def test_extract_order_id_length(self):
        """Test ids up to 64 characters are kept and longer ones raise"""
        assert extract_order_id({"id": "7" * 64}) == "7" * 64
        with pytest.raises(PayloadValidationError, match="longer than 64"):
            extract_order_id({"id": "7" * 65})

    def test_extract_event_type(self):
        """Test event falls back to type, then unknown"""
        assert extract_event_type({"event": "order/paid"}) == "order/paid"
        assert extract_event_type({"type": "order/cancelled"}) == "order/cancelled"
        assert extract_event_type({}) == "unknown"


class TestLineItem:
    """Tests for StorefrontLineItem"""

    def test_product_id_alias(self):
        """Test `id` is accepted as the product id"""
        item = StorefrontLineItem.model_validate({"id": 7, "name": "Leash"})
        assert item.product_id == "7"
        assert item.quantity == 1
