"""
Unit Tests - Line-Item Matcher
"""
from order_engine.database.models import FulfillmentOrigin, ItemSourceType
from order_engine.fulfillment.matcher import (
    LineItemMatcher,
    match_by_sku,
    name_phrase,
    sanitize_sku,
)
from order_engine.ingestion.payloads import StorefrontLineItem


def line(**fields) -> StorefrontLineItem:
    fields.setdefault("name", "Unlisted product")
    return StorefrontLineItem.model_validate(fields)


class TestSanitizeSku:
    """Tests for sanitize_sku"""

    def test_keeps_allowed_characters(self):
        """Test letters, digits and . _ / - survive"""
        assert sanitize_sku("KITE-9m_v2/2026.1") == "KITE-9m_v2/2026.1"

    def test_strips_injection_characters(self):
        """Test quotes, commas, parentheses and spaces are removed"""
        assert sanitize_sku("ABC',sku.eq.1) OR 1=1") == "ABCsku.eq.1OR11"

    def test_empty_after_cleaning(self):
        """Test a SKU made only of disallowed characters is dropped"""
        assert sanitize_sku("'\"(),") is None
        assert sanitize_sku(None) is None

    def test_truncates(self):
        """Test very long SKUs are truncated"""
        assert len(sanitize_sku("A" * 500)) == 100


class TestNamePhrase:
    """Tests for name_phrase"""

    def test_first_three_tokens(self):
        """Test only the leading tokens are used, lowercased"""
        assert name_phrase("Kite  Rebel 9m Kit Completo") == "kite rebel 9m"

    def test_blank_name(self):
        """Test a blank name yields no phrase"""
        assert name_phrase("   ") is None


class TestLineItemMatcher:
    """Tests for the matching cascade"""

    async def test_variant_beats_conflicting_sku(self, make_item, test_db):
        """Test a variant-id match wins over a different item matching by SKU"""
        by_variant = await make_item(name="Kite Rebel 9m", external_variant_ref="9011")
        await make_item(name="Kite Rebel 12m", sku="KITE-REBEL-9")

        result = await LineItemMatcher().match(
            line(product_id="901", variant_id="9011", sku="KITE-REBEL-9"), test_db
        )

        assert result.item.id == by_variant.id
        assert result.strategy == "variant"

    async def test_product_ref_match(self, make_item, test_db):
        """Test the product id is tried after the variant id"""
        item = await make_item(external_product_ref="901")

        result = await LineItemMatcher().match(line(product_id="901", variant_id="nope"), test_db)

        assert result.item.id == item.id
        assert result.strategy == "product"

    async def test_sku_match_on_ean(self, make_item, test_db):
        """Test the SKU lookup also checks the EAN column"""
        item = await make_item(ean="7891234567890")

        result = await LineItemMatcher().match(line(sku="7891234567890"), test_db)

        assert result.item.id == item.id
        assert result.strategy == "sku"

    async def test_sku_is_sanitized_before_lookup(self, make_item, test_db):
        """Test a SKU carrying junk characters matches its clean form"""
        item = await make_item(sku="KITE-9")

        found = await match_by_sku(line(sku=" KITE-9' "), test_db)

        assert found.id == item.id

    async def test_fuzzy_name_match(self, make_item, test_db):
        """Test a case-insensitive substring match on the first name tokens"""
        item = await make_item(name="Prancha KITE Rebel 9m Twintip")

        result = await LineItemMatcher().match(line(name="kite rebel 9m - azul"), test_db)

        assert result.item.id == item.id
        assert result.strategy == "name"

    async def test_fuzzy_name_escapes_wildcards(self, make_item, test_db):
        """Test LIKE wildcards in a product name are matched literally"""
        await make_item(name="Trapezio Cintura M")

        result = await LineItemMatcher().match(line(name="%"), test_db)

        assert result.item is None

    async def test_unmatched_infers_dropship(self, make_item, test_db):
        """Test an unknown product is reported unmatched with a drop-ship origin"""
        await make_item(name="Kite Rebel 9m", sku="KITE-9")

        result = await LineItemMatcher().match(line(product_id="555", name="Wetsuit 4/3"), test_db)

        assert not result.matched
        assert result.origin == FulfillmentOrigin.SUPPLIER_DROPSHIP

    async def test_origin_follows_source_type(self, make_item, test_db):
        """Test a supplier-virtual record classifies as drop-ship"""
        await make_item(external_product_ref="77", source_type=ItemSourceType.SUPPLIER_VIRTUAL)

        result = await LineItemMatcher().match(line(product_id="77"), test_db)

        assert result.matched
        assert result.origin == FulfillmentOrigin.SUPPLIER_DROPSHIP

    async def test_custom_strategy_order(self, make_item, test_db):
        """Test strategies can be reordered"""
        by_sku = await make_item(name="A", sku="X-1")
        await make_item(name="B", external_variant_ref="v1")

        matcher = LineItemMatcher(strategies=[("sku", match_by_sku)])
        result = await matcher.match(line(variant_id="v1", sku="X-1"), test_db)

        assert result.item.id == by_sku.id
