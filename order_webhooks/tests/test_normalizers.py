"""Tests for platform payload normalization into CandidateOrder."""

import datetime
from decimal import Decimal

import pytest

from order_webhooks import platforms
from order_webhooks.exceptions import MissingProductError, NormalizationError
from order_webhooks.tests.payloads import (
    encode,
    shopify_order,
    woocommerce_order,
    youcan_order,
)


class TestShopifyNormalizer:
    def test_maps_customer_and_items(self):
        candidate = platforms.normalize("shopify", encode(shopify_order()))

        assert candidate.platform == "shopify"
        assert candidate.external_order_id == "820982911946154508"
        assert candidate.customer.name == "Jane Doe"
        assert candidate.customer.phone == "+1 555 123 4567"
        assert candidate.customer.address == (
            "12 Main Street, Springfield, IL, 62701, United States"
        )
        assert candidate.total == Decimal("49.99")
        assert candidate.currency == "USD"
        assert len(candidate.line_items) == 1
        item = candidate.line_items[0]
        assert item.product_id == "632910392"
        assert item.product_code == "MUG-BLUE"
        assert item.product_name == "Blue Mug"
        assert item.unit_price == Decimal("49.99")

    def test_accepts_parsed_dict(self):
        candidate = platforms.normalize("shopify", shopify_order())
        assert candidate.external_order_id == "820982911946154508"

    def test_falls_back_to_billing_address(self):
        payload = shopify_order(
            shipping_address=None,
            billing_address={"name": "Billing Name", "address1": "1 Billing Rd"},
            customer=None,
        )
        payload["phone"] = "+44 20 7946 0000"
        candidate = platforms.normalize("shopify", payload)
        assert candidate.customer.name == "Billing Name"
        assert candidate.customer.address == "1 Billing Rd"
        assert candidate.customer.phone == "+44 20 7946 0000"

    def test_missing_total_sums_line_items(self):
        payload = shopify_order(total_price=None)
        payload["line_items"][0]["quantity"] = 3
        candidate = platforms.normalize("shopify", payload)
        assert candidate.total == Decimal("149.97")

    def test_placed_at_is_parsed(self):
        candidate = platforms.normalize("shopify", shopify_order())
        assert isinstance(candidate.placed_at, datetime.datetime)


class TestYouCanNormalizer:
    def test_maps_variants(self):
        candidate = platforms.normalize("youcan", encode(youcan_order()))

        assert candidate.external_order_id == "yc-1001"
        assert candidate.customer.name == "Amina Alaoui"
        assert candidate.customer.address == "5 Rue Atlas, Casablanca, Morocco"
        assert candidate.total == Decimal("250.00")
        item = candidate.line_items[0]
        assert item.product_id == "prod-tea"
        assert item.product_code == "TEA-250"
        assert item.quantity == 2

    def test_first_and_last_name_when_full_name_missing(self):
        payload = youcan_order(customer={"first_name": "Omar", "last_name": "Idrissi"})
        candidate = platforms.normalize("youcan", payload)
        assert candidate.customer.name == "Omar Idrissi"
        # phone falls back to the shipping address
        assert candidate.customer.phone == "0612345678"


class TestWooCommerceNormalizer:
    def test_maps_order(self):
        candidate = platforms.normalize("woocommerce", encode(woocommerce_order()))

        assert candidate.external_order_id == "727"
        assert candidate.customer.name == "John Smith"
        assert candidate.customer.phone == "(555) 000-1111"
        assert candidate.customer.address.startswith("969 Market, San Francisco")
        assert candidate.total == Decimal("29.35")
        assert candidate.placed_at == datetime.datetime(
            2024, 5, 1, 14, 0, tzinfo=datetime.timezone.utc
        )

    def test_zero_product_id_uses_sku(self):
        payload = woocommerce_order()
        payload["line_items"][0]["product_id"] = 0
        candidate = platforms.normalize("woocommerce", payload)
        assert candidate.line_items[0].product_id == ""
        assert candidate.line_items[0].product_code == "WOO-HOODIE"


class TestNormalizationErrors:
    def test_invalid_json(self):
        with pytest.raises(NormalizationError, match="not valid JSON"):
            platforms.normalize("shopify", b"{not json")

    def test_missing_order_id(self):
        payload = shopify_order()
        del payload["id"]
        with pytest.raises(NormalizationError) as excinfo:
            platforms.normalize("shopify", payload)
        assert "id" in excinfo.value.errors

    def test_empty_line_items(self):
        with pytest.raises(NormalizationError) as excinfo:
            platforms.normalize("shopify", shopify_order(line_items=[]))
        assert "line_items" in excinfo.value.errors

    def test_line_item_without_product_identifier(self):
        payload = shopify_order()
        payload["line_items"].append({"title": "Gift wrap", "quantity": 1, "price": "2.00"})
        with pytest.raises(MissingProductError):
            platforms.normalize("shopify", payload)

    def test_missing_optional_fields_tolerated(self):
        payload = {"id": 1, "line_items": [{"sku": "ONLY-SKU"}]}
        candidate = platforms.normalize("shopify", payload)
        assert candidate.customer.name == ""
        assert candidate.currency == ""
        assert candidate.total == Decimal("0.00")

    def test_unknown_platform(self):
        with pytest.raises(NormalizationError, match="Unknown platform"):
            platforms.normalize("magento", shopify_order())

    def test_product_not_found_is_a_normalization_error(self):
        assert issubclass(MissingProductError, NormalizationError)


class TestTopicCheck:
    @pytest.mark.parametrize(
        "platform_type,headers,expected",
        [
            ("shopify", {"x-shopify-topic": "orders/create"}, "orders/create"),
            ("woocommerce", {"x-wc-webhook-topic": "order.created"}, "order.created"),
            ("youcan", {}, "order.create"),
        ],
    )
    def test_order_creation_accepted(self, platform_type, headers, expected):
        assert platforms.check_topic(platform_type, headers) == expected

    @pytest.mark.parametrize(
        "platform_type,headers",
        [
            ("shopify", {"x-shopify-topic": "orders/updated"}),
            ("shopify", {}),
            ("woocommerce", {"x-wc-webhook-topic": "product.created"}),
        ],
    )
    def test_other_topics_refused(self, platform_type, headers):
        with pytest.raises(NormalizationError) as excinfo:
            platforms.check_topic(platform_type, headers)
        assert "topic" in excinfo.value.errors

    def test_unknown_platform(self):
        with pytest.raises(NormalizationError):
            platforms.check_topic("etsy", {})
