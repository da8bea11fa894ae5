"""Boundary schemas for raw platform order payloads.

These serializers only validate and coerce. Each platform variant in
:mod:`order_webhooks.platforms` converts ``validated_data`` straight into a
:class:`~order_webhooks.platforms.base.CandidateOrder`; nothing outside the
normalizer ever sees a raw platform shape. Unknown keys are ignored.

The read-only model serializers at the bottom back the attempt history API.
"""

from rest_framework import serializers

from .models import IntegrationConnection, WebhookAttempt

MONEY = {"max_digits": 16, "decimal_places": 4}


def _text(**kwargs):
    """Optional, nullable, blank-tolerant text field."""
    return serializers.CharField(
        required=False, allow_blank=True, allow_null=True, **kwargs
    )


def _money(**kwargs):
    return serializers.DecimalField(
        required=False, allow_null=True, **MONEY, **kwargs
    )


# ---------------------------------------------------------------------------
# YouCan (order.create REST hook)
# ---------------------------------------------------------------------------


class YouCanProductSerializer(serializers.Serializer):
    id = _text()
    name = _text()


class YouCanVariantSerializer(serializers.Serializer):
    id = _text()
    sku = _text()
    product = YouCanProductSerializer(required=False, allow_null=True)


class YouCanOrderVariantSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1, default=1)
    price = _money()
    variant = YouCanVariantSerializer(required=False, allow_null=True)


class YouCanCustomerSerializer(serializers.Serializer):
    full_name = _text()
    first_name = _text()
    last_name = _text()
    phone = _text()
    email = _text()


class YouCanAddressSerializer(serializers.Serializer):
    first_line = _text()
    second_line = _text()
    city = _text()
    region = _text()
    zip_code = _text()
    country_name = _text()
    phone = _text()


class YouCanShippingSerializer(serializers.Serializer):
    address = YouCanAddressSerializer(required=False, allow_null=True)


class YouCanOrderSerializer(serializers.Serializer):
    id = serializers.CharField()
    ref = _text()
    total = _money()
    currency = _text()
    created_at = serializers.DateTimeField(required=False, allow_null=True)
    customer = YouCanCustomerSerializer(required=False, allow_null=True)
    shipping = YouCanShippingSerializer(required=False, allow_null=True)
    variants = YouCanOrderVariantSerializer(many=True, allow_empty=False)


# ---------------------------------------------------------------------------
# Shopify (orders/create)
# ---------------------------------------------------------------------------


class ShopifyCustomerSerializer(serializers.Serializer):
    first_name = _text()
    last_name = _text()
    phone = _text()
    email = _text()


class ShopifyAddressSerializer(serializers.Serializer):
    name = _text()
    first_name = _text()
    last_name = _text()
    phone = _text()
    address1 = _text()
    address2 = _text()
    city = _text()
    province = _text()
    zip = _text()
    country = _text()


class ShopifyLineItemSerializer(serializers.Serializer):
    product_id = _text()
    variant_id = _text()
    sku = _text()
    title = _text()
    name = _text()
    quantity = serializers.IntegerField(min_value=1, default=1)
    price = _money()


class ShopifyOrderSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = _text()
    total_price = _money()
    currency = _text()
    phone = _text()
    created_at = serializers.DateTimeField(required=False, allow_null=True)
    customer = ShopifyCustomerSerializer(required=False, allow_null=True)
    shipping_address = ShopifyAddressSerializer(required=False, allow_null=True)
    billing_address = ShopifyAddressSerializer(required=False, allow_null=True)
    line_items = ShopifyLineItemSerializer(many=True, allow_empty=False)


# ---------------------------------------------------------------------------
# WooCommerce (order.created)
# ---------------------------------------------------------------------------


class WooCommerceAddressSerializer(serializers.Serializer):
    first_name = _text()
    last_name = _text()
    address_1 = _text()
    address_2 = _text()
    city = _text()
    state = _text()
    postcode = _text()
    country = _text()
    phone = _text()


class WooCommerceLineItemSerializer(serializers.Serializer):
    product_id = _text()
    variation_id = _text()
    sku = _text()
    name = _text()
    quantity = serializers.IntegerField(min_value=1, default=1)
    price = _money()


class WooCommerceOrderSerializer(serializers.Serializer):
    id = serializers.CharField()
    number = _text()
    total = _money()
    currency = _text()
    date_created_gmt = _text()
    billing = WooCommerceAddressSerializer(required=False, allow_null=True)
    shipping = WooCommerceAddressSerializer(required=False, allow_null=True)
    line_items = WooCommerceLineItemSerializer(many=True, allow_empty=False)


# ---------------------------------------------------------------------------
# WooCommerce API key delivery (POST to the integration callback)
# ---------------------------------------------------------------------------


class WooCommerceKeyDeliverySerializer(serializers.Serializer):
    key_id = _text()
    user_id = serializers.CharField()
    consumer_key = serializers.CharField()
    consumer_secret = serializers.CharField()
    key_permissions = _text()


# ---------------------------------------------------------------------------
# Attempt history (read side)
# ---------------------------------------------------------------------------


class WebhookAttemptListSerializer(serializers.ModelSerializer):
    attemptId = serializers.UUIDField(source="attempt_id", read_only=True)
    orderId = serializers.IntegerField(source="order_id", read_only=True)

    class Meta:
        model = WebhookAttempt
        fields = [
            "attemptId",
            "platform",
            "status",
            "stage",
            "order_summary",
            "orderId",
            "error_message",
            "processing_time_ms",
            "response_status",
            "created_at",
            "completed_at",
        ]
        read_only_fields = fields


class WebhookAttemptDetailSerializer(WebhookAttemptListSerializer):
    connectionKey = serializers.UUIDField(
        source="connection.connection_key", read_only=True, default=None
    )

    class Meta(WebhookAttemptListSerializer.Meta):
        fields = WebhookAttemptListSerializer.Meta.fields + [
            "connectionKey",
            "tenant_id",
            "headers",
            "payload",
            "payload_hash",
            "signature_detail",
            "steps",
            "response_body",
            "expires_at",
        ]
        read_only_fields = fields


class IntegrationConnectionSerializer(serializers.ModelSerializer):
    health = serializers.CharField(read_only=True)

    class Meta:
        model = IntegrationConnection
        fields = [
            "connection_key",
            "tenant_id",
            "location_id",
            "platform",
            "method",
            "status",
            "health",
            "sync_enabled",
            "orders_synced",
            "consecutive_errors",
            "last_error",
            "last_error_at",
            "last_sync_at",
        ]
        read_only_fields = fields
