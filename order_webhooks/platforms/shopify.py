"""Shopify storefront variant.

Webhooks carry a base64 HMAC-SHA256 in ``X-Shopify-Hmac-Sha256`` keyed with
the app's client secret. Offline access tokens do not expire, so there is no
refresh grant; a revoked token needs the merchant to reconnect.
"""

import logging
import re
from urllib.parse import urlencode

from ..conf import get_setting
from ..exceptions import InvalidStateError
from ..router import register_platform
from ..serializers import ShopifyOrderSerializer
from ..utils import join_address
from .base import (
    CandidateOrder,
    CustomerInfo,
    LineItem,
    StorefrontPlatform,
    TokenGrant,
    clean_id,
    items_total,
    oauth_redirect_uri,
    to_money,
)

logger = logging.getLogger(__name__)

SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-]*\.myshopify\.com$")


def is_valid_shop_domain(shop):
    return bool(shop) and bool(SHOP_DOMAIN_RE.match(shop))


def _full_name(source):
    if not source:
        return ""
    if source.get("name"):
        return source["name"].strip()
    return " ".join(
        part for part in (source.get("first_name"), source.get("last_name")) if part
    ).strip()


class ShopifyPlatform(StorefrontPlatform):
    platform_type = "shopify"
    signature_header = "x-shopify-hmac-sha256"
    signature_encoding = "base64"
    payload_serializer = ShopifyOrderSerializer
    order_topic = "orders/create"
    topic_header = "x-shopify-topic"

    def to_candidate(self, data):
        customer = data.get("customer") or {}
        shipping = data.get("shipping_address") or {}
        billing = data.get("billing_address") or {}
        address = shipping or billing

        items = [
            LineItem(
                product_id=clean_id(entry.get("product_id")),
                product_name=entry.get("title") or entry.get("name") or "",
                product_code=entry.get("sku") or "",
                quantity=entry["quantity"],
                unit_price=to_money(entry.get("price")),
            )
            for entry in data["line_items"]
        ]

        total = data.get("total_price")
        return CandidateOrder(
            platform=self.platform_type,
            external_order_id=data["id"],
            line_items=tuple(items),
            customer=CustomerInfo(
                name=_full_name(shipping) or _full_name(customer) or _full_name(billing),
                phone=(
                    shipping.get("phone")
                    or customer.get("phone")
                    or data.get("phone")
                    or billing.get("phone")
                    or ""
                ),
                address=join_address(
                    address.get("address1"),
                    address.get("address2"),
                    address.get("city"),
                    address.get("province"),
                    address.get("zip"),
                    address.get("country"),
                ),
            ),
            total=to_money(total) if total is not None else items_total(items),
            currency=data.get("currency") or "",
            placed_at=data.get("created_at"),
        )

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def authorize_url(self, state, params):
        shop = params.get("shop", "")
        if not is_valid_shop_domain(shop):
            raise InvalidStateError(f"Invalid shop domain: {shop!r}")
        query = urlencode(
            {
                "client_id": get_setting("SHOPIFY_CLIENT_ID"),
                "scope": ",".join(get_setting("SHOPIFY_SCOPES")),
                "redirect_uri": oauth_redirect_uri(self.platform_type),
                "state": state,
            }
        )
        return f"https://{shop}/admin/oauth/authorize?{query}"

    def exchange_code(self, code, params):
        shop = params.get("shop", "")
        if not is_valid_shop_domain(shop):
            raise InvalidStateError(f"Invalid shop domain: {shop!r}")
        data = self.request_tokens(
            f"https://{shop}/admin/oauth/access_token",
            {
                "client_id": get_setting("SHOPIFY_CLIENT_ID"),
                "client_secret": get_setting("SHOPIFY_CLIENT_SECRET"),
                "code": code,
            },
        )
        return TokenGrant.from_oauth_response(data, shop=shop)

    def connection_secret(self, grant):
        return get_setting("SHOPIFY_CLIENT_SECRET")

    def auth_headers(self, connection):
        return {
            "X-Shopify-Access-Token": connection.access_token,
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Webhook subscriptions
    # ------------------------------------------------------------------

    def _admin_api(self, connection):
        shop = connection.credentials.get("shop", "")
        return f"https://{shop}/admin/api/{get_setting('SHOPIFY_API_VERSION')}"

    def list_webhooks_url(self, connection):
        return f"{self._admin_api(connection)}/webhooks.json"

    def delete_webhook_url(self, connection, webhook_id):
        return f"{self._admin_api(connection)}/webhooks/{webhook_id}.json"

    def subscription_payload(self, connection, callback_url):
        return {
            "webhook": {
                "topic": self.order_topic,
                "address": callback_url,
                "format": "json",
            }
        }

    def parse_subscriptions(self, data):
        return [self.parse_subscription(entry) for entry in data.get("webhooks", [])]

    def parse_subscription(self, data):
        data = data.get("webhook", data)
        return {
            "id": str(data.get("id", "")),
            "topic": data.get("topic", ""),
            "address": data.get("address", ""),
        }


register_platform(ShopifyPlatform())
