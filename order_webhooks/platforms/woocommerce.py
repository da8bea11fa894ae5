"""WooCommerce storefront variant.

There is no authorization code. The store's ``/wc-auth/v1/authorize`` screen
POSTs a consumer key pair to our callback with ``user_id`` set to the signed
state we issued. We then generate a per-connection webhook secret and hand it
to the store when subscribing; deliveries carry a base64 HMAC-SHA256 in
``X-WC-Webhook-Signature``.
"""

import base64
import datetime
import logging
import secrets
from urllib.parse import urlencode

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from ..conf import get_setting
from ..exceptions import InvalidStateError
from ..router import register_platform
from ..serializers import WooCommerceOrderSerializer
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


def _parse_gmt(value):
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is not None and timezone.is_naive(parsed):
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


class WooCommercePlatform(StorefrontPlatform):
    platform_type = "woocommerce"
    signature_header = "x-wc-webhook-signature"
    signature_encoding = "base64"
    payload_serializer = WooCommerceOrderSerializer
    order_topic = "order.created"
    topic_header = "x-wc-webhook-topic"
    delivers_api_keys = True

    def to_candidate(self, data):
        billing = data.get("billing") or {}
        shipping = data.get("shipping") or {}
        address = shipping if shipping.get("address_1") else billing

        name = " ".join(
            part for part in (address.get("first_name"), address.get("last_name")) if part
        ) or " ".join(
            part for part in (billing.get("first_name"), billing.get("last_name")) if part
        )

        items = [
            LineItem(
                product_id=clean_id(entry.get("product_id")),
                product_name=entry.get("name") or "",
                product_code=entry.get("sku") or "",
                quantity=entry["quantity"],
                unit_price=to_money(entry.get("price")),
            )
            for entry in data["line_items"]
        ]

        total = data.get("total")
        return CandidateOrder(
            platform=self.platform_type,
            external_order_id=data["id"],
            line_items=tuple(items),
            customer=CustomerInfo(
                name=name.strip(),
                phone=shipping.get("phone") or billing.get("phone") or "",
                address=join_address(
                    address.get("address_1"),
                    address.get("address_2"),
                    address.get("city"),
                    address.get("state"),
                    address.get("postcode"),
                    address.get("country"),
                ),
            ),
            total=to_money(total) if total is not None else items_total(items),
            currency=data.get("currency") or "",
            placed_at=_parse_gmt(data.get("date_created_gmt")),
        )

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def _store_base(self, store_url):
        store_url = (store_url or "").rstrip("/")
        if not store_url.startswith(("http://", "https://")):
            store_url = f"https://{store_url}"
        return store_url

    def authorize_url(self, state, params):
        store_url = params.get("store_url", "")
        if not store_url:
            raise InvalidStateError("store_url is required for WooCommerce")
        callback = oauth_redirect_uri(self.platform_type)
        query = urlencode(
            {
                "app_name": get_setting("WOOCOMMERCE_APP_NAME"),
                "scope": "read_write",
                "user_id": state,
                "return_url": callback,
                "callback_url": callback,
            }
        )
        return f"{self._store_base(store_url)}/wc-auth/v1/authorize?{query}"

    def accept_key_delivery(self, data, state):
        """Build a grant from a validated key delivery.

        Args:
            data: ``WooCommerceKeyDeliverySerializer.validated_data``.
            state: The decoded state payload; must carry ``store_url``.
        """
        return TokenGrant(
            access_token=data["consumer_key"],
            extra={
                "consumer_secret": data["consumer_secret"],
                "key_id": data.get("key_id") or "",
                "key_permissions": data.get("key_permissions") or "",
                "store_url": state.get("store_url", ""),
                "webhook_secret": secrets.token_urlsafe(32),
            },
        )

    def connection_secret(self, grant):
        return grant.extra["webhook_secret"]

    def auth_headers(self, connection):
        pair = "%s:%s" % (
            connection.credentials.get("access_token", ""),
            connection.credentials.get("consumer_secret", ""),
        )
        token = base64.b64encode(pair.encode("utf-8")).decode("ascii")
        return {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Webhook subscriptions
    # ------------------------------------------------------------------

    def _rest_api(self, connection):
        store_url = self._store_base(connection.credentials.get("store_url", ""))
        return f"{store_url}/wp-json/wc/v3"

    def list_webhooks_url(self, connection):
        return f"{self._rest_api(connection)}/webhooks"

    def delete_webhook_url(self, connection, webhook_id):
        return f"{self._rest_api(connection)}/webhooks/{webhook_id}?force=true"

    def subscription_payload(self, connection, callback_url):
        return {
            "name": "Order intake",
            "status": "active",
            "topic": self.order_topic,
            "delivery_url": callback_url,
            "secret": connection.webhook_secret,
        }

    def parse_subscriptions(self, data):
        return [self.parse_subscription(entry) for entry in data]

    def parse_subscription(self, data):
        return {
            "id": str(data.get("id", "")),
            "topic": data.get("topic", ""),
            "address": data.get("delivery_url", ""),
        }


register_platform(WooCommercePlatform())
