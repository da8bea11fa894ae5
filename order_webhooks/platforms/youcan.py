"""YouCan storefront variant.

Webhooks are REST hooks signed with a hex HMAC-SHA256 of the body keyed with
the app's client secret. Access tokens expire and are renewed with the
refresh-token grant.
"""

import logging
from urllib.parse import urlencode

from ..conf import get_setting
from ..exceptions import TokenRefreshError
from ..router import register_platform
from ..serializers import YouCanOrderSerializer
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

YOUCAN_API = "https://api.youcan.shop"
YOUCAN_SELLER_AREA = "https://seller-area.youcan.shop"


class YouCanPlatform(StorefrontPlatform):
    platform_type = "youcan"
    signature_header = "x-youcan-signature"
    signature_encoding = "hex"
    payload_serializer = YouCanOrderSerializer
    order_topic = "order.create"

    def to_candidate(self, data):
        customer = data.get("customer") or {}
        address = (data.get("shipping") or {}).get("address") or {}

        name = customer.get("full_name") or " ".join(
            part for part in (customer.get("first_name"), customer.get("last_name")) if part
        )

        items = []
        for entry in data["variants"]:
            variant = entry.get("variant") or {}
            product = variant.get("product") or {}
            items.append(
                LineItem(
                    product_id=clean_id(product.get("id")),
                    product_name=product.get("name") or "",
                    product_code=variant.get("sku") or "",
                    quantity=entry["quantity"],
                    unit_price=to_money(entry.get("price")),
                )
            )

        total = data.get("total")
        return CandidateOrder(
            platform=self.platform_type,
            external_order_id=data["id"],
            line_items=tuple(items),
            customer=CustomerInfo(
                name=name.strip(),
                phone=customer.get("phone") or address.get("phone") or "",
                address=join_address(
                    address.get("first_line"),
                    address.get("second_line"),
                    address.get("city"),
                    address.get("region"),
                    address.get("zip_code"),
                    address.get("country_name"),
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
        query = urlencode(
            [
                ("client_id", get_setting("YOUCAN_CLIENT_ID")),
                ("redirect_uri", oauth_redirect_uri(self.platform_type)),
                ("response_type", "code"),
                ("state", state),
            ]
            + [("scope[]", scope) for scope in get_setting("YOUCAN_SCOPES")]
        )
        return f"{YOUCAN_SELLER_AREA}/admin/oauth/authorize?{query}"

    def exchange_code(self, code, params):
        data = self.request_tokens(
            f"{YOUCAN_API}/oauth/token",
            {
                "grant_type": "authorization_code",
                "client_id": get_setting("YOUCAN_CLIENT_ID"),
                "client_secret": get_setting("YOUCAN_CLIENT_SECRET"),
                "redirect_uri": oauth_redirect_uri(self.platform_type),
                "code": code,
            },
        )
        return TokenGrant.from_oauth_response(data)

    def refresh(self, connection):
        if not connection.refresh_token:
            raise TokenRefreshError(
                f"Connection {connection.connection_key} has no refresh token"
            )
        logger.info("Refreshing YouCan token for connection %s", connection.connection_key)
        data = self.request_tokens(
            f"{YOUCAN_API}/oauth/token",
            {
                "grant_type": "refresh_token",
                "client_id": get_setting("YOUCAN_CLIENT_ID"),
                "client_secret": get_setting("YOUCAN_CLIENT_SECRET"),
                "refresh_token": connection.refresh_token,
            },
        )
        grant = TokenGrant.from_oauth_response(data)
        if not grant.refresh_token:
            # YouCan may omit the refresh token when it is not rotated.
            grant = TokenGrant(
                access_token=grant.access_token,
                refresh_token=connection.refresh_token,
                expires_at=grant.expires_at,
                scope=grant.scope,
                extra=grant.extra,
            )
        return grant

    def connection_secret(self, grant):
        return get_setting("YOUCAN_CLIENT_SECRET")

    # ------------------------------------------------------------------
    # Webhook subscriptions
    # ------------------------------------------------------------------

    def list_webhooks_url(self, connection):
        return f"{YOUCAN_API}/resthooks/list"

    def create_webhook_url(self, connection):
        return f"{YOUCAN_API}/resthooks/subscribe"

    def delete_webhook_url(self, connection, webhook_id):
        return f"{YOUCAN_API}/resthooks/unsubscribe/{webhook_id}"

    def subscription_payload(self, connection, callback_url):
        return {"event": self.order_topic, "target_url": callback_url}

    def parse_subscriptions(self, data):
        if isinstance(data, dict):
            data = data.get("data") or []
        return [self.parse_subscription(entry) for entry in data]

    def parse_subscription(self, data):
        return {
            "id": str(data.get("id", "")),
            "topic": data.get("event", ""),
            "address": data.get("target_url", ""),
        }


register_platform(YouCanPlatform())
