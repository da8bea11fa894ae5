"""Shared building blocks for storefront platform variants.

A platform variant bundles everything that differs per storefront:

* how webhooks are signed (:meth:`StorefrontPlatform.verify`),
* how an order payload maps onto :class:`CandidateOrder`
  (:meth:`StorefrontPlatform.normalize`),
* how the OAuth / API-key handshake and webhook subscription work.

Adding a platform means adding one subclass and registering it with
:func:`order_webhooks.router.register_platform`.
"""

import base64
import datetime
import hashlib
import hmac
import json
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import requests
from django.urls import reverse
from django.utils import timezone

from ..conf import get_setting
from ..exceptions import MissingProductError, NormalizationError, TokenRefreshError

CENT = Decimal("0.01")


def to_money(value):
    """Quantize an optional Decimal to cents; ``None`` becomes zero."""
    if value is None:
        return Decimal("0.00")
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def items_total(items):
    """Sum of unit price x quantity, used when a payload omits its total."""
    return sum((item.unit_price * item.quantity for item in items), Decimal("0.00"))


def clean_id(value):
    """Platform identifiers arrive as ints or strings; "0" means none."""
    if value is None:
        return ""
    value = str(value).strip()
    return "" if value in ("", "0") else value


# ---------------------------------------------------------------------------
# Canonical shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CustomerInfo:
    name: str = ""
    phone: str = ""
    address: str = ""


@dataclass(frozen=True)
class LineItem:
    product_id: str = ""
    product_name: str = ""
    product_code: str = ""
    quantity: int = 1
    unit_price: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class CandidateOrder:
    """A normalized order that has not been admitted yet."""

    platform: str
    external_order_id: str
    line_items: tuple
    customer: CustomerInfo = field(default_factory=CustomerInfo)
    total: Decimal = Decimal("0.00")
    currency: str = ""
    placed_at: Optional[datetime.datetime] = None
    tenant_id: str = ""
    location_id: str = ""

    def for_connection(self, connection):
        """Bind the candidate to the tenant and location owning *connection*."""
        return replace(
            self, tenant_id=connection.tenant_id, location_id=connection.location_id
        )

    @property
    def product_ids(self):
        return {item.product_id for item in self.line_items if item.product_id}

    @property
    def product_codes(self):
        return {item.product_code for item in self.line_items if item.product_code}

    def summary(self):
        """Small JSON-safe digest stored on the ledger entry."""
        return {
            "externalOrderId": self.external_order_id,
            "customerName": self.customer.name,
            "customerPhone": self.customer.phone,
            "total": str(self.total),
            "currency": self.currency,
            "itemCount": len(self.line_items),
        }


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    method: str
    provided_signature: str = ""
    detail: str = ""

    def as_dict(self):
        return {
            "valid": self.valid,
            "method": self.method,
            "providedSignature": self.provided_signature,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class TokenGrant:
    """Credentials obtained from an OAuth exchange, refresh or key delivery."""

    access_token: str
    refresh_token: str = ""
    expires_at: Optional[datetime.datetime] = None
    scope: str = ""
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_oauth_response(cls, data, **extra):
        expires_at = None
        if data.get("expires_in"):
            expires_at = timezone.now() + datetime.timedelta(
                seconds=int(data["expires_in"])
            )
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or "",
            expires_at=expires_at,
            scope=data.get("scope") or "",
            extra=extra,
        )

    def as_credentials(self):
        # The webhook secret lives on the connection, not with the API tokens.
        credentials = {k: v for k, v in self.extra.items() if k != "webhook_secret"}
        credentials["access_token"] = self.access_token
        if self.refresh_token:
            credentials["refresh_token"] = self.refresh_token
        if self.expires_at is not None:
            credentials["expires_at"] = self.expires_at.isoformat()
        if self.scope:
            credentials["scope"] = self.scope
        return credentials


# ---------------------------------------------------------------------------
# Signature helpers
# ---------------------------------------------------------------------------


def compute_hmac(secret, body, encoding="base64"):
    """HMAC-SHA256 of *body* keyed with *secret*, base64 or hex encoded."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256)
    if encoding == "hex":
        return digest.hexdigest()
    return base64.b64encode(digest.digest()).decode("utf-8")


def signatures_match(expected, provided):
    """Constant-time comparison that tolerates non-ASCII garbage headers."""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def parse_json_payload(raw_payload):
    """Decode a raw webhook body; already-parsed dicts pass through."""
    if isinstance(raw_payload, (bytes, bytearray)):
        try:
            raw_payload = raw_payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise NormalizationError("Payload is not valid UTF-8") from exc
    if isinstance(raw_payload, str):
        try:
            return json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise NormalizationError(f"Payload is not valid JSON: {exc}") from exc
    return raw_payload


def webhook_callback_url(connection, base_url=None):
    """Public URL a platform should deliver this connection's orders to."""
    base_url = (base_url or get_setting("PUBLIC_BASE_URL")).rstrip("/")
    path = reverse(
        "order_webhooks:order_webhook",
        args=[connection.platform, str(connection.connection_key)],
    )
    return f"{base_url}{path}"


def oauth_redirect_uri(platform_type):
    base_url = get_setting("PUBLIC_BASE_URL").rstrip("/")
    path = reverse("order_webhooks:integration_callback", args=[platform_type])
    return f"{base_url}{path}"


# ---------------------------------------------------------------------------
# Platform base class
# ---------------------------------------------------------------------------


class StorefrontPlatform:
    """Base class for one storefront platform variant.

    Subclasses set the class attributes and implement :meth:`to_candidate`
    plus the handshake / subscription hooks they support.
    """

    platform_type = None
    signature_header = None
    signature_encoding = "base64"
    payload_serializer = None
    order_topic = None
    topic_header = None
    delivers_api_keys = False

    @property
    def verification_method(self):
        return f"hmac-sha256-{self.signature_encoding}"

    def check_topic(self, headers):
        """Return the delivered topic; only order creation is accepted.

        Raises:
            NormalizationError: the topic header is missing or names another
                topic.
        """
        if self.topic_header is None:
            return self.order_topic
        topic = (headers.get(self.topic_header) or "").strip()
        if topic != self.order_topic:
            raise NormalizationError(
                f"Topic '{topic}' not handled by this endpoint",
                errors={"topic": [f"Expected '{self.order_topic}'"]},
            )
        return topic

    def verify(self, raw_body, headers, secret):
        """Check the webhook signature against the connection's secret.

        Args:
            raw_body: The raw HTTP request body bytes.
            headers: Request headers with lower-cased names.
            secret: The webhook secret stored on the connection.

        Returns:
            VerificationResult: never raises; failures are ``valid=False``.
        """
        provided = (headers.get(self.signature_header) or "").strip()
        if not secret:
            return VerificationResult(
                False, self.verification_method, provided, "No webhook secret configured"
            )
        if not provided:
            return VerificationResult(
                False,
                self.verification_method,
                provided,
                f"Missing {self.signature_header} header",
            )
        expected = compute_hmac(secret, raw_body, self.signature_encoding)
        if signatures_match(expected, provided):
            return VerificationResult(True, self.verification_method, provided)
        return VerificationResult(
            False, self.verification_method, provided, "Signature mismatch"
        )

    def normalize(self, raw_payload):
        """Validate a raw order payload and convert it to a CandidateOrder.

        Raises:
            NormalizationError: the payload is not JSON, fails the platform
                schema, or has no line items.
            MissingProductError: a line item has neither product id nor code.
        """
        data = parse_json_payload(raw_payload)
        serializer = self.payload_serializer(data=data)
        if not serializer.is_valid():
            raise NormalizationError(
                f"Invalid {self.platform_type} order payload",
                errors=json.loads(json.dumps(serializer.errors)),
            )
        candidate = self.to_candidate(serializer.validated_data)
        for position, item in enumerate(candidate.line_items):
            if not item.product_id and not item.product_code:
                raise MissingProductError(
                    f"Line item {position} of order {candidate.external_order_id} "
                    "has no product identifier"
                )
        return candidate

    def to_candidate(self, data):
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def authorize_url(self, state, params):
        """URL the merchant is sent to in order to approve the connection."""
        raise NotImplementedError

    def exchange_code(self, code, params):
        """Swap an OAuth authorization code for a :class:`TokenGrant`."""
        raise NotImplementedError(
            f"{self.platform_type} does not use an authorization code"
        )

    def refresh(self, connection):
        """Obtain fresh credentials for *connection*."""
        raise TokenRefreshError(
            f"{self.platform_type} credentials cannot be refreshed"
        )

    def connection_secret(self, grant):
        """Secret the platform will sign this connection's webhooks with."""
        return ""

    def auth_headers(self, connection):
        return {
            "Authorization": f"Bearer {connection.access_token}",
            "Content-Type": "application/json",
        }

    def request_tokens(self, url, payload):
        """POST to a token endpoint and return the decoded JSON response.

        Client errors (4xx other than 429) mean the grant itself is unusable
        and raise :class:`TokenRefreshError`. Connection problems, timeouts,
        429 and 5xx propagate as ``requests`` exceptions so callers can retry.
        """
        response = requests.post(
            url, json=payload, timeout=get_setting("HTTP_TIMEOUT")
        )
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            status_code = response.status_code
            if 400 <= status_code < 500 and status_code != 429:
                raise TokenRefreshError(
                    f"{self.platform_type} token endpoint rejected the grant "
                    f"(HTTP {status_code})"
                ) from exc
            raise
        return response.json()

    # ------------------------------------------------------------------
    # Webhook subscriptions
    # ------------------------------------------------------------------

    def list_webhooks_url(self, connection):
        raise NotImplementedError

    def create_webhook_url(self, connection):
        return self.list_webhooks_url(connection)

    def delete_webhook_url(self, connection, webhook_id):
        raise NotImplementedError

    def subscription_payload(self, connection, callback_url):
        raise NotImplementedError

    def parse_subscriptions(self, data):
        """Return ``[{"id", "topic", "address"}, ...]`` from a list response."""
        raise NotImplementedError

    def parse_subscription(self, data):
        """Return ``{"id", "topic", "address"}`` from a create response."""
        raise NotImplementedError
