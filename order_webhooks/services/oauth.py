"""Connection handshake, token lifecycle and webhook subscription.

``state`` values handed to platforms are signed with :mod:`django.core.signing`
and expire after ``OAUTH_STATE_MAX_AGE`` seconds; the callback trusts nothing
else to learn which tenant and location a connection belongs to.
"""

import logging
import time

import requests
from django.core import signing

from .. import platforms  # noqa: F401  (registers the platform variants)
from ..conf import get_setting
from ..exceptions import ConfigurationError, InvalidStateError, TokenRefreshError
from ..platforms.base import webhook_callback_url
from ..router import get_platform
from . import credentials

logger = logging.getLogger(__name__)

STATE_SALT = "order_webhooks.oauth.state"


def _platform_or_error(platform_type):
    platform = get_platform(platform_type)
    if platform is None:
        raise ConfigurationError(f"Unknown platform: {platform_type}")
    return platform


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


def build_state(tenant_id, location_id, platform, **extra):
    """Sign the tenant context that travels through the platform handshake."""
    payload = dict(extra, tenant_id=tenant_id, location_id=location_id, platform=platform)
    return signing.dumps(payload, salt=STATE_SALT, compress=True)


def resolve_tenant_from_state(state, platform=None):
    """Return the payload signed by :func:`build_state`.

    Raises:
        InvalidStateError: tampered, expired or malformed state, or a state
            issued for a different platform.
    """
    if not state:
        raise InvalidStateError("Missing state")
    try:
        payload = signing.loads(
            state, salt=STATE_SALT, max_age=get_setting("OAUTH_STATE_MAX_AGE")
        )
    except signing.SignatureExpired as exc:
        raise InvalidStateError("State has expired") from exc
    except signing.BadSignature as exc:
        raise InvalidStateError("State signature is invalid") from exc
    if not isinstance(payload, dict) or not payload.get("tenant_id"):
        raise InvalidStateError("State is malformed")
    if platform is not None and payload.get("platform") != platform:
        raise InvalidStateError(
            f"State was issued for {payload.get('platform')}, not {platform}"
        )
    return payload


def authorization_url(platform_type, tenant_id, location_id, **params):
    """Where to send a merchant to approve a new connection."""
    platform = _platform_or_error(platform_type)
    state = build_state(tenant_id, location_id, platform_type, **params)
    return platform.authorize_url(state, params)


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------


def complete_authorization(platform_type, code, state, params=None):
    """Finish an OAuth authorization-code callback.

    Args:
        platform_type: Platform the callback URL was hit for.
        code: The authorization code from the query string.
        state: The signed state from the query string.
        params: All callback query parameters (Shopify sends ``shop``).

    Returns:
        IntegrationConnection: the connected row.
    """
    params = params or {}
    context = resolve_tenant_from_state(state, platform=platform_type)
    if context.get("shop") and params.get("shop") != context["shop"]:
        raise InvalidStateError("Callback shop does not match the issued state")
    if not code:
        raise InvalidStateError("Missing authorization code")

    platform = _platform_or_error(platform_type)
    grant = platform.exchange_code(code, params)
    return credentials.connect_from_grant(
        context["tenant_id"],
        context["location_id"],
        platform_type,
        grant,
        webhook_secret=platform.connection_secret(grant),
    )


def accept_key_delivery(platform_type, data):
    """Store API keys POSTed by a platform that delivers keys directly.

    Args:
        platform_type: Platform the callback URL was hit for.
        data: Validated key delivery; ``user_id`` carries the signed state.
    """
    platform = _platform_or_error(platform_type)
    if not platform.delivers_api_keys:
        raise ConfigurationError(f"{platform_type} does not deliver API keys")
    context = resolve_tenant_from_state(data["user_id"], platform=platform_type)
    grant = platform.accept_key_delivery(data, context)
    return credentials.connect_from_grant(
        context["tenant_id"],
        context["location_id"],
        platform_type,
        grant,
        webhook_secret=platform.connection_secret(grant),
    )


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def refresh_access_token(connection):
    """Refresh and store the connection's access token.

    A refusal from the platform moves the connection to ``error``.

    Raises:
        TokenRefreshError: the token cannot be refreshed.
        requests.RequestException: transient failure talking to the platform.
    """
    platform = _platform_or_error(connection.platform)
    try:
        grant = platform.refresh(connection)
    except TokenRefreshError as exc:
        credentials.mark_error(connection, str(exc))
        logger.error(
            "Token refresh failed for connection %s: %s", connection.connection_key, exc
        )
        raise
    credentials.store_refreshed_tokens(connection, grant)
    logger.info("Refreshed access token for connection %s", connection.connection_key)
    return connection


def authorized_request(connection, method, url, recorder=None, **kwargs):
    """Call a platform API with the connection's credentials.

    A 401 triggers one token refresh and one retry. When *recorder* is given
    the refresh is written to that attempt's ledger as a step.
    """
    platform = _platform_or_error(connection.platform)
    kwargs.setdefault("timeout", get_setting("HTTP_TIMEOUT"))

    response = requests.request(
        method, url, headers=platform.auth_headers(connection), **kwargs
    )
    if response.status_code != 401:
        return response

    logger.info(
        "Platform rejected token for connection %s; refreshing", connection.connection_key
    )
    if recorder is not None:
        with recorder.step("token-refresh"):
            refresh_access_token(connection)
    else:
        refresh_access_token(connection)
    return requests.request(
        method, url, headers=platform.auth_headers(connection), **kwargs
    )


# ---------------------------------------------------------------------------
# Webhook subscriptions
# ---------------------------------------------------------------------------


def list_order_webhooks(connection):
    platform = _platform_or_error(connection.platform)
    response = authorized_request(
        connection, "GET", platform.list_webhooks_url(connection)
    )
    response.raise_for_status()
    return platform.parse_subscriptions(response.json())


def subscribe_order_webhooks(connection, base_url=None):
    """Make sure the platform delivers new orders to this connection.

    Existing subscriptions with the same topic and address are kept, so the
    call is safe to repeat.

    Returns:
        list: the subscriptions now stored on the connection.
    """
    platform = _platform_or_error(connection.platform)
    callback_url = webhook_callback_url(connection, base_url)

    existing = list_order_webhooks(connection)
    current = [
        sub
        for sub in existing
        if sub["topic"] == platform.order_topic and sub["address"] == callback_url
    ]
    if not current:
        started = time.monotonic()
        response = authorized_request(
            connection,
            "POST",
            platform.create_webhook_url(connection),
            json=platform.subscription_payload(connection, callback_url),
        )
        response.raise_for_status()
        current = [platform.parse_subscription(response.json())]
        logger.info(
            "Subscribed %s to %s for connection %s in %.0fms",
            callback_url,
            platform.order_topic,
            connection.connection_key,
            (time.monotonic() - started) * 1000,
        )
    else:
        logger.info(
            "Connection %s already subscribed to %s",
            connection.connection_key,
            platform.order_topic,
        )

    connection.webhook_subscriptions = current
    connection.save(update_fields=["webhook_subscriptions", "updated_at"])
    return current


def delete_order_webhooks(connection):
    """Remove every webhook subscription the platform holds for the connection.

    Returns:
        tuple: ``(deleted, total)``
    """
    platform = _platform_or_error(connection.platform)
    subscriptions = list_order_webhooks(connection)
    deleted = 0
    for sub in subscriptions:
        response = authorized_request(
            connection, "DELETE", platform.delete_webhook_url(connection, sub["id"])
        )
        if response.ok:
            deleted += 1
        else:
            logger.warning(
                "Could not delete webhook %s for connection %s (HTTP %s)",
                sub["id"],
                connection.connection_key,
                response.status_code,
            )
    connection.webhook_subscriptions = []
    connection.save(update_fields=["webhook_subscriptions", "updated_at"])
    return deleted, len(subscriptions)
