"""App settings for order_webhooks.

Projects override any of these through an ``ORDER_WEBHOOKS`` dict in their
Django settings::

    ORDER_WEBHOOKS = {
        "ATTEMPT_RETENTION_DAYS": 14,
        "SHOPIFY_CLIENT_ID": "...",
        "SHOPIFY_CLIENT_SECRET": "...",
    }
"""

from django.conf import settings

DEFAULTS = {
    # Webhook attempts are purged this long after they were received.
    "ATTEMPT_RETENTION_DAYS": 30,
    # Signed OAuth ``state`` values are rejected after this many seconds.
    "OAUTH_STATE_MAX_AGE": 600,
    # Outbound HTTP timeout (seconds) for token exchange and platform APIs.
    "HTTP_TIMEOUT": 15,
    # Per-stage processing budget (seconds) for the inbound pipeline. Overruns
    # before admission fail the attempt as retryable; an admitting overrun is
    # only reported. Bound database work with a statement timeout in the
    # connection OPTIONS, e.g. PostgreSQL's
    # ``{"options": "-c statement_timeout=10000"}``.
    "STAGE_TIMEOUTS": {
        "authenticating": 5,
        "normalizing": 5,
        "evaluating-duplicate": 10,
        "admitting": 10,
    },
    # Where the OAuth callback sends the merchant afterwards.
    "INTEGRATIONS_REDIRECT_URL": "/dashboard/seller/integrations",
    # Public base URL used when subscribing platform webhooks.
    "PUBLIC_BASE_URL": "",
    # consecutive_errors thresholds for the connection health indicator.
    "HEALTH_DEGRADED_AFTER": 1,
    "HEALTH_FAILING_AFTER": 5,
    "YOUCAN_CLIENT_ID": "",
    "YOUCAN_CLIENT_SECRET": "",
    "YOUCAN_SCOPES": ["*"],
    "SHOPIFY_CLIENT_ID": "",
    "SHOPIFY_CLIENT_SECRET": "",
    "SHOPIFY_SCOPES": ["read_orders"],
    "SHOPIFY_API_VERSION": "2024-07",
    # Application name shown on the WooCommerce key approval screen.
    "WOOCOMMERCE_APP_NAME": "Order intake",
}


def get_setting(name):
    """Return an app setting, falling back to :data:`DEFAULTS`."""
    overrides = getattr(settings, "ORDER_WEBHOOKS", {})
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
