import logging
import time

import dramatiq
from datadog import statsd
from requests.exceptions import ConnectionError, Timeout

from .models import IntegrationConnection
from .services import ledger, oauth

logger = logging.getLogger(__name__)

ORDER_WEBHOOKS_QUEUE = "order_webhooks"


def should_retry(retries_so_far, exception):
    """Return True for transient errors, False for permanent ones.

    Transient (retry): ConnectionError, Timeout, HTTP 5xx, HTTP 429.
    Permanent (fail):  TokenRefreshError, ValueError, HTTP 4xx (except 429), etc.
    """
    # HTTPError is an OSError too; its status code decides.
    if getattr(exception, "response", None) is not None:
        status_code = exception.response.status_code
        return status_code == 429 or 500 <= status_code < 600
    return isinstance(exception, (ConnectionError, Timeout, OSError))


def _get_connection(connection_key):
    try:
        return IntegrationConnection.objects.get(connection_key=connection_key)
    except IntegrationConnection.DoesNotExist:
        logger.error("IntegrationConnection %s not found", connection_key)
        return None


@dramatiq.actor(
    queue_name=ORDER_WEBHOOKS_QUEUE,
    max_retries=5,
    min_backoff=30_000,
    max_backoff=600_000,
    retry_when=should_retry,
)
def subscribe_order_webhooks(connection_key, base_url=None):
    """Register the order-created webhook for a freshly connected store."""
    connection = _get_connection(connection_key)
    if connection is None or connection.status != IntegrationConnection.Status.CONNECTED:
        return

    tags = [f"platform:{connection.platform}"]
    start = time.monotonic()
    try:
        oauth.subscribe_order_webhooks(connection, base_url=base_url)
    except Exception:
        statsd.increment("order_webhooks.subscription.failed", tags=tags)
        logger.exception(
            "Failed to subscribe order webhooks for connection %s", connection_key
        )
        raise
    statsd.increment("order_webhooks.subscription.created", tags=tags)
    statsd.histogram(
        "order_webhooks.subscription.time_ms",
        int((time.monotonic() - start) * 1000),
        tags=tags,
    )


@dramatiq.actor(
    queue_name=ORDER_WEBHOOKS_QUEUE,
    max_retries=5,
    min_backoff=30_000,
    max_backoff=600_000,
    retry_when=should_retry,
)
def refresh_connection_token(connection_key):
    """Refresh a connection's OAuth token ahead of its next API call."""
    connection = _get_connection(connection_key)
    if connection is None:
        return
    oauth.refresh_access_token(connection)
    statsd.increment(
        "order_webhooks.token.refreshed", tags=[f"platform:{connection.platform}"]
    )


@dramatiq.actor(queue_name=ORDER_WEBHOOKS_QUEUE, max_retries=0)
def purge_expired_webhook_attempts():
    """Delete webhook attempts past their retention period."""
    removed = ledger.purge_expired_attempts()
    statsd.increment("order_webhooks.attempt.purged", removed)
    return removed
