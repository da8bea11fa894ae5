"""Credential store: lookup and lifecycle of storefront connections."""

import logging
import uuid

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from ..exceptions import ConfigurationError
from ..models import IntegrationConnection, Platform

logger = logging.getLogger(__name__)

Status = IntegrationConnection.Status


def resolve_connection(platform, discriminator):
    """Return the connection a webhook URL points at, or None.

    Unknown platforms and discriminators that are not UUIDs resolve to None
    the same way a missing row does. Disconnected connections still resolve
    so that late deliveries can be ledgered against them.
    """
    if platform not in Platform.values:
        return None
    try:
        key = uuid.UUID(str(discriminator))
    except ValueError:
        return None
    return (
        IntegrationConnection.objects.filter(platform=platform, connection_key=key)
        .first()
    )


@transaction.atomic
def connect_from_grant(tenant_id, location_id, platform, grant, webhook_secret=""):
    """Create or refresh the connected row for a tenant/location/platform.

    An existing connected row is updated in place, keeping its
    ``connection_key`` so webhook URLs already registered with the platform
    keep working. Otherwise the newest non-connected row is reused, or a new
    one is created.

    Args:
        tenant_id: Tenant the connection belongs to.
        location_id: Fulfillment location the orders are routed to.
        platform: A :class:`~order_webhooks.models.Platform` value.
        grant: A :class:`~order_webhooks.platforms.base.TokenGrant`.
        webhook_secret: Secret the platform signs webhooks with.

    Returns:
        IntegrationConnection: the connected row.
    """
    rows = IntegrationConnection.objects.select_for_update().filter(
        tenant_id=tenant_id, location_id=location_id, platform=platform
    )
    connection = (
        rows.filter(status=Status.CONNECTED).first()
        or rows.order_by("-updated_at").first()
    )
    if connection is None:
        connection = IntegrationConnection(
            tenant_id=tenant_id, location_id=location_id, platform=platform
        )

    connection.credentials = grant.as_credentials()
    connection.webhook_secret = webhook_secret
    connection.method = IntegrationConnection.Method.DIRECT
    connection.status = Status.CONNECTED
    connection.sync_enabled = True
    connection.consecutive_errors = 0
    connection.last_error = ""
    connection.last_error_at = None
    try:
        with transaction.atomic():
            connection.save()
    except IntegrityError as exc:
        raise ConfigurationError(
            f"Another {platform} connection is already connected for "
            f"tenant {tenant_id} at location {location_id}"
        ) from exc

    logger.info(
        "Connected %s for tenant %s location %s (connection %s)",
        platform,
        tenant_id,
        location_id,
        connection.connection_key,
    )
    return connection


def disconnect(connection):
    """Flip a connection to disconnected; rows are never deleted."""
    connection.status = Status.DISCONNECTED
    connection.credentials = {}
    connection.webhook_subscriptions = []
    connection.save(
        update_fields=["status", "credentials", "webhook_subscriptions", "updated_at"]
    )
    logger.info("Disconnected connection %s", connection.connection_key)
    return connection


def set_sync_enabled(connection, enabled):
    connection.sync_enabled = enabled
    connection.save(update_fields=["sync_enabled", "updated_at"])
    return connection


def store_refreshed_tokens(connection, grant):
    """Merge a refreshed grant into the stored credentials."""
    credentials = dict(connection.credentials)
    credentials.update(grant.as_credentials())
    connection.credentials = credentials
    connection.save(update_fields=["credentials", "updated_at"])
    return connection


def mark_error(connection, message):
    """Move a connection to the error status, e.g. after a refused refresh."""
    now = timezone.now()
    connection.status = Status.ERROR
    connection.last_error = message
    connection.last_error_at = now
    connection.save(
        update_fields=["status", "last_error", "last_error_at", "updated_at"]
    )
    logger.warning(
        "Connection %s moved to error: %s", connection.connection_key, message
    )
    return connection


# ---------------------------------------------------------------------------
# Sync counters
# ---------------------------------------------------------------------------


def record_sync_success(connection):
    """Bump the synced counter and clear the error streak."""
    now = timezone.now()
    IntegrationConnection.objects.filter(pk=connection.pk).update(
        orders_synced=F("orders_synced") + 1,
        consecutive_errors=0,
        last_sync_at=now,
        updated_at=now,
    )


def record_sync_failure(connection, message):
    """Extend the error streak without changing the connection status."""
    now = timezone.now()
    IntegrationConnection.objects.filter(pk=connection.pk).update(
        consecutive_errors=F("consecutive_errors") + 1,
        last_error=message[:2000],
        last_error_at=now,
        updated_at=now,
    )
