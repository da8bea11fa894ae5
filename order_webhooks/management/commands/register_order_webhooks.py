"""
Register the order-created webhook subscription for a connection.

Usage:
    python manage.py register_order_webhooks \
        --connection-key <uuid> --base-url https://api.example.com

    # List current registrations
    python manage.py register_order_webhooks --connection-key <uuid> --list

    # Remove all webhooks
    python manage.py register_order_webhooks --connection-key <uuid> --delete-all
"""

import logging

import requests
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand

from order_webhooks.conf import get_setting
from order_webhooks.exceptions import OrderWebhookError
from order_webhooks.models import IntegrationConnection
from order_webhooks.services import oauth

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Register order webhook subscriptions for a storefront connection"

    def add_arguments(self, parser):
        parser.add_argument(
            "--connection-key",
            type=str,
            required=True,
            help="The connection UUID (IntegrationConnection.connection_key).",
        )
        parser.add_argument(
            "--base-url",
            type=str,
            default="",
            help="Public base URL for webhook callbacks (e.g. https://api.example.com).",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            dest="list_webhooks",
            help="List currently registered webhooks for this connection.",
        )
        parser.add_argument(
            "--delete-all",
            action="store_true",
            help="Delete all registered webhooks for this connection.",
        )

    def handle(self, *args, **options):
        connection_key = options["connection_key"]

        try:
            connection = IntegrationConnection.objects.get(
                connection_key=connection_key,
                status=IntegrationConnection.Status.CONNECTED,
            )
        except (IntegrationConnection.DoesNotExist, ValidationError):
            print(f"ERROR: No connected integration for connection_key={connection_key}")
            return

        try:
            if options["list_webhooks"]:
                self._list_webhooks(connection)
            elif options["delete_all"]:
                self._delete_all_webhooks(connection)
            elif not (options["base_url"] or get_setting("PUBLIC_BASE_URL")):
                print("ERROR: --base-url is required when PUBLIC_BASE_URL is not set.")
            else:
                self._register_webhooks(connection, options["base_url"].rstrip("/"))
        except (requests.RequestException, OrderWebhookError) as exc:
            logger.error("Webhook management failed for %s: %s", connection_key, exc)
            print(f"ERROR: {exc}")

    def _list_webhooks(self, connection):
        webhooks = oauth.list_order_webhooks(connection)
        if not webhooks:
            print(f"No webhooks registered for connection {connection.connection_key}")
            return

        print(f"Webhooks for {connection.platform} connection {connection.connection_key}:")
        print(f"{'ID':<15} {'Topic':<30} {'Address'}")
        print("-" * 80)
        for wh in webhooks:
            print(f"{wh['id']:<15} {wh['topic']:<30} {wh['address']}")
        print(f"\nTotal: {len(webhooks)}")

    def _delete_all_webhooks(self, connection):
        deleted, total = oauth.delete_order_webhooks(connection)
        if not total:
            print(f"No webhooks to delete for connection {connection.connection_key}")
            return
        print(f"\nDeleted {deleted}/{total} webhooks")

    def _register_webhooks(self, connection, base_url):
        subscriptions = oauth.subscribe_order_webhooks(connection, base_url=base_url or None)
        for sub in subscriptions:
            print(f"  SUCCESS: {sub['topic']} -> {sub['address']} (id={sub['id']})")
        print(
            f"\nDone: {len(subscriptions)} subscription(s) "
            f"(platform={connection.platform}, connection={connection.connection_key})"
        )
