"""Tests for the order_webhooks management commands."""

import datetime
import uuid

import pytest
import requests
from django.core.management import call_command
from django.utils import timezone

from order_webhooks.models import WebhookAttempt
from order_webhooks.tests.factories import WebhookAttemptFactory

pytestmark = pytest.mark.django_db


class TestRegisterOrderWebhooks:
    def test_unknown_connection(self, capsys):
        call_command("register_order_webhooks", "--connection-key", str(uuid.uuid4()))
        assert "ERROR: No connected integration" in capsys.readouterr().out

    def test_malformed_connection_key(self, capsys):
        call_command("register_order_webhooks", "--connection-key", "nope")
        assert "ERROR: No connected integration" in capsys.readouterr().out

    def test_register(self, capsys, mocker, shopify_connection):
        subscribe = mocker.patch(
            "order_webhooks.services.oauth.subscribe_order_webhooks",
            return_value=[{"id": "7", "topic": "orders/create", "address": "https://x/"}],
        )

        call_command(
            "register_order_webhooks",
            "--connection-key",
            str(shopify_connection.connection_key),
            "--base-url",
            "https://hooks.test/",
        )

        assert subscribe.call_args[1]["base_url"] == "https://hooks.test"
        out = capsys.readouterr().out
        assert "SUCCESS: orders/create -> https://x/ (id=7)" in out
        assert "Done: 1 subscription(s)" in out

    def test_base_url_required_without_setting(self, capsys, settings, shopify_connection):
        settings.ORDER_WEBHOOKS = {"PUBLIC_BASE_URL": ""}
        call_command(
            "register_order_webhooks", "--connection-key", str(shopify_connection.connection_key)
        )
        assert "--base-url is required" in capsys.readouterr().out

    def test_list(self, capsys, mocker, shopify_connection):
        mocker.patch(
            "order_webhooks.services.oauth.list_order_webhooks",
            return_value=[
                {"id": "1", "topic": "orders/create", "address": "https://a/"},
                {"id": "2", "topic": "orders/create", "address": "https://b/"},
            ],
        )
        call_command(
            "register_order_webhooks",
            "--connection-key",
            str(shopify_connection.connection_key),
            "--list",
        )
        out = capsys.readouterr().out
        assert "https://b/" in out
        assert "Total: 2" in out

    def test_delete_all(self, capsys, mocker, shopify_connection):
        mocker.patch(
            "order_webhooks.services.oauth.delete_order_webhooks", return_value=(2, 3)
        )
        call_command(
            "register_order_webhooks",
            "--connection-key",
            str(shopify_connection.connection_key),
            "--delete-all",
        )
        assert "Deleted 2/3 webhooks" in capsys.readouterr().out

    def test_platform_error_reported(self, capsys, mocker, shopify_connection):
        mocker.patch(
            "order_webhooks.services.oauth.list_order_webhooks",
            side_effect=requests.ConnectionError("unreachable"),
        )
        call_command(
            "register_order_webhooks",
            "--connection-key",
            str(shopify_connection.connection_key),
            "--list",
        )
        assert "ERROR: unreachable" in capsys.readouterr().out


class TestPurgeWebhookAttempts:
    def _seed(self):
        WebhookAttemptFactory.create_batch(
            2, created_at=timezone.now() - datetime.timedelta(days=31)
        )
        WebhookAttemptFactory()

    def test_dry_run(self, capsys):
        self._seed()
        call_command("purge_webhook_attempts", "--dry-run")
        assert "2 expired webhook attempt(s) would be deleted" in capsys.readouterr().out
        assert WebhookAttempt.all_objects.count() == 3

    def test_purge(self, capsys):
        self._seed()
        call_command("purge_webhook_attempts", "--batch-size", "1")
        assert "Deleted 2 expired" in capsys.readouterr().out
        assert WebhookAttempt.all_objects.count() == 1
