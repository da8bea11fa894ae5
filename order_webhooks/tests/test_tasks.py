"""Tests for the background actors and their retry policy."""

import datetime
import uuid
from unittest.mock import MagicMock

import pytest
import requests
from django.utils import timezone

from order_webhooks import tasks
from order_webhooks.exceptions import TokenRefreshError
from order_webhooks.models import WebhookAttempt
from order_webhooks.tests.factories import WebhookAttemptFactory

pytestmark = pytest.mark.django_db


def _http_error(status_code):
    response = MagicMock(status_code=status_code)
    return requests.HTTPError(response=response)


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class TestShouldRetry:
    @pytest.mark.parametrize(
        "exception",
        [
            requests.ConnectionError("reset"),
            requests.Timeout("slow"),
            _http_error(503),
            _http_error(429),
        ],
    )
    def test_transient(self, exception):
        assert tasks.should_retry(0, exception) is True

    @pytest.mark.parametrize(
        "exception",
        [
            TokenRefreshError("refused"),
            ValueError("bad payload"),
            _http_error(400),
            _http_error(404),
        ],
    )
    def test_permanent(self, exception):
        assert tasks.should_retry(0, exception) is False


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


class TestSubscribeActor:
    def test_subscribes_connected_connection(self, mocker, shopify_connection):
        subscribe = mocker.patch("order_webhooks.services.oauth.subscribe_order_webhooks")
        statsd = mocker.patch("order_webhooks.tasks.statsd")

        tasks.subscribe_order_webhooks.fn(str(shopify_connection.connection_key))

        assert subscribe.call_args[0][0] == shopify_connection
        statsd.increment.assert_called_once_with(
            "order_webhooks.subscription.created", tags=["platform:shopify"]
        )

    def test_skips_disconnected(self, mocker, disconnected_connection):
        subscribe = mocker.patch("order_webhooks.services.oauth.subscribe_order_webhooks")
        tasks.subscribe_order_webhooks.fn(str(disconnected_connection.connection_key))
        subscribe.assert_not_called()

    def test_unknown_connection(self, mocker):
        subscribe = mocker.patch("order_webhooks.services.oauth.subscribe_order_webhooks")
        tasks.subscribe_order_webhooks.fn(str(uuid.uuid4()))
        subscribe.assert_not_called()

    def test_failure_reraised_for_retry(self, mocker, shopify_connection):
        mocker.patch(
            "order_webhooks.services.oauth.subscribe_order_webhooks",
            side_effect=requests.ConnectionError("down"),
        )
        statsd = mocker.patch("order_webhooks.tasks.statsd")
        with pytest.raises(requests.ConnectionError):
            tasks.subscribe_order_webhooks.fn(str(shopify_connection.connection_key))
        statsd.increment.assert_called_once_with(
            "order_webhooks.subscription.failed", tags=["platform:shopify"]
        )


class TestRefreshActor:
    def test_refreshes(self, mocker, youcan_connection):
        refresh = mocker.patch("order_webhooks.services.oauth.refresh_access_token")
        mocker.patch("order_webhooks.tasks.statsd")
        tasks.refresh_connection_token.fn(str(youcan_connection.connection_key))
        refresh.assert_called_once_with(youcan_connection)


class TestPurgeActor:
    def test_purges_expired(self, mocker):
        mocker.patch("order_webhooks.tasks.statsd")
        WebhookAttemptFactory(created_at=timezone.now() - datetime.timedelta(days=45))
        WebhookAttemptFactory()

        assert tasks.purge_expired_webhook_attempts.fn() == 1
        assert WebhookAttempt.all_objects.count() == 1
