"""Tests for the connection handshake, token refresh and webhook subscription."""

import json
import time
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from order_webhooks.exceptions import (
    ConfigurationError,
    InvalidStateError,
    TokenRefreshError,
)
from order_webhooks.models import IntegrationConnection
from order_webhooks.services import oauth
from order_webhooks.services.ledger import AttemptRecorder

pytestmark = pytest.mark.django_db

SHOP = "test-shop.myshopify.com"


def _response(status_code=200, payload=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(payload if payload is not None else {}).encode("utf-8")
    response.url = "https://platform.test/"
    return response


class TestState:
    def test_round_trip(self):
        state = oauth.build_state("tenant-1", "location-1", "youcan", store_url="x")
        payload = oauth.resolve_tenant_from_state(state, platform="youcan")
        assert payload["tenant_id"] == "tenant-1"
        assert payload["location_id"] == "location-1"
        assert payload["store_url"] == "x"

    def test_tampered_state(self):
        state = oauth.build_state("tenant-1", "location-1", "youcan")
        with pytest.raises(InvalidStateError):
            oauth.resolve_tenant_from_state(state[:-4] + "abcd")

    def test_expired_state(self, mocker):
        state = oauth.build_state("tenant-1", "location-1", "youcan")
        mocker.patch("django.core.signing.time.time", return_value=time.time() + 601)
        with pytest.raises(InvalidStateError, match="expired"):
            oauth.resolve_tenant_from_state(state)

    def test_state_for_other_platform(self):
        state = oauth.build_state("tenant-1", "location-1", "youcan")
        with pytest.raises(InvalidStateError):
            oauth.resolve_tenant_from_state(state, platform="shopify")

    @pytest.mark.parametrize("state", ["", "garbage", "a:b:c"])
    def test_malformed_state(self, state):
        with pytest.raises(InvalidStateError):
            oauth.resolve_tenant_from_state(state)


class TestAuthorizationUrl:
    def test_youcan(self):
        url = oauth.authorization_url("youcan", "tenant-1", "location-1")
        query = parse_qs(urlparse(url).query)
        assert query["client_id"] == ["youcan-client"]
        assert query["redirect_uri"] == [
            "https://api.example.com/integrations/youcan/callback/"
        ]
        state = oauth.resolve_tenant_from_state(query["state"][0], platform="youcan")
        assert state["tenant_id"] == "tenant-1"

    def test_shopify_needs_valid_shop(self):
        with pytest.raises(InvalidStateError):
            oauth.authorization_url("shopify", "tenant-1", "location-1", shop="evil.com")

    def test_shopify(self):
        url = oauth.authorization_url("shopify", "tenant-1", "location-1", shop=SHOP)
        assert url.startswith(f"https://{SHOP}/admin/oauth/authorize?")

    def test_woocommerce_carries_state_as_user_id(self):
        url = oauth.authorization_url(
            "woocommerce", "tenant-1", "location-1", store_url="shop.example.com"
        )
        parsed = urlparse(url)
        assert parsed.netloc == "shop.example.com"
        query = parse_qs(parsed.query)
        state = oauth.resolve_tenant_from_state(query["user_id"][0], platform="woocommerce")
        assert state["store_url"] == "shop.example.com"

    def test_unknown_platform(self):
        with pytest.raises(ConfigurationError):
            oauth.authorization_url("magento", "tenant-1", "location-1")


class TestCompleteAuthorization:
    def test_youcan_code_exchange(self, mocker):
        post = mocker.patch(
            "requests.post",
            return_value=_response(
                200,
                {"access_token": "yc-new", "refresh_token": "yc-r", "expires_in": 3600},
            ),
        )
        state = oauth.build_state("tenant-1", "location-1", "youcan")

        connection = oauth.complete_authorization("youcan", "the-code", state)

        assert post.call_args[0][0] == "https://api.youcan.shop/oauth/token"
        assert post.call_args[1]["json"]["code"] == "the-code"
        assert connection.status == IntegrationConnection.Status.CONNECTED
        assert connection.tenant_id == "tenant-1"
        assert connection.location_id == "location-1"
        assert connection.access_token == "yc-new"
        assert connection.refresh_token == "yc-r"
        assert "expires_at" in connection.credentials
        assert connection.webhook_secret == "youcan-secret"

    def test_reconnect_reuses_row(self, mocker, youcan_connection):
        mocker.patch("requests.post", return_value=_response(200, {"access_token": "again"}))
        state = oauth.build_state("tenant-1", "location-1", "youcan")

        connection = oauth.complete_authorization("youcan", "code", state)

        assert connection.pk == youcan_connection.pk
        assert IntegrationConnection.objects.count() == 1

    def test_shopify_shop_must_match_state(self, mocker):
        post = mocker.patch("requests.post")
        state = oauth.build_state("tenant-1", "location-1", "shopify", shop=SHOP)
        with pytest.raises(InvalidStateError):
            oauth.complete_authorization(
                "shopify", "code", state, {"shop": "other.myshopify.com"}
            )
        post.assert_not_called()

    def test_shopify_code_exchange(self, mocker):
        post = mocker.patch(
            "requests.post",
            return_value=_response(200, {"access_token": "shpat", "scope": "read_orders"}),
        )
        state = oauth.build_state("tenant-1", "location-1", "shopify", shop=SHOP)

        connection = oauth.complete_authorization("shopify", "code", state, {"shop": SHOP})

        assert post.call_args[0][0] == f"https://{SHOP}/admin/oauth/access_token"
        assert connection.credentials["shop"] == SHOP
        assert connection.webhook_secret == "shopify-secret"

    def test_missing_code(self):
        state = oauth.build_state("tenant-1", "location-1", "youcan")
        with pytest.raises(InvalidStateError):
            oauth.complete_authorization("youcan", "", state)

    def test_rejected_code(self, mocker):
        mocker.patch("requests.post", return_value=_response(400, {"error": "invalid_grant"}))
        state = oauth.build_state("tenant-1", "location-1", "youcan")
        with pytest.raises(TokenRefreshError):
            oauth.complete_authorization("youcan", "code", state)
        assert IntegrationConnection.objects.count() == 0

    def test_platform_outage_propagates(self, mocker):
        mocker.patch("requests.post", return_value=_response(503))
        state = oauth.build_state("tenant-1", "location-1", "youcan")
        with pytest.raises(requests.HTTPError):
            oauth.complete_authorization("youcan", "code", state)


class TestKeyDelivery:
    def _delivery(self, state):
        return {
            "key_id": "12",
            "user_id": state,
            "consumer_key": "ck_live",
            "consumer_secret": "cs_live",
            "key_permissions": "read_write",
        }

    def test_stores_keys_and_generates_secret(self):
        state = oauth.build_state(
            "tenant-1", "location-1", "woocommerce", store_url="shop.example.com"
        )

        connection = oauth.accept_key_delivery("woocommerce", self._delivery(state))

        assert connection.status == IntegrationConnection.Status.CONNECTED
        assert connection.credentials["access_token"] == "ck_live"
        assert connection.credentials["consumer_secret"] == "cs_live"
        assert connection.credentials["store_url"] == "shop.example.com"
        assert "webhook_secret" not in connection.credentials
        assert len(connection.webhook_secret) >= 32

    def test_platform_without_key_delivery(self):
        state = oauth.build_state("tenant-1", "location-1", "youcan")
        with pytest.raises(ConfigurationError):
            oauth.accept_key_delivery("youcan", self._delivery(state))

    def test_bad_state(self):
        with pytest.raises(InvalidStateError):
            oauth.accept_key_delivery("woocommerce", self._delivery("forged"))


class TestTokenRefresh:
    def test_refresh_keeps_refresh_token(self, mocker, youcan_connection):
        mocker.patch(
            "requests.post",
            return_value=_response(200, {"access_token": "yc-fresh", "expires_in": 60}),
        )

        oauth.refresh_access_token(youcan_connection)

        youcan_connection.refresh_from_db()
        assert youcan_connection.access_token == "yc-fresh"
        assert youcan_connection.refresh_token == "yc-refresh"
        assert youcan_connection.status == IntegrationConnection.Status.CONNECTED

    def test_refused_refresh_moves_to_error(self, mocker, youcan_connection):
        mocker.patch("requests.post", return_value=_response(401))

        with pytest.raises(TokenRefreshError):
            oauth.refresh_access_token(youcan_connection)

        youcan_connection.refresh_from_db()
        assert youcan_connection.status == IntegrationConnection.Status.ERROR
        assert youcan_connection.last_error

    def test_shopify_tokens_cannot_be_refreshed(self, shopify_connection):
        with pytest.raises(TokenRefreshError):
            oauth.refresh_access_token(shopify_connection)
        shopify_connection.refresh_from_db()
        assert shopify_connection.status == IntegrationConnection.Status.ERROR


class TestAuthorizedRequest:
    def test_401_refreshes_once_and_retries(self, mocker, youcan_connection):
        request = mocker.patch(
            "requests.request",
            side_effect=[_response(401), _response(200, {"ok": True})],
        )
        mocker.patch("requests.post", return_value=_response(200, {"access_token": "yc-new"}))
        recorder = AttemptRecorder.start("youcan", b"{}", connection=youcan_connection)

        response = oauth.authorized_request(
            youcan_connection, "GET", "https://api.youcan.shop/me", recorder=recorder
        )

        assert response.status_code == 200
        assert request.call_count == 2
        assert request.call_args[1]["headers"]["Authorization"] == "Bearer yc-new"
        assert recorder.attempt.steps[-1]["name"] == "token-refresh"
        assert recorder.attempt.steps[-1]["status"] == "success"

    def test_second_401_is_returned(self, mocker, youcan_connection):
        mocker.patch("requests.request", side_effect=[_response(401), _response(401)])
        mocker.patch("requests.post", return_value=_response(200, {"access_token": "yc-new"}))
        response = oauth.authorized_request(youcan_connection, "GET", "https://x.test/")
        assert response.status_code == 401

    def test_woocommerce_uses_basic_auth(self, mocker, woocommerce_connection):
        request = mocker.patch("requests.request", return_value=_response(200, []))
        oauth.authorized_request(woocommerce_connection, "GET", "https://x.test/")
        assert request.call_args[1]["headers"]["Authorization"].startswith("Basic ")


class TestSubscriptions:
    def _callback(self, connection):
        return f"https://api.example.com/webhooks/youcan/{connection.connection_key}/"

    def test_subscribes_when_missing(self, mocker, youcan_connection):
        callback = self._callback(youcan_connection)
        request = mocker.patch(
            "requests.request",
            side_effect=[
                _response(200, []),
                _response(201, {"id": 9, "event": "order.create", "target_url": callback}),
            ],
        )

        subscriptions = oauth.subscribe_order_webhooks(youcan_connection)

        method, url = request.call_args[0]
        assert (method, url) == ("POST", "https://api.youcan.shop/resthooks/subscribe")
        assert request.call_args[1]["json"] == {
            "event": "order.create",
            "target_url": callback,
        }
        assert subscriptions == [{"id": "9", "topic": "order.create", "address": callback}]
        youcan_connection.refresh_from_db()
        assert youcan_connection.webhook_subscriptions == subscriptions

    def test_existing_subscription_kept(self, mocker, youcan_connection):
        callback = self._callback(youcan_connection)
        request = mocker.patch(
            "requests.request",
            return_value=_response(
                200, [{"id": 3, "event": "order.create", "target_url": callback}]
            ),
        )

        oauth.subscribe_order_webhooks(youcan_connection)

        assert request.call_count == 1
        youcan_connection.refresh_from_db()
        assert youcan_connection.webhook_subscriptions[0]["id"] == "3"

    def test_shopify_payload(self, mocker, shopify_connection):
        request = mocker.patch(
            "requests.request",
            side_effect=[
                _response(200, {"webhooks": []}),
                _response(201, {"webhook": {"id": 1, "topic": "orders/create", "address": "u"}}),
            ],
        )
        oauth.subscribe_order_webhooks(shopify_connection, base_url="https://hooks.test")

        body = request.call_args[1]["json"]["webhook"]
        assert body["topic"] == "orders/create"
        assert body["address"].startswith("https://hooks.test/webhooks/shopify/")
        assert request.call_args[1]["headers"]["X-Shopify-Access-Token"] == "token-abc"

    def test_delete_counts_failures(self, mocker, youcan_connection):
        mocker.patch(
            "requests.request",
            side_effect=[
                _response(200, [{"id": 1}, {"id": 2}]),
                _response(200),
                _response(404),
            ],
        )
        assert oauth.delete_order_webhooks(youcan_connection) == (1, 2)
        youcan_connection.refresh_from_db()
        assert youcan_connection.webhook_subscriptions == []
