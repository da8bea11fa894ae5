import pytest
from rest_framework.test import APIClient

from order_webhooks.models import IntegrationConnection, Platform
from order_webhooks.tests.factories import IntegrationConnectionFactory


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def shopify_connection(db):
    return IntegrationConnectionFactory(
        tenant_id="tenant-1",
        location_id="location-1",
        platform=Platform.SHOPIFY,
        webhook_secret="shopify-secret",
    )


@pytest.fixture
def youcan_connection(db):
    return IntegrationConnectionFactory(
        tenant_id="tenant-1",
        location_id="location-1",
        platform=Platform.YOUCAN,
        webhook_secret="youcan-secret",
        credentials={"access_token": "yc-access", "refresh_token": "yc-refresh"},
    )


@pytest.fixture
def woocommerce_connection(db):
    return IntegrationConnectionFactory(
        tenant_id="tenant-1",
        location_id="location-1",
        platform=Platform.WOOCOMMERCE,
        webhook_secret="woo-generated-secret",
        credentials={
            "access_token": "ck_test",
            "consumer_secret": "cs_test",
            "store_url": "shop.example.com",
        },
    )


@pytest.fixture
def disconnected_connection(db):
    return IntegrationConnectionFactory(
        tenant_id="tenant-1",
        location_id="location-2",
        platform=Platform.SHOPIFY,
        status=IntegrationConnection.Status.DISCONNECTED,
    )
