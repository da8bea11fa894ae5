"""Tests for at-most-once order admission."""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import IntegrityError, OperationalError, connections

from order_webhooks.exceptions import TransientStorageError
from order_webhooks.models import Order, OrderLineItem, Platform
from order_webhooks.platforms.base import CandidateOrder, CustomerInfo, LineItem
from order_webhooks.services import admission
from order_webhooks.tests.factories import OrderFactory

pytestmark = pytest.mark.django_db


def _candidate(external_order_id="ext-1", tenant_id="tenant-1"):
    return CandidateOrder(
        platform=Platform.SHOPIFY,
        external_order_id=external_order_id,
        line_items=(
            LineItem(product_id="p1", product_name="Mug", quantity=2, unit_price=Decimal("5.00")),
        ),
        customer=CustomerInfo(name="Jane", phone="+1 555-0100", address="1 Road"),
        total=Decimal("10.00"),
        currency="USD",
        tenant_id=tenant_id,
        location_id="location-1",
    )


class TestAdmit:
    def test_creates_order_and_line_items(self, shopify_connection):
        result = admission.admit(_candidate(), "tenant-1", connection=shopify_connection)

        assert result.created is True
        assert result.reason == admission.CREATED
        order = result.order
        assert order.customer_phone_digits == "15550100"
        assert order.connection == shopify_connection
        assert OrderLineItem.objects.filter(order=order).count() == 1

    def test_repeated_submissions_create_one_order(self, shopify_connection):
        results = [
            admission.admit(_candidate(), "tenant-1", connection=shopify_connection)
            for _ in range(5)
        ]

        assert Order.objects.count() == 1
        assert [r.created for r in results] == [True, False, False, False, False]
        assert all(r.reason == admission.DUPLICATE_OF_SELF for r in results[1:])
        assert len({r.order.pk for r in results}) == 1

    def test_same_external_id_other_tenant_is_separate(self):
        admission.admit(_candidate(tenant_id="tenant-1"), "tenant-1")
        result = admission.admit(_candidate(tenant_id="tenant-2"), "tenant-2")
        assert result.created is True
        assert Order.objects.count() == 2

    def test_tenant_argument_wins(self):
        result = admission.admit(_candidate(tenant_id=""), "tenant-9")
        assert result.order.tenant_id == "tenant-9"

    def test_lost_race_returns_existing_order(self):
        winner = OrderFactory(
            tenant_id="tenant-1", platform=Platform.SHOPIFY, external_order_id="ext-1"
        )
        # The pre-check misses the row, as it would for a concurrent insert.
        with patch(
            "order_webhooks.services.orders.find_admitted", side_effect=[None, winner]
        ):
            result = admission.admit(_candidate(), "tenant-1")

        assert result.created is False
        assert result.reason == admission.DUPLICATE_OF_SELF
        assert result.order == winner
        assert Order.objects.count() == 1

    def test_integrity_error_without_existing_row(self):
        with patch(
            "order_webhooks.services.orders.create_order",
            side_effect=IntegrityError("NOT NULL constraint failed"),
        ):
            result = admission.admit(_candidate(), "tenant-1")
        assert result.created is False
        assert result.reason == admission.ERROR
        assert "NOT NULL" in result.detail

    def test_operational_error_is_transient(self):
        with patch(
            "order_webhooks.services.orders.find_admitted",
            side_effect=OperationalError("database is locked"),
        ):
            with pytest.raises(TransientStorageError):
                admission.admit(_candidate(), "tenant-1")

    def test_sync_counters_updated(self, shopify_connection):
        admission.admit(_candidate(), "tenant-1", connection=shopify_connection)
        shopify_connection.refresh_from_db()
        assert shopify_connection.orders_synced == 1
        assert shopify_connection.last_sync_at is not None

    def test_counter_failure_does_not_undo_order(self, shopify_connection, mocker):
        mocker.patch(
            "order_webhooks.services.credentials.record_sync_success",
            side_effect=OperationalError("counter table locked"),
        )
        result = admission.admit(_candidate(), "tenant-1", connection=shopify_connection)
        assert result.created is True
        assert Order.objects.filter(pk=result.order.pk).exists()


@pytest.mark.django_db(transaction=True)
class TestConcurrentAdmission:
    """Parallel deliveries of one order, each on its own DB connection."""

    WORKERS = 8

    def _deliver_in_parallel(self, make_call):
        barrier = threading.Barrier(self.WORKERS)

        def deliver():
            barrier.wait()
            try:
                return make_call()
            finally:
                connections.close_all()

        with ThreadPoolExecutor(max_workers=self.WORKERS) as executor:
            futures = [executor.submit(deliver) for _ in range(self.WORKERS)]
            return [future.result() for future in as_completed(futures)]

    def test_same_order_admitted_once(self, shopify_connection):
        results = self._deliver_in_parallel(
            lambda: admission.admit(_candidate(), "tenant-1", connection=shopify_connection)
        )

        assert Order.objects.count() == 1
        assert sum(result.created for result in results) == 1
        duplicates = [r for r in results if r.reason == admission.DUPLICATE_OF_SELF]
        assert len(duplicates) == self.WORKERS - 1
        assert len({result.order.pk for result in results}) == 1
        shopify_connection.refresh_from_db()
        assert shopify_connection.orders_synced == 1

    def test_distinct_orders_all_admitted(self):
        counter = iter(range(self.WORKERS))
        lock = threading.Lock()

        def admit_next():
            with lock:
                external_order_id = f"ext-{next(counter)}"
            return admission.admit(_candidate(external_order_id), "tenant-1")

        results = self._deliver_in_parallel(admit_next)

        assert all(result.created for result in results)
        assert Order.objects.count() == self.WORKERS
