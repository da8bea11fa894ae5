# Generated manually for order_webhooks app

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

PLATFORM_CHOICES = [
    ("youcan", "YouCan"),
    ("shopify", "Shopify"),
    ("woocommerce", "WooCommerce"),
]

TIME_UNIT_CHOICES = [
    ("minutes", "Minutes"),
    ("hours", "Hours"),
    ("days", "Days"),
]


def _id():
    return (
        "id",
        models.BigAutoField(
            auto_created=True,
            primary_key=True,
            serialize=False,
            verbose_name="ID",
        ),
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="IntegrationConnection",
            fields=[
                _id(),
                (
                    "connection_key",
                    models.UUIDField(default=uuid.uuid4, editable=False, unique=True),
                ),
                ("tenant_id", models.CharField(max_length=64)),
                ("location_id", models.CharField(max_length=64)),
                ("platform", models.CharField(choices=PLATFORM_CHOICES, max_length=20)),
                (
                    "method",
                    models.CharField(
                        choices=[("direct", "Direct"), ("sheets", "Sheets")],
                        default="direct",
                        max_length=10,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("connected", "Connected"),
                            ("disconnected", "Disconnected"),
                            ("error", "Error"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("credentials", models.JSONField(blank=True, default=dict)),
                (
                    "webhook_secret",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("webhook_subscriptions", models.JSONField(blank=True, default=list)),
                ("sync_enabled", models.BooleanField(default=True)),
                ("orders_synced", models.PositiveIntegerField(default=0)),
                ("consecutive_errors", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True, default="")),
                ("last_error_at", models.DateTimeField(blank=True, null=True)),
                ("last_sync_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "order_webhooks_connection",
                "indexes": [
                    models.Index(
                        fields=["tenant_id", "location_id", "platform"],
                        name="owh_conn_triple_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "connected")),
                        fields=("tenant_id", "location_id", "platform"),
                        name="unique_connected_integration",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="DuplicateRuleSet",
            fields=[
                _id(),
                ("tenant_id", models.CharField(max_length=64, unique=True)),
                ("is_enabled", models.BooleanField(default=True)),
                ("default_window_value", models.PositiveIntegerField(default=24)),
                (
                    "default_window_unit",
                    models.CharField(
                        choices=TIME_UNIT_CHOICES, default="hours", max_length=10
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "order_webhooks_rule_set",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("default_window_value__gt", 0)),
                        name="rule_set_window_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="DuplicateRule",
            fields=[
                _id(),
                ("name", models.CharField(max_length=100)),
                ("match_fields", models.JSONField(default=list)),
                (
                    "operator",
                    models.CharField(
                        choices=[("all", "All"), ("any", "Any")],
                        default="all",
                        max_length=3,
                    ),
                ),
                ("window_value", models.PositiveIntegerField(default=24)),
                (
                    "window_unit",
                    models.CharField(
                        choices=TIME_UNIT_CHOICES, default="hours", max_length=10
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("position", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "rule_set",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rules",
                        to="order_webhooks.duplicateruleset",
                    ),
                ),
            ],
            options={
                "db_table": "order_webhooks_rule",
                "ordering": ["position", "id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("window_value__gt", 0)),
                        name="rule_window_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                _id(),
                ("tenant_id", models.CharField(max_length=64)),
                ("location_id", models.CharField(db_index=True, max_length=64)),
                ("platform", models.CharField(choices=PLATFORM_CHOICES, max_length=20)),
                ("external_order_id", models.CharField(max_length=255)),
                (
                    "customer_name",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "customer_phone",
                    models.CharField(blank=True, default="", max_length=64),
                ),
                (
                    "customer_phone_digits",
                    models.CharField(
                        blank=True, db_index=True, default="", max_length=64
                    ),
                ),
                ("customer_address", models.TextField(blank=True, default="")),
                (
                    "total",
                    models.DecimalField(decimal_places=2, default=0, max_digits=12),
                ),
                ("currency", models.CharField(blank=True, default="", max_length=8)),
                ("placed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "created_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "connection",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="orders",
                        to="order_webhooks.integrationconnection",
                    ),
                ),
            ],
            options={
                "db_table": "order_webhooks_order",
                "indexes": [
                    models.Index(
                        fields=["tenant_id", "created_at"],
                        name="owh_order_tenant_created_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("tenant_id", "platform", "external_order_id"),
                        name="unique_external_order",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderLineItem",
            fields=[
                _id(),
                ("product_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "product_name",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "product_code",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("quantity", models.PositiveIntegerField(default=1)),
                (
                    "unit_price",
                    models.DecimalField(decimal_places=2, default=0, max_digits=12),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="order_webhooks.order",
                    ),
                ),
            ],
            options={
                "db_table": "order_webhooks_order_line",
            },
        ),
        migrations.CreateModel(
            name="WebhookAttempt",
            fields=[
                _id(),
                (
                    "attempt_id",
                    models.UUIDField(default=uuid.uuid4, editable=False, unique=True),
                ),
                ("platform", models.CharField(max_length=20)),
                (
                    "tenant_id",
                    models.CharField(
                        blank=True, db_index=True, default="", max_length=64
                    ),
                ),
                ("headers", models.JSONField(blank=True, default=dict)),
                ("payload", models.TextField(blank=True, default="")),
                ("payload_hash", models.CharField(blank=True, default="", max_length=64)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("processing", "Processing"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("signature-invalid", "Signature Invalid"),
                            ("connection-not-found", "Connection Not Found"),
                            ("product-not-found", "Product Not Found"),
                            ("validation-failed", "Validation Failed"),
                            ("order-creation-failed", "Order Creation Failed"),
                            ("rejected-duplicate", "Rejected Duplicate"),
                            ("integration-paused", "Integration Paused"),
                        ],
                        default="processing",
                        max_length=32,
                    ),
                ),
                (
                    "stage",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("authenticating", "Authenticating"),
                            ("normalizing", "Normalizing"),
                            ("evaluating-duplicate", "Evaluating Duplicate"),
                            ("admitting", "Admitting"),
                            ("admitted", "Admitted"),
                            ("rejected-duplicate", "Rejected Duplicate"),
                            ("failed", "Failed"),
                        ],
                        default="received",
                        max_length=32,
                    ),
                ),
                ("order_summary", models.JSONField(blank=True, default=dict)),
                ("signature_detail", models.JSONField(blank=True, default=dict)),
                ("steps", models.JSONField(blank=True, default=list)),
                ("error_message", models.TextField(blank=True, default="")),
                ("processing_time_ms", models.IntegerField(null=True)),
                ("response_status", models.PositiveSmallIntegerField(null=True)),
                ("response_body", models.JSONField(blank=True, default=dict)),
                (
                    "created_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("expires_at", models.DateTimeField(db_index=True)),
                (
                    "connection",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="attempts",
                        to="order_webhooks.integrationconnection",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="attempts",
                        to="order_webhooks.order",
                    ),
                ),
            ],
            options={
                "db_table": "order_webhooks_attempt",
                "indexes": [
                    models.Index(
                        fields=["connection", "created_at"],
                        name="owh_attempt_conn_idx",
                    ),
                    models.Index(
                        fields=["status", "created_at"],
                        name="owh_attempt_status_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("expires_at__gt", models.F("created_at"))
                        ),
                        name="attempt_expires_after_creation",
                    )
                ],
            },
        ),
    ]
