import datetime
import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from .conf import get_setting


class Platform(models.TextChoices):
    YOUCAN = "youcan", "YouCan"
    SHOPIFY = "shopify", "Shopify"
    WOOCOMMERCE = "woocommerce", "WooCommerce"


class TimeUnit(models.TextChoices):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


def window_delta(value, unit):
    """Convert a rule time window (value + unit) into a timedelta."""
    return datetime.timedelta(**{unit: value})


def retention_period():
    """How long a webhook attempt is kept before it is purged."""
    return datetime.timedelta(days=get_setting("ATTEMPT_RETENTION_DAYS"))


class IntegrationConnection(models.Model):
    """One storefront connection per (tenant, fulfillment location, platform).

    Connections are never deleted; they move to ``disconnected`` instead so
    orders and attempts keep their provenance.
    """

    class Method(models.TextChoices):
        DIRECT = "direct"
        SHEETS = "sheets"

    class Status(models.TextChoices):
        PENDING = "pending"
        CONNECTED = "connected"
        DISCONNECTED = "disconnected"
        ERROR = "error"

    class Health(models.TextChoices):
        HEALTHY = "healthy"
        DEGRADED = "degraded"
        FAILING = "failing"
        DISCONNECTED = "disconnected"

    connection_key = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    tenant_id = models.CharField(max_length=64)
    location_id = models.CharField(max_length=64)
    platform = models.CharField(max_length=20, choices=Platform.choices)
    method = models.CharField(
        max_length=10, choices=Method.choices, default=Method.DIRECT
    )
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING
    )
    credentials = models.JSONField(default=dict, blank=True)
    webhook_secret = models.CharField(max_length=255, blank=True, default="")
    webhook_subscriptions = models.JSONField(default=list, blank=True)
    sync_enabled = models.BooleanField(default=True)
    orders_synced = models.PositiveIntegerField(default=0)
    consecutive_errors = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, default="")
    last_error_at = models.DateTimeField(null=True, blank=True)
    last_sync_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "order_webhooks_connection"
        indexes = [
            models.Index(
                fields=["tenant_id", "location_id", "platform"],
                name="owh_conn_triple_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "location_id", "platform"],
                condition=Q(status="connected"),
                name="unique_connected_integration",
            ),
        ]

    def __str__(self):
        return f"{self.platform} [{self.status}] (tenant={self.tenant_id})"

    @property
    def access_token(self):
        return self.credentials.get("access_token", "")

    @property
    def refresh_token(self):
        return self.credentials.get("refresh_token", "")

    @property
    def health(self):
        """Tenant-facing health indicator derived from status and error streak."""
        if self.status in (self.Status.DISCONNECTED, self.Status.PENDING):
            return self.Health.DISCONNECTED
        if self.status == self.Status.ERROR:
            return self.Health.FAILING
        if self.consecutive_errors >= get_setting("HEALTH_FAILING_AFTER"):
            return self.Health.FAILING
        if self.consecutive_errors >= get_setting("HEALTH_DEGRADED_AFTER"):
            return self.Health.DEGRADED
        return self.Health.HEALTHY


class DuplicateRuleSet(models.Model):
    """Per-tenant duplicate-detection configuration."""

    tenant_id = models.CharField(max_length=64, unique=True)
    is_enabled = models.BooleanField(default=True)
    default_window_value = models.PositiveIntegerField(default=24)
    default_window_unit = models.CharField(
        max_length=10, choices=TimeUnit.choices, default=TimeUnit.HOURS
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "order_webhooks_rule_set"
        constraints = [
            models.CheckConstraint(
                condition=Q(default_window_value__gt=0),
                name="rule_set_window_positive",
            ),
        ]

    def __str__(self):
        state = "enabled" if self.is_enabled else "disabled"
        return f"Duplicate rules for {self.tenant_id} ({state})"


class DuplicateRule(models.Model):
    class MatchField(models.TextChoices):
        CUSTOMER_NAME = "customer_name"
        CUSTOMER_PHONE = "customer_phone"
        CUSTOMER_ADDRESS = "customer_address"
        PRODUCT_ID = "product_id"
        PRODUCT_NAME = "product_name"
        PRODUCT_CODE = "product_code"
        ORDER_TOTAL = "order_total"
        FULFILLMENT_LOCATION = "fulfillment_location"

    class Operator(models.TextChoices):
        ALL = "all"
        ANY = "any"

    rule_set = models.ForeignKey(
        DuplicateRuleSet, on_delete=models.CASCADE, related_name="rules"
    )
    name = models.CharField(max_length=100)
    match_fields = models.JSONField(default=list)
    operator = models.CharField(
        max_length=3, choices=Operator.choices, default=Operator.ALL
    )
    window_value = models.PositiveIntegerField(default=24)
    window_unit = models.CharField(
        max_length=10, choices=TimeUnit.choices, default=TimeUnit.HOURS
    )
    is_active = models.BooleanField(default=True)
    position = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "order_webhooks_rule"
        ordering = ["position", "id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(window_value__gt=0),
                name="rule_window_positive",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.operator.upper()} of {', '.join(self.enabled_fields)})"

    def clean(self):
        errors = {}
        if not (self.name or "").strip():
            errors["name"] = "Rule name is required."
        if not isinstance(self.match_fields, list) or not self.match_fields:
            errors["match_fields"] = "At least one field is required."
        else:
            unknown = sorted(set(self.match_fields) - set(self.MatchField.values))
            if unknown:
                errors["match_fields"] = f"Unknown fields: {', '.join(unknown)}"
        if self.window_value is not None and self.window_value < 1:
            errors["window_value"] = "Time window value must be at least 1."
        if errors:
            raise ValidationError(errors)

    @property
    def enabled_fields(self):
        """Known fields in stored order, without repeats."""
        if not isinstance(self.match_fields, list):
            return []
        known = set(self.MatchField.values)
        seen = []
        for field in self.match_fields:
            if field in known and field not in seen:
                seen.append(field)
        return seen

    @property
    def window(self):
        return window_delta(self.window_value, self.window_unit)


class Order(models.Model):
    """Canonical order admitted from a storefront webhook."""

    tenant_id = models.CharField(max_length=64)
    location_id = models.CharField(max_length=64, db_index=True)
    platform = models.CharField(max_length=20, choices=Platform.choices)
    external_order_id = models.CharField(max_length=255)
    connection = models.ForeignKey(
        IntegrationConnection,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    customer_name = models.CharField(max_length=255, blank=True, default="")
    customer_phone = models.CharField(max_length=64, blank=True, default="")
    customer_name_key = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    customer_phone_digits = models.CharField(
        max_length=64, blank=True, default="", db_index=True
    )
    customer_address = models.TextField(blank=True, default="")
    customer_address_key = models.CharField(
        max_length=64, blank=True, default="", db_index=True
    )
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    currency = models.CharField(max_length=8, blank=True, default="")
    placed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "order_webhooks_order"
        indexes = [
            models.Index(
                fields=["tenant_id", "created_at"],
                name="owh_order_tenant_created_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "platform", "external_order_id"],
                name="unique_external_order",
            ),
        ]

    def __str__(self):
        return f"{self.platform}:{self.external_order_id} (tenant={self.tenant_id})"


class OrderLineItem(models.Model):
    order = models.ForeignKey(
        Order, on_delete=models.CASCADE, related_name="line_items"
    )
    product_id = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    product_name = models.CharField(max_length=255, blank=True, default="")
    product_name_key = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    product_code = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta:
        db_table = "order_webhooks_order_line"

    def __str__(self):
        return f"{self.quantity} x {self.product_name or self.product_id}"


class WebhookAttemptQuerySet(models.QuerySet):
    def live(self, now=None):
        return self.filter(expires_at__gt=now or timezone.now())

    def expired(self, now=None):
        return self.filter(expires_at__lte=now or timezone.now())


class LiveAttemptManager(models.Manager.from_queryset(WebhookAttemptQuerySet)):
    """Default manager: expired attempts are invisible before they are purged."""

    def get_queryset(self):
        return super().get_queryset().live()


class WebhookAttempt(models.Model):
    """Ledger entry for one inbound webhook delivery, valid or not."""

    class Status(models.TextChoices):
        PROCESSING = "processing"
        SUCCESS = "success"
        FAILED = "failed"
        SIGNATURE_INVALID = "signature-invalid"
        CONNECTION_NOT_FOUND = "connection-not-found"
        PRODUCT_NOT_FOUND = "product-not-found"
        VALIDATION_FAILED = "validation-failed"
        ORDER_CREATION_FAILED = "order-creation-failed"
        REJECTED_DUPLICATE = "rejected-duplicate"
        INTEGRATION_PAUSED = "integration-paused"

    class Stage(models.TextChoices):
        RECEIVED = "received"
        AUTHENTICATING = "authenticating"
        NORMALIZING = "normalizing"
        EVALUATING_DUPLICATE = "evaluating-duplicate"
        ADMITTING = "admitting"
        ADMITTED = "admitted"
        REJECTED_DUPLICATE = "rejected-duplicate"
        FAILED = "failed"

    attempt_id = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    platform = models.CharField(max_length=20)
    connection = models.ForeignKey(
        IntegrationConnection,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="attempts",
    )
    tenant_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    headers = models.JSONField(default=dict, blank=True)
    payload = models.TextField(blank=True, default="")
    payload_hash = models.CharField(max_length=64, blank=True, default="")
    status = models.CharField(
        max_length=32, choices=Status.choices, default=Status.PROCESSING
    )
    stage = models.CharField(
        max_length=32, choices=Stage.choices, default=Stage.RECEIVED
    )
    order_summary = models.JSONField(default=dict, blank=True)
    signature_detail = models.JSONField(default=dict, blank=True)
    steps = models.JSONField(default=list, blank=True)
    order = models.ForeignKey(
        Order,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="attempts",
    )
    error_message = models.TextField(blank=True, default="")
    processing_time_ms = models.IntegerField(null=True)
    response_status = models.PositiveSmallIntegerField(null=True)
    response_body = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(db_index=True)

    objects = LiveAttemptManager()
    all_objects = WebhookAttemptQuerySet.as_manager()

    class Meta:
        db_table = "order_webhooks_attempt"
        indexes = [
            models.Index(
                fields=["connection", "created_at"],
                name="owh_attempt_conn_idx",
            ),
            models.Index(
                fields=["status", "created_at"],
                name="owh_attempt_status_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(expires_at__gt=F("created_at")),
                name="attempt_expires_after_creation",
            ),
        ]

    def __str__(self):
        return f"{self.platform} [{self.status}] ({self.attempt_id})"

    def save(self, *args, **kwargs):
        if self._state.adding:
            if self.created_at is None:
                self.created_at = timezone.now()
            self.expires_at = self.created_at + retention_period()
        else:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or {"created_at", "expires_at"} & set(update_fields):
                raise ValueError(
                    "Stored webhook attempts are updated field by field and "
                    "never change created_at or expires_at"
                )
        super().save(*args, **kwargs)

    @property
    def is_complete(self):
        return self.completed_at is not None
