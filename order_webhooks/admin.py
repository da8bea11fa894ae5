from django.contrib import admin

from .models import (
    DuplicateRule,
    DuplicateRuleSet,
    IntegrationConnection,
    Order,
    OrderLineItem,
    WebhookAttempt,
)


@admin.register(IntegrationConnection)
class IntegrationConnectionAdmin(admin.ModelAdmin):
    list_display = (
        "connection_key",
        "tenant_id",
        "location_id",
        "platform",
        "status",
        "sync_enabled",
        "orders_synced",
        "consecutive_errors",
        "last_sync_at",
    )
    list_filter = (
        "platform",
        "status",
        "sync_enabled",
    )
    search_fields = (
        "tenant_id",
        "location_id",
        "connection_key",
    )
    exclude = ("credentials", "webhook_secret")
    readonly_fields = (
        "connection_key",
        "orders_synced",
        "consecutive_errors",
        "last_error",
        "last_error_at",
        "last_sync_at",
        "webhook_subscriptions",
        "created_at",
        "updated_at",
    )


class DuplicateRuleInline(admin.TabularInline):
    model = DuplicateRule
    extra = 0
    fields = (
        "position",
        "name",
        "match_fields",
        "operator",
        "window_value",
        "window_unit",
        "is_active",
    )
    ordering = ("position", "id")


@admin.register(DuplicateRuleSet)
class DuplicateRuleSetAdmin(admin.ModelAdmin):
    list_display = (
        "tenant_id",
        "is_enabled",
        "default_window_value",
        "default_window_unit",
        "updated_at",
    )
    list_filter = ("is_enabled",)
    search_fields = ("tenant_id",)
    inlines = [DuplicateRuleInline]


class OrderLineItemInline(admin.TabularInline):
    model = OrderLineItem
    extra = 0
    can_delete = False
    exclude = ("product_name_key",)
    readonly_fields = (
        "product_id",
        "product_name",
        "product_code",
        "quantity",
        "unit_price",
    )


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "external_order_id",
        "platform",
        "tenant_id",
        "location_id",
        "customer_name",
        "total",
        "currency",
        "created_at",
    )
    list_filter = ("platform",)
    search_fields = (
        "external_order_id",
        "tenant_id",
        "customer_name",
        "customer_phone_digits",
    )
    raw_id_fields = ("connection",)
    readonly_fields = (
        "customer_name_key",
        "customer_phone_digits",
        "customer_address_key",
    )
    inlines = [OrderLineItemInline]
    date_hierarchy = "created_at"
    ordering = ("-created_at",)


@admin.register(WebhookAttempt)
class WebhookAttemptAdmin(admin.ModelAdmin):
    list_display = (
        "attempt_id",
        "platform",
        "tenant_id",
        "status",
        "stage",
        "response_status",
        "processing_time_ms",
        "created_at",
    )
    list_filter = (
        "status",
        "platform",
    )
    search_fields = (
        "attempt_id",
        "tenant_id",
        "payload_hash",
    )
    raw_id_fields = ("connection", "order")
    date_hierarchy = "created_at"
    ordering = ("-created_at",)

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
