from django.apps import AppConfig


class OrderWebhooksConfig(AppConfig):
    name = "order_webhooks"
    verbose_name = "Order Webhooks"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        # Import platform modules to register the variants in the router.
        import order_webhooks.platforms.shopify  # noqa: F401
        import order_webhooks.platforms.woocommerce  # noqa: F401
        import order_webhooks.platforms.youcan  # noqa: F401
