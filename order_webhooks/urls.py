from django.urls import path

from .views import (
    IntegrationCallbackView,
    IntegrationConnectView,
    OrderWebhookView,
    WebhookAttemptDetailView,
    WebhookAttemptListView,
)

app_name = "order_webhooks"

urlpatterns = [
    path(
        "webhooks/<str:platform>/<str:discriminator>/",
        OrderWebhookView.as_view(),
        name="order_webhook",
    ),
    path(
        "integrations/<str:platform>/callback/",
        IntegrationCallbackView.as_view(),
        name="integration_callback",
    ),
    path(
        "integrations/<str:platform>/connect/",
        IntegrationConnectView.as_view(),
        name="integration_connect",
    ),
    path(
        "integrations/connections/<uuid:connection_key>/attempts/",
        WebhookAttemptListView.as_view(),
        name="connection_attempts",
    ),
    path(
        "integrations/attempts/<uuid:attempt_id>/",
        WebhookAttemptDetailView.as_view(),
        name="attempt_detail",
    ),
]
