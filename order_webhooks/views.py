import logging
from urllib.parse import urlencode

import requests
from django.shortcuts import get_object_or_404, redirect
from django.utils.dateparse import parse_datetime
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .conf import get_setting
from .exceptions import ConfigurationError, InvalidStateError, TokenRefreshError
from .models import IntegrationConnection, Platform, WebhookAttempt
from .serializers import (
    IntegrationConnectionSerializer,
    WebhookAttemptDetailSerializer,
    WebhookAttemptListSerializer,
    WooCommerceKeyDeliverySerializer,
)
from .services import ledger, oauth
from .services.pipeline import WebhookPipeline
from .tasks import subscribe_order_webhooks

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class OrderWebhookView(APIView):
    """Receives order-created webhooks from every storefront platform.

    The platform and the connection key are both taken from the URL; the
    body is handed to the pipeline untouched so signatures are checked
    against the exact bytes that were signed.
    """

    authentication_classes = []
    permission_classes = [AllowAny]
    pipeline_class = WebhookPipeline

    def post(self, request, platform, discriminator):
        result = self.pipeline_class().run(
            platform, discriminator, request.body, dict(request.headers)
        )
        return Response(result.body, status=result.http_status, headers=result.headers)


def _integrations_redirect(**params):
    url = get_setting("INTEGRATIONS_REDIRECT_URL")
    return redirect(f"{url}?{urlencode(params)}")


class IntegrationCallbackView(APIView):
    """Platform handshake callback.

    ``GET`` is the OAuth redirect back from the merchant's approval screen
    and ends with a redirect to the integrations dashboard. ``POST`` is
    WooCommerce delivering a freshly generated API key pair.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request, platform):
        params = request.query_params.dict()

        if platform not in Platform.values:
            return _integrations_redirect(error="unknown_platform")
        if params.get("error"):
            logger.info("Merchant declined %s authorization: %s", platform, params["error"])
            return _integrations_redirect(error=params["error"])

        # WooCommerce returns the merchant here after its key POST.
        if platform == Platform.WOOCOMMERCE:
            if params.get("success") == "1":
                return _integrations_redirect(success=f"{platform}_connected")
            return _integrations_redirect(error="access_denied")

        try:
            connection = oauth.complete_authorization(
                platform, params.get("code", ""), params.get("state", ""), params
            )
        except InvalidStateError as exc:
            logger.warning("Rejected %s callback: %s", platform, exc)
            return _integrations_redirect(error="invalid_state")
        except (TokenRefreshError, requests.RequestException) as exc:
            logger.error("Token exchange with %s failed: %s", platform, exc)
            return _integrations_redirect(error="token_exchange_failed")
        except ConfigurationError as exc:
            logger.error("Could not store %s connection: %s", platform, exc)
            return _integrations_redirect(error="connection_failed")

        subscribe_order_webhooks.send(str(connection.connection_key))
        return _integrations_redirect(success=f"{platform}_connected")

    def post(self, request, platform):
        serializer = WooCommerceKeyDeliverySerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        try:
            connection = oauth.accept_key_delivery(platform, serializer.validated_data)
        except InvalidStateError as exc:
            logger.warning("Rejected %s key delivery: %s", platform, exc)
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except ConfigurationError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)

        subscribe_order_webhooks.send(str(connection.connection_key))
        return Response(
            {"status": connection.status, "connectionKey": str(connection.connection_key)},
            status=status.HTTP_200_OK,
        )


class IntegrationConnectView(APIView):
    """Returns the platform URL that starts a new connection."""

    permission_classes = [IsAuthenticated]

    def get(self, request, platform):
        params = request.query_params.dict()
        tenant_id = params.pop("tenant_id", "")
        location_id = params.pop("location_id", "")
        if not tenant_id or not location_id:
            return Response(
                {"error": "tenant_id and location_id are required"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            url = oauth.authorization_url(platform, tenant_id, location_id, **params)
        except InvalidStateError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except ConfigurationError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        return Response({"url": url})


class WebhookAttemptListView(APIView):
    """Searchable webhook history for one connection, with summary stats."""

    permission_classes = [IsAuthenticated]

    def get(self, request, connection_key):
        connection = get_object_or_404(
            IntegrationConnection, connection_key=connection_key
        )
        params = request.query_params
        try:
            page_size = min(int(params.get("page_size", 25)), MAX_PAGE_SIZE)
        except ValueError:
            page_size = 25
        page = ledger.search_attempts(
            connection=connection,
            status=params.get("status"),
            since=parse_datetime(params["since"]) if params.get("since") else None,
            until=parse_datetime(params["until"]) if params.get("until") else None,
            search=params.get("search"),
            page=params.get("page", 1),
            page_size=max(page_size, 1),
        )
        return Response(
            {
                "connection": IntegrationConnectionSerializer(connection).data,
                "stats": ledger.attempt_stats(
                    WebhookAttempt.objects.filter(connection=connection)
                ),
                "count": page.paginator.count,
                "page": page.number,
                "numPages": page.paginator.num_pages,
                "results": WebhookAttemptListSerializer(page.object_list, many=True).data,
            }
        )


class WebhookAttemptDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, attempt_id):
        attempt = get_object_or_404(
            WebhookAttempt.objects.select_related("connection"), attempt_id=attempt_id
        )
        return Response(WebhookAttemptDetailSerializer(attempt).data)
