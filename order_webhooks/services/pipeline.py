"""Inbound order webhook pipeline.

One request is one run of :meth:`WebhookPipeline.run`::

    received -> authenticating -> normalizing -> evaluating-duplicate
             -> admitting -> admitted | rejected-duplicate | failed

Every run writes exactly one ledger entry, whatever the outcome, and maps
the outcome onto the HTTP answer given to the platform.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from datadog import statsd
from django.db import DatabaseError, OperationalError, transaction
from rest_framework import status

from .. import platforms
from ..conf import get_setting
from ..exceptions import (
    AuthenticationError,
    MissingProductError,
    NormalizationError,
    StageTimeoutError,
    TransientStorageError,
)
from ..models import IntegrationConnection, WebhookAttempt
from . import admission, credentials, duplicates, orders
from .ledger import STEP_FAILED, STEP_SKIPPED, AttemptRecorder

logger = logging.getLogger(__name__)

Stage = WebhookAttempt.Stage
Status = WebhookAttempt.Status

RETRY_AFTER_SECONDS = 60

# Statuses that reach the platform as something other than the ledger status.
OUTCOME_ADMITTED = "admitted"

ACCEPTING_STATUSES = frozenset(
    {IntegrationConnection.Status.CONNECTED, IntegrationConnection.Status.ERROR}
)


@dataclass
class PipelineResult:
    http_status: int
    body: dict
    headers: dict = field(default_factory=dict)
    attempt: Optional[WebhookAttempt] = None


class WebhookPipeline:
    """Authenticate, normalize, deduplicate and admit one order webhook."""

    def __init__(self, evaluator=None):
        self.evaluator = evaluator or duplicates.DuplicateEvaluator()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter(self, recorder, stage):
        recorder.advance(stage)
        return time.monotonic()

    def _overrun(self, stage, started):
        """Return ``(elapsed, budget)`` when *stage* ran past its budget."""
        budget = get_setting("STAGE_TIMEOUTS").get(stage)
        elapsed = time.monotonic() - started
        if budget is not None and elapsed > budget:
            return elapsed, budget
        return None

    def _check_budget(self, stage, started):
        overrun = self._overrun(stage, started)
        if overrun is not None:
            raise StageTimeoutError(stage, *overrun)

    def _finish(self, recorder, ledger_status, http_status, body, **complete_kwargs):
        body = dict(body, attemptId=str(recorder.attempt_id))
        attempt = recorder.complete(
            ledger_status, http_status, body, **complete_kwargs
        )
        return PipelineResult(http_status, body, attempt=attempt)

    def _emit_metrics(self, platform_type, result):
        attempt = result.attempt
        ledger_status = attempt.status if attempt is not None else Status.FAILED
        tags = [f"platform:{platform_type}", f"status:{ledger_status}"]
        statsd.increment("order_webhooks.attempt", tags=tags)
        if attempt is not None and attempt.processing_time_ms is not None:
            statsd.histogram(
                "order_webhooks.attempt.processing_time_ms",
                attempt.processing_time_ms,
                tags=tags,
            )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, platform_type, discriminator, raw_body, headers):
        """Process one delivery.

        Args:
            platform_type: Platform segment of the webhook URL.
            discriminator: Connection key segment of the webhook URL.
            raw_body: Raw request body bytes, exactly as signed.
            headers: Request headers; names are matched case-insensitively.

        Returns:
            PipelineResult
        """
        headers = {name.lower(): value for name, value in headers.items()}
        try:
            connection = credentials.resolve_connection(platform_type, discriminator)
            recorder = AttemptRecorder.start(
                platform_type, raw_body, headers, connection=connection
            )
        except DatabaseError:
            logger.exception("Could not record webhook for %s", platform_type)
            result = PipelineResult(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                {"status": Status.FAILED, "attemptId": None, "retryable": True},
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )
            self._emit_metrics(platform_type, result)
            return result

        try:
            result = self._process(recorder, platform_type, connection, raw_body, headers)
        except (TransientStorageError, OperationalError) as exc:
            result = self._fail_transient(recorder, connection, exc)
        except Exception as exc:
            logger.exception("Webhook attempt %s failed unexpectedly", recorder.attempt_id)
            result = self._fail(recorder, connection, exc)
        self._emit_metrics(platform_type, result)
        return result

    def _fail_transient(self, recorder, connection, exc):
        logger.warning("Webhook attempt %s failed transiently: %s", recorder.attempt_id, exc)
        if isinstance(exc, StageTimeoutError):
            message = f"Timed out: {exc}"
        else:
            message = f"Storage unavailable: {exc}"
        return self._fail(recorder, connection, exc, message=message, retryable=True)

    def _fail(self, recorder, connection, exc, message=None, retryable=False):
        message = message or f"Unexpected error: {exc}"
        if connection is not None:
            try:
                with transaction.atomic():
                    credentials.record_sync_failure(connection, message)
            except DatabaseError:
                logger.exception("Could not record sync failure")
        body = {"status": Status.FAILED, "retryable": retryable}
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if retryable else {}
        try:
            result = self._finish(
                recorder,
                Status.FAILED,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                body,
                error_message=message,
            )
        except DatabaseError:
            logger.exception("Could not complete webhook attempt %s", recorder.attempt_id)
            result = PipelineResult(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                dict(body, attemptId=str(recorder.attempt_id)),
            )
        result.headers.update(headers)
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _authenticate(self, recorder, platform_type, connection, raw_body, headers):
        """Check the connection and the signature; returns the stage start time.

        Raises:
            AuthenticationError: no accepting connection, or a bad signature.
        """
        with recorder.step("resolve-connection") as step:
            if connection is None or connection.status not in ACCEPTING_STATUSES:
                step["status"] = STEP_FAILED
                step["detail"] = {"discriminator": "unknown or inactive"}
            else:
                step["detail"] = {"connectionKey": str(connection.connection_key)}
        if step["status"] == STEP_FAILED:
            logger.warning("No active %s connection for webhook", platform_type)
            raise AuthenticationError(
                "No active connection for this webhook URL",
                Status.CONNECTION_NOT_FOUND,
                status.HTTP_404_NOT_FOUND,
            )

        started = self._enter(recorder, Stage.AUTHENTICATING)
        with recorder.step("verify-signature") as step:
            verification = platforms.verify(
                platform_type, raw_body, headers, connection.webhook_secret
            )
            step["detail"] = verification.as_dict()
            if not verification.valid:
                step["status"] = STEP_FAILED
        recorder.note(signature_detail=verification.as_dict())
        if not verification.valid:
            logger.warning(
                "Signature verification failed for connection %s: %s",
                connection.connection_key,
                verification.detail,
            )
            raise AuthenticationError(
                verification.detail,
                Status.SIGNATURE_INVALID,
                status.HTTP_401_UNAUTHORIZED,
            )
        return started

    def _process(self, recorder, platform_type, connection, raw_body, headers):
        # 1. Authenticate
        try:
            started = self._authenticate(
                recorder, platform_type, connection, raw_body, headers
            )
        except AuthenticationError as exc:
            return self._finish(
                recorder,
                exc.ledger_status,
                exc.http_status,
                {"status": exc.ledger_status},
                error_message=str(exc),
            )
        self._check_budget(Stage.AUTHENTICATING, started)

        if not connection.sync_enabled:
            recorder.add_step("sync-enabled", STEP_SKIPPED, detail={"reason": "paused"})
            return self._finish(
                recorder,
                Status.INTEGRATION_PAUSED,
                status.HTTP_200_OK,
                {"status": Status.INTEGRATION_PAUSED},
            )

        # 2. Normalize
        started = self._enter(recorder, Stage.NORMALIZING)
        try:
            with recorder.step("check-topic") as step:
                step["detail"] = {
                    "topic": platforms.check_topic(platform_type, headers)
                }
            with recorder.step("normalize") as step:
                candidate = platforms.normalize(platform_type, raw_body).for_connection(
                    connection
                )
                step["detail"] = {"lineItems": len(candidate.line_items)}
        except NormalizationError as exc:
            ledger_status = (
                Status.PRODUCT_NOT_FOUND
                if isinstance(exc, MissingProductError)
                else Status.VALIDATION_FAILED
            )
            body = {"status": ledger_status, "error": str(exc)}
            if exc.errors:
                body["errors"] = exc.errors
            return self._finish(
                recorder,
                ledger_status,
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                body,
                error_message=str(exc),
            )
        recorder.note(order_summary=candidate.summary())
        self._check_budget(Stage.NORMALIZING, started)

        # 3. Duplicate evaluation
        tenant_id = connection.tenant_id
        started = self._enter(recorder, Stage.EVALUATING_DUPLICATE)
        already_admitted = orders.find_admitted(
            tenant_id, candidate.platform, candidate.external_order_id
        )
        if already_admitted is not None:
            recorder.add_step(
                "evaluate-duplicates",
                STEP_SKIPPED,
                detail={"reason": "already-admitted", "orderId": already_admitted.pk},
            )
        else:
            with recorder.step("evaluate-duplicates") as step:
                verdict = self.evaluator.evaluate(tenant_id, candidate)
                step["detail"] = verdict.as_detail()
            if verdict.is_duplicate:
                return self._finish(
                    recorder,
                    Status.REJECTED_DUPLICATE,
                    status.HTTP_200_OK,
                    {
                        "status": Status.REJECTED_DUPLICATE,
                        "matchedRule": verdict.matched_rule.name,
                        "matchedOrderId": verdict.matched_order.pk,
                    },
                    stage=Stage.REJECTED_DUPLICATE,
                )
        self._check_budget(Stage.EVALUATING_DUPLICATE, started)

        # 4. Admit
        started = self._enter(recorder, Stage.ADMITTING)
        with recorder.step("admit") as step:
            result = admission.admit(candidate, tenant_id, connection=connection)
            step["detail"] = {"reason": result.reason}
            if result.order is not None:
                step["detail"]["orderId"] = result.order.pk
            if result.reason == admission.ERROR:
                step["status"] = STEP_FAILED
            # The order is committed by now; an overrun is only reported.
            overrun = self._overrun(Stage.ADMITTING, started)
            if overrun is not None:
                step["detail"]["budgetExceeded"] = {
                    "elapsedSeconds": round(overrun[0], 3),
                    "budgetSeconds": overrun[1],
                }
                logger.warning(
                    "Webhook attempt %s spent %.3fs admitting (budget %ss)",
                    recorder.attempt_id,
                    overrun[0],
                    overrun[1],
                )
        if result.reason == admission.ERROR:
            credentials.record_sync_failure(connection, result.detail)
            return self._finish(
                recorder,
                Status.ORDER_CREATION_FAILED,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                {"status": Status.ORDER_CREATION_FAILED, "retryable": False},
                error_message=result.detail,
            )

        outcome = OUTCOME_ADMITTED if result.created else admission.DUPLICATE_OF_SELF
        return self._finish(
            recorder,
            Status.SUCCESS,
            status.HTTP_200_OK,
            {"status": outcome, "orderId": result.order.pk},
            stage=Stage.ADMITTED,
            order=result.order,
        )
