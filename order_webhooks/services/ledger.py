"""Attempt ledger: the step-level audit trail of every webhook delivery.

A :class:`AttemptRecorder` owns one :class:`WebhookAttempt` row for the
lifetime of a pipeline run. The row is inserted as soon as the request is
received, each step is persisted as it finishes, and ``complete()`` writes
the single terminal outcome. Completed rows accept no further writes.
"""

import logging
import time
from contextlib import contextmanager

from django.core.paginator import Paginator
from django.db.models import Avg, Count, Q
from django.utils import timezone

from ..exceptions import InvalidStateError, InvalidTransitionError
from ..models import WebhookAttempt
from ..utils import payload_hash

logger = logging.getLogger(__name__)

Stage = WebhookAttempt.Stage
Status = WebhookAttempt.Status

TERMINAL_STAGES = frozenset({Stage.ADMITTED, Stage.REJECTED_DUPLICATE, Stage.FAILED})

TRANSITIONS = {
    Stage.RECEIVED: {Stage.AUTHENTICATING, Stage.FAILED},
    Stage.AUTHENTICATING: {Stage.NORMALIZING, Stage.FAILED},
    Stage.NORMALIZING: {Stage.EVALUATING_DUPLICATE, Stage.FAILED},
    Stage.EVALUATING_DUPLICATE: {
        Stage.ADMITTING,
        Stage.REJECTED_DUPLICATE,
        Stage.FAILED,
    },
    Stage.ADMITTING: {Stage.ADMITTED, Stage.FAILED},
}

STEP_SUCCESS = "success"
STEP_FAILED = "failed"
STEP_SKIPPED = "skipped"

# Headers that carry credentials are not stored verbatim.
REDACTED_HEADERS = frozenset({"authorization", "cookie", "x-api-key"})


def check_transition(current, target):
    """Raise :class:`InvalidTransitionError` unless ``current -> target`` is legal."""
    if target not in TRANSITIONS.get(current, ()):
        raise InvalidTransitionError(f"Illegal attempt transition {current} -> {target}")


def redact_headers(headers):
    return {
        name: ("[redacted]" if name.lower() in REDACTED_HEADERS else value)
        for name, value in headers.items()
    }


class AttemptRecorder:
    """Write-through recorder for one webhook attempt."""

    def __init__(self, attempt):
        self.attempt = attempt
        self._started = time.monotonic()

    @classmethod
    def start(cls, platform, raw_body, headers=None, connection=None):
        """Insert the ``processing`` row for a freshly received delivery."""
        attempt = WebhookAttempt.objects.create(
            platform=(platform or "")[:20],
            connection=connection,
            tenant_id=connection.tenant_id if connection is not None else "",
            headers=redact_headers(headers or {}),
            payload=raw_body.decode("utf-8", errors="replace"),
            payload_hash=payload_hash(raw_body),
        )
        logger.debug("Recording webhook attempt %s", attempt.attempt_id)
        return cls(attempt)

    @property
    def attempt_id(self):
        return self.attempt.attempt_id

    @property
    def elapsed_ms(self):
        return int((time.monotonic() - self._started) * 1000)

    def _write(self, **values):
        """Persist *values* unless the attempt has already completed."""
        if self.attempt.is_complete:
            raise InvalidStateError(f"Attempt {self.attempt_id} is already complete")
        updated = WebhookAttempt.all_objects.filter(
            pk=self.attempt.pk, completed_at__isnull=True
        ).update(**values)
        if not updated:
            raise InvalidStateError(f"Attempt {self.attempt_id} is already complete")
        for name, value in values.items():
            setattr(self.attempt, name, value)

    def attach(self, connection):
        self._write(connection=connection, tenant_id=connection.tenant_id)

    def advance(self, stage):
        check_transition(self.attempt.stage, stage)
        self._write(stage=stage)

    def note(self, **values):
        """Store descriptive fields such as ``order_summary``."""
        self._write(**values)

    def add_step(self, name, status, duration_ms=0, detail=None):
        step = {
            "name": name,
            "status": status,
            "duration_ms": duration_ms,
            "detail": detail or {},
            "timestamp": timezone.now().isoformat(),
        }
        self._write(steps=self.attempt.steps + [step])
        return step

    @contextmanager
    def step(self, name):
        """Time a unit of work and append it to the attempt's steps.

        The context yields a dict; set ``"status"`` to ``"skipped"`` or fill
        ``"detail"`` from inside the block. An exception marks the step
        failed and propagates.
        """
        record = {"status": STEP_SUCCESS, "detail": {}}
        started = time.monotonic()
        try:
            yield record
        except Exception as exc:
            record["status"] = STEP_FAILED
            record["detail"].setdefault("error", str(exc) or type(exc).__name__)
            raise
        finally:
            self.add_step(
                name,
                record["status"],
                int((time.monotonic() - started) * 1000),
                record["detail"],
            )

    def complete(
        self,
        status,
        response_status,
        response_body,
        stage=Stage.FAILED,
        order=None,
        error_message="",
    ):
        """Write the terminal outcome. Only one terminal write is accepted."""
        if status == Status.PROCESSING:
            raise InvalidStateError("An attempt cannot complete as processing")
        if self.attempt.stage != stage:
            check_transition(self.attempt.stage, stage)
        values = {
            "status": status,
            "stage": stage,
            "response_status": response_status,
            "response_body": response_body,
            "error_message": error_message,
            "processing_time_ms": self.elapsed_ms,
            "completed_at": timezone.now(),
        }
        if order is not None:
            values["order"] = order
        self._write(**values)
        logger.info(
            "Webhook attempt %s finished: %s (%sms)",
            self.attempt_id,
            status,
            values["processing_time_ms"],
        )
        return self.attempt


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def search_attempts(
    connection=None,
    tenant_id=None,
    status=None,
    platform=None,
    since=None,
    until=None,
    search=None,
    page=1,
    page_size=25,
):
    """Filter and paginate live attempts, newest first.

    Returns:
        django.core.paginator.Page
    """
    queryset = WebhookAttempt.objects.select_related("connection", "order")
    if connection is not None:
        queryset = queryset.filter(connection=connection)
    if tenant_id:
        queryset = queryset.filter(tenant_id=tenant_id)
    if status:
        queryset = queryset.filter(status=status)
    if platform:
        queryset = queryset.filter(platform=platform)
    if since:
        queryset = queryset.filter(created_at__gte=since)
    if until:
        queryset = queryset.filter(created_at__lte=until)
    if search:
        queryset = queryset.filter(
            Q(payload__icontains=search)
            | Q(error_message__icontains=search)
            | Q(payload_hash=search)
        )
    paginator = Paginator(queryset.order_by("-created_at", "-id"), page_size)
    return paginator.get_page(page)


def attempt_stats(queryset=None):
    """Summary numbers for a set of live attempts.

    Paused deliveries are left out of the success rate; they are neither
    successes nor failures of the integration.
    """
    if queryset is None:
        queryset = WebhookAttempt.objects.all()
    by_status = {
        row["status"]: row["count"]
        for row in queryset.order_by().values("status").annotate(count=Count("id"))
    }
    total = sum(by_status.values())
    rated = total - by_status.get(Status.INTEGRATION_PAUSED, 0)
    success = by_status.get(Status.SUCCESS, 0)
    average = queryset.aggregate(avg=Avg("processing_time_ms"))["avg"]
    return {
        "total": total,
        "byStatus": by_status,
        "successRate": round(success * 100.0 / rated, 1) if rated else None,
        "averageProcessingTimeMs": round(average) if average is not None else None,
    }


def purge_expired_attempts(now=None, batch_size=1000):
    """Delete expired attempts in batches; returns the number removed."""
    now = now or timezone.now()
    removed = 0
    while True:
        batch = list(
            WebhookAttempt.all_objects.expired(now).values_list("pk", flat=True)[
                :batch_size
            ]
        )
        if not batch:
            break
        deleted, _ = WebhookAttempt.all_objects.filter(pk__in=batch).delete()
        removed += deleted
    if removed:
        logger.info("Purged %d expired webhook attempts", removed)
    return removed
