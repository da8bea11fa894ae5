"""Admission coordinator: commits a candidate order at most once.

The unique constraint on (tenant, platform, external order id) is the only
arbiter between concurrent deliveries of the same order. The insert runs in
a savepoint; losing the race surfaces as ``IntegrityError``, after which the
winner's row is read back and returned as an idempotent success.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from django.db import IntegrityError, OperationalError, transaction

from ..exceptions import AdmissionConflict, TransientStorageError
from ..models import Order
from . import credentials, orders

logger = logging.getLogger(__name__)

CREATED = "created"
DUPLICATE_OF_SELF = "duplicate-of-self"
ERROR = "error"


@dataclass(frozen=True)
class AdmissionResult:
    created: bool
    order: Optional[Order] = None
    reason: str = CREATED
    detail: str = ""


def _insert(candidate, connection):
    try:
        with transaction.atomic():
            return orders.create_order(candidate, connection=connection)
    except IntegrityError as exc:
        raise AdmissionConflict(
            f"Order {candidate.platform}:{candidate.external_order_id} "
            f"already admitted for tenant {candidate.tenant_id}"
        ) from exc


def admit(candidate, tenant_id, connection=None):
    """Admit *candidate* for *tenant_id*.

    Args:
        candidate: A normalized :class:`CandidateOrder`.
        tenant_id: Tenant the order is stored under.
        connection: The connection it arrived through, for counters.

    Returns:
        AdmissionResult: ``created=True`` for a new order; ``created=False``
        with reason ``duplicate-of-self`` when the order already exists, or
        ``error`` when the insert failed for another integrity reason.

    Raises:
        TransientStorageError: the database was unavailable.
    """
    if candidate.tenant_id != tenant_id:
        candidate = replace(candidate, tenant_id=tenant_id)

    try:
        existing = orders.find_admitted(
            tenant_id, candidate.platform, candidate.external_order_id
        )
        if existing is not None:
            return AdmissionResult(
                created=False, order=existing, reason=DUPLICATE_OF_SELF
            )

        try:
            order = _insert(candidate, connection)
        except AdmissionConflict as conflict:
            existing = orders.find_admitted(
                tenant_id, candidate.platform, candidate.external_order_id
            )
            if existing is None:
                logger.error("Order insert failed: %s", conflict.__cause__)
                return AdmissionResult(
                    created=False, reason=ERROR, detail=str(conflict.__cause__)
                )
            logger.info("Concurrent delivery resolved: %s", conflict)
            return AdmissionResult(
                created=False, order=existing, reason=DUPLICATE_OF_SELF
            )
    except OperationalError as exc:
        raise TransientStorageError(f"Order store unavailable: {exc}") from exc

    if connection is not None:
        try:
            with transaction.atomic():
                credentials.record_sync_success(connection)
        except Exception:
            logger.exception(
                "Could not update sync counters for connection %s",
                connection.connection_key,
            )

    logger.info(
        "Admitted order %s:%s for tenant %s as %s",
        candidate.platform,
        candidate.external_order_id,
        tenant_id,
        order.pk,
    )
    return AdmissionResult(created=True, order=order)
