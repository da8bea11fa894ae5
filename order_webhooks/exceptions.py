"""Error taxonomy for the order intake pipeline.

Duplicate rejection is deliberately absent: flagging a duplicate is a
successful classification and is reported through
:class:`~order_webhooks.services.duplicates.DuplicateVerdict`.
"""


class OrderWebhookError(Exception):
    """Base class for all order_webhooks errors."""


class AuthenticationError(OrderWebhookError):
    """Bad or missing signature, or no connection for the webhook.

    Terminal: the upstream platform is never asked to retry these.
    """

    def __init__(self, message, ledger_status, http_status):
        super().__init__(message)
        self.ledger_status = ledger_status
        self.http_status = http_status


class NormalizationError(OrderWebhookError):
    """A platform payload is malformed or misses mandatory identifiers."""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or {}


class MissingProductError(NormalizationError):
    """A line item carries no product identifier at all."""


class AdmissionConflict(OrderWebhookError):
    """A concurrent insert won the uniqueness race for the same order."""


class TransientStorageError(OrderWebhookError):
    """Storage timeout or dropped connection; the caller may retry."""


class StageTimeoutError(TransientStorageError):
    """A pipeline stage ran past its time budget."""

    def __init__(self, stage, elapsed, budget):
        super().__init__(
            f"Stage '{stage}' took {elapsed:.2f}s (budget {budget}s)"
        )
        self.stage = stage
        self.elapsed = elapsed
        self.budget = budget


class ConfigurationError(OrderWebhookError):
    """Tenant or connection configuration cannot be used as stored."""


class TokenRefreshError(ConfigurationError):
    """An OAuth token could not be refreshed."""


class InvalidStateError(OrderWebhookError):
    """An OAuth ``state`` value is tampered, malformed or expired."""


class InvalidTransitionError(OrderWebhookError):
    """An attempt tried to move to a stage it cannot reach."""
