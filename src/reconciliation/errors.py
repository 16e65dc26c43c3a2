"""Error taxonomy for payment reconciliation.

Two families:

- ``RetryableError``: a collaborator (payment authority, store) failed in a way
  that may heal. These propagate to the notification surface, which asks the
  authority to redeliver.
- ``TerminalOutcome``: a business classification. Redelivery would resolve the
  same way, so the engine folds these into an *ignored* outcome and the
  notification is acknowledged.
"""


class ReconciliationError(Exception):
    """Base class for every reconciliation error."""


# ---------------------------------------------------------------------------
# Retryable
# ---------------------------------------------------------------------------
class RetryableError(ReconciliationError):
    """The attempt aborted before any store mutation; redelivery is safe."""


class TransientAuthorityError(RetryableError):
    """Network failure, timeout, 5xx, or lag at the payment authority."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreUnavailable(RetryableError):
    """The payment store could not be reached or refused the operation."""


# ---------------------------------------------------------------------------
# Terminal (acknowledged, never retried)
# ---------------------------------------------------------------------------
class TerminalOutcome(ReconciliationError):
    """A business outcome that ends the reconciliation attempt."""


class UnresolvedReference(TerminalOutcome):
    """No item id could be derived from the notification, transaction, or order."""


class UnapprovedTransaction(TerminalOutcome):
    """The transaction (or every attempt of the order) is not approved."""


class DuplicateTransaction(TerminalOutcome):
    """An approved payment record already covers this transaction or item."""


class StoreConflict(TerminalOutcome):
    """A concurrent reconciliation won the conditional write."""
