"""Payment store port (abstract interface).

The store is the only shared mutable resource of the service. Correctness under
concurrent duplicate notifications rests entirely on its two conditional writes:

- ``insert_if_absent`` succeeds only if neither the transaction id nor the
  (item id, session id) pair is already taken.
- ``amend_amount`` succeeds only while the stored amount is still zero.

Adapters raise ``StoreUnavailable`` when the backend cannot be reached.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum

from reconciliation.payment.record import PaymentRecord


class InsertOutcome(Enum):
    COMMITTED = "Committed"
    ALREADY_EXISTS = "AlreadyExists"


class AmendOutcome(Enum):
    COMMITTED = "Committed"
    NOT_FOUND = "NotFound"
    ALREADY_AMENDED = "AlreadyAmended"


class PaymentStore(ABC):
    """Abstract idempotent payment record store."""

    @abstractmethod
    async def find_by_transaction_id(self, transaction_id: str) -> PaymentRecord | None:
        """Return the record carrying ``transaction_id``, if any."""
        ...

    @abstractmethod
    async def find_by_item_session(self, item_id: str, session_id: str | None = None) -> PaymentRecord | None:
        """Return the most recently created record for the item.

        ``session_id=None`` matches any session; a string (including ``""``)
        matches that session exactly.
        """
        ...

    @abstractmethod
    async def insert_if_absent(self, record: PaymentRecord) -> InsertOutcome:
        """Insert ``record`` unless one of its unique keys is already taken."""
        ...

    @abstractmethod
    async def amend_amount(
        self,
        record_id: str,
        new_amount: Decimal,
        new_transaction_id: str | None = None,
    ) -> AmendOutcome:
        """Backfill a zero-amount record. Applies at most once per record."""
        ...
