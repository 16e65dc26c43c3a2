"""In-memory payment store.

Process-local implementation of the store contract. A single asyncio lock makes
each conditional write atomic with respect to other coroutines on the same
event loop; it is the default store for development and tests.
"""

import asyncio
from decimal import Decimal

from reconciliation.payment.record import PaymentRecord
from reconciliation.store.port import AmendOutcome, InsertOutcome, PaymentStore


class InMemoryPaymentStore(PaymentStore):
    def __init__(self) -> None:
        self._records: dict[str, PaymentRecord] = {}
        self._lock = asyncio.Lock()

    @property
    def records(self) -> list[PaymentRecord]:
        return list(self._records.values())

    async def find_by_transaction_id(self, transaction_id: str) -> PaymentRecord | None:
        return next((r for r in self._records.values() if r.transaction_id == transaction_id), None)

    async def find_by_item_session(self, item_id: str, session_id: str | None = None) -> PaymentRecord | None:
        matches = [
            r
            for r in self._records.values()
            if r.item_id == item_id and (session_id is None or r.session_id == session_id)
        ]
        return max(matches, key=lambda r: r.created_at, default=None)

    async def insert_if_absent(self, record: PaymentRecord) -> InsertOutcome:
        async with self._lock:
            for existing in self._records.values():
                if record.transaction_id and existing.transaction_id == record.transaction_id:
                    return InsertOutcome.ALREADY_EXISTS
                if (existing.item_id, existing.session_id) == (record.item_id, record.session_id):
                    return InsertOutcome.ALREADY_EXISTS
            self._records[record.record_id] = record
            return InsertOutcome.COMMITTED

    async def amend_amount(
        self,
        record_id: str,
        new_amount: Decimal,
        new_transaction_id: str | None = None,
    ) -> AmendOutcome:
        async with self._lock:
            existing = self._records.get(record_id)
            if existing is None:
                return AmendOutcome.NOT_FOUND
            if not existing.is_zero_amount:
                return AmendOutcome.ALREADY_AMENDED
            if new_transaction_id and any(
                r.transaction_id == new_transaction_id for r in self._records.values() if r.record_id != record_id
            ):
                return AmendOutcome.ALREADY_AMENDED

            self._records[record_id] = existing.with_backfilled_amount(new_amount, new_transaction_id)
            return AmendOutcome.COMMITTED
