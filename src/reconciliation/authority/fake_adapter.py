"""Configurable fake payment authority for development and testing.

This adapter simulates the payment authority without any external calls.
Transactions and orders are registered up front; the adapter can be switched
into an unavailable mode to exercise the retryable path, and can add latency so
concurrent reconciliations actually interleave.
"""

import asyncio

from reconciliation.authority.port import AuthorityClient, OrderRecord, TransactionRecord
from reconciliation.errors import TransientAuthorityError


class FakeAuthority(AuthorityClient):
    """Configurable fake payment authority."""

    def __init__(self) -> None:
        self.transactions: dict[str, TransactionRecord] = {}
        self.orders: dict[str, OrderRecord] = {}
        self.available: bool = True
        self.failure_reason: str = "Authority unavailable"
        self.latency: float = 0.0
        self.calls: list[dict] = []

    def configure(
        self,
        available: bool,
        failure_reason: str = "Authority unavailable",
        latency: float = 0.0,
    ) -> None:
        """Configure authority behavior at runtime."""
        self.available = available
        self.failure_reason = failure_reason
        self.latency = latency

    def add_transaction(self, transaction: TransactionRecord) -> None:
        self.transactions[transaction.transaction_id] = transaction

    def add_order(self, order: OrderRecord) -> None:
        self.orders[order.order_id] = order

    async def _respond(self, call: dict) -> None:
        self.calls.append(call)
        if self.latency:
            await asyncio.sleep(self.latency)
        if not self.available:
            raise TransientAuthorityError(self.failure_reason, status_code=503)

    async def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        await self._respond({"method": "get_transaction", "transaction_id": transaction_id})
        return self.transactions.get(transaction_id)

    async def get_order(self, order_id: str) -> OrderRecord | None:
        await self._respond({"method": "get_order", "order_id": order_id})
        return self.orders.get(order_id)

    async def search_orders_by_reference(self, external_reference: str) -> list[OrderRecord]:
        await self._respond({"method": "search_orders_by_reference", "external_reference": external_reference})
        return [o for o in self.orders.values() if o.external_reference == external_reference]

    def verify_notification_signature(self, resource_id: str, signature: str, request_id: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"

    def count_calls(self, method: str) -> int:
        return sum(1 for call in self.calls if call["method"] == method)
