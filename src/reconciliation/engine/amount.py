"""Amount resolution: one authoritative amount out of several upstream fields.

First strictly-positive value wins:

1. transaction amount
2. net received amount
3. installment amount
4. sum of approved attempts in the transaction's order
5. order total amount
6. unit price of the first line item

Everything is ``Decimal``; when every source is empty or zero the result is
zero, which the engine treats as a valid but backfillable amount.
"""

from decimal import Decimal

from reconciliation.authority.port import OrderRecord, TransactionRecord
from reconciliation.engine.orders import OrderLoader

ZERO = Decimal("0")


def _positive(value: Decimal | None) -> bool:
    return value is not None and value > 0


def approved_total(order: OrderRecord) -> Decimal:
    """Exact sum of the approved attempt amounts of ``order``."""
    return sum((a.amount for a in order.approved_attempts if a.amount is not None), ZERO)


async def resolve_amount(transaction: TransactionRecord, orders: OrderLoader | None = None) -> Decimal:
    for candidate in (transaction.amount, transaction.net_received_amount, transaction.installment_amount):
        if _positive(candidate):
            return candidate

    if orders is not None:
        order = await orders.get()
        if order is not None:
            total = approved_total(order)
            if _positive(total):
                return total
            if _positive(order.total_amount):
                return order.total_amount

    if transaction.line_items and _positive(transaction.line_items[0].unit_price):
        return transaction.line_items[0].unit_price

    return ZERO
