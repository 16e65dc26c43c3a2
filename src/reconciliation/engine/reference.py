"""Reference resolution: recovers the internal item (and session) identifiers.

Fallback order for the item id, first non-empty value wins:

1. transaction metadata (``item_id`` / ``itemId`` / ``libro_id`` / ``libroId``)
2. transaction external reference
3. order external reference (order fetched only when 1 and 2 fail)
4. id of the first line item in the transaction's itemized breakdown

An external reference of the form ``<item>-<session>`` is split at the first
separator. Otherwise the session comes from transaction metadata, or is ``""``.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from reconciliation.authority.port import TransactionRecord
from reconciliation.config import Settings
from reconciliation.engine.notification import NotificationEvent
from reconciliation.engine.orders import OrderLoader
from reconciliation.errors import UnresolvedReference
from reconciliation.payment.record import canonical_item_id

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReferenceRules:
    separator: str = "-"
    item_keys: Sequence[str] = ("item_id", "itemId", "libro_id", "libroId")
    session_keys: Sequence[str] = ("session_id", "sessionId")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReferenceRules":
        return cls(
            separator=settings.REFERENCE_SEPARATOR,
            item_keys=tuple(settings.ITEM_METADATA_KEYS),
            session_keys=tuple(settings.SESSION_METADATA_KEYS),
        )


@dataclass(frozen=True)
class ResolvedReference:
    item_id: str
    session_id: str = ""
    source: str = ""


def split_reference(reference: str | None, separator: str = "-") -> tuple[str, str]:
    """``"42-abc123"`` → ``("42", "abc123")``; ``"42"`` → ``("42", "")``."""
    if not reference:
        return "", ""
    head, _, tail = str(reference).strip().partition(separator)
    return canonical_item_id(head), tail.strip()


def _first_value(metadata: Mapping[str, Any], keys: Sequence[str]) -> str:
    for key in keys:
        value = canonical_item_id(metadata.get(key))
        if value:
            return value
    return ""


async def resolve_reference(
    event: NotificationEvent,
    transaction: TransactionRecord,
    orders: OrderLoader | None = None,
    rules: ReferenceRules | None = None,
) -> ResolvedReference:
    rules = rules or ReferenceRules()
    metadata = transaction.metadata or {}
    metadata_session = _first_value(metadata, rules.session_keys)

    item_id = _first_value(metadata, rules.item_keys)
    if item_id:
        return ResolvedReference(item_id, metadata_session, "metadata")

    item_id, session_id = split_reference(transaction.external_reference, rules.separator)
    if item_id:
        return ResolvedReference(item_id, session_id or metadata_session, "external_reference")

    if orders is not None:
        order = await orders.get()
        if order is not None:
            item_id, session_id = split_reference(order.external_reference, rules.separator)
            if item_id:
                return ResolvedReference(item_id, session_id or metadata_session, "order")

    if transaction.line_items:
        item_id = canonical_item_id(transaction.line_items[0].item_id)
        if item_id:
            return ResolvedReference(item_id, metadata_session, "line_item")

    logger.info(
        "No item reference found",
        transaction_id=transaction.transaction_id,
        resource_id=event.resource_id,
    )
    raise UnresolvedReference(f"No item id derivable for transaction {transaction.transaction_id}")
