"""Reconciliation engine: turns payment notifications into payment records.

State machine per notification:
    Received → Classified → Verified → Resolved → Deduplicated → Committed | Ignored

- Classify:    unknown topic or missing resource id → Ignored
- Verify:      fetch the transaction (or the order and its first approved
               attempt); anything not approved → Ignored
- Resolve:     item/session reference, then amount; the order is fetched
               lazily and at most once
- Deduplicate: same transaction id, or same item/session with a positive
               amount → Ignored; same item/session with a zero amount and a
               positive new amount → amend
- Commit:      conditional insert / conditional amend; losing a race → Ignored

The engine holds no mutable state of its own. Concurrent reconciliations of the
same event are arbitrated by the store's conditional writes, and every
authority call happens before the first write, so an aborted attempt leaves
nothing behind.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from reconciliation.authority import get_authority
from reconciliation.authority.port import AuthorityClient, TransactionRecord
from reconciliation.catalog import ItemCatalog, StaticItemCatalog
from reconciliation.config import get_settings
from reconciliation.engine.amount import resolve_amount
from reconciliation.engine.notification import NotificationEvent, NotificationTopic, parse_notification
from reconciliation.engine.orders import OrderLoader, call_authority
from reconciliation.engine.reference import ReferenceRules, ResolvedReference, resolve_reference
from reconciliation.errors import (
    DuplicateTransaction,
    RetryableError,
    StoreConflict,
    TerminalOutcome,
    TransientAuthorityError,
    UnapprovedTransaction,
    UnresolvedReference,
)
from reconciliation.payment.record import PaymentRecord
from reconciliation.store import get_store
from reconciliation.store.port import AmendOutcome, InsertOutcome, PaymentStore
from reconciliation.utils.logging import add_context, clear_context

logger = structlog.get_logger(__name__)


class OutcomeStatus(Enum):
    COMMITTED = "Committed"
    AMENDED = "Amended"
    IGNORED = "Ignored"


class IgnoreReason(Enum):
    UNCLASSIFIED = "unclassified"
    UNAPPROVED = "unapproved"
    UNRESOLVED_REFERENCE = "unresolved_reference"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"


_REASONS = {
    UnapprovedTransaction: IgnoreReason.UNAPPROVED,
    UnresolvedReference: IgnoreReason.UNRESOLVED_REFERENCE,
    DuplicateTransaction: IgnoreReason.DUPLICATE,
    StoreConflict: IgnoreReason.CONFLICT,
}


@dataclass(frozen=True)
class ReconciliationOutcome:
    status: OutcomeStatus
    reason: IgnoreReason | None = None
    record: PaymentRecord | None = None
    detail: str | None = None

    @property
    def committed(self) -> bool:
        return self.status in (OutcomeStatus.COMMITTED, OutcomeStatus.AMENDED)

    @classmethod
    def ignored(cls, reason: IgnoreReason, detail: str) -> "ReconciliationOutcome":
        return cls(status=OutcomeStatus.IGNORED, reason=reason, detail=detail)


@dataclass(frozen=True)
class NotificationAck:
    """What the transport answers the authority: acknowledge, or ask for redelivery."""

    retry: bool
    outcome: ReconciliationOutcome | None = None
    error: str | None = None


class ReconciliationEngine:
    def __init__(
        self,
        authority: AuthorityClient,
        store: PaymentStore,
        catalog: ItemCatalog | None = None,
        *,
        rules: ReferenceRules | None = None,
        default_currency: str = "ARS",
        authority_timeout: float | None = None,
    ) -> None:
        self.authority = authority
        self.store = store
        self.catalog = catalog
        self.rules = rules or ReferenceRules()
        self.default_currency = default_currency
        self.authority_timeout = authority_timeout

    # -------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------
    async def handle_notification(
        self,
        payload: Mapping[str, Any] | None,
        query: Mapping[str, Any] | None = None,
    ) -> NotificationAck:
        """Reconcile a raw notification and decide how to answer the authority."""
        return await self.handle_event(parse_notification(payload, query))

    async def handle_event(self, event: NotificationEvent) -> NotificationAck:
        """Like ``handle_notification``, for a notification the caller already parsed."""
        try:
            outcome = await self.reconcile(event)
        except RetryableError as exc:
            logger.warning(
                "Reconciliation aborted, requesting redelivery",
                topic=event.topic.value,
                resource_id=event.resource_id,
                error=str(exc),
            )
            return NotificationAck(retry=True, error=str(exc))
        return NotificationAck(retry=False, outcome=outcome)

    async def reconcile(self, event: NotificationEvent) -> ReconciliationOutcome:
        """Run one reconciliation attempt.

        Business outcomes are returned; ``RetryableError`` propagates.
        """
        add_context(topic=event.topic.value, resource_id=event.resource_id, event_id=event.event_id)
        try:
            return await self._reconcile(event)
        except TerminalOutcome as exc:
            reason = _REASONS[type(exc)]
            logger.info("Notification ignored", reason=reason.value, detail=str(exc))
            return ReconciliationOutcome.ignored(reason, str(exc))
        finally:
            clear_context("topic", "resource_id", "event_id")

    async def reconcile_reference(self, item_id: str, session_id: str = "") -> list[ReconciliationOutcome]:
        """Look the item up at the authority and reconcile every approved order found.

        Recovers payments whose notifications never arrived.
        """
        reference = f"{item_id}{self.rules.separator}{session_id}" if session_id else item_id
        orders = await call_authority(
            self.authority.search_orders_by_reference(reference),
            self.authority_timeout,
            f"search_orders_by_reference({reference})",
        )

        outcomes = []
        for order in orders:
            if not order.approved_attempts:
                continue
            event = NotificationEvent(topic=NotificationTopic.MERCHANT_ORDER, resource_id=order.order_id)
            outcomes.append(await self.reconcile(event))
        return outcomes

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    async def _reconcile(self, event: NotificationEvent) -> ReconciliationOutcome:
        if event.topic is NotificationTopic.UNKNOWN or not event.resource_id:
            logger.info("Notification ignored", reason=IgnoreReason.UNCLASSIFIED.value)
            return ReconciliationOutcome.ignored(
                IgnoreReason.UNCLASSIFIED,
                f"Unrecognized notification (topic={event.topic.value}, resource={event.resource_id!r})",
            )

        transaction, orders = await self._verify(event)
        reference = await resolve_reference(event, transaction, orders, self.rules)
        amount = await resolve_amount(transaction, orders)
        return await self._commit(transaction, reference, amount)

    async def _fetch_transaction(self, transaction_id: str) -> TransactionRecord:
        transaction = await call_authority(
            self.authority.get_transaction(transaction_id),
            self.authority_timeout,
            f"get_transaction({transaction_id})",
        )
        if transaction is None:
            # The authority may not have caught up with its own notification yet.
            raise TransientAuthorityError(f"Transaction {transaction_id} not found", status_code=404)
        return transaction

    async def _verify(self, event: NotificationEvent) -> tuple[TransactionRecord, OrderLoader]:
        if event.topic is NotificationTopic.PAYMENT:
            transaction = await self._fetch_transaction(event.resource_id)
            orders = OrderLoader(self.authority, transaction.order_id, timeout=self.authority_timeout)
        else:
            order = await call_authority(
                self.authority.get_order(event.resource_id),
                self.authority_timeout,
                f"get_order({event.resource_id})",
            )
            if order is None:
                raise TransientAuthorityError(f"Order {event.resource_id} not found", status_code=404)
            approved = order.approved_attempts
            if not approved:
                raise UnapprovedTransaction(f"Order {order.order_id} has no approved payment")
            transaction = await self._fetch_transaction(approved[0].transaction_id)
            orders = OrderLoader(self.authority, order.order_id, timeout=self.authority_timeout, preloaded=order)

        if not transaction.is_approved:
            raise UnapprovedTransaction(
                f"Transaction {transaction.transaction_id} is {transaction.status.value}"
            )
        return transaction, orders

    async def _commit(
        self,
        transaction: TransactionRecord,
        reference: ResolvedReference,
        amount: Decimal,
    ) -> ReconciliationOutcome:
        transaction_id = transaction.transaction_id

        if await self.store.find_by_transaction_id(transaction_id) is not None:
            raise DuplicateTransaction(f"Transaction {transaction_id} already reconciled")

        prior = await self.store.find_by_item_session(reference.item_id, reference.session_id)
        if prior is not None:
            if prior.is_zero_amount and amount > 0:
                return await self._amend(prior, amount, transaction_id)
            raise DuplicateTransaction(
                f"Item {reference.item_id} (session {reference.session_id!r}) already paid "
                f"by record {prior.record_id}"
            )

        record = PaymentRecord(
            transaction_id=transaction_id,
            item_id=reference.item_id,
            session_id=reference.session_id,
            amount=amount,
            currency=transaction.currency or self.default_currency,
            derived_asset_url=await self._asset_url(reference.item_id),
        )
        if await self.store.insert_if_absent(record) is InsertOutcome.ALREADY_EXISTS:
            # A concurrent attempt inserted first; a zero-amount winner is still backfillable.
            winner = await self.store.find_by_item_session(reference.item_id, reference.session_id)
            if winner is not None and winner.is_zero_amount and amount > 0:
                return await self._amend(winner, amount, transaction_id)
            raise StoreConflict(f"Concurrent reconciliation already recorded item {reference.item_id}")

        if record.is_zero_amount:
            logger.warning(
                "Payment recorded without an amount",
                transaction_id=transaction_id,
                item_id=record.item_id,
            )
        logger.info(
            "Payment reconciled",
            transaction_id=transaction_id,
            item_id=record.item_id,
            session_id=record.session_id,
            amount=str(record.amount),
            reference_source=reference.source,
        )
        return ReconciliationOutcome(status=OutcomeStatus.COMMITTED, record=record)

    async def _amend(self, prior: PaymentRecord, amount: Decimal, transaction_id: str) -> ReconciliationOutcome:
        result = await self.store.amend_amount(prior.record_id, amount, transaction_id)
        if result is not AmendOutcome.COMMITTED:
            raise StoreConflict(f"Record {prior.record_id} could not be amended ({result.value})")

        record = await self.store.find_by_transaction_id(transaction_id) or prior.with_backfilled_amount(
            amount, transaction_id
        )
        logger.info(
            "Zero-amount payment backfilled",
            record_id=prior.record_id,
            transaction_id=transaction_id,
            item_id=prior.item_id,
            amount=str(amount),
        )
        return ReconciliationOutcome(status=OutcomeStatus.AMENDED, record=record)

    async def _asset_url(self, item_id: str) -> str | None:
        if self.catalog is None:
            return None
        return await self.catalog.asset_url(item_id)


def build_engine() -> ReconciliationEngine:
    """Engine wired to the process-wide authority, store, and configured catalog."""
    settings = get_settings()
    return ReconciliationEngine(
        get_authority(),
        get_store(),
        StaticItemCatalog(settings.ITEM_ASSET_URLS),
        rules=ReferenceRules.from_settings(settings),
        default_currency=settings.DEFAULT_CURRENCY,
        authority_timeout=settings.AUTHORITY_TIMEOUT_SECONDS,
    )
