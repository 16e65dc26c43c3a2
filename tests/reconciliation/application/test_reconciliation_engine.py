"""Tests for the reconciliation engine against the fake authority and both payment stores."""

import asyncio
from decimal import Decimal

import pytest
from reconciliation.authority.fake_adapter import FakeAuthority
from reconciliation.authority.port import (
    LineItem,
    OrderRecord,
    PaymentAttempt,
    TransactionRecord,
    TransactionStatus,
)
from reconciliation.catalog import StaticItemCatalog
from reconciliation.engine.notification import NotificationEvent, NotificationTopic
from reconciliation.engine.reconciler import IgnoreReason, OutcomeStatus, ReconciliationEngine
from reconciliation.errors import StoreUnavailable
from reconciliation.store import InMemoryPaymentStore


def _approved(transaction_id="txn-1", amount="1500.00", reference="42-abc123", **kwargs):
    return TransactionRecord(
        transaction_id=transaction_id,
        status=TransactionStatus.APPROVED,
        amount=Decimal(amount) if amount is not None else None,
        currency="ARS",
        external_reference=reference,
        **kwargs,
    )


def _payment(transaction_id="txn-1"):
    return NotificationEvent(topic=NotificationTopic.PAYMENT, resource_id=transaction_id)


def _merchant_order(order_id="ord-1"):
    return NotificationEvent(topic=NotificationTopic.MERCHANT_ORDER, resource_id=order_id)


class TestPaymentNotifications:
    async def test_approved_transaction_is_committed(self, engine, authority, store):
        authority.add_transaction(_approved())

        outcome = await engine.reconcile(_payment())

        assert outcome.status == OutcomeStatus.COMMITTED
        assert outcome.committed
        record = outcome.record
        assert (record.item_id, record.session_id) == ("42", "abc123")
        assert record.transaction_id == "txn-1"
        assert record.amount == Decimal("1500.00")
        assert record.currency == "ARS"
        assert record.derived_asset_url == "https://cdn.example.com/books/42.pdf"
        assert store.records == [record]

    async def test_pending_transaction_is_ignored(self, engine, authority, store):
        authority.add_transaction(
            TransactionRecord(transaction_id="txn-1", status=TransactionStatus.PENDING, external_reference="42")
        )

        outcome = await engine.reconcile(_payment())

        assert outcome.status == OutcomeStatus.IGNORED
        assert outcome.reason == IgnoreReason.UNAPPROVED
        assert store.records == []

    async def test_rejected_transaction_is_ignored(self, engine, authority, store):
        authority.add_transaction(
            TransactionRecord(transaction_id="txn-1", status=TransactionStatus.REJECTED, external_reference="42")
        )
        outcome = await engine.reconcile(_payment())
        assert outcome.reason == IgnoreReason.UNAPPROVED
        assert store.records == []

    async def test_unknown_topic_never_reaches_the_authority(self, engine, authority):
        outcome = await engine.reconcile(NotificationEvent(topic=NotificationTopic.UNKNOWN, resource_id="1"))
        assert outcome.reason == IgnoreReason.UNCLASSIFIED
        assert authority.calls == []

    async def test_missing_resource_id_is_ignored(self, engine, authority):
        outcome = await engine.reconcile(NotificationEvent(topic=NotificationTopic.PAYMENT))
        assert outcome.reason == IgnoreReason.UNCLASSIFIED
        assert authority.calls == []

    async def test_unresolvable_reference_is_ignored(self, engine, authority, store):
        authority.add_transaction(_approved(reference=None))
        outcome = await engine.reconcile(_payment())
        assert outcome.reason == IgnoreReason.UNRESOLVED_REFERENCE
        assert store.records == []

    async def test_missing_currency_uses_default(self, authority, store):
        authority.add_transaction(
            TransactionRecord(
                transaction_id="txn-1",
                status=TransactionStatus.APPROVED,
                amount=Decimal("10"),
                external_reference="7",
            )
        )
        engine = ReconciliationEngine(authority, store, default_currency="USD")

        outcome = await engine.reconcile(_payment())

        assert outcome.record.currency == "USD"
        assert outcome.record.session_id == ""
        assert outcome.record.derived_asset_url is None


class TestIdempotence:
    async def test_serial_redelivery_records_once(self, engine, authority, store):
        authority.add_transaction(_approved())

        outcomes = [await engine.reconcile(_payment()) for _ in range(5)]

        assert outcomes[0].status == OutcomeStatus.COMMITTED
        assert all(o.reason == IgnoreReason.DUPLICATE for o in outcomes[1:])
        assert len(store.records) == 1

    async def test_second_transaction_for_paid_item_is_ignored(self, engine, authority, store):
        authority.add_transaction(_approved("txn-1"))
        authority.add_transaction(_approved("txn-2"))

        await engine.reconcile(_payment("txn-1"))
        outcome = await engine.reconcile(_payment("txn-2"))

        assert outcome.reason == IgnoreReason.DUPLICATE
        assert [r.transaction_id for r in store.records] == ["txn-1"]

    async def test_sessions_are_isolated(self, engine, authority, store):
        authority.add_transaction(_approved("txn-1", reference="42-session-a"))
        authority.add_transaction(_approved("txn-2", reference="42-session-b"))

        first = await engine.reconcile(_payment("txn-1"))
        second = await engine.reconcile(_payment("txn-2"))

        assert first.committed and second.committed
        assert sorted(r.session_id for r in store.records) == ["session-a", "session-b"]


class TestZeroAmountBackfill:
    async def test_zero_then_positive_amends(self, engine, authority, store):
        authority.add_transaction(_approved("txn-a", amount="0"))
        authority.add_transaction(_approved("txn-b", amount="2000"))

        first = await engine.reconcile(_payment("txn-a"))
        second = await engine.reconcile(_payment("txn-b"))

        assert first.status == OutcomeStatus.COMMITTED
        assert first.record.amount == Decimal("0")
        assert second.status == OutcomeStatus.AMENDED
        assert second.record.record_id == first.record.record_id
        [record] = store.records
        assert record.amount == Decimal("2000")
        assert record.transaction_id == "txn-b"
        assert record.amended_at is not None

    async def test_positive_then_zero_keeps_positive(self, engine, authority, store):
        authority.add_transaction(_approved("txn-b", amount="2000"))
        authority.add_transaction(_approved("txn-a", amount="0"))

        await engine.reconcile(_payment("txn-b"))
        outcome = await engine.reconcile(_payment("txn-a"))

        assert outcome.reason == IgnoreReason.DUPLICATE
        [record] = store.records
        assert (record.amount, record.transaction_id) == (Decimal("2000"), "txn-b")

    async def test_backfill_applies_once(self, engine, authority, store):
        authority.add_transaction(_approved("txn-a", amount="0"))
        authority.add_transaction(_approved("txn-b", amount="2000"))
        authority.add_transaction(_approved("txn-c", amount="3000"))

        for transaction_id in ("txn-a", "txn-b", "txn-c"):
            await engine.reconcile(_payment(transaction_id))

        [record] = store.records
        assert record.amount == Decimal("2000")

    async def test_zero_amount_falls_back_to_net_received(self, engine, authority):
        authority.add_transaction(_approved(amount="0", net_received_amount=Decimal("1500")))
        outcome = await engine.reconcile(_payment())
        assert outcome.record.amount == Decimal("1500")

    async def test_redelivery_of_replaced_transaction_is_ignored(self, engine, authority, store):
        authority.add_transaction(_approved("txn-a", amount="0"))
        authority.add_transaction(_approved("txn-b", amount="2000"))
        await engine.reconcile(_payment("txn-a"))
        await engine.reconcile(_payment("txn-b"))

        outcome = await engine.reconcile(_payment("txn-a"))

        assert outcome.reason == IgnoreReason.DUPLICATE
        assert store.records[0].amount == Decimal("2000")


class TestMerchantOrderNotifications:
    async def test_order_with_approved_attempt_is_committed(self, engine, authority, store):
        authority.add_order(
            OrderRecord(
                order_id="ord-1",
                external_reference="42-abc123",
                total_amount=Decimal("1500"),
                payment_attempts=(
                    PaymentAttempt("txn-0", TransactionStatus.REJECTED, Decimal("1500")),
                    PaymentAttempt("txn-1", TransactionStatus.APPROVED, Decimal("1500")),
                ),
            )
        )
        authority.add_transaction(_approved("txn-1", reference=None, order_id="ord-1"))

        outcome = await engine.reconcile(_merchant_order())

        assert outcome.status == OutcomeStatus.COMMITTED
        assert outcome.record.transaction_id == "txn-1"
        assert (outcome.record.item_id, outcome.record.session_id) == ("42", "abc123")

    async def test_order_fetched_once_for_both_resolvers(self, engine, authority):
        authority.add_order(
            OrderRecord(
                order_id="ord-1",
                external_reference="42",
                payment_attempts=(PaymentAttempt("txn-1", TransactionStatus.APPROVED, Decimal("800")),),
            )
        )
        authority.add_transaction(_approved("txn-1", amount=None, reference=None, order_id="ord-1"))

        outcome = await engine.reconcile(_merchant_order())

        assert outcome.record.amount == Decimal("800")
        assert authority.count_calls("get_order") == 1

    async def test_payment_notification_fetches_order_once(self, engine, authority):
        authority.add_order(
            OrderRecord(
                order_id="ord-1",
                external_reference="42",
                total_amount=Decimal("640"),
            )
        )
        authority.add_transaction(_approved(amount="0", reference=None, order_id="ord-1"))

        outcome = await engine.reconcile(_payment())

        assert (outcome.record.item_id, outcome.record.amount) == ("42", Decimal("640"))
        assert authority.count_calls("get_order") == 1

    async def test_order_without_approved_attempt_is_ignored(self, engine, authority, store):
        authority.add_order(
            OrderRecord(
                order_id="ord-1",
                external_reference="42",
                payment_attempts=(PaymentAttempt("txn-1", TransactionStatus.PENDING),),
            )
        )

        outcome = await engine.reconcile(_merchant_order())

        assert outcome.reason == IgnoreReason.UNAPPROVED
        assert authority.count_calls("get_transaction") == 0
        assert store.records == []

    async def test_line_item_fallbacks(self, engine, authority):
        authority.add_transaction(
            _approved(amount=None, reference=None, line_items=(LineItem("42", Decimal("99.99")),))
        )
        outcome = await engine.reconcile(_payment())
        assert (outcome.record.item_id, outcome.record.amount) == ("42", Decimal("99.99"))


class TestRetryableFailures:
    async def test_authority_unavailable_requests_redelivery(self, engine, authority, store):
        authority.add_transaction(_approved())
        authority.configure(available=False, failure_reason="Gateway timeout")

        ack = await engine.handle_notification({"type": "payment", "data": {"id": "txn-1"}})

        assert ack.retry is True
        assert "Gateway timeout" in ack.error
        assert store.records == []

    async def test_unknown_transaction_requests_redelivery(self, engine):
        ack = await engine.handle_notification({"type": "payment", "data": {"id": "txn-404"}})
        assert ack.retry is True

    async def test_unknown_order_requests_redelivery(self, engine):
        ack = await engine.handle_notification({"topic": "merchant_order", "resource": "ord-404"})
        assert ack.retry is True

    async def test_authority_timeout_requests_redelivery(self, authority, store):
        authority.add_transaction(_approved())
        authority.configure(available=True, latency=0.5)
        engine = ReconciliationEngine(authority, store, authority_timeout=0.05)

        ack = await engine.handle_notification({"type": "payment", "data": {"id": "txn-1"}})

        assert ack.retry is True
        assert "timed out" in ack.error
        assert store.records == []

    async def test_store_unavailable_requests_redelivery(self, authority):
        class UnavailableStore(InMemoryPaymentStore):
            async def find_by_transaction_id(self, transaction_id):
                raise StoreUnavailable("connection refused")

        authority.add_transaction(_approved())
        engine = ReconciliationEngine(authority, UnavailableStore())

        ack = await engine.handle_notification({"type": "payment", "data": {"id": "txn-1"}})

        assert ack.retry is True

    async def test_redelivery_after_outage_commits(self, engine, authority, store):
        authority.add_transaction(_approved())
        authority.configure(available=False)
        payload = {"type": "payment", "data": {"id": "txn-1"}}

        assert (await engine.handle_notification(payload)).retry is True
        authority.configure(available=True)
        ack = await engine.handle_notification(payload)

        assert ack.retry is False
        assert ack.outcome.status == OutcomeStatus.COMMITTED
        assert len(store.records) == 1


class TestHandleNotification:
    async def test_webhook_payload(self, engine, authority):
        authority.add_transaction(_approved())
        ack = await engine.handle_notification({"type": "payment", "data": {"id": "txn-1"}, "id": 55})
        assert ack.retry is False
        assert ack.outcome.committed

    async def test_query_only_notification(self, engine, authority):
        authority.add_transaction(_approved())
        ack = await engine.handle_notification(None, {"topic": "payment", "id": "txn-1"})
        assert ack.outcome.committed

    async def test_unclassifiable_payload_is_acknowledged(self, engine):
        ack = await engine.handle_notification({"hello": "world"})
        assert ack.retry is False
        assert ack.outcome.reason == IgnoreReason.UNCLASSIFIED

    async def test_already_parsed_event(self, engine, authority):
        authority.add_transaction(_approved())
        ack = await engine.handle_event(_payment())
        assert ack.retry is False
        assert ack.outcome.committed

    async def test_already_parsed_event_during_outage(self, engine, authority):
        authority.configure(available=False)
        ack = await engine.handle_event(_payment())
        assert ack.retry is True


class TestReconcileReference:
    async def test_reconciles_approved_orders(self, engine, authority, store):
        authority.add_order(
            OrderRecord(
                order_id="ord-1",
                external_reference="42-abc123",
                payment_attempts=(PaymentAttempt("txn-1", TransactionStatus.APPROVED, Decimal("1500")),),
            )
        )
        authority.add_transaction(_approved("txn-1", order_id="ord-1"))

        outcomes = await engine.reconcile_reference("42", "abc123")

        assert [o.status for o in outcomes] == [OutcomeStatus.COMMITTED]
        assert authority.calls[0] == {"method": "search_orders_by_reference", "external_reference": "42-abc123"}
        assert len(store.records) == 1

    async def test_orders_without_approved_attempts_are_skipped(self, engine, authority):
        authority.add_order(
            OrderRecord(
                order_id="ord-1",
                external_reference="42",
                payment_attempts=(PaymentAttempt("txn-1", TransactionStatus.PENDING),),
            )
        )
        assert await engine.reconcile_reference("42") == []

    async def test_nothing_found(self, engine):
        assert await engine.reconcile_reference("42", "abc123") == []

    async def test_already_reconciled_item_is_ignored(self, engine, authority):
        authority.add_order(
            OrderRecord(
                order_id="ord-1",
                external_reference="42",
                payment_attempts=(PaymentAttempt("txn-1", TransactionStatus.APPROVED, Decimal("10")),),
            )
        )
        authority.add_transaction(_approved("txn-1", amount="10", reference="42", order_id="ord-1"))
        await engine.reconcile(_payment("txn-1"))

        [outcome] = await engine.reconcile_reference("42")

        assert outcome.reason == IgnoreReason.DUPLICATE


class TestCatalog:
    async def test_asset_url_comes_from_catalog(self, authority, store):
        authority.add_transaction(_approved(reference="7"))
        engine = ReconciliationEngine(authority, store, StaticItemCatalog({"7": "https://cdn.example.com/7.epub"}))

        outcome = await engine.reconcile(_payment())

        assert outcome.record.derived_asset_url == "https://cdn.example.com/7.epub"


class TestConcurrentDelivery:
    """Races decided by the store's conditional writes, on every store adapter."""

    async def test_concurrent_redelivery_records_once(self, store_engine, authority, payment_store):
        authority.add_transaction(_approved())
        authority.configure(available=True, latency=0.01)

        outcomes = await asyncio.gather(*(store_engine.reconcile(_payment()) for _ in range(8)))

        assert sum(o.committed for o in outcomes) == 1
        ignored = [o for o in outcomes if not o.committed]
        assert all(o.reason in (IgnoreReason.DUPLICATE, IgnoreReason.CONFLICT) for o in ignored)
        record = await payment_store.find_by_item_session("42", "abc123")
        assert (record.transaction_id, record.amount) == ("txn-1", Decimal("1500.00"))

    @pytest.mark.parametrize("first, second", [("zero", "paid"), ("paid", "zero")])
    async def test_zero_and_positive_race_ends_positive(self, store_engine, authority, payment_store, first, second):
        authority.configure(available=True, latency=0.01)

        for run in range(5):
            reference = f"9-run{run}"
            authority.add_transaction(_approved(f"zero-{run}", amount="0", reference=reference))
            authority.add_transaction(_approved(f"paid-{run}", amount="2000", reference=reference))

            await asyncio.gather(
                store_engine.reconcile(_payment(f"{first}-{run}")),
                store_engine.reconcile(_payment(f"{second}-{run}")),
            )

            record = await payment_store.find_by_item_session("9", f"run{run}")
            assert (record.amount, record.transaction_id) == (Decimal("2000"), f"paid-{run}")

    async def test_concurrent_backfills_amend_once(self, store_engine, authority, payment_store):
        authority.add_transaction(_approved("txn-a", amount="0"))
        await store_engine.reconcile(_payment("txn-a"))
        authority.add_transaction(_approved("txn-b", amount="2000"))
        authority.add_transaction(_approved("txn-c", amount="3000"))
        authority.configure(available=True, latency=0.01)

        outcomes = await asyncio.gather(
            store_engine.reconcile(_payment("txn-b")),
            store_engine.reconcile(_payment("txn-c")),
        )

        assert [o.status for o in outcomes].count(OutcomeStatus.AMENDED) == 1
        record = await payment_store.find_by_item_session("42", "abc123")
        assert (record.transaction_id, record.amount) in (("txn-b", Decimal("2000")), ("txn-c", Decimal("3000")))


class TestAbortedAttempts:
    async def test_cancelled_attempt_leaves_no_record(self, engine, authority, store):
        authority.add_transaction(_approved())
        authority.configure(available=True, latency=1.0)

        task = asyncio.create_task(engine.reconcile(_payment()))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.records == []

    async def test_lazy_order_fetch_timeout_requests_redelivery(self, store):
        class SlowOrders(FakeAuthority):
            async def get_order(self, order_id):
                await asyncio.sleep(0.5)
                return await super().get_order(order_id)

        slow = SlowOrders()
        slow.add_order(OrderRecord(order_id="ord-1", external_reference="42"))
        slow.add_transaction(_approved(amount="0", reference=None, order_id="ord-1"))
        engine = ReconciliationEngine(slow, store, authority_timeout=0.05)

        ack = await engine.handle_notification({"type": "payment", "data": {"id": "txn-1"}})

        assert ack.retry is True
        assert "get_order(ord-1) timed out" in ack.error
        assert store.records == []
