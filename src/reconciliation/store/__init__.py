"""Payment store factory.

Provides get_store() / set_store() to swap implementations:
- SqlAlchemyPaymentStore when DATABASE_URL is configured
- InMemoryPaymentStore for development and testing otherwise

The store handed out here is the single owner of payment state for the process.
"""

from reconciliation.config import get_settings
from reconciliation.store.memory_adapter import InMemoryPaymentStore
from reconciliation.store.port import AmendOutcome, InsertOutcome, PaymentStore
from reconciliation.store.sqlalchemy_adapter import SqlAlchemyPaymentStore

__all__ = [
    "AmendOutcome",
    "InMemoryPaymentStore",
    "InsertOutcome",
    "PaymentStore",
    "SqlAlchemyPaymentStore",
    "get_store",
    "reset_store",
    "set_store",
]

_current_store: PaymentStore | None = None


def get_store() -> PaymentStore:
    """Return the current payment store."""
    global _current_store
    if _current_store is None:
        database_url = get_settings().DATABASE_URL
        _current_store = SqlAlchemyPaymentStore(database_url) if database_url else InMemoryPaymentStore()
    return _current_store


def set_store(store: PaymentStore) -> None:
    """Override the active payment store (useful for tests)."""
    global _current_store
    _current_store = store


def reset_store() -> None:
    """Reset to default store."""
    global _current_store
    _current_store = None
