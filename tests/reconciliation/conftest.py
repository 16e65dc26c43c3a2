import pytest
from reconciliation.authority import set_authority
from reconciliation.authority.fake_adapter import FakeAuthority
from reconciliation.catalog import StaticItemCatalog
from reconciliation.engine.reconciler import ReconciliationEngine
from reconciliation.store import InMemoryPaymentStore, SqlAlchemyPaymentStore, set_store

ASSET_URLS = {"42": "https://cdn.example.com/books/42.pdf"}


@pytest.fixture()
def authority():
    fake = FakeAuthority()
    set_authority(fake)
    return fake


@pytest.fixture()
def store():
    memory = InMemoryPaymentStore()
    set_store(memory)
    return memory


@pytest.fixture()
def engine(authority, store):
    return ReconciliationEngine(authority, store, StaticItemCatalog(ASSET_URLS))


@pytest.fixture(params=["memory", "sqlalchemy"])
async def payment_store(request, tmp_path):
    """Each store adapter in turn; the SQLAlchemy one really interleaves concurrent writers."""
    if request.param == "memory":
        yield InMemoryPaymentStore()
        return

    sql = SqlAlchemyPaymentStore(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await sql.create_schema()
    yield sql
    await sql.dispose()


@pytest.fixture()
def store_engine(authority, payment_store):
    return ReconciliationEngine(authority, payment_store, StaticItemCatalog(ASSET_URLS))
