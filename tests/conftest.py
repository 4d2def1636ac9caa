"""
Shared fixtures for the ledger test suite.

Everything runs against the in-memory store unless a test asks for
``sql_store``, which uses a throwaway SQLite database.
"""

import os

# must be set before app.utils.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest

from app.core.ledger_types import ReceiptRecord, normalize_customer_key
from app.services.ledger_service import LedgerService
from app.services.payment_cascade import PaymentCascadeEngine
from app.stores.memory_store import InMemoryLedgerStore

from tests.helpers import at


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(store, sleeps):
    return PaymentCascadeEngine(store, max_attempts=3, backoff_seconds=0.05, sleep=sleeps.append)


@pytest.fixture
def service(store, engine):
    return LedgerService(store, engine=engine)


@pytest.fixture
def add_receipt(store):
    """Insert a receipt directly, bypassing pricing, to set up exact ledger states."""

    def _add(
        receipt_id,
        total,
        paid=0,
        old=0,
        cleared=0,
        minute=0,
        customer="Ravi Kumar",
    ):
        record = ReceiptRecord(
            id=receipt_id,
            customer_key=normalize_customer_key(customer),
            customer_name=customer,
            created_at=at(minute),
            line_items_total=total,
            amount_paid=paid,
            old_balance_at_creation=old,
            old_balance_cleared=cleared,
        )
        return store.insert_receipt(record)

    return _add


@pytest.fixture
def sql_store():
    from app.utils.database import Base, make_engine, make_session_factory
    from app.stores.sql_store import SqlLedgerStore
    import app.models  # noqa: F401  register tables

    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield SqlLedgerStore(make_session_factory(engine))
    engine.dispose()
