from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import ConcurrencyConflict, DuplicatePayment, InvalidRequest
from app.core.ledger_types import LedgerSnapshot, PaymentTransaction, ReceiptRecord
from app.services.ledger_service import LedgerService, LineItem
from app.services.payment_cascade import PaymentCascadeEngine
from app.stores.base import DuplicateIdempotencyKey

from tests.helpers import at


def _receipt(rid, total=1000, minute=0, customer="ravi", **kw):
    return ReceiptRecord(
        id=rid,
        customer_key=customer,
        customer_name=customer.title(),
        created_at=at(minute),
        line_items_total=total,
        **kw,
    )


def _txn(tid, rid, key, payment_id="p1", amount=100):
    return PaymentTransaction(
        id=tid,
        payment_id=payment_id,
        idempotency_key=key,
        receipt_id=rid,
        customer_key="ravi",
        amount=amount,
        method="cash",
        applied_at=at(5),
        balance_before=1000,
        balance_after=1000 - amount,
    )


def test_insert_and_read_back(sql_store):
    stored = sql_store.insert_receipt(_receipt("b", minute=2, receipt_no="R-2"))
    sql_store.insert_receipt(_receipt("a", minute=1))
    sql_store.insert_receipt(_receipt("x", minute=0, customer="meena"))

    assert stored.version == 1
    assert [r.id for r in sql_store.read_receipts("ravi")] == ["a", "b"]
    assert [r.id for r in sql_store.read_all_receipts()] == ["x", "a", "b"]
    assert sql_store.list_customer_keys() == ["meena", "ravi"]

    b = sql_store.get_receipt("b")
    assert b.receipt_no == "R-2"
    assert b.created_at == at(2)
    assert b.created_at.tzinfo is not None
    assert sql_store.get_receipt("missing") is None


def test_non_utc_timestamps_are_stored_as_utc(sql_store):
    ist = timezone(timedelta(hours=5, minutes=30))
    local = datetime(2024, 1, 1, 14, 30, tzinfo=ist)
    sql_store.insert_receipt(
        ReceiptRecord(id="a", customer_key="ravi", created_at=local.astimezone(timezone.utc), line_items_total=10)
    )
    assert sql_store.get_receipt("a").created_at == local


def test_duplicate_receipt_id(sql_store):
    sql_store.insert_receipt(_receipt("a"))
    with pytest.raises(InvalidRequest):
        sql_store.insert_receipt(_receipt("a"))


def test_atomic_write_bumps_versions_and_appends(sql_store):
    sql_store.insert_receipt(_receipt("a", minute=1))
    sql_store.insert_receipt(_receipt("b", minute=2))
    receipts = sql_store.read_receipts("ravi")
    snapshot = LedgerSnapshot.of("ravi", receipts)

    committed = sql_store.atomic_write(
        snapshot,
        [receipts[0].with_payment(1000, 0), receipts[1].with_payment(200, 0)],
        [_txn("t1", "a", "k1", amount=1000), _txn("t2", "b", "k1", amount=200)],
    )

    assert [r.version for r in committed] == [2, 2]
    assert sql_store.get_receipt("a").amount_paid == 1000
    assert [t.id for t in sql_store.transactions_for_key("k1")] == ["t1", "t2"]
    assert [t.id for t in sql_store.transactions_for_receipt("b")] == ["t2"]


def test_stale_snapshot_is_rejected_and_rolled_back(sql_store):
    sql_store.insert_receipt(_receipt("a"))
    receipts = sql_store.read_receipts("ravi")
    stale = LedgerSnapshot.of("ravi", receipts)

    sql_store.atomic_write(stale, [receipts[0].with_payment(100, 0)], [_txn("t1", "a", "k1")])

    with pytest.raises(ConcurrencyConflict):
        sql_store.atomic_write(stale, [receipts[0].with_payment(300, 0)], [_txn("t2", "a", "k2")])

    assert sql_store.get_receipt("a").amount_paid == 100
    assert sql_store.transactions_for_key("k2") == []


def test_new_receipt_invalidates_snapshot(sql_store):
    sql_store.insert_receipt(_receipt("b", minute=5))
    receipts = sql_store.read_receipts("ravi")
    snapshot = LedgerSnapshot.of("ravi", receipts)
    sql_store.insert_receipt(_receipt("a", minute=1))

    with pytest.raises(ConcurrencyConflict):
        sql_store.atomic_write(snapshot, [receipts[0].with_payment(100, 0)], [])

    with pytest.raises(ConcurrencyConflict):
        sql_store.insert_receipt(_receipt("c", minute=9), snapshot=snapshot)


def test_duplicate_key_is_rejected(sql_store):
    sql_store.insert_receipt(_receipt("a"))
    receipts = sql_store.read_receipts("ravi")
    sql_store.atomic_write(
        LedgerSnapshot.of("ravi", receipts), [receipts[0].with_payment(100, 0)], [_txn("t1", "a", "k1")]
    )

    receipts = sql_store.read_receipts("ravi")
    with pytest.raises(DuplicateIdempotencyKey):
        sql_store.atomic_write(
            LedgerSnapshot.of("ravi", receipts),
            [receipts[0].with_payment(100, 0)],
            [_txn("t2", "a", "k1", payment_id="p2")],
        )
    assert sql_store.get_receipt("a").amount_paid == 100

    with pytest.raises(DuplicateIdempotencyKey):
        sql_store.append_transaction(_txn("t3", "a", "k1"))


def test_subscribers_see_committed_rows(sql_store):
    seen = []
    unsubscribe = sql_store.subscribe("ravi", lambda rows: seen.append([r.id for r in rows]))

    sql_store.insert_receipt(_receipt("a"))
    unsubscribe()
    sql_store.insert_receipt(_receipt("b", minute=1))

    assert seen == [["a"]]


def test_full_flow_on_sql(sql_store, sleeps):
    engine = PaymentCascadeEngine(sql_store, sleep=sleeps.append)
    service = LedgerService(sql_store, engine=engine)

    a = service.create_receipt("Ravi", [LineItem("100")], created_at=at(1))
    b = service.create_receipt("Ravi", [LineItem("50")], created_at=at(2), amount_paid="10")
    result = service.record_payment(a.id, "140", "cash", "k1")

    assert result.total_applied == 14000
    assert [r.id for r in result.receipts_affected] == [a.id, b.id]
    assert service.get_receipt(b.id).amount_paid == 5000
    assert service.reconcile("ravi").is_consistent
    assert service.record_payment(a.id, "140", "cash", "k1").replayed
    assert sleeps == []


def test_read_all_transactions_in_append_order(sql_store):
    sql_store.insert_receipt(_receipt("a"), [_txn("t1", "a", "k1")])
    sql_store.insert_receipt(_receipt("b", customer="meena"), [_txn("t2", "b", "k2", payment_id="p2")])

    assert [t.id for t in sql_store.read_all_transactions()] == ["t1", "t2"]


def test_replay_on_sql_returns_state_of_first_payment(sql_store, sleeps):
    service = LedgerService(sql_store, engine=PaymentCascadeEngine(sql_store, sleep=sleeps.append))
    r = service.create_receipt("Ravi", [LineItem("100")], created_at=at(1))
    first = service.record_payment(r.id, "3.00", "cash", "k1")
    service.record_payment(r.id, "2.00", "cash", "k2")

    again = service.record_payment(r.id, "3.00", "cash", "k1")
    assert again.replayed
    assert [(x.amount_paid, x.version) for x in again.receipts_affected] == [(300, 2)]
    assert [(x.amount_paid, x.version) for x in first.receipts_affected] == [(300, 2)]
    assert again.transactions[0].target_receipt_id == r.id

    other = service.create_receipt("Meena", [LineItem("100")], created_at=at(2))
    with pytest.raises(DuplicatePayment):
        service.record_payment(other.id, "3.00", "cash", "k1")
