from dataclasses import replace

import pytest

from app.core.errors import InvariantViolation
from app.core.ledger_types import LedgerSnapshot, ReceiptRecord, normalize_customer_key

from tests.helpers import at


def _receipt(**kw):
    base = dict(id="r1", customer_key="ravi", created_at=at(0), line_items_total=1000)
    base.update(kw)
    return ReceiptRecord(**base)


def test_derived_fields():
    r = _receipt(amount_paid=300, old_balance_at_creation=500, old_balance_cleared=200)
    assert r.receipt_own_balance == 700
    assert r.outstanding_old_balance == 300
    assert r.total_debt == 1000
    assert not r.is_fully_paid

    # conservation
    assert r.amount_paid + r.receipt_own_balance == r.line_items_total
    assert r.old_balance_cleared + r.outstanding_old_balance == r.old_balance_at_creation


def test_fully_paid_within_one_minor_unit():
    assert _receipt(amount_paid=1000).is_fully_paid
    assert _receipt(amount_paid=999).is_fully_paid
    assert not _receipt(amount_paid=998).is_fully_paid


def test_invariants():
    _receipt(amount_paid=1000).check_invariants()

    with pytest.raises(InvariantViolation):
        _receipt(amount_paid=1001).check_invariants()
    with pytest.raises(InvariantViolation):
        _receipt(amount_paid=-1).check_invariants()
    with pytest.raises(InvariantViolation):
        _receipt(old_balance_at_creation=10, old_balance_cleared=11).check_invariants()


def test_with_payment_returns_new_record():
    r = _receipt(old_balance_at_creation=400)
    paid = r.with_payment(600, 100)
    assert (paid.amount_paid, paid.old_balance_cleared) == (600, 100)
    assert (r.amount_paid, r.old_balance_cleared) == (0, 0)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  Ravi   Kumar ", "ravi kumar"),
        ("RAVI KUMAR", "ravi kumar"),
        ("", "walk-in customer"),
        (None, "walk-in customer"),
    ],
)
def test_normalize_customer_key(raw, expected):
    assert normalize_customer_key(raw) == expected


def test_snapshot_detects_new_and_changed_receipts():
    a = _receipt(id="a", version=1)
    b = _receipt(id="b", version=1)
    snap = LedgerSnapshot.of("ravi", [a, b])

    assert snap.matches([b, a])
    assert not snap.matches([a, replace(b, version=2)])
    assert not snap.matches([a, b, _receipt(id="c", version=1)])
