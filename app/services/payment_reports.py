"""
Read-only payment reports: collection statistics over the audit trail and a
dry-run of a payment against the current receipts. Nothing here writes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from app.core.ledger_types import PaymentTransaction, ReceiptAllocation, ReceiptRecord, as_utc
from app.services.payment_cascade import plan_cascade
from app.utils import money


# -------------------------------------------------
# Statistics
# -------------------------------------------------
@dataclass(frozen=True)
class MethodTotals:
    count: int = 0
    amount: int = 0


@dataclass(frozen=True)
class PaymentStatistics:
    total_payments: int
    total_amount: int
    average_payment: int
    by_method: Dict[str, MethodTotals] = field(default_factory=dict)


def summarize_payments(
    transactions: Iterable[PaymentTransaction],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> PaymentStatistics:
    """
    Count, total and per-method breakdown of payments applied in [start, end].

    A cascaded payment writes one row per receipt; it is still one payment
    here. The average is rounded half-up to a whole minor unit.
    """
    start = as_utc(start) if start else None
    end = as_utc(end) if end else None

    payments: Dict[str, Tuple[str, int]] = {}
    for t in transactions:
        applied = as_utc(t.applied_at)
        if start and applied < start:
            continue
        if end and applied > end:
            continue
        method, amount = payments.get(t.payment_id, (t.method, 0))
        payments[t.payment_id] = (method, money.add(amount, t.amount))

    by_method: Dict[str, MethodTotals] = {}
    total = 0
    for method, amount in payments.values():
        prev = by_method.get(method, MethodTotals())
        by_method[method] = MethodTotals(count=prev.count + 1, amount=money.add(prev.amount, amount))
        total = money.add(total, amount)

    count = len(payments)
    average = money.multiply_by_rational(total, 1, count) if count else 0

    return PaymentStatistics(
        total_payments=count,
        total_amount=total,
        average_payment=average,
        by_method=dict(sorted(by_method.items())),
    )


# -------------------------------------------------
# Dry run
# -------------------------------------------------
@dataclass(frozen=True)
class PaymentPreview:
    receipt_id: str
    amount: int
    valid: bool
    max_amount: int
    unapplied: int = 0
    allocations: Tuple[ReceiptAllocation, ...] = ()
    error: Optional[str] = None


def preview_payment(receipt_id: str, amount: int, receipts: Iterable[ReceiptRecord]) -> PaymentPreview:
    """
    What ``apply_payment`` would do with ``amount``, without doing it.

    ``max_amount`` is the most a payment against this receipt can absorb
    (its own debt, its carried balance and whatever the cascade can reach).
    """
    receipts = list(receipts)
    reachable = sum(r.total_debt for r in receipts if r.total_debt > 0)
    max_amount = plan_cascade(receipt_id, reachable, receipts).total_applied

    if amount <= 0:
        return PaymentPreview(
            receipt_id, amount, valid=False, max_amount=max_amount,
            error="Payment amount must be greater than zero",
        )
    if max_amount <= 0:
        return PaymentPreview(
            receipt_id, amount, valid=False, max_amount=0, unapplied=amount,
            error="Nothing is owed on this receipt or any receipt it cascades to",
        )

    plan = plan_cascade(receipt_id, amount, receipts)
    if plan.remaining > 0:
        return PaymentPreview(
            receipt_id, amount, valid=False, max_amount=max_amount,
            unapplied=plan.remaining, allocations=plan.allocations,
            error=f"Payment exceeds the payable balance of {money.format_amount(max_amount)}",
        )

    return PaymentPreview(receipt_id, amount, valid=True, max_amount=max_amount, allocations=plan.allocations)
