from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from app.core.ledger_types import PaymentTransaction, ReceiptRecord, sort_receipts


@dataclass(frozen=True)
class ReceiptDiscrepancy:
    receipt_id: str
    field: str
    stored: int
    expected: int


@dataclass(frozen=True)
class ReconciliationReport:
    customer_key: str
    receipts_checked: int
    discrepancies: Tuple[ReceiptDiscrepancy, ...] = field(default_factory=tuple)

    @property
    def is_consistent(self) -> bool:
        return not self.discrepancies


def reconcile(
    customer_key: str,
    receipts: Iterable[ReceiptRecord],
    transactions: Iterable[PaymentTransaction],
) -> ReconciliationReport:
    """
    Compare stored receipt counters with what the audit trail says they should be.

      amount_paid         == sum(amount - old_balance_portion)
      old_balance_cleared == sum(old_balance_portion)

    The creation-time payment is itself an audit row, so both sums start at 0.
    """
    paid: Dict[str, int] = {}
    cleared: Dict[str, int] = {}
    for t in transactions:
        paid[t.receipt_id] = paid.get(t.receipt_id, 0) + t.own_portion
        cleared[t.receipt_id] = cleared.get(t.receipt_id, 0) + t.old_balance_portion

    ordered = sort_receipts(receipts)
    found: List[ReceiptDiscrepancy] = []
    for r in ordered:
        expected_paid = paid.get(r.id, 0)
        expected_cleared = cleared.get(r.id, 0)
        if r.amount_paid != expected_paid:
            found.append(ReceiptDiscrepancy(r.id, "amount_paid", r.amount_paid, expected_paid))
        if r.old_balance_cleared != expected_cleared:
            found.append(
                ReceiptDiscrepancy(r.id, "old_balance_cleared", r.old_balance_cleared, expected_cleared)
            )

    return ReconciliationReport(
        customer_key=customer_key,
        receipts_checked=len(ordered),
        discrepancies=tuple(found),
    )
