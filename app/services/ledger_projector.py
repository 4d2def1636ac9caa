"""
Read-time view of a customer's ledger.

Everything here is a pure function of the receipts passed in: no store
access, no caching, no mutation. Safe to call concurrently from any number of
change-notification callbacks.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from app.core.ledger_types import ReceiptRecord, sort_receipts
from app.utils import money


@dataclass(frozen=True)
class ProjectedReceipt:
    receipt: ReceiptRecord
    running_balance: int   # raw fold value up to and including this receipt
    carried_balance: int   # display "previous balance"
    balance_due: int       # display "balance due"

    @property
    def id(self) -> str:
        return self.receipt.id

    @property
    def is_fully_paid(self) -> bool:
        return self.receipt.is_fully_paid


@dataclass(frozen=True)
class CustomerBalance:
    customer_key: str
    customer_name: str
    total_balance: int
    receipt_count: int
    unpaid_count: int
    last_receipt_at: Optional[datetime]


def project(receipts: Iterable[ReceiptRecord]) -> List[ProjectedReceipt]:
    """
    Fold receipts oldest-first into running balances.

      running[i] = running[i-1] + (line_items_total[i] - amount_paid[i]),  running[-1] = 0

    A fully paid receipt always displays 0 for both carried and due balance,
    even though its old_balance_at_creation snapshot is non-zero history.
    """
    out = []
    running = 0
    for r in sort_receipts(receipts):
        before = running
        running = money.add(running, r.receipt_own_balance)

        if r.is_fully_paid:
            carried, due = 0, 0
        else:
            carried = money.clamp_to_non_negative(before)
            due = money.clamp_to_non_negative(running)

        out.append(
            ProjectedReceipt(
                receipt=r,
                running_balance=running,
                carried_balance=carried,
                balance_due=due,
            )
        )
    return out


def customer_total_debt(receipts: Iterable[ReceiptRecord]) -> int:
    """Sum of the customer's own receipt balances (last running balance), never negative."""
    rows = project(receipts)
    if not rows:
        return 0
    return money.clamp_to_non_negative(rows[-1].running_balance)


def unpaid_receipts(receipts: Iterable[ReceiptRecord]) -> List[ReceiptRecord]:
    """Receipts still carrying any debt, oldest first."""
    return [r for r in sort_receipts(receipts) if r.total_debt > 0]


def summarize_customers(receipts: Iterable[ReceiptRecord]) -> List[CustomerBalance]:
    grouped: Dict[str, List[ReceiptRecord]] = {}
    for r in receipts:
        grouped.setdefault(r.customer_key, []).append(r)

    summaries = []
    for key, rows in grouped.items():
        ordered = sort_receipts(rows)
        latest = ordered[-1]
        summaries.append(
            CustomerBalance(
                customer_key=key,
                customer_name=latest.customer_name or key,
                total_balance=customer_total_debt(ordered),
                receipt_count=len(ordered),
                unpaid_count=sum(1 for r in ordered if not r.is_fully_paid),
                last_receipt_at=latest.created_at,
            )
        )

    summaries.sort(key=lambda c: (-c.total_balance, c.customer_key))
    return summaries
