"""
Plain records the ledger core works on.

Receipts and payment transactions are frozen dataclasses: every change is a
new record built with ``dataclasses.replace``, so a receipt set loaded from the
store can be reasoned about as a value. Derived numbers are properties and are
never stored.
"""

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from app.core import config
from app.core.errors import InvariantViolation

PAYMENT_METHODS = ("cash", "card", "upi", "bank_transfer", "other")

_WS = re.compile(r"\s+")


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (e.g. read back from SQLite) are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_customer_key(name: Optional[str]) -> str:
    """'  Ravi   Kumar ' -> 'ravi kumar'; blank -> 'walk-in customer'."""
    cleaned = _WS.sub(" ", (name or "").strip())
    if not cleaned:
        cleaned = config.WALK_IN_CUSTOMER
    return cleaned.casefold()


@dataclass(frozen=True)
class ReceiptRecord:
    id: str
    customer_key: str
    created_at: datetime
    line_items_total: int
    amount_paid: int = 0
    old_balance_at_creation: int = 0
    old_balance_cleared: int = 0
    customer_name: str = ""
    receipt_no: Optional[str] = None
    version: int = 0

    # ---------------------
    # Derived
    # ---------------------
    @property
    def receipt_own_balance(self) -> int:
        return self.line_items_total - self.amount_paid

    @property
    def outstanding_old_balance(self) -> int:
        return self.old_balance_at_creation - self.old_balance_cleared

    @property
    def total_debt(self) -> int:
        return self.receipt_own_balance + self.outstanding_old_balance

    @property
    def is_fully_paid(self) -> bool:
        return self.total_debt <= config.LEDGER_PAID_EPSILON_MINOR

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return as_utc(self.created_at), self.id

    def invariant_errors(self) -> List[str]:
        errors = []
        if not 0 <= self.amount_paid <= self.line_items_total:
            errors.append(
                f"amount_paid={self.amount_paid} outside [0, line_items_total={self.line_items_total}]"
            )
        if not 0 <= self.old_balance_cleared <= self.old_balance_at_creation:
            errors.append(
                f"old_balance_cleared={self.old_balance_cleared} outside "
                f"[0, old_balance_at_creation={self.old_balance_at_creation}]"
            )
        return errors

    def check_invariants(self) -> None:
        errors = self.invariant_errors()
        if errors:
            raise InvariantViolation(f"Receipt {self.id}: " + "; ".join(errors))

    def with_payment(self, to_own: int, to_old: int) -> "ReceiptRecord":
        return replace(
            self,
            amount_paid=self.amount_paid + to_own,
            old_balance_cleared=self.old_balance_cleared + to_old,
        )


def sort_receipts(receipts: Iterable[ReceiptRecord]) -> List[ReceiptRecord]:
    return sorted(receipts, key=lambda r: r.sort_key)


@dataclass(frozen=True)
class PaymentTransaction:
    id: str
    payment_id: str
    idempotency_key: str
    receipt_id: str
    customer_key: str
    amount: int
    method: str
    applied_at: datetime
    balance_before: int
    balance_after: int
    old_balance_portion: int = 0
    notes: Optional[str] = None
    # receipt the caller paid against; cascaded rows point at the same target
    target_receipt_id: Optional[str] = None
    # receipt state right after this row was committed
    old_balance_after: Optional[int] = None
    receipt_version: Optional[int] = None

    @property
    def own_portion(self) -> int:
        return self.amount - self.old_balance_portion

    @property
    def target(self) -> str:
        return self.target_receipt_id or self.receipt_id


@dataclass(frozen=True)
class ReceiptAllocation:
    receipt_id: str
    to_own: int
    to_old: int

    @property
    def total(self) -> int:
        return self.to_own + self.to_old


@dataclass(frozen=True)
class CascadeResult:
    payment_id: str
    idempotency_key: str
    receipts_affected: Tuple[ReceiptRecord, ...]
    total_applied: int
    transactions: Tuple[PaymentTransaction, ...]
    replayed: bool = False

    @property
    def customer_key(self) -> Optional[str]:
        return self.transactions[0].customer_key if self.transactions else None

    @property
    def target_receipt_id(self) -> Optional[str]:
        return self.transactions[0].target if self.transactions else None

    @property
    def method(self) -> Optional[str]:
        return self.transactions[0].method if self.transactions else None


@dataclass(frozen=True)
class LedgerSnapshot:
    """Receipt ids and versions of one customer as seen when a cascade was planned."""

    customer_key: str
    versions: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def of(cls, customer_key: str, receipts: Iterable[ReceiptRecord]) -> "LedgerSnapshot":
        return cls(customer_key=customer_key, versions={r.id: r.version for r in receipts})

    def matches(self, receipts: Iterable[ReceiptRecord]) -> bool:
        return {r.id: r.version for r in receipts} == self.versions
