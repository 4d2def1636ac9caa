"""
Caller-facing API of the ledger.

Routers and scripts go through this class; it converts major-unit decimals
to minor units at the boundary and wires the engine, audit trail and
projector to one injected store.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

from app.core.errors import (
    ConcurrencyConflict,
    DuplicatePayment,
    InvalidAmount,
    InvalidRequest,
    NotFound,
)
from app.core.ledger_types import (
    PAYMENT_METHODS,
    CascadeResult,
    LedgerSnapshot,
    PaymentTransaction,
    ReceiptRecord,
    as_utc,
    new_id,
    normalize_customer_key,
    utc_now,
)
from app.services.audit_trail import AuditTrail
from app.services.ledger_projector import (
    CustomerBalance,
    ProjectedReceipt,
    customer_total_debt,
    project,
    summarize_customers,
    unpaid_receipts,
)
from app.services.ledger_view import LedgerView
from app.services.payment_cascade import PaymentCascadeEngine
from app.services.payment_reports import (
    PaymentPreview,
    PaymentStatistics,
    preview_payment,
    summarize_payments,
)
from app.services.reconciliation import ReconciliationReport, reconcile
from app.stores.base import LedgerStore
from app.utils import money

logger = logging.getLogger(__name__)

Amount = Union[str, int, Decimal]


@dataclass(frozen=True)
class LineItem:
    unit_price: Amount
    quantity: Amount = 1


class LedgerService:
    def __init__(
        self,
        store: LedgerStore,
        engine: Optional[PaymentCascadeEngine] = None,
    ):
        self.store = store
        self.engine = engine or PaymentCascadeEngine(store)
        self.audit: AuditTrail = self.engine.audit

    # ---------------------
    # Receipts
    # ---------------------
    def get_receipt(self, receipt_id: str) -> ReceiptRecord:
        receipt = self.store.get_receipt(receipt_id)
        if receipt is None:
            raise NotFound(f"Receipt {receipt_id} not found")
        return receipt

    def create_receipt(
        self,
        customer_name: Optional[str],
        items: Sequence[LineItem],
        tax_percent: Amount = "0",
        amount_paid: Amount = "0",
        method: str = "cash",
        created_at: Optional[datetime] = None,
        receipt_no: Optional[str] = None,
    ) -> ReceiptRecord:
        """
        Price the items, snapshot the customer's earlier debt and store the receipt.

          subtotal = sum(unit_price * quantity)
          tax      = subtotal * tax_percent / 100   (the one rounding step)
          old_balance_at_creation = running balance of receipts ordered before this one
        """
        if not items:
            raise InvalidRequest("A receipt needs at least one line item")

        subtotal = 0
        for item in items:
            price = money.to_minor(item.unit_price)
            if price < 0:
                raise InvalidAmount("Unit price must not be negative")
            qty_num, qty_den = money.ratio(item.quantity)
            if qty_num <= 0:
                raise InvalidRequest("Quantity must be greater than zero")
            subtotal = money.add(subtotal, money.multiply_by_rational(price, qty_num, qty_den))

        tax_num, tax_den = money.rate_from_percent(tax_percent)
        if tax_num < 0:
            raise InvalidAmount("Tax rate must not be negative")
        tax = money.multiply_by_rational(subtotal, tax_num, tax_den)
        line_items_total = money.add(subtotal, tax)

        paid = money.to_minor(amount_paid)
        if paid < 0 or paid > line_items_total:
            raise InvalidAmount("Amount paid at creation must be between 0 and the receipt total")
        method = (method or "").strip().lower()
        if paid > 0 and method not in PAYMENT_METHODS:
            raise InvalidRequest(f"Unknown payment method '{method}'")

        customer_key = normalize_customer_key(customer_name)
        display_name = (customer_name or "").strip() or customer_key
        created = as_utc(created_at) if created_at else utc_now()
        receipt_id = new_id()

        for attempt in range(1, self.engine.max_attempts + 1):
            existing = self.store.read_receipts(customer_key)
            snapshot = LedgerSnapshot.of(customer_key, existing)
            earlier = [r for r in existing if r.sort_key < (created, receipt_id)]

            receipt = ReceiptRecord(
                id=receipt_id,
                customer_key=customer_key,
                customer_name=display_name,
                created_at=created,
                line_items_total=line_items_total,
                amount_paid=paid,
                old_balance_at_creation=customer_total_debt(earlier),
                receipt_no=receipt_no,
            )
            receipt.check_invariants()

            transactions = []
            if paid > 0:
                transactions.append(
                    PaymentTransaction(
                        id=new_id(),
                        payment_id=new_id(),
                        idempotency_key=f"creation:{receipt_id}",
                        receipt_id=receipt_id,
                        customer_key=customer_key,
                        amount=paid,
                        method=method,
                        applied_at=created,
                        balance_before=line_items_total,
                        balance_after=line_items_total - paid,
                        notes="Paid at creation",
                        target_receipt_id=receipt_id,
                        old_balance_after=receipt.old_balance_at_creation,
                        receipt_version=1,
                    )
                )

            try:
                stored = self.store.insert_receipt(receipt, transactions, snapshot=snapshot)
            except ConcurrencyConflict:
                if attempt >= self.engine.max_attempts:
                    raise
                logger.warning("Conflict creating receipt for '%s' (attempt %d)", customer_key, attempt)
                continue

            logger.info(
                "Receipt %s created for '%s': total=%d paid=%d old_balance=%d",
                stored.id, customer_key, stored.line_items_total, stored.amount_paid,
                stored.old_balance_at_creation,
            )
            return stored

        raise ConcurrencyConflict("unreachable")  # pragma: no cover

    # ---------------------
    # Payments
    # ---------------------
    def record_payment(
        self,
        receipt_id: str,
        amount: Amount,
        method: str,
        idempotency_key: str,
        notes: Optional[str] = None,
    ) -> CascadeResult:
        """
        Apply a payment; a retried request with the same key gets the first result back.

        A retry is recognised by key, target receipt, amount and method; anything
        else reusing the key raises ``DuplicatePayment``.
        """
        amount_minor = money.to_minor(amount)
        try:
            return self.engine.apply_payment(receipt_id, amount_minor, method, idempotency_key, notes)
        except DuplicatePayment as exc:
            previous = exc.previous_result
            if (
                previous is not None
                and previous.target_receipt_id == receipt_id
                and previous.method == (method or "").strip().lower()
                and previous.total_applied == amount_minor
            ):
                logger.info("Replaying earlier result for idempotency key %s", idempotency_key)
                return previous
            raise

    def payment_history(self, receipt_id: str) -> Tuple[PaymentTransaction, ...]:
        self.get_receipt(receipt_id)
        return self.audit.list_for_receipt(receipt_id)

    def customer_payments(self, customer_key: str) -> Tuple[PaymentTransaction, ...]:
        return self.audit.list_for_customer(normalize_customer_key(customer_key))

    def preview_payment(self, receipt_id: str, amount: Amount) -> PaymentPreview:
        """Dry run of record_payment: where the money would go, and the most that can be paid."""
        receipt = self.get_receipt(receipt_id)
        return preview_payment(receipt_id, money.to_minor(amount), self.store.read_receipts(receipt.customer_key))

    def payment_statistics(
        self,
        customer_key: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PaymentStatistics:
        if customer_key:
            rows = self.audit.list_for_customer(normalize_customer_key(customer_key))
        else:
            rows = self.audit.list_all()
        return summarize_payments(rows, start=start, end=end)

    # ---------------------
    # Ledger views
    # ---------------------
    def get_customer_ledger(self, customer_key: str) -> List[ProjectedReceipt]:
        key = normalize_customer_key(customer_key)
        receipts = self.store.read_receipts(key)
        if not receipts:
            raise NotFound(f"Customer '{customer_key}' has no receipts")
        return project(receipts)

    def customer_unpaid_receipts(self, customer_key: str) -> List[ReceiptRecord]:
        """Receipts still owing anything, oldest first. Unknown customers have none."""
        return unpaid_receipts(self.store.read_receipts(normalize_customer_key(customer_key)))

    def customer_balances(self, minimum_balance: int = 0) -> List[CustomerBalance]:
        return [
            c for c in summarize_customers(self.store.read_all_receipts())
            if c.total_balance >= minimum_balance
        ]

    def reconcile(self, customer_key: str) -> ReconciliationReport:
        key = normalize_customer_key(customer_key)
        receipts = self.store.read_receipts(key)
        if not receipts:
            raise NotFound(f"Customer '{customer_key}' has no receipts")
        report = reconcile(key, receipts, self.audit.list_for_customer(key))
        if not report.is_consistent:
            logger.warning(
                "Reconciliation for '%s' found %d discrepancies", key, len(report.discrepancies)
            )
        return report

    def watch(self, customer_key: str) -> LedgerView:
        return LedgerView(self.store, normalize_customer_key(customer_key))
