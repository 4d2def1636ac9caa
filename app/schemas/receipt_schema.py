from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, List, Literal

from app.core.ledger_types import CascadeResult, PaymentTransaction, ReceiptRecord
from app.services.ledger_projector import CustomerBalance, ProjectedReceipt
from app.services.payment_reports import PaymentPreview, PaymentStatistics
from app.services.reconciliation import ReconciliationReport
from app.utils.money import to_major

PaymentMode = Literal["cash", "card", "upi", "bank_transfer", "other"]


def _empty_to_none(v):
    if v is None:
        return None
    v = str(v).strip()
    return v or None


# -------------------------------------------------
# Requests
# -------------------------------------------------
class LineItemIn(BaseModel):
    name: Optional[str] = None
    unit_price: Decimal = Field(ge=0)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)


class ReceiptCreate(BaseModel):
    customer_name: Optional[str] = None
    receipt_no: Optional[str] = None
    items: List[LineItemIn] = Field(min_length=1)
    tax_percent: Decimal = Field(default=Decimal("0"), ge=0)
    amount_paid: Decimal = Field(default=Decimal("0"), ge=0)
    payment_mode: PaymentMode = "cash"
    created_at: Optional[datetime] = None

    @field_validator("customer_name", "receipt_no", mode="before")
    def empty_to_none(cls, v):
        return _empty_to_none(v)


class PaymentPreviewIn(BaseModel):
    amount: Decimal


class PaymentCreate(BaseModel):
    amount: Decimal
    payment_mode: PaymentMode = "cash"
    idempotency_key: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("idempotency_key", "notes", mode="before")
    def empty_to_none(cls, v):
        return _empty_to_none(v)


# -------------------------------------------------
# Responses
# -------------------------------------------------
class ReceiptOut(BaseModel):
    receipt_id: str
    receipt_no: Optional[str] = None
    customer_key: str
    customer_name: str
    created_at: datetime

    line_items_total: Decimal
    amount_paid: Decimal
    old_balance_at_creation: Decimal
    old_balance_cleared: Decimal

    receipt_own_balance: Decimal
    outstanding_old_balance: Decimal
    total_debt: Decimal
    is_fully_paid: bool
    version: int

    @classmethod
    def from_record(cls, r: ReceiptRecord) -> "ReceiptOut":
        return cls(
            receipt_id=r.id,
            receipt_no=r.receipt_no,
            customer_key=r.customer_key,
            customer_name=r.customer_name,
            created_at=r.created_at,
            line_items_total=to_major(r.line_items_total),
            amount_paid=to_major(r.amount_paid),
            old_balance_at_creation=to_major(r.old_balance_at_creation),
            old_balance_cleared=to_major(r.old_balance_cleared),
            receipt_own_balance=to_major(r.receipt_own_balance),
            outstanding_old_balance=to_major(r.outstanding_old_balance),
            total_debt=to_major(r.total_debt),
            is_fully_paid=r.is_fully_paid,
            version=r.version,
        )


class LedgerRowOut(ReceiptOut):
    running_balance: Decimal
    carried_balance: Decimal
    balance_due: Decimal

    @classmethod
    def from_projection(cls, p: ProjectedReceipt) -> "LedgerRowOut":
        base = ReceiptOut.from_record(p.receipt).model_dump()
        return cls(
            **base,
            running_balance=to_major(p.running_balance),
            carried_balance=to_major(p.carried_balance),
            balance_due=to_major(p.balance_due),
        )


class PaymentTransactionOut(BaseModel):
    transaction_id: str
    payment_id: str
    idempotency_key: str
    receipt_id: str
    customer_key: str
    amount: Decimal
    payment_mode: str
    applied_at: datetime
    balance_before: Decimal
    balance_after: Decimal
    old_balance_portion: Decimal
    notes: Optional[str] = None
    target_receipt_id: str

    @classmethod
    def from_record(cls, t: PaymentTransaction) -> "PaymentTransactionOut":
        return cls(
            transaction_id=t.id,
            payment_id=t.payment_id,
            idempotency_key=t.idempotency_key,
            receipt_id=t.receipt_id,
            customer_key=t.customer_key,
            amount=to_major(t.amount),
            payment_mode=t.method,
            applied_at=t.applied_at,
            balance_before=to_major(t.balance_before),
            balance_after=to_major(t.balance_after),
            old_balance_portion=to_major(t.old_balance_portion),
            notes=t.notes,
            target_receipt_id=t.target,
        )


class PaymentResult(BaseModel):
    payment_id: str
    idempotency_key: str
    total_applied: Decimal
    replayed: bool
    receipts_affected: List[ReceiptOut]
    transactions: List[PaymentTransactionOut]

    @classmethod
    def from_result(cls, result: CascadeResult) -> "PaymentResult":
        return cls(
            payment_id=result.payment_id,
            idempotency_key=result.idempotency_key,
            total_applied=to_major(result.total_applied),
            replayed=result.replayed,
            receipts_affected=[ReceiptOut.from_record(r) for r in result.receipts_affected],
            transactions=[PaymentTransactionOut.from_record(t) for t in result.transactions],
        )


class CustomerBalanceOut(BaseModel):
    customer_key: str
    customer_name: str
    total_balance: Decimal
    receipt_count: int
    unpaid_count: int
    last_receipt_at: Optional[datetime] = None

    @classmethod
    def from_summary(cls, c: CustomerBalance) -> "CustomerBalanceOut":
        return cls(
            customer_key=c.customer_key,
            customer_name=c.customer_name,
            total_balance=to_major(c.total_balance),
            receipt_count=c.receipt_count,
            unpaid_count=c.unpaid_count,
            last_receipt_at=c.last_receipt_at,
        )


class DiscrepancyOut(BaseModel):
    receipt_id: str
    field: str
    stored: Decimal
    expected: Decimal


class ReconciliationOut(BaseModel):
    customer_key: str
    receipts_checked: int
    is_consistent: bool
    discrepancies: List[DiscrepancyOut]

    @classmethod
    def from_report(cls, report: ReconciliationReport) -> "ReconciliationOut":
        return cls(
            customer_key=report.customer_key,
            receipts_checked=report.receipts_checked,
            is_consistent=report.is_consistent,
            discrepancies=[
                DiscrepancyOut(
                    receipt_id=d.receipt_id,
                    field=d.field,
                    stored=to_major(d.stored),
                    expected=to_major(d.expected),
                )
                for d in report.discrepancies
            ],
        )


class AllocationOut(BaseModel):
    receipt_id: str
    to_own: Decimal
    to_old: Decimal


class PaymentPreviewOut(BaseModel):
    receipt_id: str
    amount: Decimal
    valid: bool
    max_amount: Decimal
    unapplied: Decimal
    allocations: List[AllocationOut]
    error: Optional[str] = None

    @classmethod
    def from_preview(cls, p: PaymentPreview) -> "PaymentPreviewOut":
        return cls(
            receipt_id=p.receipt_id,
            amount=to_major(p.amount),
            valid=p.valid,
            max_amount=to_major(p.max_amount),
            unapplied=to_major(p.unapplied),
            allocations=[
                AllocationOut(receipt_id=a.receipt_id, to_own=to_major(a.to_own), to_old=to_major(a.to_old))
                for a in p.allocations
            ],
            error=p.error,
        )


class MethodTotalsOut(BaseModel):
    count: int
    amount: Decimal


class PaymentStatisticsOut(BaseModel):
    total_payments: int
    total_amount: Decimal
    average_payment: Decimal
    by_method: Dict[str, MethodTotalsOut]

    @classmethod
    def from_stats(cls, s: PaymentStatistics) -> "PaymentStatisticsOut":
        return cls(
            total_payments=s.total_payments,
            total_amount=to_major(s.total_amount),
            average_payment=to_major(s.average_payment),
            by_method={
                m: MethodTotalsOut(count=t.count, amount=to_major(t.amount)) for m, t in s.by_method.items()
            },
        )
