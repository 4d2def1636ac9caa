from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from app.core.errors import LedgerError, to_http_exception
from app.services.ledger_service import LedgerService
from app.utils.dependencies import get_ledger_service
from app.utils.money import to_minor
from app.schemas.receipt_schema import (
    CustomerBalanceOut,
    LedgerRowOut,
    PaymentTransactionOut,
    ReceiptOut,
    ReconciliationOut,
)

router = APIRouter(prefix="/customers", tags=["Customers"])


# =================================================
# STATIC ROUTES (ALWAYS FIRST)
# =================================================
@router.get("/balances", response_model=list[CustomerBalanceOut])
def customer_balances(
        min_balance: Decimal = Query(default=Decimal("0"), description="Only customers owing at least this much"),
        svc: LedgerService = Depends(get_ledger_service),
):
    try:
        rows = svc.customer_balances(minimum_balance=to_minor(min_balance))
    except LedgerError as exc:
        raise to_http_exception(exc)
    return [CustomerBalanceOut.from_summary(c) for c in rows]


# =================================================
# PER CUSTOMER
# =================================================
@router.get("/{customer_key}/ledger", response_model=list[LedgerRowOut])
def customer_ledger(customer_key: str, svc: LedgerService = Depends(get_ledger_service)):
    try:
        rows = svc.get_customer_ledger(customer_key)
    except LedgerError as exc:
        raise to_http_exception(exc)
    return [LedgerRowOut.from_projection(p) for p in rows]


@router.get("/{customer_key}/unpaid", response_model=list[ReceiptOut])
def customer_unpaid_receipts(customer_key: str, svc: LedgerService = Depends(get_ledger_service)):
    return [ReceiptOut.from_record(r) for r in svc.customer_unpaid_receipts(customer_key)]


@router.get("/{customer_key}/payments", response_model=list[PaymentTransactionOut])
def customer_payments(customer_key: str, svc: LedgerService = Depends(get_ledger_service)):
    return [PaymentTransactionOut.from_record(t) for t in svc.customer_payments(customer_key)]


@router.get("/{customer_key}/reconciliation", response_model=ReconciliationOut)
def customer_reconciliation(customer_key: str, svc: LedgerService = Depends(get_ledger_service)):
    try:
        report = svc.reconcile(customer_key)
    except LedgerError as exc:
        raise to_http_exception(exc)
    return ReconciliationOut.from_report(report)
