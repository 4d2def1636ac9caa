from typing import Optional

from fastapi import APIRouter, Depends, Header
from starlette import status

from app.core.errors import LedgerError, to_http_exception
from app.services.ledger_service import LedgerService, LineItem
from app.utils.dependencies import get_ledger_service
from app.schemas.receipt_schema import (
    ReceiptCreate,
    ReceiptOut,
    PaymentCreate,
    PaymentPreviewIn,
    PaymentPreviewOut,
    PaymentResult,
    PaymentTransactionOut,
)

router = APIRouter(prefix="/receipts", tags=["Receipts"])


# CREATE
@router.post("", response_model=ReceiptOut, status_code=status.HTTP_201_CREATED)
def create_receipt(payload: ReceiptCreate, svc: LedgerService = Depends(get_ledger_service)):
    try:
        receipt = svc.create_receipt(
            customer_name=payload.customer_name,
            items=[LineItem(unit_price=i.unit_price, quantity=i.quantity) for i in payload.items],
            tax_percent=payload.tax_percent,
            amount_paid=payload.amount_paid,
            method=payload.payment_mode,
            created_at=payload.created_at,
            receipt_no=payload.receipt_no,
        )
    except LedgerError as exc:
        raise to_http_exception(exc)
    return ReceiptOut.from_record(receipt)


# READ ONE
@router.get("/{receipt_id}", response_model=ReceiptOut)
def get_receipt(receipt_id: str, svc: LedgerService = Depends(get_ledger_service)):
    try:
        return ReceiptOut.from_record(svc.get_receipt(receipt_id))
    except LedgerError as exc:
        raise to_http_exception(exc)


# =================================================
# PAYMENTS
# =================================================
@router.post("/{receipt_id}/payments", response_model=PaymentResult)
def record_payment(
        receipt_id: str,
        payload: PaymentCreate,
        idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
        svc: LedgerService = Depends(get_ledger_service),
):
    # header wins over body
    key = (idempotency_key or "").strip() or payload.idempotency_key

    try:
        result = svc.record_payment(
            receipt_id=receipt_id,
            amount=payload.amount,
            method=payload.payment_mode,
            idempotency_key=key,
            notes=payload.notes,
        )
    except LedgerError as exc:
        raise to_http_exception(exc)
    return PaymentResult.from_result(result)


@router.get("/{receipt_id}/payments", response_model=list[PaymentTransactionOut])
def payment_history(receipt_id: str, svc: LedgerService = Depends(get_ledger_service)):
    try:
        rows = svc.payment_history(receipt_id)
    except LedgerError as exc:
        raise to_http_exception(exc)
    return [PaymentTransactionOut.from_record(t) for t in rows]


@router.post("/{receipt_id}/payments/preview", response_model=PaymentPreviewOut)
def preview_payment(receipt_id: str, payload: PaymentPreviewIn, svc: LedgerService = Depends(get_ledger_service)):
    try:
        preview = svc.preview_payment(receipt_id, payload.amount)
    except LedgerError as exc:
        raise to_http_exception(exc)
    return PaymentPreviewOut.from_preview(preview)
