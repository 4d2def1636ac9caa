from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core.errors import LedgerError, to_http_exception
from app.services.ledger_service import LedgerService
from app.utils.dependencies import get_ledger_service
from app.schemas.receipt_schema import PaymentStatisticsOut

router = APIRouter(prefix="/payments", tags=["Payments"])


# =================================================
# STATISTICS
# =================================================
@router.get("/statistics", response_model=PaymentStatisticsOut)
def payment_statistics(
        customer: Optional[str] = Query(default=None, description="Limit to one customer"),
        start: Optional[datetime] = Query(default=None),
        end: Optional[datetime] = Query(default=None),
        svc: LedgerService = Depends(get_ledger_service),
):
    try:
        stats = svc.payment_statistics(customer_key=customer, start=start, end=end)
    except LedgerError as exc:
        raise to_http_exception(exc)
    return PaymentStatisticsOut.from_stats(stats)
