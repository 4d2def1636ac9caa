"""
Error taxonomy for the receipt ledger.

Every failure the core can report is a ``LedgerError`` subclass. Routers turn
them into ``HTTPException`` with :func:`to_http_exception`; nothing here knows
about FastAPI beyond that helper.
"""

from typing import Any, Optional

from fastapi import HTTPException


class LedgerError(Exception):
    status_code = 400
    code = "LEDGER_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidAmount(LedgerError):
    status_code = 422
    code = "INVALID_AMOUNT"


class InvalidRequest(LedgerError):
    status_code = 422
    code = "INVALID_REQUEST"


class NotFound(LedgerError):
    status_code = 404
    code = "NOT_FOUND"


class DuplicatePayment(LedgerError):
    """The idempotency key was already applied; ``previous_result`` holds that outcome."""

    status_code = 409
    code = "DUPLICATE_PAYMENT"

    def __init__(self, idempotency_key: str, previous_result: Optional[Any] = None):
        super().__init__(f"Payment with idempotency key '{idempotency_key}' already recorded")
        self.idempotency_key = idempotency_key
        self.previous_result = previous_result

    def detail(self) -> dict:
        d = super().detail()
        d["idempotency_key"] = self.idempotency_key
        return d


class OverpaymentError(LedgerError):
    status_code = 409
    code = "OVERPAYMENT"

    def __init__(self, unapplied: int, message: str = ""):
        super().__init__(message or f"Payment exceeds outstanding debt by {unapplied} minor units")
        self.unapplied = unapplied

    def detail(self) -> dict:
        d = super().detail()
        d["unapplied_minor"] = self.unapplied
        return d


class ConcurrencyConflict(LedgerError):
    status_code = 409
    code = "CONCURRENCY_CONFLICT"


class InvariantViolation(LedgerError):
    status_code = 500
    code = "INVARIANT_VIOLATION"


def to_http_exception(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail())
