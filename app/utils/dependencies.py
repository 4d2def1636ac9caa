from fastapi import Request

from app.services.ledger_service import LedgerService


def get_ledger_service(request: Request) -> LedgerService:
    # set once by create_app(); tests pass their own in-memory service
    return request.app.state.ledger_service
