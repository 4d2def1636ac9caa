import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import app.models  # ensure models are registered
from app.core import config
from app.services.ledger_service import LedgerService

from app.routers import (
    receipts_router,
    customers_router,
    payments_router,
)

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(ledger_service: Optional[LedgerService] = None) -> FastAPI:
    api = FastAPI(title="Receipt Ledger API", version="1.0")

    # CORS
    api.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    api.include_router(receipts_router.router)
    api.include_router(customers_router.router)
    api.include_router(payments_router.router)

    if ledger_service is None:
        from app.utils.database import Base, SessionLocal, engine
        from app.stores.sql_store import SqlLedgerStore

        ledger_service = LedgerService(SqlLedgerStore(SessionLocal))

        @api.on_event("startup")
        def on_startup():
            # DEV ONLY – no migrations yet
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables ensured")

    api.state.ledger_service = ledger_service

    @api.get("/")
    def root():
        return {"message": "Receipt Ledger is running!!"}

    return api


app = create_app()
