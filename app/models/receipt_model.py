from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, CheckConstraint, Index
)
from sqlalchemy.sql import func
from app.utils.database import Base


class Receipt(Base):
    __tablename__ = "receipts"

    __table_args__ = (
        Index("ix_receipts_customer_created", "customer_key", "created_at", "receipt_id"),
        CheckConstraint("amount_paid >= 0 AND amount_paid <= line_items_total", name="ck_receipts_amount_paid"),
        CheckConstraint(
            "old_balance_cleared >= 0 AND old_balance_cleared <= old_balance_at_creation",
            name="ck_receipts_old_balance_cleared",
        ),
    )

    receipt_id = Column(String(32), primary_key=True)
    receipt_no = Column(String(50), nullable=True)

    customer_key = Column(String(200), nullable=False, index=True)
    customer_name = Column(String(200), nullable=False, default="")

    # ordering timestamp for every ledger computation
    created_at = Column(DateTime(timezone=True), nullable=False)

    # all money in minor units (paise)
    line_items_total = Column(BigInteger, nullable=False)
    amount_paid = Column(BigInteger, nullable=False, default=0)

    # snapshot at creation, never recomputed
    old_balance_at_creation = Column(BigInteger, nullable=False, default=0)
    old_balance_cleared = Column(BigInteger, nullable=False, default=0)

    # bumped by every committed write (optimistic concurrency)
    version = Column(Integer, nullable=False, default=1)

    updated_on = Column(DateTime, server_default=func.now(), onupdate=func.now())
