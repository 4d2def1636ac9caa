from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, Text, ForeignKey, UniqueConstraint
)
from app.utils.database import Base


class PaymentTransactionRow(Base):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("idempotency_key", "receipt_id", name="uq_payment_txn_key_receipt"),
    )

    # append order
    seq = Column(Integer, primary_key=True, autoincrement=True)

    transaction_id = Column(String(32), unique=True, nullable=False)
    payment_id = Column(String(32), nullable=False, index=True)
    idempotency_key = Column(String(200), nullable=False, index=True)

    receipt_id = Column(String(32), ForeignKey("receipts.receipt_id"), nullable=False, index=True)
    customer_key = Column(String(200), nullable=False, index=True)

    amount = Column(BigInteger, nullable=False)
    method = Column(String(20), nullable=False, default="cash")  # cash/card/upi/bank_transfer/other
    applied_at = Column(DateTime(timezone=True), nullable=False)

    # receipt's own balance around this row
    balance_before = Column(BigInteger, nullable=False)
    balance_after = Column(BigInteger, nullable=False)

    old_balance_portion = Column(BigInteger, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    # receipt the payment was made against (cascaded rows share it)
    target_receipt_id = Column(String(32), nullable=True)

    # receipt state after this row, for replaying an earlier result
    old_balance_after = Column(BigInteger, nullable=True)
    receipt_version = Column(Integer, nullable=True)
