import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConcurrencyConflict, InvalidRequest, LedgerError
from app.core.ledger_types import (
    LedgerSnapshot,
    PaymentTransaction,
    ReceiptRecord,
    as_utc,
)
from app.models.payment_transaction_model import PaymentTransactionRow
from app.models.receipt_model import Receipt
from app.stores.base import DuplicateIdempotencyKey, LedgerStore

logger = logging.getLogger(__name__)


# -------------------------------------------------
# Row <-> record
# -------------------------------------------------
def receipt_from_row(row: Receipt) -> ReceiptRecord:
    return ReceiptRecord(
        id=row.receipt_id,
        customer_key=row.customer_key,
        customer_name=row.customer_name or "",
        created_at=as_utc(row.created_at),
        line_items_total=int(row.line_items_total),
        amount_paid=int(row.amount_paid or 0),
        old_balance_at_creation=int(row.old_balance_at_creation or 0),
        old_balance_cleared=int(row.old_balance_cleared or 0),
        receipt_no=row.receipt_no,
        version=int(row.version),
    )


def transaction_from_row(row: PaymentTransactionRow) -> PaymentTransaction:
    return PaymentTransaction(
        id=row.transaction_id,
        payment_id=row.payment_id,
        idempotency_key=row.idempotency_key,
        receipt_id=row.receipt_id,
        customer_key=row.customer_key,
        amount=int(row.amount),
        method=row.method,
        applied_at=as_utc(row.applied_at),
        balance_before=int(row.balance_before),
        balance_after=int(row.balance_after),
        old_balance_portion=int(row.old_balance_portion or 0),
        notes=row.notes,
        target_receipt_id=row.target_receipt_id,
        old_balance_after=None if row.old_balance_after is None else int(row.old_balance_after),
        receipt_version=row.receipt_version,
    )


def _transaction_row(t: PaymentTransaction) -> PaymentTransactionRow:
    return PaymentTransactionRow(
        transaction_id=t.id,
        payment_id=t.payment_id,
        idempotency_key=t.idempotency_key,
        receipt_id=t.receipt_id,
        customer_key=t.customer_key,
        amount=t.amount,
        method=t.method,
        applied_at=t.applied_at,
        balance_before=t.balance_before,
        balance_after=t.balance_after,
        old_balance_portion=t.old_balance_portion,
        notes=t.notes,
        target_receipt_id=t.target_receipt_id,
        old_balance_after=t.old_balance_after,
        receipt_version=t.receipt_version,
    )


class SqlLedgerStore(LedgerStore):
    """
    SQLAlchemy-backed store.

    Writes use a conditional ``UPDATE ... WHERE version = :expected`` per
    receipt inside one database transaction, after re-reading the customer's
    rows ``FOR UPDATE`` and comparing them with the caller's snapshot. Any
    mismatch rolls the whole transaction back with ``ConcurrencyConflict``.
    """

    def __init__(self, session_factory):
        super().__init__()
        self._session_factory = session_factory

    # ---------------------
    # Receipts
    # ---------------------
    def read_receipts(self, customer_key: str) -> List[ReceiptRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(Receipt)
                .filter(Receipt.customer_key == customer_key)
                .order_by(Receipt.created_at.asc(), Receipt.receipt_id.asc())
                .all()
            )
            return [receipt_from_row(r) for r in rows]

    def get_receipt(self, receipt_id: str) -> Optional[ReceiptRecord]:
        with self._session_factory() as db:
            row = db.query(Receipt).filter(Receipt.receipt_id == receipt_id).first()
            return receipt_from_row(row) if row else None

    def read_all_receipts(self) -> List[ReceiptRecord]:
        with self._session_factory() as db:
            rows = db.query(Receipt).order_by(Receipt.created_at.asc(), Receipt.receipt_id.asc()).all()
            return [receipt_from_row(r) for r in rows]

    def list_customer_keys(self) -> List[str]:
        with self._session_factory() as db:
            rows = db.query(Receipt.customer_key).distinct().order_by(Receipt.customer_key.asc()).all()
            return [r[0] for r in rows]

    def insert_receipt(
        self,
        receipt: ReceiptRecord,
        transactions: Sequence[PaymentTransaction] = (),
        snapshot: Optional[LedgerSnapshot] = None,
    ) -> ReceiptRecord:
        stored = replace(receipt, version=1)

        with self._session_factory() as db:
            try:
                if db.query(Receipt.receipt_id).filter(Receipt.receipt_id == receipt.id).first():
                    raise InvalidRequest(f"Receipt {receipt.id} already exists")
                if snapshot is not None:
                    self._assert_snapshot(db, snapshot)
                self._check_keys(db, transactions)

                db.add(
                    Receipt(
                        receipt_id=stored.id,
                        receipt_no=stored.receipt_no,
                        customer_key=stored.customer_key,
                        customer_name=stored.customer_name,
                        created_at=stored.created_at,
                        line_items_total=stored.line_items_total,
                        amount_paid=stored.amount_paid,
                        old_balance_at_creation=stored.old_balance_at_creation,
                        old_balance_cleared=stored.old_balance_cleared,
                        version=stored.version,
                    )
                )
                db.flush()  # receipt row must exist before its transactions
                for t in transactions:
                    db.add(_transaction_row(t))
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise self._integrity_error(exc, transactions) from exc
            except LedgerError:
                db.rollback()
                raise

        self._notify(stored.customer_key)
        return stored

    def atomic_write(
        self,
        snapshot: LedgerSnapshot,
        mutated: Sequence[ReceiptRecord],
        transactions: Sequence[PaymentTransaction],
    ) -> List[ReceiptRecord]:
        committed = []

        with self._session_factory() as db:
            try:
                self._assert_snapshot(db, snapshot)
                self._check_keys(db, transactions)

                for rec in mutated:
                    if rec.customer_key != snapshot.customer_key or rec.id not in snapshot.versions:
                        raise ConcurrencyConflict(
                            f"Receipt {rec.id} does not belong to '{snapshot.customer_key}'"
                        )
                    expected = snapshot.versions[rec.id]
                    updated = (
                        db.query(Receipt)
                        .filter(Receipt.receipt_id == rec.id, Receipt.version == expected)
                        .update(
                            {
                                Receipt.amount_paid: rec.amount_paid,
                                Receipt.old_balance_cleared: rec.old_balance_cleared,
                                Receipt.version: expected + 1,
                            },
                            synchronize_session=False,
                        )
                    )
                    if updated != 1:
                        raise ConcurrencyConflict(f"Receipt {rec.id} was modified concurrently")
                    committed.append(replace(rec, version=expected + 1))

                for t in transactions:
                    db.add(_transaction_row(t))

                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise self._integrity_error(exc, transactions) from exc
            except LedgerError:
                db.rollback()
                raise

        self._notify(snapshot.customer_key)
        return committed

    def _assert_snapshot(self, db: Session, snapshot: LedgerSnapshot) -> None:
        rows = (
            db.query(Receipt.receipt_id, Receipt.version)
            .filter(Receipt.customer_key == snapshot.customer_key)
            .with_for_update()
            .all()
        )
        if {r[0]: r[1] for r in rows} != snapshot.versions:
            raise ConcurrencyConflict(
                f"Receipts of '{snapshot.customer_key}' changed since they were read"
            )

    def _check_keys(self, db: Session, transactions: Sequence[PaymentTransaction]) -> None:
        keys = {t.idempotency_key for t in transactions}
        if not keys:
            return
        existing = (
            db.query(PaymentTransactionRow)
            .filter(PaymentTransactionRow.idempotency_key.in_(keys))
            .all()
        )
        for t in transactions:
            for prev in existing:
                if prev.idempotency_key != t.idempotency_key:
                    continue
                if prev.payment_id != t.payment_id or prev.receipt_id == t.receipt_id:
                    raise DuplicateIdempotencyKey(t.idempotency_key)

    @staticmethod
    def _integrity_error(exc: IntegrityError, transactions: Sequence[PaymentTransaction]) -> LedgerError:
        # a racing writer committed the same key between our check and our insert
        msg = str(getattr(exc, "orig", None) or exc)
        logger.warning("Integrity error while writing ledger: %s", msg)

        # postgres names the constraint, sqlite names the columns
        if transactions and (
            "uq_payment_txn_key_receipt" in msg or "payment_transactions.idempotency_key" in msg
        ):
            return DuplicateIdempotencyKey(transactions[0].idempotency_key)
        return ConcurrencyConflict("Ledger write rejected by the database")

    # ---------------------
    # Audit log
    # ---------------------
    def _transactions(self, *criteria) -> List[PaymentTransaction]:
        with self._session_factory() as db:
            rows = (
                db.query(PaymentTransactionRow)
                .filter(*criteria)
                .order_by(PaymentTransactionRow.seq.asc())
                .all()
            )
            return [transaction_from_row(r) for r in rows]

    def transactions_for_key(self, idempotency_key: str) -> List[PaymentTransaction]:
        return self._transactions(PaymentTransactionRow.idempotency_key == idempotency_key)

    def transactions_for_receipt(self, receipt_id: str) -> List[PaymentTransaction]:
        return self._transactions(PaymentTransactionRow.receipt_id == receipt_id)

    def transactions_for_customer(self, customer_key: str) -> List[PaymentTransaction]:
        return self._transactions(PaymentTransactionRow.customer_key == customer_key)

    def read_all_transactions(self) -> List[PaymentTransaction]:
        return self._transactions()

    def append_transaction(self, transaction: PaymentTransaction) -> PaymentTransaction:
        with self._session_factory() as db:
            try:
                self._check_keys(db, [transaction])
                db.add(_transaction_row(transaction))
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise self._integrity_error(exc, [transaction]) from exc
            except LedgerError:
                db.rollback()
                raise
        return transaction
