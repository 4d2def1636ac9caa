from dataclasses import replace
from threading import RLock
from typing import Dict, List, Optional, Sequence

from app.core.errors import ConcurrencyConflict, InvalidRequest
from app.core.ledger_types import (
    LedgerSnapshot,
    PaymentTransaction,
    ReceiptRecord,
    sort_receipts,
)
from app.stores.base import DuplicateIdempotencyKey, LedgerStore


class InMemoryLedgerStore(LedgerStore):
    """Thread-safe dict-backed store. Used by tests and for local runs without a database."""

    def __init__(self):
        super().__init__()
        self._lock = RLock()
        self._receipts: Dict[str, ReceiptRecord] = {}
        self._transactions: List[PaymentTransaction] = []

    # ---------------------
    # Receipts
    # ---------------------
    def read_receipts(self, customer_key: str) -> List[ReceiptRecord]:
        with self._lock:
            return sort_receipts(r for r in self._receipts.values() if r.customer_key == customer_key)

    def get_receipt(self, receipt_id: str) -> Optional[ReceiptRecord]:
        with self._lock:
            return self._receipts.get(receipt_id)

    def read_all_receipts(self) -> List[ReceiptRecord]:
        with self._lock:
            return sort_receipts(self._receipts.values())

    def list_customer_keys(self) -> List[str]:
        with self._lock:
            return sorted({r.customer_key for r in self._receipts.values()})

    def insert_receipt(
        self,
        receipt: ReceiptRecord,
        transactions: Sequence[PaymentTransaction] = (),
        snapshot: Optional[LedgerSnapshot] = None,
    ) -> ReceiptRecord:
        with self._lock:
            if receipt.id in self._receipts:
                raise InvalidRequest(f"Receipt {receipt.id} already exists")
            if snapshot is not None and not snapshot.matches(self.read_receipts(receipt.customer_key)):
                raise ConcurrencyConflict(
                    f"Receipts of '{receipt.customer_key}' changed while creating receipt"
                )
            self._check_keys(transactions)

            stored = replace(receipt, version=1)
            self._receipts[stored.id] = stored
            self._transactions.extend(transactions)

        self._notify(stored.customer_key)
        return stored

    def atomic_write(
        self,
        snapshot: LedgerSnapshot,
        mutated: Sequence[ReceiptRecord],
        transactions: Sequence[PaymentTransaction],
    ) -> List[ReceiptRecord]:
        with self._lock:
            current = self.read_receipts(snapshot.customer_key)
            if not snapshot.matches(current):
                raise ConcurrencyConflict(
                    f"Receipts of '{snapshot.customer_key}' changed since they were read"
                )
            self._check_keys(transactions)

            committed = []
            for r in mutated:
                if r.customer_key != snapshot.customer_key or r.id not in snapshot.versions:
                    raise ConcurrencyConflict(f"Receipt {r.id} does not belong to '{snapshot.customer_key}'")
                stored = replace(r, version=snapshot.versions[r.id] + 1)
                committed.append(stored)

            for stored in committed:
                self._receipts[stored.id] = stored
            self._transactions.extend(transactions)

        self._notify(snapshot.customer_key)
        return committed

    def _check_keys(self, transactions: Sequence[PaymentTransaction]) -> None:
        for t in transactions:
            for prev in self._transactions:
                if prev.idempotency_key != t.idempotency_key:
                    continue
                if prev.payment_id != t.payment_id or prev.receipt_id == t.receipt_id:
                    raise DuplicateIdempotencyKey(t.idempotency_key)

    # ---------------------
    # Audit log
    # ---------------------
    def transactions_for_key(self, idempotency_key: str) -> List[PaymentTransaction]:
        with self._lock:
            return [t for t in self._transactions if t.idempotency_key == idempotency_key]

    def transactions_for_receipt(self, receipt_id: str) -> List[PaymentTransaction]:
        with self._lock:
            return [t for t in self._transactions if t.receipt_id == receipt_id]

    def transactions_for_customer(self, customer_key: str) -> List[PaymentTransaction]:
        with self._lock:
            return [t for t in self._transactions if t.customer_key == customer_key]

    def read_all_transactions(self) -> List[PaymentTransaction]:
        with self._lock:
            return list(self._transactions)

    def append_transaction(self, transaction: PaymentTransaction) -> PaymentTransaction:
        with self._lock:
            self._check_keys([transaction])
            self._transactions.append(transaction)
        return transaction
