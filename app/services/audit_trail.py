from typing import Tuple

from app.core.errors import DuplicatePayment
from app.core.ledger_types import PaymentTransaction
from app.stores.base import DuplicateIdempotencyKey, LedgerStore


class AuditTrail:
    """Append-only view over the store's payment transactions. There is no update or delete."""

    def __init__(self, store: LedgerStore):
        self._store = store

    def record(self, transaction: PaymentTransaction) -> str:
        try:
            self._store.append_transaction(transaction)
        except DuplicateIdempotencyKey as exc:
            raise DuplicatePayment(exc.idempotency_key) from exc
        return transaction.id

    def exists_with_idempotency_key(self, idempotency_key: str) -> bool:
        return bool(self._store.transactions_for_key(idempotency_key))

    def find_by_idempotency_key(self, idempotency_key: str) -> Tuple[PaymentTransaction, ...]:
        return tuple(self._store.transactions_for_key(idempotency_key))

    def list_for_receipt(self, receipt_id: str) -> Tuple[PaymentTransaction, ...]:
        # tuple: finite and can be iterated again
        return tuple(self._store.transactions_for_receipt(receipt_id))

    def list_for_customer(self, customer_key: str) -> Tuple[PaymentTransaction, ...]:
        return tuple(self._store.transactions_for_customer(customer_key))

    def list_all(self) -> Tuple[PaymentTransaction, ...]:
        return tuple(self._store.read_all_transactions())
