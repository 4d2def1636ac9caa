"""
Ledger Store boundary.

The cascade engine, audit trail and service only talk to this interface. A
store must give three guarantees:

* ``atomic_write`` is all-or-nothing and rejects the write with
  ``ConcurrencyConflict`` when the customer's receipt set (ids or versions)
  no longer matches the snapshot the caller planned against;
* an idempotency key belongs to exactly one payment: a transaction reusing a
  key of another ``payment_id``, or repeating ``(idempotency_key,
  receipt_id)``, is rejected with ``DuplicateIdempotencyKey``;
* subscribers of a customer are called with that customer's latest receipts
  after every commit that touched them.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence

from app.core.errors import LedgerError
from app.core.ledger_types import LedgerSnapshot, PaymentTransaction, ReceiptRecord

logger = logging.getLogger(__name__)

OnChange = Callable[[List[ReceiptRecord]], None]
Unsubscribe = Callable[[], None]


class DuplicateIdempotencyKey(LedgerError):
    """Raised by a store when an idempotency key was committed by someone else first."""

    status_code = 409
    code = "DUPLICATE_IDEMPOTENCY_KEY"

    def __init__(self, idempotency_key: str):
        super().__init__(f"Idempotency key '{idempotency_key}' already committed")
        self.idempotency_key = idempotency_key


class LedgerStore(ABC):
    def __init__(self):
        self._listeners: Dict[str, List[OnChange]] = defaultdict(list)
        self._listeners_lock = Lock()

    # ---------------------
    # Receipts
    # ---------------------
    @abstractmethod
    def read_receipts(self, customer_key: str) -> List[ReceiptRecord]:
        """All receipts of a customer, ordered by (created_at, id)."""

    @abstractmethod
    def get_receipt(self, receipt_id: str) -> Optional[ReceiptRecord]:
        ...

    @abstractmethod
    def read_all_receipts(self) -> List[ReceiptRecord]:
        ...

    @abstractmethod
    def list_customer_keys(self) -> List[str]:
        ...

    @abstractmethod
    def insert_receipt(
        self,
        receipt: ReceiptRecord,
        transactions: Sequence[PaymentTransaction] = (),
        snapshot: Optional[LedgerSnapshot] = None,
    ) -> ReceiptRecord:
        """Insert a new receipt (plus its creation-time payment, if any).

        When ``snapshot`` is given the insert is rejected with
        ``ConcurrencyConflict`` unless the customer's receipts still match it.
        """

    @abstractmethod
    def atomic_write(
        self,
        snapshot: LedgerSnapshot,
        mutated: Sequence[ReceiptRecord],
        transactions: Sequence[PaymentTransaction],
    ) -> List[ReceiptRecord]:
        """Commit mutated receipts and transactions together; returns the committed receipts."""

    # ---------------------
    # Audit log
    # ---------------------
    @abstractmethod
    def transactions_for_key(self, idempotency_key: str) -> List[PaymentTransaction]:
        ...

    @abstractmethod
    def transactions_for_receipt(self, receipt_id: str) -> List[PaymentTransaction]:
        ...

    @abstractmethod
    def transactions_for_customer(self, customer_key: str) -> List[PaymentTransaction]:
        ...

    @abstractmethod
    def read_all_transactions(self) -> List[PaymentTransaction]:
        """Every audit row, in append order."""

    @abstractmethod
    def append_transaction(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """Append one audit row on its own (no receipt mutation)."""

    # ---------------------
    # Change notification
    # ---------------------
    def subscribe(self, customer_key: str, on_change: OnChange) -> Unsubscribe:
        with self._listeners_lock:
            self._listeners[customer_key].append(on_change)

        def unsubscribe() -> None:
            with self._listeners_lock:
                listeners = self._listeners.get(customer_key, [])
                if on_change in listeners:
                    listeners.remove(on_change)

        return unsubscribe

    def _notify(self, customer_key: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.get(customer_key, []))
        if not listeners:
            return

        receipts = self.read_receipts(customer_key)
        for listener in listeners:
            try:
                listener(list(receipts))
            except Exception:
                # a broken subscriber must not undo a committed write
                logger.exception("Ledger subscriber failed for customer '%s'", customer_key)
