"""
Display-side ledger with a speculative overlay.

Two layers are kept apart:

* confirmed receipts, replaced wholesale by every store notification;
* speculative payments the UI has sent but not yet seen confirmed.

``projected()`` draws the overlay on top of the confirmed layer for display
only. The first confirmed update after a speculative payment discards the
whole overlay; anything still in flight shows up again once the store
reports it. The cascade engine never reads from here.
"""

import logging
from collections import OrderedDict
from threading import Lock
from typing import List

from app.core.ledger_types import ReceiptRecord
from app.services.ledger_projector import ProjectedReceipt, project
from app.services.payment_cascade import apply_plan, plan_cascade
from app.stores.base import LedgerStore

logger = logging.getLogger(__name__)


class LedgerView:
    def __init__(self, store: LedgerStore, customer_key: str):
        self.customer_key = customer_key
        self._lock = Lock()
        self._confirmed: List[ReceiptRecord] = store.read_receipts(customer_key)
        self._pending: "OrderedDict[str, tuple]" = OrderedDict()
        self._unsubscribe = store.subscribe(customer_key, self.on_confirmed)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ---------------------
    # Layers
    # ---------------------
    def on_confirmed(self, receipts: List[ReceiptRecord]) -> None:
        with self._lock:
            self._confirmed = list(receipts)
            dropped = len(self._pending)
            self._pending.clear()
        if dropped:
            logger.debug("Discarded %d speculative payment(s) for '%s'", dropped, self.customer_key)

    def add_speculative(self, idempotency_key: str, receipt_id: str, amount: int) -> None:
        with self._lock:
            self._pending[idempotency_key] = (receipt_id, amount)

    def discard_speculative(self, idempotency_key: str) -> None:
        with self._lock:
            self._pending.pop(idempotency_key, None)

    @property
    def pending_keys(self) -> List[str]:
        with self._lock:
            return list(self._pending)

    def confirmed(self) -> List[ProjectedReceipt]:
        with self._lock:
            receipts = list(self._confirmed)
        return project(receipts)

    def projected(self) -> List[ProjectedReceipt]:
        with self._lock:
            receipts = list(self._confirmed)
            pending = list(self._pending.values())

        for receipt_id, amount in pending:
            receipts = _overlay(receipts, receipt_id, amount)
        return project(receipts)


def _overlay(receipts: List[ReceiptRecord], receipt_id: str, amount: int) -> List[ReceiptRecord]:
    # overpayment is simply capped here; only the engine rejects it
    if not any(r.id == receipt_id for r in receipts):
        return receipts
    plan = plan_cascade(receipt_id, amount, receipts)
    changed = {r.id: r for r in apply_plan(receipts, plan)}
    return [changed.get(r.id, r) for r in receipts]
