import logging
import time
from dataclasses import dataclass, replace
from threading import Lock
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from app.core import config
from app.core.errors import (
    ConcurrencyConflict,
    DuplicatePayment,
    InvalidAmount,
    InvalidRequest,
    InvariantViolation,
    NotFound,
    OverpaymentError,
)
from app.core.ledger_types import (
    PAYMENT_METHODS,
    CascadeResult,
    LedgerSnapshot,
    PaymentTransaction,
    ReceiptAllocation,
    ReceiptRecord,
    new_id,
    sort_receipts,
    utc_now,
)
from app.services.audit_trail import AuditTrail
from app.services.ledger_projector import unpaid_receipts
from app.stores.base import DuplicateIdempotencyKey, LedgerStore

logger = logging.getLogger(__name__)


# -------------------------------------------------
# Pure planning
# -------------------------------------------------
@dataclass(frozen=True)
class CascadePlan:
    allocations: Tuple[ReceiptAllocation, ...]
    remaining: int

    @property
    def total_applied(self) -> int:
        return sum(a.total for a in self.allocations)


def allocate_to_receipt(receipt: ReceiptRecord, amount: int) -> ReceiptAllocation:
    """Own debt first, then the receipt's carried old balance."""
    to_own = min(amount, max(0, receipt.receipt_own_balance))
    amount -= to_own

    to_old = 0
    if amount > 0 and receipt.outstanding_old_balance > 0:
        to_old = min(amount, receipt.outstanding_old_balance)

    return ReceiptAllocation(receipt_id=receipt.id, to_own=to_own, to_old=to_old)


def plan_cascade(target_receipt_id: str, amount: int, receipts: Iterable[ReceiptRecord]) -> CascadePlan:
    """
    Decide where ``amount`` goes, without touching anything.

      1. target receipt: own debt, then its outstanding old balance
      2. every other receipt of the customer with debt, oldest (created_at, id) first,
         same two steps each
      3. whatever is left is returned as ``remaining`` (the caller decides what an
         overpayment means)

    When the target carries an old-balance snapshot, the receipts ordered
    before it are where that snapshot came from; their debt is already in the
    target's carried balance, so step 2 skips them.
    """
    ordered = sort_receipts(receipts)
    target = next((r for r in ordered if r.id == target_receipt_id), None)
    if target is None:
        raise NotFound(f"Receipt {target_receipt_id} not found")

    remaining = amount
    allocations = []

    first = allocate_to_receipt(target, remaining)
    if first.total > 0:
        allocations.append(first)
        remaining -= first.total

    skip_earlier = target.old_balance_at_creation > 0
    for r in unpaid_receipts(ordered):
        if remaining <= 0:
            break
        if r.id == target.id:
            continue
        if skip_earlier and r.sort_key < target.sort_key:
            continue
        alloc = allocate_to_receipt(r, remaining)
        if alloc.total > 0:
            allocations.append(alloc)
            remaining -= alloc.total

    return CascadePlan(allocations=tuple(allocations), remaining=remaining)


def apply_plan(receipts: Iterable[ReceiptRecord], plan: CascadePlan) -> List[ReceiptRecord]:
    """Mutated copies of the receipts the plan touches, in plan order."""
    by_id = {r.id: r for r in receipts}
    return [by_id[a.receipt_id].with_payment(a.to_own, a.to_old) for a in plan.allocations]


# -------------------------------------------------
# Engine
# -------------------------------------------------
class PaymentCascadeEngine:
    """
    Applies one payment to a receipt and cascades the overflow.

    The store is injected; so are the retry limits and the sleep function, so
    tests can run conflicts without waiting.
    """

    def __init__(
        self,
        store: LedgerStore,
        audit: Optional[AuditTrail] = None,
        max_attempts: int = config.LEDGER_CONFLICT_MAX_ATTEMPTS,
        backoff_seconds: float = config.LEDGER_CONFLICT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.audit = audit or AuditTrail(store)
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._halted = set()
        self._halted_lock = Lock()

    # ---------------------
    # Halted customers
    # ---------------------
    def is_halted(self, customer_key: str) -> bool:
        with self._halted_lock:
            return customer_key in self._halted

    def release_customer(self, customer_key: str) -> None:
        with self._halted_lock:
            self._halted.discard(customer_key)
        logger.warning("Writes re-enabled for customer '%s'", customer_key)

    def _halt(self, customer_key: str, reason: str) -> InvariantViolation:
        with self._halted_lock:
            self._halted.add(customer_key)
        logger.critical("Ledger invariant violated for customer '%s'; writes halted: %s", customer_key, reason)
        return InvariantViolation(reason)

    # ---------------------
    # Apply
    # ---------------------
    def apply_payment(
        self,
        target_receipt_id: str,
        amount: int,
        method: str,
        idempotency_key: str,
        notes: Optional[str] = None,
    ) -> CascadeResult:
        # validation happens before any I/O
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount(f"Amount must be an int of minor units, got {type(amount).__name__}")
        if amount <= 0:
            raise InvalidAmount("Payment amount must be greater than zero")
        method = (method or "").strip().lower()
        if method not in PAYMENT_METHODS:
            raise InvalidRequest(f"Unknown payment method '{method}'")
        idempotency_key = (idempotency_key or "").strip()
        if not idempotency_key:
            raise InvalidRequest("Idempotency key is required")

        previous = self.audit.find_by_idempotency_key(idempotency_key)
        if previous:
            raise DuplicatePayment(idempotency_key, self.result_from_transactions(previous))

        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._attempt(target_receipt_id, amount, method, idempotency_key, notes)
            except ConcurrencyConflict as exc:
                if attempt >= self.max_attempts:
                    logger.error(
                        "Payment %s on receipt %s gave up after %d conflicting attempts",
                        idempotency_key, target_receipt_id, attempt,
                    )
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Conflict applying payment %s (attempt %d/%d): %s; retrying in %.3fs",
                    idempotency_key, attempt, self.max_attempts, exc.message, delay,
                )
                self._sleep(delay)

        raise ConcurrencyConflict("unreachable")  # pragma: no cover

    def _attempt(
        self,
        target_receipt_id: str,
        amount: int,
        method: str,
        idempotency_key: str,
        notes: Optional[str],
    ) -> CascadeResult:
        target = self.store.get_receipt(target_receipt_id)
        if target is None:
            raise NotFound(f"Receipt {target_receipt_id} not found")

        customer_key = target.customer_key
        if self.is_halted(customer_key):
            raise InvariantViolation(f"Writes for customer '{customer_key}' are halted")

        receipts = self.store.read_receipts(customer_key)
        snapshot = LedgerSnapshot.of(customer_key, receipts)

        plan = plan_cascade(target_receipt_id, amount, receipts)
        if plan.remaining > 0:
            raise OverpaymentError(plan.remaining)

        mutated = apply_plan(receipts, plan)
        for r in mutated:
            errors = r.invariant_errors()
            if errors:
                raise self._halt(customer_key, f"Receipt {r.id}: " + "; ".join(errors))

        transactions = self._transactions_for(receipts, target_receipt_id, plan, method, idempotency_key, notes)

        try:
            committed = self.store.atomic_write(snapshot, mutated, transactions)
        except DuplicateIdempotencyKey as exc:
            # lost a race with a retry of the same request
            previous = self.audit.find_by_idempotency_key(idempotency_key)
            raise DuplicatePayment(idempotency_key, self.result_from_transactions(previous)) from exc

        self._verify_committed(customer_key, [r.id for r in committed])

        result = CascadeResult(
            payment_id=transactions[0].payment_id,
            idempotency_key=idempotency_key,
            receipts_affected=tuple(committed),
            total_applied=amount - plan.remaining,
            transactions=tuple(transactions),
        )
        logger.info(
            "Payment %s: %d applied from receipt %s across %d receipt(s) for '%s'",
            idempotency_key, result.total_applied, target_receipt_id, len(committed), customer_key,
        )
        return result

    @staticmethod
    def _transactions_for(
        receipts: Sequence[ReceiptRecord],
        target_receipt_id: str,
        plan: CascadePlan,
        method: str,
        idempotency_key: str,
        notes: Optional[str],
    ) -> List[PaymentTransaction]:
        by_id = {r.id: r for r in receipts}
        payment_id = new_id()
        applied_at = utc_now()

        out = []
        for a in plan.allocations:
            before = by_id[a.receipt_id]
            out.append(
                PaymentTransaction(
                    id=new_id(),
                    payment_id=payment_id,
                    idempotency_key=idempotency_key,
                    receipt_id=a.receipt_id,
                    customer_key=before.customer_key,
                    amount=a.total,
                    method=method,
                    applied_at=applied_at,
                    balance_before=before.receipt_own_balance,
                    balance_after=before.receipt_own_balance - a.to_own,
                    old_balance_portion=a.to_old,
                    notes=notes,
                    target_receipt_id=target_receipt_id,
                    old_balance_after=before.outstanding_old_balance - a.to_old,
                    receipt_version=before.version + 1,
                )
            )
        return out

    def _verify_committed(self, customer_key: str, receipt_ids: Sequence[str]) -> None:
        for rid in receipt_ids:
            stored = self.store.get_receipt(rid)
            if stored is None:
                raise self._halt(customer_key, f"Receipt {rid} missing after write")
            errors = stored.invariant_errors()
            if errors:
                raise self._halt(customer_key, f"Receipt {rid}: " + "; ".join(errors))

    def result_from_transactions(self, transactions: Sequence[PaymentTransaction]) -> Optional[CascadeResult]:
        """
        Rebuild the outcome of an earlier call from its audit rows.

        Receipts are returned as they stood right after that payment.
        """
        if not transactions:
            return None

        receipts = []
        for t in transactions:
            r = self.store.get_receipt(t.receipt_id)
            if r is None:
                continue
            if t.receipt_version is not None:
                r = replace(
                    r,
                    amount_paid=r.line_items_total - t.balance_after,
                    old_balance_cleared=r.old_balance_at_creation - t.old_balance_after,
                    version=t.receipt_version,
                )
            receipts.append(r)

        return CascadeResult(
            payment_id=transactions[0].payment_id,
            idempotency_key=transactions[0].idempotency_key,
            receipts_affected=tuple(receipts),
            total_applied=sum(t.amount for t in transactions),
            transactions=tuple(transactions),
            replayed=True,
        )
