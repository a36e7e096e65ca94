# Overview: Customer receipt registration: settle a payment across invoices, void, update and look up receipts.

"""
Customer Receipt Service

WHY: A customer walks in and pays. The payment has to be spread over what
they owe, the remainder credited to their balance, a receipt issued and
the cash placed in a drawer or money box, without ever losing a cent.

TRANSACTION MODEL:
1. One DB transaction: invoices, debts, customer balance, receipt and
   allocation rows (all or nothing)
2. After commit: cash posting (own transaction) and cache invalidation

A failed cash posting does NOT undo the settlement. The receipt is flagged
cash_posting_status=FAILED and the error is returned to the caller, who
can call retry_cash_posting() once the float is available.

NOT IDEMPOTENT: submitting the same payment twice settles it twice.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import date
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import Customer, Sale, DebtRecord, CustomerReceipt, ReceiptAllocation, User, CashLedgerEntry
from ..models.receipts import (
    RECEIPT_STATUS_ACTIVE,
    RECEIPT_STATUS_VOIDED,
    CASH_POSTING_PENDING,
    CASH_POSTING_POSTED,
    CASH_POSTING_FAILED,
    CASH_POSTING_REVERSED,
)
from receivables.time_utils import utcnow, today
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    LedgerPostingError,
    ModelValidationPolicy,
    validate_payload,
    coerce_amount_cents,
    coerce_optional_id,
    coerce_optional_date,
    coerce_optional_str,
)
from .concurrency import lock_for_update, run_with_retry
from .settlement_engine import InvoiceSnapshot, AllocationPlan, allocate, load_candidates, payment_status_for
from .cash_flow_service import CashFlowRouter, MoneyBoxTarget, resolve_cash_target, target_for_receipt
from .cache_service import CacheCoordinator, customer_key, get_cache_coordinator


logger = logging.getLogger(__name__)


VALID_PAYMENT_METHODS = {"cash", "card", "bank_transfer", "check"}

RECEIPT_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
RECEIPT_SUFFIX_LENGTH = 6


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class SettlementResult:
    """Outcome of one settle() call, returned even when cash posting failed."""
    receipt: CustomerReceipt
    plan: AllocationPlan
    updated_sales: list[Sale]
    customer: Customer
    cash_entry: CashLedgerEntry | None = None
    cash_posting_error: LedgerPostingError | None = None

    @property
    def applied_payments(self) -> list[dict]:
        return [a.to_dict() for a in self.plan.allocations]

    @property
    def excess_amount_cents(self) -> int:
        return self.plan.excess_amount_cents

    @property
    def total_paid_cents(self) -> int:
        return self.plan.payment_amount_cents

    @property
    def updated_state(self) -> dict:
        return {
            "invoices": [
                {
                    "invoice_id": s.id,
                    "invoice_reference": s.invoice_no,
                    "paid_amount_cents": s.paid_amount_cents,
                    "remaining_amount_cents": s.remaining_amount_cents,
                    "payment_status": s.payment_status,
                }
                for s in self.updated_sales
            ],
            "customer": {
                "id": self.customer.id,
                "current_balance_cents": self.customer.current_balance_cents,
            },
        }

    def to_dict(self) -> dict:
        return {
            "receipt": self.receipt.to_dict(),
            "appliedPayments": self.applied_payments,
            "excessAmount": self.excess_amount_cents,
            "totalPaid": self.total_paid_cents,
            "updatedState": self.updated_state,
            "cashPosting": {
                "status": self.receipt.cash_posting_status,
                "error": str(self.cash_posting_error) if self.cash_posting_error else None,
                "entry": self.cash_entry.to_dict() if self.cash_entry else None,
            },
        }


# Explicit "field not provided" marker for partial updates
UNSET: Any = object()


@dataclass
class ReceiptUpdate:
    """
    Partial update of a receipt's non-financial fields.

    Fields left as UNSET keep their stored value; a nullable field set to
    None is cleared.
    """
    receipt_date: Any = UNSET
    payment_method: Any = UNSET
    reference_number: Any = UNSET
    notes: Any = UNSET

    def provided(self) -> dict:
        return {
            name: value
            for name, value in (
                ("receipt_date", self.receipt_date),
                ("payment_method", self.payment_method),
                ("reference_number", self.reference_number),
                ("notes", self.notes),
            )
            if value is not UNSET
        }


RECEIPT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"receipt_date", "payment_method", "reference_number", "notes"},
)

# Fields that can only change through void + re-settle
FINANCIAL_FIELDS = {"amount_cents", "customer_id", "sale_id", "money_box_id", "excess_amount_cents"}


# =============================================================================
# HELPERS
# =============================================================================

def _random_suffix() -> str:
    return "".join(secrets.choice(RECEIPT_SUFFIX_ALPHABET) for _ in range(RECEIPT_SUFFIX_LENGTH))


def generate_receipt_number(receipt_date: date | None = None) -> str:
    """
    Allocate a unique receipt number: <PREFIX>-YYYYMMDD-XXXXXX.

    Raises:
        ConflictError: If every attempt collided with an existing number
    """
    prefix = current_app.config.get("RECEIPT_NUMBER_PREFIX", "CR")
    max_attempts = int(current_app.config.get("RECEIPT_NUMBER_MAX_ATTEMPTS", 5))
    day = (receipt_date or today()).strftime("%Y%m%d")

    for attempt in range(max_attempts):
        candidate = f"{prefix}-{day}-{_random_suffix()}"
        exists = db.session.query(CustomerReceipt.id).filter_by(receipt_number=candidate).first()
        if not exists:
            return candidate
        logger.warning("Receipt number collision on %s (attempt %d/%d)", candidate, attempt + 1, max_attempts)

    raise ConflictError(f"Could not allocate a unique receipt number after {max_attempts} attempts")


def _normalize_payment_method(value: Any) -> str:
    method = (coerce_optional_str(value, "payment_method", 32) or "").lower()
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment_method. Must be one of: {', '.join(sorted(VALID_PAYMENT_METHODS))}"
        )
    return method


def _require_active_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise NotFoundError(f"User {user_id} not found")
    return user


def _sync_debt_record(sale: Sale) -> None:
    """
    Make the sale's DebtRecord match its remaining balance.

    remaining == 0 -> record deleted; otherwise created or updated.
    """
    remaining = sale.remaining_amount_cents
    debt = db.session.query(DebtRecord).filter_by(sale_id=sale.id).first()

    if remaining <= 0:
        if debt is not None:
            db.session.delete(debt)
        return

    if debt is None:
        debt = DebtRecord(sale_id=sale.id, customer_id=sale.customer_id)
        db.session.add(debt)
    debt.amount_cents = remaining
    debt.status = sale.payment_status


def _apply_to_sale(sale: Sale, delta_cents: int) -> None:
    """Move a sale's paid amount by delta and recompute status + debt."""
    new_paid = (sale.paid_amount_cents or 0) + delta_cents
    if new_paid < 0 or new_paid > sale.total_amount_cents:
        raise ValidationError(
            f"Invoice {sale.invoice_no}: paid amount would be {new_paid} of {sale.total_amount_cents}"
        )
    sale.paid_amount_cents = new_paid
    sale.payment_status = payment_status_for(new_paid, sale.total_amount_cents)
    _sync_debt_record(sale)


def _resolve_cache(cache: CacheCoordinator | None) -> CacheCoordinator | None:
    if cache is not None:
        return cache
    try:
        return get_cache_coordinator()
    except KeyError:
        logger.warning("No stats cache configured on app; skipping invalidation")
        return None


# =============================================================================
# SETTLEMENT
# =============================================================================

def settle(
    customer_id: Any,
    amount_cents: Any,
    payment_method: Any,
    actor_user_id: int,
    sale_id: Any = None,
    money_box_id: Any = None,
    reference_number: Any = None,
    notes: Any = None,
    receipt_date: Any = None,
    cache: CacheCoordinator | None = None,
    router: CashFlowRouter | None = None,
) -> SettlementResult:
    """
    Record one customer payment.

    Args:
        customer_id: Paying customer
        amount_cents: Full amount received (in cents, > 0)
        payment_method: cash, card, bank_transfer or check
        actor_user_id: User recording the payment (owns the default register)
        sale_id: Invoice the payment was made against (paid first)
        money_box_id: Money box id, or None / "cash_box" for the default register
        reference_number: External reference (card auth, transfer id)
        notes: Free text
        receipt_date: Business date (defaults to today, UTC)
        cache: Cache coordinator (defaults to the app's)
        router: Cash router (defaults to CashFlowRouter())

    Returns:
        SettlementResult (also when cash posting failed)

    Raises:
        ValidationError: Bad input, or sale belongs to another customer
        NotFoundError: Customer, sale or actor not found
        ConflictError: Receipt number could not be allocated
    """
    # Validate everything before touching the store
    amount = coerce_amount_cents(amount_cents, "amount_cents")
    method = _normalize_payment_method(payment_method or "cash")
    customer_id = coerce_optional_id(customer_id, "customer_id")
    if customer_id is None:
        raise ValidationError("customer_id is required")
    sale_id = coerce_optional_id(sale_id, "sale_id")
    target = resolve_cash_target(money_box_id)
    reference_number = coerce_optional_str(reference_number, "reference_number", 128)
    notes = coerce_optional_str(notes, "notes")
    business_date = coerce_optional_date(receipt_date, "receipt_date") or today()

    router = router or CashFlowRouter()

    def _op():
        _require_active_user(actor_user_id)

        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")
        if not customer.is_active:
            raise ValidationError(f"Customer {customer_id} is inactive")

        target_sale = None
        if sale_id is not None:
            target_sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
            if not target_sale:
                raise NotFoundError(f"Sale {sale_id} not found")
            if target_sale.customer_id != customer.id:
                raise ValidationError(f"Sale {sale_id} does not belong to customer {customer.id}")

        sales = load_candidates(customer.id, lock=True)
        sales_by_id = {s.id: s for s in sales}
        if target_sale is not None:
            sales_by_id[target_sale.id] = target_sale

        plan = allocate(
            amount,
            [InvoiceSnapshot.from_sale(s) for s in sales],
            InvoiceSnapshot.from_sale(target_sale) if target_sale is not None else None,
        )

        updated_sales = []
        for allocation in plan.allocations:
            sale = sales_by_id[allocation.sale_id]
            _apply_to_sale(sale, allocation.amount_cents)
            updated_sales.append(sale)

        if plan.excess_amount_cents > 0:
            customer.current_balance_cents = (customer.current_balance_cents or 0) + plan.excess_amount_cents

        receipt = CustomerReceipt(
            receipt_number=generate_receipt_number(business_date),
            customer_id=customer.id,
            sale_id=sale_id,
            receipt_date=business_date,
            amount_cents=amount,
            excess_amount_cents=plan.excess_amount_cents,
            payment_method=method,
            reference_number=reference_number,
            notes=notes,
            money_box_id=target.money_box_id if isinstance(target, MoneyBoxTarget) else None,
            status=RECEIPT_STATUS_ACTIVE,
            cash_posting_status=CASH_POSTING_PENDING,
            created_by_user_id=actor_user_id,
            created_at=utcnow(),
        )
        db.session.add(receipt)
        db.session.flush()

        for sequence, allocation in enumerate(plan.allocations, start=1):
            db.session.add(ReceiptAllocation(
                receipt_id=receipt.id,
                sale_id=allocation.sale_id,
                sequence=sequence,
                amount_cents=allocation.amount_cents,
            ))

        db.session.commit()
        return receipt, plan, updated_sales, customer

    receipt, plan, updated_sales, customer = run_with_retry(_op)
    logger.info(
        "Receipt %s: customer %s paid %d cents over %d invoice(s), excess %d",
        receipt.receipt_number, customer.id, amount, len(plan.allocations), plan.excess_amount_cents,
    )

    result = SettlementResult(receipt=receipt, plan=plan, updated_sales=updated_sales, customer=customer)

    # Post-commit: cash placement, then caches
    result.cash_entry, result.cash_posting_error = _post_receipt_cash(receipt, target, actor_user_id, router)

    coordinator = _resolve_cache(cache)
    if coordinator is not None:
        coordinator.invalidate_quietly(customer.id)

    return result


def _post_receipt_cash(receipt, target, actor_user_id, router):
    """
    Post a committed receipt's cash and record the outcome on the receipt.

    Returns (entry, None) on success or (None, LedgerPostingError).
    """
    try:
        entry = router.post(
            target,
            receipt.amount_cents,
            receipt.id,
            f"Customer receipt {receipt.receipt_number}",
            actor_user_id,
        )
    except LedgerPostingError as exc:
        logger.error("Cash posting failed for receipt %s: %s", receipt.receipt_number, exc)
        _mark_cash_posting(receipt.id, CASH_POSTING_FAILED, str(exc))
        return None, exc
    except Exception as exc:
        # The settlement is already committed; report it as a failed posting
        db.session.rollback()
        logger.exception("Unexpected cash posting failure for receipt %s", receipt.receipt_number)
        error = LedgerPostingError(f"Cash posting failed: {exc}")
        _mark_cash_posting(receipt.id, CASH_POSTING_FAILED, str(error))
        return None, error

    _mark_cash_posting(receipt.id, CASH_POSTING_POSTED, None)
    return entry, None


def _mark_cash_posting(receipt_id: int, status: str, error: str | None) -> None:
    def _op():
        receipt = lock_for_update(db.session.query(CustomerReceipt).filter_by(id=receipt_id)).first()
        receipt.cash_posting_status = status
        receipt.cash_posting_error = error[:255] if error else None
        db.session.commit()
    run_with_retry(_op)


def retry_cash_posting(
    receipt_id: int,
    actor_user_id: int,
    router: CashFlowRouter | None = None,
) -> CashLedgerEntry:
    """
    Re-attempt the cash posting of a receipt whose posting FAILED.

    Raises:
        NotFoundError: If receipt not found
        ConflictError: If the receipt is voided or its cash is already posted
        LedgerPostingError: If the target still cannot accept the posting
    """
    receipt = get_receipt(receipt_id)
    if receipt.status == RECEIPT_STATUS_VOIDED:
        raise ConflictError(f"Receipt {receipt.receipt_number} is voided")
    if receipt.cash_posting_status == CASH_POSTING_POSTED:
        raise ConflictError(f"Receipt {receipt.receipt_number} cash is already posted")

    entry, error = _post_receipt_cash(receipt, target_for_receipt(receipt), actor_user_id, router or CashFlowRouter())
    if error is not None:
        raise error
    return entry


# =============================================================================
# VOID
# =============================================================================

def void_receipt(
    receipt_id: int,
    actor_user_id: int,
    reason: str,
    cache: CacheCoordinator | None = None,
    router: CashFlowRouter | None = None,
) -> CustomerReceipt:
    """
    Void a receipt (compensating reversal; the row is kept).

    Reverses allocations newest-first, takes the receipt's excess back off
    the customer balance, then (after commit) reverses the cash posting if
    one was made.

    Raises:
        NotFoundError: If receipt not found
        ConflictError: If already voided
        ValidationError: If reason missing, or the customer's balance has
            already been consumed below this receipt's excess
    """
    reason = coerce_optional_str(reason, "reason", 255)
    if not reason:
        raise ValidationError("Void reason is required")
    router = router or CashFlowRouter()

    def _op():
        _require_active_user(actor_user_id)

        receipt = lock_for_update(db.session.query(CustomerReceipt).filter_by(id=receipt_id)).first()
        if not receipt:
            raise NotFoundError(f"Receipt {receipt_id} not found")
        if receipt.status == RECEIPT_STATUS_VOIDED:
            raise ConflictError(f"Receipt {receipt.receipt_number} already voided")

        customer = lock_for_update(db.session.query(Customer).filter_by(id=receipt.customer_id)).first()

        allocations = sorted(receipt.allocations, key=lambda a: a.sequence, reverse=True)
        sale_ids = sorted(a.sale_id for a in allocations)
        sales = {
            s.id: s
            for s in lock_for_update(db.session.query(Sale).filter(Sale.id.in_(sale_ids)).order_by(Sale.id)).all()
        } if sale_ids else {}

        for allocation in allocations:
            _apply_to_sale(sales[allocation.sale_id], -allocation.amount_cents)

        if receipt.excess_amount_cents:
            if customer.current_balance_cents < receipt.excess_amount_cents:
                raise ValidationError(
                    f"Customer balance {customer.current_balance_cents} is below the receipt excess "
                    f"{receipt.excess_amount_cents}; cannot void"
                )
            customer.current_balance_cents -= receipt.excess_amount_cents

        receipt.status = RECEIPT_STATUS_VOIDED
        receipt.voided_by_user_id = actor_user_id
        receipt.voided_at = utcnow()
        receipt.void_reason = reason

        db.session.commit()
        return receipt

    receipt = run_with_retry(_op)
    logger.info("Receipt %s voided by user %s: %s", receipt.receipt_number, actor_user_id, reason)

    if receipt.cash_posting_status == CASH_POSTING_POSTED:
        try:
            router.reverse(receipt, actor_user_id, f"Receipt {receipt.receipt_number} voided: {reason}")
        except LedgerPostingError as exc:
            logger.error("Cash reversal failed for receipt %s: %s", receipt.receipt_number, exc)
            _mark_cash_posting(receipt.id, CASH_POSTING_POSTED, f"Reversal failed: {exc}")
        except Exception as exc:
            db.session.rollback()
            logger.exception("Unexpected cash reversal failure for receipt %s", receipt.receipt_number)
            _mark_cash_posting(receipt.id, CASH_POSTING_POSTED, f"Reversal failed: {exc}")
        else:
            _mark_cash_posting(receipt.id, CASH_POSTING_REVERSED, None)

    coordinator = _resolve_cache(cache)
    if coordinator is not None:
        coordinator.invalidate_quietly(receipt.customer_id)

    return receipt


# =============================================================================
# UPDATE
# =============================================================================

def update_receipt(receipt_id: int, update: ReceiptUpdate | dict) -> CustomerReceipt:
    """
    Apply a partial update to a receipt's non-financial fields.

    Accepts a ReceiptUpdate or a raw JSON dict. Financial fields are
    rejected: void the receipt and settle again instead.

    Raises:
        NotFoundError: If receipt not found
        ValidationError: Bad field or value, or financial field present
        ConflictError: If the receipt is voided
    """
    if isinstance(update, dict):
        blocked = FINANCIAL_FIELDS & set(update)
        if blocked:
            raise ValidationError(
                f"Cannot change {', '.join(sorted(blocked))} on a receipt; void it and settle again"
            )
        payload = dict(update)
    else:
        payload = update.provided()

    patch = validate_payload(
        model=CustomerReceipt,
        payload=payload,
        policy=RECEIPT_UPDATE_POLICY,
        partial=True,
    )
    if "payment_method" in patch:
        patch["payment_method"] = _normalize_payment_method(patch["payment_method"])
    for key in ("reference_number", "notes"):
        if key in patch and patch[key] == "":
            patch[key] = None

    def _op():
        receipt = lock_for_update(db.session.query(CustomerReceipt).filter_by(id=receipt_id)).first()
        if not receipt:
            raise NotFoundError(f"Receipt {receipt_id} not found")
        if receipt.status == RECEIPT_STATUS_VOIDED:
            raise ConflictError(f"Receipt {receipt.receipt_number} is voided")

        for key, value in patch.items():
            setattr(receipt, key, value)

        db.session.commit()
        return receipt

    receipt = run_with_retry(_op)
    if patch:
        logger.info("Receipt %s updated: %s", receipt.receipt_number, ", ".join(sorted(patch)))
    return receipt


# =============================================================================
# QUERIES
# =============================================================================

def get_receipt(receipt_id: int) -> CustomerReceipt:
    receipt = db.session.get(CustomerReceipt, receipt_id)
    if not receipt:
        raise NotFoundError(f"Receipt {receipt_id} not found")
    return receipt


def get_receipt_by_number(receipt_number: str) -> CustomerReceipt:
    receipt = db.session.query(CustomerReceipt).filter_by(receipt_number=(receipt_number or "").strip()).first()
    if not receipt:
        raise NotFoundError(f"Receipt {receipt_number} not found")
    return receipt


def receipt_detail(receipt: CustomerReceipt) -> dict:
    """Receipt plus its allocations and cash entries."""
    entries = db.session.query(CashLedgerEntry).filter_by(
        receipt_id=receipt.id
    ).order_by(CashLedgerEntry.id).all()
    return {
        "receipt": receipt.to_dict(),
        "allocations": [
            {**a.to_dict(), "invoice_reference": a.sale.invoice_no if a.sale else None}
            for a in receipt.allocations
        ],
        "cash_entries": [e.to_dict() for e in entries],
    }


def get_customer_receipt_summary(customer_id: int, cache: CacheCoordinator | None = None) -> dict:
    """
    Totals of a customer's active receipts (cached).
    """
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")

    def _compute() -> dict:
        row = db.session.query(
            db.func.count(CustomerReceipt.id),
            db.func.coalesce(db.func.sum(CustomerReceipt.amount_cents), 0),
            db.func.coalesce(db.func.sum(CustomerReceipt.excess_amount_cents), 0),
            db.func.max(CustomerReceipt.receipt_date),
        ).filter(
            CustomerReceipt.customer_id == customer_id,
            CustomerReceipt.status == RECEIPT_STATUS_ACTIVE,
        ).one()

        failed = db.session.query(db.func.count(CustomerReceipt.id)).filter(
            CustomerReceipt.customer_id == customer_id,
            CustomerReceipt.status == RECEIPT_STATUS_ACTIVE,
            CustomerReceipt.cash_posting_status == CASH_POSTING_FAILED,
        ).scalar()

        count, total, excess, last_date = row
        return {
            "customer_id": customer_id,
            "receipts_count": int(count),
            "total_received_cents": int(total),
            "total_excess_cents": int(excess),
            "last_receipt_date": last_date.isoformat() if last_date else None,
            "pending_cash_postings": int(failed or 0),
        }

    coordinator = _resolve_cache(cache)
    if coordinator is None:
        return _compute()
    return coordinator.cache.get_or_set(customer_key("customer_receipts", customer_id, "summary"), _compute)
