"""
Money Box Service

WHY: Named cash floats (safe, bank bag, daily box) that sit outside any
register session. A customer receipt can be routed straight into one.

RULES:
- Balance never goes negative (withdrawals and transfers check funds)
- Every movement is a CashLedgerEntry against the box
- Transfers write one entry on each side, inside one transaction
"""

import logging

from ..extensions import db
from ..models import MoneyBox, CashLedgerEntry
from receivables.time_utils import utcnow
from ..validation import ValidationError, NotFoundError, ConflictError
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)


class InsufficientFundsError(ValidationError):
    """Raised when a withdrawal exceeds a money box balance."""

    def __init__(self, money_box: MoneyBox, required_cents: int):
        super().__init__(
            f"Insufficient balance in money box '{money_box.name}': "
            f"available {money_box.balance_cents}, required {required_cents}"
        )
        self.available_cents = money_box.balance_cents
        self.required_cents = required_cents


# =============================================================================
# MONEY BOX MANAGEMENT
# =============================================================================

def create_money_box(
    name: str,
    created_by_user_id: int,
    initial_balance_cents: int = 0,
    notes: str | None = None,
) -> MoneyBox:
    """
    Create a money box, optionally funded with an initial deposit.

    Raises:
        ValidationError: If name is blank or initial balance negative
        ConflictError: If a box with that name exists
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Money box name is required")
    if initial_balance_cents < 0:
        raise ValidationError("Initial balance cannot be negative")

    existing = db.session.query(MoneyBox).filter_by(name=name).first()
    if existing:
        raise ConflictError(f"Money box '{name}' already exists")

    box = MoneyBox(name=name, balance_cents=0, notes=notes, created_by_user_id=created_by_user_id)
    db.session.add(box)
    db.session.flush()

    if initial_balance_cents > 0:
        post_to_money_box(
            box,
            amount_cents=initial_balance_cents,
            entry_type="deposit",
            actor_user_id=created_by_user_id,
            reason="Initial deposit",
        )

    db.session.commit()
    logger.info("Money box %s (%s) created with %d cents", box.id, name, initial_balance_cents)
    return box


def get_money_box(money_box_id: int, *, lock: bool = False) -> MoneyBox:
    query = db.session.query(MoneyBox).filter_by(id=money_box_id)
    if lock:
        query = lock_for_update(query)
    box = query.first()
    if not box:
        raise NotFoundError(f"Money box {money_box_id} not found")
    return box


def list_money_boxes(include_inactive: bool = False) -> list[MoneyBox]:
    query = db.session.query(MoneyBox)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(MoneyBox.name).all()


# =============================================================================
# MOVEMENTS
# =============================================================================

def post_to_money_box(
    box: MoneyBox,
    *,
    amount_cents: int,
    entry_type: str,
    actor_user_id: int,
    reason: str | None = None,
    receipt_id: int | None = None,
    related_money_box_id: int | None = None,
) -> CashLedgerEntry:
    """
    Apply a signed amount to a money box and log the ledger entry.

    Flushes only; the caller owns the commit.

    Raises:
        ValidationError: If amount is zero or box is inactive
        InsufficientFundsError: If a negative amount exceeds the balance
    """
    if amount_cents == 0:
        raise ValidationError("Posting amount cannot be zero")
    if not box.is_active:
        raise ValidationError(f"Money box '{box.name}' is inactive")

    balance_before = box.balance_cents
    if balance_before + amount_cents < 0:
        raise InsufficientFundsError(box, -amount_cents)

    box.balance_cents = balance_before + amount_cents

    entry = CashLedgerEntry(
        money_box_id=box.id,
        entry_type=entry_type,
        amount_cents=amount_cents,
        balance_before_cents=balance_before,
        balance_after_cents=box.balance_cents,
        receipt_id=receipt_id,
        related_money_box_id=related_money_box_id,
        reason=reason,
        created_by_user_id=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def deposit(money_box_id: int, amount_cents: int, actor_user_id: int, reason: str | None = None) -> CashLedgerEntry:
    """Add cash to a money box."""
    if amount_cents <= 0:
        raise ValidationError("Deposit amount must be greater than 0")

    def _op():
        box = get_money_box(money_box_id, lock=True)
        entry = post_to_money_box(
            box, amount_cents=amount_cents, entry_type="deposit",
            actor_user_id=actor_user_id, reason=reason,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def withdraw(money_box_id: int, amount_cents: int, actor_user_id: int, reason: str | None = None) -> CashLedgerEntry:
    """Remove cash from a money box (never below zero)."""
    if amount_cents <= 0:
        raise ValidationError("Withdrawal amount must be greater than 0")

    def _op():
        box = get_money_box(money_box_id, lock=True)
        entry = post_to_money_box(
            box, amount_cents=-amount_cents, entry_type="withdrawal",
            actor_user_id=actor_user_id, reason=reason,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def transfer(
    from_money_box_id: int,
    to_money_box_id: int,
    amount_cents: int,
    actor_user_id: int,
    reason: str | None = None,
) -> tuple[CashLedgerEntry, CashLedgerEntry]:
    """
    Move cash between two money boxes atomically.

    Returns:
        (transfer_out entry, transfer_in entry)
    """
    if amount_cents <= 0:
        raise ValidationError("Transfer amount must be greater than 0")
    if from_money_box_id == to_money_box_id:
        raise ValidationError("Cannot transfer to the same money box")

    def _op():
        # Lock in id order to avoid deadlocks between opposite transfers
        first_id, second_id = sorted((from_money_box_id, to_money_box_id))
        boxes = {
            first_id: get_money_box(first_id, lock=True),
            second_id: get_money_box(second_id, lock=True),
        }
        source, destination = boxes[from_money_box_id], boxes[to_money_box_id]

        out_entry = post_to_money_box(
            source, amount_cents=-amount_cents, entry_type="transfer_out",
            actor_user_id=actor_user_id, reason=reason,
            related_money_box_id=destination.id,
        )
        in_entry = post_to_money_box(
            destination, amount_cents=amount_cents, entry_type="transfer_in",
            actor_user_id=actor_user_id, reason=reason,
            related_money_box_id=source.id,
        )
        db.session.commit()
        return out_entry, in_entry

    return run_with_retry(_op)


# =============================================================================
# REPORTING
# =============================================================================

def get_money_box_entries(money_box_id: int, limit: int = 50, offset: int = 0) -> list[CashLedgerEntry]:
    return db.session.query(CashLedgerEntry).filter_by(
        money_box_id=money_box_id
    ).order_by(CashLedgerEntry.id.desc()).limit(limit).offset(offset).all()


def get_money_box_summary(money_box_id: int) -> dict:
    """
    Balance plus deposit/withdrawal totals for one box.
    """
    box = get_money_box(money_box_id)

    rows = db.session.query(
        CashLedgerEntry.entry_type,
        db.func.count(CashLedgerEntry.id),
        db.func.coalesce(db.func.sum(CashLedgerEntry.amount_cents), 0),
    ).filter(
        CashLedgerEntry.money_box_id == money_box_id,
    ).group_by(CashLedgerEntry.entry_type).all()

    totals_in = sum(int(total) for _, _, total in rows if total > 0)
    totals_out = -sum(int(total) for _, _, total in rows if total < 0)

    return {
        "money_box": box.to_dict(),
        "entries_count": sum(int(count) for _, count, _ in rows),
        "total_in_cents": totals_in,
        "total_out_cents": totals_out,
        "totals_by_type": {entry_type: int(total) for entry_type, _, total in rows},
    }
