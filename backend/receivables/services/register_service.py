"""
Default Register Session Service

WHY: Each cashier works from a cash drawer session. Customer receipts with
no named money box land in the acting user's open session.

DESIGN PRINCIPLES:
- One open session per user at a time
- Sessions are immutable once closed
- Every balance change is a CashLedgerEntry (opening, receipts, closing)
- Variance tracking (counted vs current cash)
"""

import logging

from ..extensions import db
from ..models import RegisterSession, CashLedgerEntry, User
from receivables.time_utils import utcnow
from ..validation import ValidationError, NotFoundError, ConflictError
from .concurrency import lock_for_update


logger = logging.getLogger(__name__)


SESSION_OPEN = "OPEN"
SESSION_CLOSED = "CLOSED"


class ShiftError(ConflictError):
    """Raised for register session lifecycle conflicts."""
    pass


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_register(user_id: int, opening_cash_cents: int = 0, notes: str | None = None) -> RegisterSession:
    """
    Open a register session for a user.

    Args:
        user_id: Cashier opening the session
        opening_cash_cents: Starting cash in drawer (in cents)
        notes: Optional opening notes

    Raises:
        NotFoundError: If user does not exist or is inactive
        ValidationError: If opening cash is negative
        ShiftError: If the user already has an open session
    """
    if opening_cash_cents < 0:
        raise ValidationError("Opening cash cannot be negative")

    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise NotFoundError(f"User {user_id} not found")

    existing_open = get_open_session(user_id)
    if existing_open:
        raise ShiftError(f"User already has an open register session (session {existing_open.id})")

    session = RegisterSession(
        user_id=user_id,
        status=SESSION_OPEN,
        opening_cash_cents=opening_cash_cents,
        current_cash_cents=0,
        opened_at=utcnow(),
        notes=notes,
    )
    db.session.add(session)
    db.session.flush()

    if opening_cash_cents > 0:
        post_to_session(
            session,
            amount_cents=opening_cash_cents,
            entry_type="opening",
            actor_user_id=user_id,
            reason="Register opened",
        )

    db.session.commit()
    logger.info("Register session %s opened by user %s with %d cents", session.id, user_id, opening_cash_cents)
    return session


def close_register(user_id: int, closing_cash_cents: int, notes: str | None = None) -> RegisterSession:
    """
    Close the user's open session and record the counted cash.

    A counted amount different from current_cash_cents is recorded as a
    closing adjustment entry and as variance_cents.

    IMMUTABLE: Once closed, the session accepts no more postings.
    """
    if closing_cash_cents < 0:
        raise ValidationError("Closing cash cannot be negative")

    session = lock_for_update(
        db.session.query(RegisterSession).filter_by(user_id=user_id, status=SESSION_OPEN)
    ).first()
    if not session:
        raise NotFoundError("No open register session found")

    variance = closing_cash_cents - session.current_cash_cents
    if variance != 0:
        post_to_session(
            session,
            amount_cents=variance,
            entry_type="closing",
            actor_user_id=user_id,
            reason=f"Register closed. Variance: {variance / 100:.2f}",
        )

    session.status = SESSION_CLOSED
    session.closed_at = utcnow()
    session.closing_cash_cents = closing_cash_cents
    session.variance_cents = variance
    if notes:
        session.notes = notes

    db.session.commit()
    logger.info("Register session %s closed with variance %d cents", session.id, variance)
    return session


def get_open_session(user_id: int, *, lock: bool = False) -> RegisterSession | None:
    """Get the user's currently open session, if any (latest first)."""
    query = db.session.query(RegisterSession).filter_by(
        user_id=user_id,
        status=SESSION_OPEN,
    ).order_by(RegisterSession.opened_at.desc(), RegisterSession.id.desc())
    if lock:
        query = lock_for_update(query)
    return query.first()


# =============================================================================
# POSTINGS
# =============================================================================

def post_to_session(
    session: RegisterSession,
    *,
    amount_cents: int,
    entry_type: str,
    actor_user_id: int,
    reason: str | None = None,
    receipt_id: int | None = None,
) -> CashLedgerEntry:
    """
    Apply a signed amount to an open session and log the ledger entry.

    Flushes only; the caller owns the commit.
    """
    if session.status != SESSION_OPEN:
        raise ShiftError(f"Register session {session.id} is not open")
    if amount_cents == 0:
        raise ValidationError("Posting amount cannot be zero")

    balance_before = session.current_cash_cents
    session.current_cash_cents = balance_before + amount_cents

    entry = CashLedgerEntry(
        register_session_id=session.id,
        entry_type=entry_type,
        amount_cents=amount_cents,
        balance_before_cents=balance_before,
        balance_after_cents=session.current_cash_cents,
        receipt_id=receipt_id,
        reason=reason,
        created_by_user_id=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


# =============================================================================
# REPORTING
# =============================================================================

def get_session_entries(session_id: int) -> list[CashLedgerEntry]:
    """Get all ledger entries for a session."""
    return db.session.query(CashLedgerEntry).filter_by(
        register_session_id=session_id
    ).order_by(CashLedgerEntry.id).all()


def get_session_summary(session_id: int) -> dict:
    """
    Session details plus totals per entry type.
    """
    session = db.session.get(RegisterSession, session_id)
    if not session:
        raise NotFoundError("Register session not found")

    totals: dict[str, int] = {}
    entries = get_session_entries(session_id)
    for entry in entries:
        totals[entry.entry_type] = totals.get(entry.entry_type, 0) + entry.amount_cents

    return {
        "session": session.to_dict(),
        "entries_count": len(entries),
        "totals_by_type": totals,
        "is_closed": session.status == SESSION_CLOSED,
    }
