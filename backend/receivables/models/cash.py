from __future__ import annotations

from ..extensions import db
from receivables.time_utils import to_utc_z


class RegisterSession(db.Model):
    """
    Default register: the cash drawer session a user currently has open.

    LIFECYCLE:
    - OPEN: accepts postings (customer receipts, deposits)
    - CLOSED: counted, variance recorded, immutable

    At most one OPEN session per user (enforced in register_service).
    """
    __tablename__ = "register_sessions"
    __table_args__ = (
        db.Index("ix_register_sessions_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    current_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=True)  # closing - current

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("register_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "opening_cash_cents": self.opening_cash_cents,
            "current_cash_cents": self.current_cash_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "notes": self.notes,
            "version_id": self.version_id,
        }


class MoneyBox(db.Model):
    """
    Named cash float (safe, bank bag, daily box) distinct from any register.
    """
    __tablename__ = "money_boxes"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_money_boxes_name"),
        db.CheckConstraint("balance_cents >= 0", name="ck_money_boxes_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "balance_cents": self.balance_cents,
            "notes": self.notes,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CashLedgerEntry(db.Model):
    """
    Append-only posting against exactly one cash target.

    TARGET: money_box_id XOR register_session_id (CHECK constraint).

    ENTRY TYPES:
    - customer_receipt: money received for a customer receipt (one per receipt)
    - customer_receipt_reversal: receipt voided
    - opening / closing: register session open/close adjustments
    - deposit / withdrawal: manual money box movements
    - transfer_in / transfer_out: money box to money box

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "cash_ledger_entries"
    __table_args__ = (
        db.CheckConstraint(
            "(money_box_id IS NULL) <> (register_session_id IS NULL)",
            name="ck_cash_ledger_single_target",
        ),
        db.UniqueConstraint("receipt_id", "entry_type", name="uq_cash_ledger_receipt_entry_type"),
        db.Index("ix_cash_ledger_money_box_created", "money_box_id", "created_at"),
        db.Index("ix_cash_ledger_session_created", "register_session_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    money_box_id = db.Column(db.Integer, db.ForeignKey("money_boxes.id"), nullable=True)
    register_session_id = db.Column(db.Integer, db.ForeignKey("register_sessions.id"), nullable=True)

    entry_type = db.Column(db.String(32), nullable=False, index=True)

    # Signed: positive adds cash to the target, negative removes it
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_before_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    receipt_id = db.Column(db.Integer, db.ForeignKey("customer_receipts.id"), nullable=True, index=True)
    related_money_box_id = db.Column(db.Integer, db.ForeignKey("money_boxes.id"), nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def target_kind(self) -> str:
        return "money_box" if self.money_box_id is not None else "register"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "target": self.target_kind,
            "money_box_id": self.money_box_id,
            "register_session_id": self.register_session_id,
            "entry_type": self.entry_type,
            "amount_cents": self.amount_cents,
            "balance_before_cents": self.balance_before_cents,
            "balance_after_cents": self.balance_after_cents,
            "receipt_id": self.receipt_id,
            "related_money_box_id": self.related_money_box_id,
            "reason": self.reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
