from __future__ import annotations

from ..extensions import db
from receivables.time_utils import to_utc_z, to_iso_date


RECEIPT_STATUS_ACTIVE = "ACTIVE"
RECEIPT_STATUS_VOIDED = "VOIDED"

CASH_POSTING_PENDING = "PENDING"
CASH_POSTING_POSTED = "POSTED"
CASH_POSTING_FAILED = "FAILED"
CASH_POSTING_REVERSED = "REVERSED"


class CustomerReceipt(db.Model):
    """
    Immutable record of one payment event.

    amount_cents is the full amount received, not the allocated portion.
    sale_id is the invoice that triggered the payment (nullable); the full
    list of invoices paid lives in customer_receipt_allocations.

    IMMUTABLE: financial fields are never updated. A mistaken receipt is
    voided (status VOIDED) which reverses its allocations; the row stays.
    """
    __tablename__ = "customer_receipts"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_customer_receipts_number"),
        db.CheckConstraint("amount_cents > 0", name="ck_customer_receipts_amount_positive"),
        db.CheckConstraint("excess_amount_cents >= 0", name="ck_customer_receipts_excess_non_negative"),
        db.Index("ix_customer_receipts_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    receipt_date = db.Column(db.Date, nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    # Portion credited to the customer's running balance
    excess_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Requested cash destination (NULL = actor's default register). Not a
    # foreign key: an unknown box still commits, with a FAILED posting.
    money_box_id = db.Column(db.Integer, nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=RECEIPT_STATUS_ACTIVE, index=True)
    cash_posting_status = db.Column(db.String(16), nullable=False, default=CASH_POSTING_PENDING, index=True)
    cash_posting_error = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Void audit trail
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("receipts", lazy=True))
    sale = db.relationship("Sale")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "receipt_date": to_iso_date(self.receipt_date),
            "amount_cents": self.amount_cents,
            "excess_amount_cents": self.excess_amount_cents,
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "money_box_id": self.money_box_id,
            "status": self.status,
            "cash_posting_status": self.cash_posting_status,
            "cash_posting_error": self.cash_posting_error,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "voided_by_user_id": self.voided_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }


class ReceiptAllocation(db.Model):
    """
    One invoice touched by a receipt, in settlement order.

    sum(amount_cents) + receipt.excess_amount_cents == receipt.amount_cents
    """
    __tablename__ = "customer_receipt_allocations"
    __table_args__ = (
        db.UniqueConstraint("receipt_id", "sale_id", name="uq_receipt_allocations_receipt_sale"),
        db.CheckConstraint("amount_cents > 0", name="ck_receipt_allocations_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("customer_receipts.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    sequence = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    receipt = db.relationship(
        "CustomerReceipt",
        backref=db.backref("allocations", lazy=True, order_by="ReceiptAllocation.sequence"),
    )
    sale = db.relationship("Sale")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "sale_id": self.sale_id,
            "sequence": self.sequence,
            "amount_cents": self.amount_cents,
        }
