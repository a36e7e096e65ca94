from __future__ import annotations

from ..extensions import db
from receivables.time_utils import to_utc_z, to_iso_date


PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"


class Sale(db.Model):
    """
    Invoice owed by a customer.

    Sales are recorded elsewhere; this service only moves paid_amount_cents
    forward (settlement) or back (receipt void).

    INVARIANTS:
    - 0 <= paid_amount_cents <= total_amount_cents
    - payment_status is derived from paid vs total, never set independently
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("invoice_no", name="uq_sales_invoice_no"),
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_sales_paid_non_negative"),
        db.CheckConstraint("paid_amount_cents <= total_amount_cents", name="ck_sales_paid_le_total"),
        # Settlement candidate scan: customer's open invoices by due date
        db.Index("ix_sales_customer_status_due", "customer_id", "payment_status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Human-readable invoice number (e.g., "INV-000123")
    invoice_no = db.Column(db.String(64), nullable=False)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID, index=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_amount_cents(self) -> int:
        return self.total_amount_cents - (self.paid_amount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "invoice_no": self.invoice_no,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class DebtRecord(db.Model):
    """
    Materialized "still owed" view of one invoice.

    LIFECYCLE:
    - Exists iff the invoice's remaining balance > 0
    - Deleted when settlement makes the invoice fully paid
    - Recreated when a receipt void reopens a paid invoice
    - amount_cents always equals total_amount_cents - paid_amount_cents
    """
    __tablename__ = "debts"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_debts_sale"),
        db.CheckConstraint("amount_cents > 0", name="ck_debts_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID)  # unpaid, partial

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("debt", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
