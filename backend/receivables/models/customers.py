from __future__ import annotations

from ..extensions import db
from receivables.time_utils import to_utc_z


class Customer(db.Model):
    """
    Counterparty with a running prepaid/overpaid balance.

    BALANCE RULE: current_balance_cents only grows by the unallocated
    (excess) part of a settlement. Amounts applied to invoices never
    touch it. A receipt void subtracts exactly the excess that receipt added.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Running credit balance in cents (excess payments not yet consumed)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "is_active": self.is_active,
            "current_balance_cents": self.current_balance_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
