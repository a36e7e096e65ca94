# Overview: Pure allocation of one customer payment across outstanding invoices.

"""
Settlement Engine

Given a payment amount, an optional target invoice and the customer's
outstanding invoices, produce an ordered allocation plan plus the excess
that no invoice could absorb.

ORDERING:
- The target invoice (if any) is always paid first, regardless of due date
- Then remaining open invoices by due_date ascending, undated invoices last
- Ties broken by invoice id ascending

GUARANTEES:
- sum(allocations) + excess == payment, exactly (integer cents)
- Deterministic: identical inputs always produce an identical plan
- Overpayment is never rejected; it becomes excess

allocate() does no I/O. load_candidates() is the only store adapter here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from ..extensions import db
from ..models import Sale
from ..models.sales import PAYMENT_STATUS_PAID, PAYMENT_STATUS_PARTIAL, PAYMENT_STATUS_UNPAID
from ..validation import ValidationError
from .concurrency import lock_for_update


@dataclass(frozen=True)
class InvoiceSnapshot:
    """Read-only view of an invoice at allocation time."""
    sale_id: int
    invoice_no: str
    total_amount_cents: int
    paid_amount_cents: int
    due_date: Optional[date] = None
    payment_status: str = PAYMENT_STATUS_UNPAID

    @property
    def remaining_cents(self) -> int:
        return self.total_amount_cents - self.paid_amount_cents

    @classmethod
    def from_sale(cls, sale: Sale) -> "InvoiceSnapshot":
        return cls(
            sale_id=sale.id,
            invoice_no=sale.invoice_no,
            total_amount_cents=sale.total_amount_cents,
            paid_amount_cents=sale.paid_amount_cents or 0,
            due_date=sale.due_date,
            payment_status=sale.payment_status,
        )


@dataclass(frozen=True)
class Allocation:
    sale_id: int
    invoice_no: str
    amount_cents: int
    remaining_before_cents: int

    @property
    def remaining_after_cents(self) -> int:
        return self.remaining_before_cents - self.amount_cents

    def to_dict(self) -> dict:
        return {
            "invoice_id": self.sale_id,
            "amount": self.amount_cents,
            "invoice_reference": self.invoice_no,
        }


@dataclass(frozen=True)
class AllocationPlan:
    payment_amount_cents: int
    allocations: tuple[Allocation, ...]
    excess_amount_cents: int

    @property
    def total_applied_cents(self) -> int:
        return sum(a.amount_cents for a in self.allocations)

    def to_dict(self) -> dict:
        return {
            "payment_amount_cents": self.payment_amount_cents,
            "allocations": [a.to_dict() for a in self.allocations],
            "excess_amount_cents": self.excess_amount_cents,
        }


def payment_status_for(paid_cents: int, total_cents: int) -> str:
    """
    Derive an invoice payment status.

    - paid: paid == total
    - partial: 0 < paid < total
    - unpaid: paid == 0
    """
    if paid_cents >= total_cents:
        return PAYMENT_STATUS_PAID
    if paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_UNPAID


def _is_open(invoice: InvoiceSnapshot) -> bool:
    return invoice.payment_status != PAYMENT_STATUS_PAID and invoice.remaining_cents > 0


def _settlement_order_key(invoice: InvoiceSnapshot) -> tuple:
    # Undated invoices sort after every dated one
    return (invoice.due_date is None, invoice.due_date or date.min, invoice.sale_id)


def allocate(
    payment_amount_cents: int,
    candidates: Iterable[InvoiceSnapshot],
    target: InvoiceSnapshot | None = None,
) -> AllocationPlan:
    """
    Build the allocation plan for one payment.

    Args:
        payment_amount_cents: Amount received (must be > 0)
        candidates: Customer's invoices; closed ones are ignored
        target: Invoice the payment was made against (paid first)

    Raises:
        ValidationError: If payment amount is not a positive integer
    """
    if isinstance(payment_amount_cents, bool) or not isinstance(payment_amount_cents, int):
        raise ValidationError("Payment amount must be an integer number of cents")
    if payment_amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than 0")

    unallocated = payment_amount_cents
    allocations: list[Allocation] = []

    if target is not None and _is_open(target):
        applied = min(unallocated, target.remaining_cents)
        allocations.append(Allocation(
            sale_id=target.sale_id,
            invoice_no=target.invoice_no,
            amount_cents=applied,
            remaining_before_cents=target.remaining_cents,
        ))
        unallocated -= applied

    target_id = target.sale_id if target is not None else None
    ordered = sorted(
        (c for c in candidates if c.sale_id != target_id and _is_open(c)),
        key=_settlement_order_key,
    )

    for invoice in ordered:
        if unallocated <= 0:
            break
        applied = min(unallocated, invoice.remaining_cents)
        allocations.append(Allocation(
            sale_id=invoice.sale_id,
            invoice_no=invoice.invoice_no,
            amount_cents=applied,
            remaining_before_cents=invoice.remaining_cents,
        ))
        unallocated -= applied

    return AllocationPlan(
        payment_amount_cents=payment_amount_cents,
        allocations=tuple(allocations),
        excess_amount_cents=unallocated,
    )


def load_candidates(customer_id: int, *, lock: bool = True) -> list[Sale]:
    """
    Fetch the customer's open invoices for settlement.

    Rows come back by id so locks are always taken in the same order;
    allocate() applies the due-date ordering. Rows are locked (FOR UPDATE)
    when lock=True so two settlements for the same customer serialize on them.
    """
    query = db.session.query(Sale).filter(
        Sale.customer_id == customer_id,
        Sale.payment_status != PAYMENT_STATUS_PAID,
        Sale.total_amount_cents > Sale.paid_amount_cents,
    ).order_by(Sale.id)
    if lock:
        query = lock_for_update(query)
    return query.all()
