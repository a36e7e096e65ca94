# Overview: Credit sales and the read-side debt views (stats, per-customer debts, financial summary).

"""
Debt Service

WHY: Collectors need to see who owes what. These aggregates are read far
more often than settlements happen, so they are cached and rely on
CacheCoordinator.invalidate() after every settlement or void.

record_credit_sale() is the only writer here: it creates the invoice and
its DebtRecord together so the DebtRecord invariant holds from the start.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from ..extensions import db
from ..models import Customer, Sale, DebtRecord, CustomerReceipt
from ..models.sales import PAYMENT_STATUS_UNPAID, PAYMENT_STATUS_PARTIAL, PAYMENT_STATUS_PAID
from ..models.receipts import RECEIPT_STATUS_ACTIVE
from receivables.time_utils import today
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    coerce_amount_cents,
    coerce_optional_date,
    coerce_optional_str,
)
from .cache_service import CacheCoordinator, customer_key, stats_key, get_cache_coordinator
from .concurrency import run_with_retry
from .settlement_engine import payment_status_for


logger = logging.getLogger(__name__)


def _coordinator(cache: CacheCoordinator | None) -> CacheCoordinator:
    return cache if cache is not None else get_cache_coordinator()


# =============================================================================
# WRITES
# =============================================================================

def record_credit_sale(
    customer_id: int,
    invoice_no: str,
    total_amount_cents: Any,
    invoice_date: Any = None,
    due_date: Any = None,
    paid_amount_cents: int = 0,
    notes: str | None = None,
    cache: CacheCoordinator | None = None,
) -> Sale:
    """
    Record an invoice sold on credit, with its DebtRecord.

    Args:
        customer_id: Customer owing the invoice
        invoice_no: Unique invoice reference
        total_amount_cents: Invoice total (in cents, > 0)
        invoice_date: Business date (defaults to today)
        due_date: Optional due date (undated invoices settle last)
        paid_amount_cents: Amount paid at the counter (0 <= paid <= total)

    Raises:
        ValidationError: Bad amounts or invoice number
        NotFoundError: If customer not found
        ConflictError: If invoice_no already exists
    """
    total = coerce_amount_cents(total_amount_cents, "total_amount_cents")
    invoice_no = coerce_optional_str(invoice_no, "invoice_no", 64)
    if not invoice_no:
        raise ValidationError("invoice_no is required")
    if paid_amount_cents < 0 or paid_amount_cents > total:
        raise ValidationError("paid_amount_cents must be between 0 and total_amount_cents")
    invoice_date = coerce_optional_date(invoice_date, "invoice_date") or today()
    due_date = coerce_optional_date(due_date, "due_date")

    def _op():
        customer = db.session.get(Customer, customer_id)
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")
        if db.session.query(Sale.id).filter_by(invoice_no=invoice_no).first():
            raise ConflictError(f"Invoice {invoice_no} already exists")

        sale = Sale(
            customer_id=customer_id,
            invoice_no=invoice_no,
            invoice_date=invoice_date,
            due_date=due_date,
            total_amount_cents=total,
            paid_amount_cents=paid_amount_cents,
            payment_status=payment_status_for(paid_amount_cents, total),
            notes=notes,
        )
        db.session.add(sale)
        db.session.flush()

        if sale.remaining_amount_cents > 0:
            db.session.add(DebtRecord(
                sale_id=sale.id,
                customer_id=customer_id,
                amount_cents=sale.remaining_amount_cents,
                status=sale.payment_status,
            ))

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info("Credit sale %s recorded for customer %s: %d cents", sale.invoice_no, customer_id, total)
    _coordinator(cache).invalidate_quietly(customer_id)
    return sale


# =============================================================================
# CACHED READS
# =============================================================================

def get_debt_stats(customer_id: int | None = None, cache: CacheCoordinator | None = None) -> dict:
    """
    Outstanding debt totals, globally or for one customer.

    Returns:
        {
            "customer_id": ...,
            "total_debts": count of DebtRecords,
            "total_outstanding_cents": sum of DebtRecord amounts,
            "unpaid_count", "partial_count",
            "overdue_count", "overdue_cents": open invoices past due_date
        }
    """
    def _compute() -> dict:
        query = db.session.query(
            DebtRecord.status,
            db.func.count(DebtRecord.id),
            db.func.coalesce(db.func.sum(DebtRecord.amount_cents), 0),
        )
        if customer_id is not None:
            query = query.filter(DebtRecord.customer_id == customer_id)
        by_status = {status: (int(count), int(total)) for status, count, total in query.group_by(DebtRecord.status).all()}

        overdue_query = db.session.query(
            db.func.count(DebtRecord.id),
            db.func.coalesce(db.func.sum(DebtRecord.amount_cents), 0),
        ).join(Sale, Sale.id == DebtRecord.sale_id).filter(
            Sale.due_date.isnot(None),
            Sale.due_date < today(),
        )
        if customer_id is not None:
            overdue_query = overdue_query.filter(DebtRecord.customer_id == customer_id)
        overdue_count, overdue_cents = overdue_query.one()

        return {
            "customer_id": customer_id,
            "total_debts": sum(c for c, _ in by_status.values()),
            "total_outstanding_cents": sum(t for _, t in by_status.values()),
            "unpaid_count": by_status.get(PAYMENT_STATUS_UNPAID, (0, 0))[0],
            "partial_count": by_status.get(PAYMENT_STATUS_PARTIAL, (0, 0))[0],
            "overdue_count": int(overdue_count),
            "overdue_cents": int(overdue_cents),
        }

    if customer_id is None:
        key = stats_key("debts")
    else:
        key = customer_key("debts", customer_id, "stats")
    return _coordinator(cache).cache.get_or_set(key, _compute)


def get_customer_debts(customer_id: int, cache: CacheCoordinator | None = None) -> list[dict]:
    """
    A customer's open invoices in settlement order (due date, undated last).
    """
    if not db.session.get(Customer, customer_id):
        raise NotFoundError(f"Customer {customer_id} not found")

    def _compute() -> list[dict]:
        rows = db.session.query(DebtRecord, Sale).join(
            Sale, Sale.id == DebtRecord.sale_id
        ).filter(
            DebtRecord.customer_id == customer_id,
        ).order_by(
            Sale.due_date.is_(None),
            Sale.due_date,
            Sale.id,
        ).all()
        return [
            {
                **debt.to_dict(),
                "invoice_no": sale.invoice_no,
                "invoice_date": sale.invoice_date.isoformat() if sale.invoice_date else None,
                "due_date": sale.due_date.isoformat() if sale.due_date else None,
                "total_amount_cents": sale.total_amount_cents,
                "paid_amount_cents": sale.paid_amount_cents,
                "is_overdue": bool(sale.due_date and sale.due_date < today()),
            }
            for debt, sale in rows
        ]

    return _coordinator(cache).cache.get_or_set(customer_key("debts", customer_id), _compute)


def get_customer_financial_summary(customer_id: int, cache: CacheCoordinator | None = None) -> dict:
    """
    Everything a collector needs about one customer in a single call.

    net_position_cents = outstanding debt - credit balance (positive means
    the customer still owes money).
    """
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")

    def _compute() -> dict:
        sales_row = db.session.query(
            db.func.count(Sale.id),
            db.func.coalesce(db.func.sum(Sale.total_amount_cents), 0),
            db.func.coalesce(db.func.sum(Sale.paid_amount_cents), 0),
        ).filter(Sale.customer_id == customer_id).one()

        paid_invoices = db.session.query(db.func.count(Sale.id)).filter(
            Sale.customer_id == customer_id,
            Sale.payment_status == PAYMENT_STATUS_PAID,
        ).scalar()

        receipts_row = db.session.query(
            db.func.count(CustomerReceipt.id),
            db.func.coalesce(db.func.sum(CustomerReceipt.amount_cents), 0),
            db.func.max(CustomerReceipt.receipt_date),
        ).filter(
            CustomerReceipt.customer_id == customer_id,
            CustomerReceipt.status == RECEIPT_STATUS_ACTIVE,
        ).one()

        invoice_count, total_sales, total_paid = sales_row
        receipts_count, total_received, last_receipt = receipts_row
        outstanding = int(total_sales) - int(total_paid)
        balance = customer.current_balance_cents or 0

        return {
            "customer": customer.to_dict(),
            "invoices_count": int(invoice_count),
            "paid_invoices_count": int(paid_invoices or 0),
            "total_sales_cents": int(total_sales),
            "total_paid_cents": int(total_paid),
            "outstanding_cents": outstanding,
            "credit_balance_cents": balance,
            "net_position_cents": outstanding - balance,
            "receipts_count": int(receipts_count),
            "total_received_cents": int(total_received),
            "last_receipt_date": last_receipt.isoformat() if isinstance(last_receipt, date) else last_receipt,
            "debt_stats": get_debt_stats(customer_id, cache=cache),
        }

    return _coordinator(cache).cache.get_or_set(customer_key("customers", customer_id, "summary"), _compute)
