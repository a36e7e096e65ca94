"""
Tests for customer receipt settlement, void and update.

Covers the worked scenarios (partial, overpayment, due-date order,
rejected amounts, default register posting) plus the conservation,
monotonicity, status and debt-record properties.
"""

import re
from datetime import date

import pytest
from sqlalchemy import text

from receivables.models import Customer, Sale, DebtRecord, CustomerReceipt, ReceiptAllocation, CashLedgerEntry, MoneyBox, RegisterSession
from receivables.services import receipt_service, debt_service
from receivables.services.cash_flow_service import CashFlowRouter
from receivables.services.receipt_service import ReceiptUpdate
from receivables.validation import ValidationError, NotFoundError, ConflictError, LedgerPostingError


def _debt_for(db_session, sale_id):
    return db_session.query(DebtRecord).filter_by(sale_id=sale_id).first()


class ExplodingRouter(CashFlowRouter):
    """Router whose store fails with a non-domain error."""

    def post(self, *args, **kwargs):
        raise RuntimeError("value too long for type character varying(255)")


@pytest.fixture
def foreign_keys_on(db_session):
    """Enforce foreign keys on the shared SQLite connection, as server databases do."""
    db_session.commit()
    db_session.execute(text("PRAGMA foreign_keys=ON"))
    assert db_session.execute(text("PRAGMA foreign_keys")).scalar() == 1
    yield
    db_session.rollback()
    db_session.execute(text("PRAGMA foreign_keys=OFF"))


# =============================================================================
# WORKED SCENARIOS
# =============================================================================

class TestSettleScenarios:
    def test_partial_payment_against_target(self, db_session, customer, cashier, open_register, make_sale, cache):
        sale = make_sale(customer, 100)

        result = receipt_service.settle(customer.id, 60, "cash", cashier.id, sale_id=sale.id, cache=cache)

        sale = db_session.get(Sale, sale.id)
        assert sale.paid_amount_cents == 60
        assert sale.payment_status == "partial"
        assert _debt_for(db_session, sale.id).amount_cents == 40
        assert _debt_for(db_session, sale.id).status == "partial"
        assert result.excess_amount_cents == 0
        assert result.applied_payments == [{"invoice_id": sale.id, "amount": 60, "invoice_reference": sale.invoice_no}]

    def test_overpayment_credits_customer_balance(self, db_session, customer, cashier, open_register, make_sale, cache):
        sale = make_sale(customer, 100)

        result = receipt_service.settle(customer.id, 150, "cash", cashier.id, sale_id=sale.id, cache=cache)

        sale = db_session.get(Sale, sale.id)
        assert sale.paid_amount_cents == 100
        assert sale.payment_status == "paid"
        assert _debt_for(db_session, sale.id) is None
        assert result.excess_amount_cents == 50
        assert db_session.get(Customer, customer.id).current_balance_cents == 50
        assert result.receipt.amount_cents == 150
        assert result.receipt.excess_amount_cents == 50

    def test_earliest_due_invoice_paid_first(self, db_session, customer, cashier, open_register, make_sale, cache):
        day1 = make_sale(customer, 30, due_date=date(2026, 2, 1))
        day5 = make_sale(customer, 70, due_date=date(2026, 2, 5))

        result = receipt_service.settle(customer.id, 50, "cash", cashier.id, cache=cache)

        assert [(p["invoice_id"], p["amount"]) for p in result.applied_payments] == [(day1.id, 30), (day5.id, 20)]
        assert result.excess_amount_cents == 0
        assert db_session.get(Sale, day1.id).payment_status == "paid"
        assert db_session.get(Sale, day5.id).paid_amount_cents == 20
        assert _debt_for(db_session, day1.id) is None
        assert _debt_for(db_session, day5.id).amount_cents == 50

    @pytest.mark.parametrize("amount", [0, -10])
    def test_non_positive_amount_rejected_without_writes(self, db_session, customer, cashier, make_sale, cache, amount):
        sale = make_sale(customer, 100)

        with pytest.raises(ValidationError):
            receipt_service.settle(customer.id, amount, "cash", cashier.id, sale_id=sale.id, cache=cache)

        assert db_session.query(CustomerReceipt).count() == 0
        assert db_session.get(Sale, sale.id).paid_amount_cents == 0
        assert db_session.get(Customer, customer.id).current_balance_cents == 0

    def test_default_register_receives_cash(self, db_session, customer, cashier, open_register, cache):
        before = db_session.get(RegisterSession, open_register.id).current_cash_cents

        result = receipt_service.settle(customer.id, 40, "cash", cashier.id, cache=cache)

        session = db_session.get(RegisterSession, open_register.id)
        assert session.current_cash_cents == before + 40
        assert result.excess_amount_cents == 40
        assert result.receipt.cash_posting_status == "POSTED"
        assert result.cash_entry.register_session_id == open_register.id
        assert db_session.query(CashLedgerEntry).filter(CashLedgerEntry.money_box_id.isnot(None)).count() == 0


# =============================================================================
# PROPERTIES
# =============================================================================

class TestSettleProperties:
    def test_allocations_plus_excess_equal_receipt_amount(self, db_session, customer, cashier, open_register, make_sale, cache):
        make_sale(customer, 1234, due_date=date(2026, 3, 1))
        make_sale(customer, 999, paid_cents=100, due_date=date(2026, 1, 1))
        make_sale(customer, 500)

        for amount in (250, 1999, 777):
            result = receipt_service.settle(customer.id, amount, "cash", cashier.id, cache=cache)
            rows = db_session.query(ReceiptAllocation).filter_by(receipt_id=result.receipt.id).all()
            assert sum(r.amount_cents for r in rows) + result.receipt.excess_amount_cents == amount
            assert sum(p["amount"] for p in result.applied_payments) + result.excess_amount_cents == amount
            assert [r.sequence for r in sorted(rows, key=lambda r: r.sequence)] == list(range(1, len(rows) + 1))

    def test_paid_never_decreases_and_balance_grows_by_excess(self, db_session, customer, cashier, open_register, make_sale, cache):
        sales = [make_sale(customer, total, due_date=date(2026, 1, i + 1)) for i, total in enumerate((300, 200, 100))]

        for amount in (150, 150, 150, 150):
            paid_before = {s.id: db_session.get(Sale, s.id).paid_amount_cents for s in sales}
            balance_before = db_session.get(Customer, customer.id).current_balance_cents

            result = receipt_service.settle(customer.id, amount, "cash", cashier.id, cache=cache)

            for s in sales:
                assert db_session.get(Sale, s.id).paid_amount_cents >= paid_before[s.id]
            assert db_session.get(Customer, customer.id).current_balance_cents == balance_before + result.excess_amount_cents

        assert db_session.get(Customer, customer.id).current_balance_cents == 0
        assert all(db_session.get(Sale, s.id).payment_status == "paid" for s in sales)

    def test_status_and_debt_record_track_remaining(self, db_session, customer, cashier, open_register, make_sale, cache):
        sales = [make_sale(customer, 100, due_date=date(2026, 1, i + 1)) for i in range(3)]

        receipt_service.settle(customer.id, 150, "cash", cashier.id, cache=cache)

        for s in sales:
            sale = db_session.get(Sale, s.id)
            debt = _debt_for(db_session, s.id)
            if sale.paid_amount_cents == sale.total_amount_cents:
                assert sale.payment_status == "paid"
                assert debt is None
            elif sale.paid_amount_cents > 0:
                assert sale.payment_status == "partial"
                assert debt.amount_cents == sale.remaining_amount_cents
            else:
                assert sale.payment_status == "unpaid"
                assert debt.amount_cents == sale.total_amount_cents

    def test_other_customers_invoices_untouched(self, db_session, customer, other_customer, cashier, open_register, make_sale, cache):
        mine = make_sale(customer, 100)
        theirs = make_sale(other_customer, 100, due_date=date(2020, 1, 1))

        receipt_service.settle(customer.id, 500, "cash", cashier.id, cache=cache)

        assert db_session.get(Sale, mine.id).payment_status == "paid"
        assert db_session.get(Sale, theirs.id).paid_amount_cents == 0


# =============================================================================
# VALIDATION
# =============================================================================

class TestSettleValidation:
    def test_unknown_customer(self, db_session, cashier, cache):
        with pytest.raises(NotFoundError):
            receipt_service.settle(999, 100, "cash", cashier.id, cache=cache)

    def test_unknown_sale(self, db_session, customer, cashier, cache):
        with pytest.raises(NotFoundError):
            receipt_service.settle(customer.id, 100, "cash", cashier.id, sale_id=999, cache=cache)

    def test_sale_of_another_customer(self, db_session, customer, other_customer, cashier, make_sale, cache):
        theirs = make_sale(other_customer, 100)

        with pytest.raises(ValidationError):
            receipt_service.settle(customer.id, 100, "cash", cashier.id, sale_id=theirs.id, cache=cache)

        assert db_session.query(CustomerReceipt).count() == 0

    def test_invalid_payment_method(self, db_session, customer, cashier, cache):
        with pytest.raises(ValidationError):
            receipt_service.settle(customer.id, 100, "bitcoin", cashier.id, cache=cache)

    @pytest.mark.parametrize("money_box_id", ["abc", -3, 0, 1.5])
    def test_invalid_money_box_value(self, db_session, customer, cashier, cache, money_box_id):
        with pytest.raises(ValidationError):
            receipt_service.settle(customer.id, 100, "cash", cashier.id, money_box_id=money_box_id, cache=cache)

    def test_unknown_actor(self, db_session, customer, cache):
        with pytest.raises(NotFoundError):
            receipt_service.settle(customer.id, 100, "cash", 4242, cache=cache)


# =============================================================================
# RECEIPT NUMBERS
# =============================================================================

class TestReceiptNumbers:
    def test_format(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, receipt_date="2026-03-04", cache=cache)

        assert re.fullmatch(r"CR-20260304-[A-Z0-9]{6}", result.receipt.receipt_number)
        assert result.receipt.receipt_date == date(2026, 3, 4)

    def test_collision_exhaustion_raises_conflict(self, db_session, customer, cashier, open_register, make_sale, cache, monkeypatch):
        sale = make_sale(customer, 1000)
        monkeypatch.setattr(receipt_service, "_random_suffix", lambda: "AAAAAA")

        receipt_service.settle(customer.id, 100, "cash", cashier.id, sale_id=sale.id, cache=cache)
        with pytest.raises(ConflictError):
            receipt_service.settle(customer.id, 100, "cash", cashier.id, sale_id=sale.id, cache=cache)

        assert db_session.query(CustomerReceipt).count() == 1
        assert db_session.get(Sale, sale.id).paid_amount_cents == 100

    def test_lookup_by_number(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)

        found = receipt_service.get_receipt_by_number(result.receipt.receipt_number)
        assert found.id == result.receipt.id

        with pytest.raises(NotFoundError):
            receipt_service.get_receipt_by_number("CR-19700101-ZZZZZZ")


# =============================================================================
# CASH POSTING
# =============================================================================

class TestCashPosting:
    def test_money_box_target(self, db_session, customer, cashier, open_register, money_box, cache):
        result = receipt_service.settle(customer.id, 700, "cash", cashier.id, money_box_id=money_box.id, cache=cache)

        assert db_session.get(MoneyBox, money_box.id).balance_cents == 5700
        assert db_session.get(RegisterSession, open_register.id).current_cash_cents == 10000
        assert result.receipt.money_box_id == money_box.id
        assert result.cash_entry.money_box_id == money_box.id
        assert result.cash_entry.register_session_id is None

    def test_sentinel_selects_default_register(self, db_session, customer, cashier, open_register, money_box, cache):
        receipt_service.settle(customer.id, 300, "cash", cashier.id, money_box_id="cash_box", cache=cache)

        assert db_session.get(RegisterSession, open_register.id).current_cash_cents == 10300
        assert db_session.get(MoneyBox, money_box.id).balance_cents == 5000

    def test_no_open_register_keeps_settlement_and_flags_failure(self, db_session, customer, cashier, make_sale, cache):
        sale = make_sale(customer, 100)

        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, sale_id=sale.id, cache=cache)

        assert isinstance(result.cash_posting_error, LedgerPostingError)
        assert result.cash_entry is None
        assert result.receipt.cash_posting_status == "FAILED"
        assert result.to_dict()["cashPosting"]["status"] == "FAILED"
        assert db_session.get(Sale, sale.id).payment_status == "paid"
        assert db_session.query(CashLedgerEntry).count() == 0

    def test_unknown_money_box_flags_failure(self, db_session, customer, cashier, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, money_box_id=999, cache=cache)

        assert isinstance(result.cash_posting_error, LedgerPostingError)
        assert db_session.get(CustomerReceipt, result.receipt.id).cash_posting_status == "FAILED"

    def test_unknown_money_box_commits_with_foreign_keys_enforced(self, db_session, customer, cashier, make_sale, cache, foreign_keys_on):
        sale = make_sale(customer, 100)

        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, money_box_id=999, cache=cache)

        assert isinstance(result.cash_posting_error, LedgerPostingError)
        receipt = db_session.get(CustomerReceipt, result.receipt.id)
        assert receipt.money_box_id == 999
        assert receipt.cash_posting_status == "FAILED"
        assert db_session.get(Sale, sale.id).payment_status == "paid"
        assert db_session.query(CashLedgerEntry).count() == 0

    def test_unexpected_router_error_still_reports_committed_settlement(self, db_session, customer, cashier, make_sale, cache):
        sale = make_sale(customer, 100)

        result = receipt_service.settle(customer.id, 150, "cash", cashier.id, cache=cache, router=ExplodingRouter())

        assert isinstance(result.cash_posting_error, LedgerPostingError)
        assert "value too long" in str(result.cash_posting_error)
        assert result.to_dict()["cashPosting"]["status"] == "FAILED"
        receipt = db_session.get(CustomerReceipt, result.receipt.id)
        assert receipt.cash_posting_status == "FAILED"
        assert "value too long" in receipt.cash_posting_error
        assert db_session.get(Sale, sale.id).payment_status == "paid"
        assert db_session.get(Customer, customer.id).current_balance_cents == 50

    def test_retry_after_opening_register(self, db_session, customer, cashier, cache):
        from receivables.services import register_service

        result = receipt_service.settle(customer.id, 250, "cash", cashier.id, cache=cache)
        assert result.receipt.cash_posting_status == "FAILED"

        session = register_service.open_register(cashier.id, 0)
        entry = receipt_service.retry_cash_posting(result.receipt.id, cashier.id)

        assert entry.register_session_id == session.id
        assert db_session.get(RegisterSession, session.id).current_cash_cents == 250
        assert db_session.get(CustomerReceipt, result.receipt.id).cash_posting_status == "POSTED"

        with pytest.raises(ConflictError):
            receipt_service.retry_cash_posting(result.receipt.id, cashier.id)


# =============================================================================
# CACHE COHERENCE
# =============================================================================

class TestCacheCoherence:
    def test_stats_refresh_after_settlement(self, db_session, customer, cashier, open_register, make_sale, cache):
        make_sale(customer, 100)
        before = debt_service.get_debt_stats(cache=cache)
        customer_before = debt_service.get_debt_stats(customer.id, cache=cache)
        assert before["total_outstanding_cents"] == 100
        assert customer_before["total_debts"] == 1

        receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)

        assert debt_service.get_debt_stats(cache=cache)["total_outstanding_cents"] == 0
        assert debt_service.get_debt_stats(customer.id, cache=cache)["total_debts"] == 0


# =============================================================================
# VOID
# =============================================================================

class TestVoidReceipt:
    def test_void_reverses_everything(self, db_session, customer, cashier, open_register, make_sale, cache):
        sale = make_sale(customer, 100)
        result = receipt_service.settle(customer.id, 150, "cash", cashier.id, sale_id=sale.id, cache=cache)

        voided = receipt_service.void_receipt(result.receipt.id, cashier.id, "Wrong customer", cache=cache)

        assert voided.status == "VOIDED"
        assert voided.void_reason == "Wrong customer"
        assert voided.cash_posting_status == "REVERSED"
        sale = db_session.get(Sale, sale.id)
        assert sale.paid_amount_cents == 0
        assert sale.payment_status == "unpaid"
        assert _debt_for(db_session, sale.id).amount_cents == 100
        assert db_session.get(Customer, customer.id).current_balance_cents == 0
        assert db_session.get(RegisterSession, open_register.id).current_cash_cents == 10000

        entries = db_session.query(CashLedgerEntry).filter_by(receipt_id=result.receipt.id).order_by(CashLedgerEntry.id).all()
        assert [(e.entry_type, e.amount_cents) for e in entries] == [
            ("customer_receipt", 150),
            ("customer_receipt_reversal", -150),
        ]

    def test_void_twice_conflicts(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)
        receipt_service.void_receipt(result.receipt.id, cashier.id, "Duplicate", cache=cache)

        with pytest.raises(ConflictError):
            receipt_service.void_receipt(result.receipt.id, cashier.id, "Duplicate", cache=cache)

    def test_void_requires_reason(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)

        with pytest.raises(ValidationError):
            receipt_service.void_receipt(result.receipt.id, cashier.id, "  ", cache=cache)

    def test_void_blocked_when_excess_already_consumed(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)
        c = db_session.get(Customer, customer.id)
        c.current_balance_cents = 30
        db_session.commit()

        with pytest.raises(ValidationError):
            receipt_service.void_receipt(result.receipt.id, cashier.id, "Mistake", cache=cache)

        assert db_session.get(CustomerReceipt, result.receipt.id).status == "ACTIVE"
        assert db_session.get(Customer, customer.id).current_balance_cents == 30

    def test_longest_reason_fits_reversal_entry(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)

        voided = receipt_service.void_receipt(result.receipt.id, cashier.id, "x" * 255, cache=cache)

        assert voided.cash_posting_status == "REVERSED"
        reversal = db_session.query(CashLedgerEntry).filter_by(
            receipt_id=result.receipt.id, entry_type="customer_receipt_reversal"
        ).one()
        assert len(reversal.reason) <= 255
        assert reversal.reason.startswith(f"Receipt {voided.receipt_number} voided: x")

    def test_unexpected_reversal_error_keeps_void(self, db_session, customer, cashier, open_register, make_sale, cache):
        sale = make_sale(customer, 100)
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)

        class ExplodingReverse(CashFlowRouter):
            def reverse(self, *args, **kwargs):
                raise RuntimeError("connection reset")

        voided = receipt_service.void_receipt(result.receipt.id, cashier.id, "Mistake", cache=cache, router=ExplodingReverse())

        receipt = db_session.get(CustomerReceipt, voided.id)
        assert receipt.status == "VOIDED"
        assert receipt.cash_posting_status == "POSTED"
        assert receipt.cash_posting_error.startswith("Reversal failed")
        assert db_session.get(Sale, sale.id).paid_amount_cents == 0

    def test_void_of_failed_posting_has_no_cash_reversal(self, db_session, customer, cashier, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)

        voided = receipt_service.void_receipt(result.receipt.id, cashier.id, "Mistake", cache=cache)

        assert voided.cash_posting_status == "FAILED"
        assert db_session.query(CashLedgerEntry).count() == 0


# =============================================================================
# UPDATE
# =============================================================================

class TestUpdateReceipt:
    def test_unset_fields_keep_values(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(
            customer.id, 100, "card", cashier.id, reference_number="AUTH-1", notes="first", cache=cache,
        )

        updated = receipt_service.update_receipt(result.receipt.id, ReceiptUpdate(notes="second"))

        assert updated.notes == "second"
        assert updated.reference_number == "AUTH-1"
        assert updated.payment_method == "card"

    def test_explicit_none_clears_nullable_field(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "card", cashier.id, reference_number="AUTH-1", cache=cache)

        updated = receipt_service.update_receipt(result.receipt.id, ReceiptUpdate(reference_number=None))

        assert updated.reference_number is None

    def test_dict_payload(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)

        updated = receipt_service.update_receipt(
            result.receipt.id, {"receipt_date": "2026-05-06", "payment_method": "Bank_Transfer"},
        )

        assert updated.receipt_date == date(2026, 5, 6)
        assert updated.payment_method == "bank_transfer"
        assert updated.amount_cents == 100

    @pytest.mark.parametrize("payload", [
        {"amount_cents": 500},
        {"customer_id": 2},
        {"payment_method": "barter"},
        {"receipt_date": None},
        {"status": "VOIDED"},
    ])
    def test_rejected_changes(self, db_session, customer, cashier, open_register, cache, payload):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)

        with pytest.raises(ValidationError):
            receipt_service.update_receipt(result.receipt.id, payload)

    def test_voided_receipt_cannot_be_updated(self, db_session, customer, cashier, open_register, cache):
        result = receipt_service.settle(customer.id, 100, "cash", cashier.id, cache=cache)
        receipt_service.void_receipt(result.receipt.id, cashier.id, "Mistake", cache=cache)

        with pytest.raises(ConflictError):
            receipt_service.update_receipt(result.receipt.id, ReceiptUpdate(notes="late"))


def test_customer_receipt_summary(db_session, customer, cashier, open_register, cache):
    receipt_service.settle(customer.id, 100, "cash", cashier.id, receipt_date="2026-04-01", cache=cache)
    second = receipt_service.settle(customer.id, 50, "cash", cashier.id, receipt_date="2026-04-02", cache=cache)
    receipt_service.void_receipt(second.receipt.id, cashier.id, "Mistake", cache=cache)

    summary = receipt_service.get_customer_receipt_summary(customer.id, cache=cache)

    assert summary["receipts_count"] == 1
    assert summary["total_received_cents"] == 100
    assert summary["total_excess_cents"] == 100
    assert summary["last_receipt_date"] == "2026-04-01"
