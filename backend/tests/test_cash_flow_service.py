"""
Tests for cash target resolution and the cash flow router.
"""

import pytest

from receivables.models import CashLedgerEntry, MoneyBox, RegisterSession
from receivables.services.cash_flow_service import (
    CashFlowRouter,
    DefaultRegisterTarget,
    MoneyBoxTarget,
    resolve_cash_target,
)
from receivables.services import register_service
from receivables.validation import LedgerPostingError, ValidationError


class TestResolveCashTarget:
    @pytest.mark.parametrize("raw", [None, "", "  ", "cash_box"])
    def test_default_register_values(self, raw):
        assert resolve_cash_target(raw) == DefaultRegisterTarget()

    @pytest.mark.parametrize("raw, expected", [(3, 3), ("12", 12), (" 7 ", 7)])
    def test_money_box_ids(self, raw, expected):
        assert resolve_cash_target(raw) == MoneyBoxTarget(expected)

    @pytest.mark.parametrize("raw", ["safe", 0, -1, 2.5, "1e3", True])
    def test_invalid_values(self, raw):
        with pytest.raises(ValidationError):
            resolve_cash_target(raw)


class TestCashFlowRouter:
    def test_posts_to_money_box_only(self, db_session, cashier, money_box, open_register):
        entry = CashFlowRouter().post(MoneyBoxTarget(money_box.id), 1200, None, "Float top-up", cashier.id, entry_type="deposit")

        assert entry.money_box_id == money_box.id
        assert entry.register_session_id is None
        assert entry.balance_before_cents == 5000
        assert entry.balance_after_cents == 6200
        assert db_session.get(MoneyBox, money_box.id).balance_cents == 6200
        assert db_session.get(RegisterSession, open_register.id).current_cash_cents == 10000

    def test_posts_to_actor_register(self, db_session, cashier, open_register):
        entry = CashFlowRouter().post(DefaultRegisterTarget(), 500, None, "Receipt", cashier.id)

        assert entry.register_session_id == open_register.id
        assert entry.money_box_id is None
        assert entry.target_kind == "register"
        assert db_session.get(RegisterSession, open_register.id).current_cash_cents == 10500

    def test_other_users_register_is_not_used(self, db_session, cashier, collector, open_register):
        with pytest.raises(LedgerPostingError):
            CashFlowRouter().post(DefaultRegisterTarget(), 500, None, "Receipt", collector.id)

        assert db_session.get(RegisterSession, open_register.id).current_cash_cents == 10000

    def test_closed_register_rejected(self, db_session, cashier, open_register):
        register_service.close_register(cashier.id, 10000)

        with pytest.raises(LedgerPostingError):
            CashFlowRouter().post(DefaultRegisterTarget(), 500, None, "Receipt", cashier.id)

    def test_unknown_money_box(self, db_session, cashier):
        with pytest.raises(LedgerPostingError):
            CashFlowRouter().post(MoneyBoxTarget(404), 500, None, "Receipt", cashier.id)

        assert db_session.query(CashLedgerEntry).count() == 0

    def test_inactive_money_box(self, db_session, cashier, money_box):
        box = db_session.get(MoneyBox, money_box.id)
        box.is_active = False
        db_session.commit()

        with pytest.raises(LedgerPostingError):
            CashFlowRouter().post(MoneyBoxTarget(money_box.id), 500, None, "Receipt", cashier.id)

        assert db_session.get(MoneyBox, money_box.id).balance_cents == 5000

    def test_negative_posting_cannot_overdraw_money_box(self, db_session, cashier, money_box):
        with pytest.raises(LedgerPostingError):
            CashFlowRouter().post(MoneyBoxTarget(money_box.id), -6000, None, "Reversal", cashier.id)

        assert db_session.get(MoneyBox, money_box.id).balance_cents == 5000

    def test_zero_amount_rejected(self, db_session, cashier, open_register):
        with pytest.raises(ValidationError):
            CashFlowRouter().post(DefaultRegisterTarget(), 0, None, "Nothing", cashier.id)
