# Overview: Routes received cash to exactly one float: a named money box or the actor's open register.

"""
Cash Flow Router

WHY: A receipt's cash has to land somewhere physical. The caller either
names a money box or, by default, the cash goes into the drawer session
the acting user currently has open.

TARGETS:
- MoneyBoxTarget(money_box_id): a named money box
- DefaultRegisterTarget(): the actor's OPEN register session

A target is resolved once from the request value; posting code matches on
the type and never re-parses ids or sentinels.

FAILURE MODEL:
- Unknown / inactive money box, or no open register for the actor,
  raises LedgerPostingError
- Posting runs in its own transaction, after the settlement committed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from ..extensions import db
from ..models import CashLedgerEntry
from ..validation import (
    ReceivablesError,
    LedgerPostingError,
    ValidationError,
    coerce_optional_id,
)
from .concurrency import run_with_retry
from . import money_box_service, register_service


logger = logging.getLogger(__name__)


# Request value meaning "the actor's default register"
DEFAULT_REGISTER_SENTINEL = "cash_box"

ENTRY_CUSTOMER_RECEIPT = "customer_receipt"
ENTRY_CUSTOMER_RECEIPT_REVERSAL = "customer_receipt_reversal"

# CashLedgerEntry.reason column width
LEDGER_REASON_MAX_LENGTH = 255


@dataclass(frozen=True)
class MoneyBoxTarget:
    money_box_id: int

    def describe(self) -> str:
        return f"money box {self.money_box_id}"


@dataclass(frozen=True)
class DefaultRegisterTarget:

    def describe(self) -> str:
        return "default register"


CashTarget = Union[MoneyBoxTarget, DefaultRegisterTarget]


def resolve_cash_target(money_box_id: Any) -> CashTarget:
    """
    Turn the raw money_box_id request value into a CashTarget.

    None, "" and "cash_box" select the default register. Anything else
    must be a positive integer id.

    Raises:
        ValidationError: If the value is not a usable id
    """
    if money_box_id is None:
        return DefaultRegisterTarget()
    if isinstance(money_box_id, str) and money_box_id.strip() in ("", DEFAULT_REGISTER_SENTINEL):
        return DefaultRegisterTarget()
    return MoneyBoxTarget(coerce_optional_id(money_box_id, "money_box_id"))


def target_for_receipt(receipt) -> CashTarget:
    """Target a stored receipt was (or should be) posted to."""
    if receipt.money_box_id is not None:
        return MoneyBoxTarget(receipt.money_box_id)
    return DefaultRegisterTarget()


class CashFlowRouter:
    """
    Posts cash movements for receipts.

    One instance can be shared; it holds no state. Tests substitute a
    failing router to exercise the post-commit failure path.
    """

    def post(
        self,
        target: CashTarget,
        amount_cents: int,
        reference_receipt_id: int | None,
        reason: str | None,
        actor_user_id: int,
        entry_type: str = ENTRY_CUSTOMER_RECEIPT,
    ) -> CashLedgerEntry:
        """
        Post a signed amount to exactly one target and commit.

        A receipt gets at most one entry per entry_type; posting again
        returns the existing entry. Reasons longer than the ledger column
        are truncated.

        Raises:
            LedgerPostingError: If the target cannot accept the posting
        """
        if amount_cents == 0:
            raise ValidationError("Posting amount cannot be zero")
        if reason:
            reason = reason[:LEDGER_REASON_MAX_LENGTH]

        def _op():
            if reference_receipt_id is not None:
                existing = db.session.query(CashLedgerEntry).filter_by(
                    receipt_id=reference_receipt_id,
                    entry_type=entry_type,
                ).first()
                if existing:
                    logger.info("Receipt %s already has a %s entry (%s)",
                                reference_receipt_id, entry_type, existing.id)
                    return existing

            if isinstance(target, MoneyBoxTarget):
                entry = self._post_to_money_box(target, amount_cents, reference_receipt_id,
                                                reason, actor_user_id, entry_type)
            elif isinstance(target, DefaultRegisterTarget):
                entry = self._post_to_register(amount_cents, reference_receipt_id,
                                               reason, actor_user_id, entry_type)
            else:
                raise LedgerPostingError(f"Unsupported cash target: {target!r}")

            db.session.commit()
            return entry

        try:
            entry = run_with_retry(_op)
        except LedgerPostingError:
            raise
        except ReceivablesError as exc:
            raise LedgerPostingError(f"Cash posting to {target.describe()} failed: {exc}") from exc

        logger.info("Posted %d cents to %s (entry %s, receipt %s)",
                    amount_cents, target.describe(), entry.id, reference_receipt_id)
        return entry

    def _post_to_money_box(self, target, amount_cents, receipt_id, reason, actor_user_id, entry_type):
        try:
            box = money_box_service.get_money_box(target.money_box_id, lock=True)
        except ReceivablesError as exc:
            raise LedgerPostingError(f"Money box {target.money_box_id} not found") from exc
        if not box.is_active:
            raise LedgerPostingError(f"Money box '{box.name}' is inactive")

        return money_box_service.post_to_money_box(
            box,
            amount_cents=amount_cents,
            entry_type=entry_type,
            actor_user_id=actor_user_id,
            reason=reason,
            receipt_id=receipt_id,
        )

    def _post_to_register(self, amount_cents, receipt_id, reason, actor_user_id, entry_type):
        session = register_service.get_open_session(actor_user_id, lock=True)
        if not session:
            raise LedgerPostingError(f"No open register session for user {actor_user_id}")

        return register_service.post_to_session(
            session,
            amount_cents=amount_cents,
            entry_type=entry_type,
            actor_user_id=actor_user_id,
            reason=reason,
            receipt_id=receipt_id,
        )

    def reverse(self, receipt, actor_user_id: int, reason: str | None = None) -> CashLedgerEntry:
        """
        Take a voided receipt's cash back out of its original target.

        Register receipts are reversed from the voiding actor's open session.
        """
        return self.post(
            target_for_receipt(receipt),
            -receipt.amount_cents,
            receipt.id,
            reason or f"Receipt {receipt.receipt_number} voided",
            actor_user_id,
            entry_type=ENTRY_CUSTOMER_RECEIPT_REVERSAL,
        )
