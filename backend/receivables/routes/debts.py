# Overview: Flask API routes for debts; repayment against one invoice and cached debt views.

# backend/receivables/routes/debts.py
"""
Debt API Routes

WHY: Collectors look up what a customer owes and take repayments against a
specific invoice. Repayment is the same settlement as a receipt, with the
invoice forced as the target.
"""

from flask import Blueprint, request, jsonify

from ..services import debt_service
from ..validation import coerce_optional_id
from ..decorators import require_actor, json_errors
from .receipts import settle_from_payload, json_body


debts_bp = Blueprint("debts", __name__, url_prefix="/api/debts")


@debts_bp.post("/<int:sale_id>/repay")
@require_actor
@json_errors("Failed to repay debt")
def repay_debt_route(sale_id: int):
    """
    Pay against one invoice; any remainder flows to the customer's other
    open invoices, then to their balance.

    Request body: same as POST /api/customer-receipts (sale_id taken from URL).
    """
    result = settle_from_payload(json_body(), sale_id=sale_id)
    return jsonify(result.to_dict()), 201


@debts_bp.get("/stats")
@require_actor
@json_errors("Failed to load debt stats")
def debt_stats_route():
    """
    Query params:
    - customer_id: restrict to one customer (optional)
    """
    customer_id = coerce_optional_id(request.args.get("customer_id"), "customer_id")
    return jsonify(debt_service.get_debt_stats(customer_id)), 200


@debts_bp.get("/customers/<int:customer_id>")
@require_actor
@json_errors("Failed to load customer debts")
def customer_debts_route(customer_id: int):
    debts = debt_service.get_customer_debts(customer_id)
    return jsonify({"customer_id": customer_id, "debts": debts}), 200


@debts_bp.get("/customers/<int:customer_id>/summary")
@require_actor
@json_errors("Failed to load customer financial summary")
def customer_financial_summary_route(customer_id: int):
    return jsonify(debt_service.get_customer_financial_summary(customer_id)), 200
