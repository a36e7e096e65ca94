# Overview: Flask API routes for customer receipts; parses input and returns JSON responses.

# backend/receivables/routes/receipts.py
"""
Customer Receipt API Routes

WHY: Record customer payments against what they owe, and correct them.

DESIGN:
- POST settles a payment across invoices (target invoice first, then by due date)
- Cash posting failures do not fail the request: 201 with cashPosting.status FAILED
- DELETE voids (the receipt row is kept, its effects reversed)
- PATCH only touches non-financial fields
"""

from flask import Blueprint, request, jsonify, g

from ..services import receipt_service
from ..validation import ValidationError
from ..decorators import require_actor, json_errors


receipts_bp = Blueprint("customer_receipts", __name__, url_prefix="/api/customer-receipts")


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def settle_from_payload(data: dict, sale_id=None):
    """Shared by receipt creation and invoice repayment."""
    return receipt_service.settle(
        customer_id=data.get("customer_id"),
        amount_cents=data.get("amount_cents"),
        payment_method=data.get("payment_method") or "cash",
        actor_user_id=g.current_user.id,
        sale_id=sale_id if sale_id is not None else data.get("sale_id"),
        money_box_id=data.get("money_box_id"),
        reference_number=data.get("reference_number"),
        notes=data.get("notes"),
        receipt_date=data.get("receipt_date"),
    )


# =============================================================================
# SETTLEMENT
# =============================================================================

@receipts_bp.post("")
@receipts_bp.post("/")
@require_actor
@json_errors("Failed to create customer receipt")
def create_receipt_route():
    """
    Settle a customer payment.

    Request body:
    {
        "customer_id": 7,
        "amount_cents": 15000,
        "payment_method": "cash",        (cash, card, bank_transfer, check)
        "sale_id": 42,                   (optional, paid first)
        "money_box_id": 3,               (optional; omit or "cash_box" for the default register)
        "reference_number": "TX-991",    (optional)
        "notes": "...",                  (optional)
        "receipt_date": "2026-10-19"     (optional, defaults to today)
    }

    Returns:
        201: {receipt, appliedPayments, excessAmount, totalPaid, updatedState, cashPosting}
        400: Invalid input
        404: Customer or sale not found
        409: Receipt number could not be allocated
    """
    result = settle_from_payload(json_body())
    return jsonify(result.to_dict()), 201


# =============================================================================
# QUERIES
# =============================================================================

@receipts_bp.get("/<int:receipt_id>")
@require_actor
@json_errors("Failed to load customer receipt")
def get_receipt_route(receipt_id: int):
    receipt = receipt_service.get_receipt(receipt_id)
    return jsonify(receipt_service.receipt_detail(receipt)), 200


@receipts_bp.get("/number/<string:receipt_number>")
@require_actor
@json_errors("Failed to load customer receipt")
def get_receipt_by_number_route(receipt_number: str):
    receipt = receipt_service.get_receipt_by_number(receipt_number)
    return jsonify(receipt_service.receipt_detail(receipt)), 200


@receipts_bp.get("/customers/<int:customer_id>/summary")
@require_actor
@json_errors("Failed to load customer receipt summary")
def customer_receipt_summary_route(customer_id: int):
    return jsonify(receipt_service.get_customer_receipt_summary(customer_id)), 200


# =============================================================================
# CORRECTIONS
# =============================================================================

@receipts_bp.patch("/<int:receipt_id>")
@require_actor
@json_errors("Failed to update customer receipt")
def update_receipt_route(receipt_id: int):
    """
    Update non-financial fields: receipt_date, payment_method,
    reference_number, notes. Omitted fields are left unchanged; null clears.
    """
    receipt = receipt_service.update_receipt(receipt_id, json_body())
    return jsonify({"receipt": receipt.to_dict()}), 200


@receipts_bp.delete("/<int:receipt_id>")
@require_actor
@json_errors("Failed to void customer receipt")
def void_receipt_route(receipt_id: int):
    """
    Void a receipt.

    Request body:
    {
        "reason": "Entered against wrong customer"
    }
    """
    data = json_body()
    receipt = receipt_service.void_receipt(
        receipt_id,
        actor_user_id=g.current_user.id,
        reason=data.get("reason") or request.args.get("reason"),
    )
    return jsonify({"receipt": receipt.to_dict()}), 200


@receipts_bp.post("/<int:receipt_id>/retry-cash-posting")
@require_actor
@json_errors("Failed to retry cash posting")
def retry_cash_posting_route(receipt_id: int):
    """
    Re-attempt a FAILED cash posting (e.g., after opening a register).

    Returns:
        200: {receipt, cash_entry}
        409: Receipt voided or already posted
        500: Target still cannot accept the posting
    """
    entry = receipt_service.retry_cash_posting(receipt_id, actor_user_id=g.current_user.id)
    receipt = receipt_service.get_receipt(receipt_id)
    return jsonify({"receipt": receipt.to_dict(), "cash_entry": entry.to_dict()}), 200
