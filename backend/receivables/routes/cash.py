# Overview: Flask API routes for cash floats: register sessions and money boxes.

# backend/receivables/routes/cash.py
"""
Cash API Routes

WHY: Receipts post cash into the actor's open register or a named money
box. These endpoints manage both floats.

DESIGN:
- One open register session per user (open -> close, immutable once closed)
- Money boxes never go negative; transfers are atomic
"""

from flask import Blueprint, request, jsonify, g

from ..services import register_service, money_box_service
from ..validation import ValidationError, coerce_amount_cents, coerce_int, coerce_optional_id, coerce_optional_str
from ..decorators import require_actor, json_errors
from .receipts import json_body


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


def _required_id(data: dict, field: str) -> int:
    value = coerce_optional_id(data.get(field), field)
    if value is None:
        raise ValidationError(f"{field} is required")
    return value


# =============================================================================
# REGISTER SESSIONS
# =============================================================================

@cash_bp.post("/registers/open")
@require_actor
@json_errors("Failed to open register")
def open_register_route():
    """
    Request body:
    {
        "opening_cash_cents": 10000,
        "notes": "..."  (optional)
    }
    """
    data = json_body()
    opening = coerce_int(data.get("opening_cash_cents", 0), "opening_cash_cents")
    notes = coerce_optional_str(data.get("notes"), "notes")
    session = register_service.open_register(g.current_user.id, opening, notes)
    return jsonify({"session": session.to_dict()}), 201


@cash_bp.post("/registers/close")
@require_actor
@json_errors("Failed to close register")
def close_register_route():
    """
    Request body:
    {
        "closing_cash_cents": 12500,
        "notes": "..."  (optional)
    }
    """
    data = json_body()
    if data.get("closing_cash_cents") is None:
        raise ValidationError("closing_cash_cents is required")
    closing = coerce_int(data.get("closing_cash_cents"), "closing_cash_cents")
    notes = coerce_optional_str(data.get("notes"), "notes")
    session = register_service.close_register(g.current_user.id, closing, notes)
    return jsonify({"session": session.to_dict()}), 200


@cash_bp.get("/registers/current")
@require_actor
@json_errors("Failed to load register session")
def current_register_route():
    session = register_service.get_open_session(g.current_user.id)
    if not session:
        return jsonify({"error": "No open register session"}), 404
    return jsonify(register_service.get_session_summary(session.id)), 200


# =============================================================================
# MONEY BOXES
# =============================================================================

@cash_bp.get("/money-boxes")
@require_actor
@json_errors("Failed to list money boxes")
def list_money_boxes_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    boxes = money_box_service.list_money_boxes(include_inactive=include_inactive)
    return jsonify({"money_boxes": [b.to_dict() for b in boxes]}), 200


@cash_bp.post("/money-boxes")
@require_actor
@json_errors("Failed to create money box")
def create_money_box_route():
    """
    Request body:
    {
        "name": "Safe",
        "initial_balance_cents": 0,  (optional)
        "notes": "..."               (optional)
    }
    """
    data = json_body()
    initial = coerce_int(data.get("initial_balance_cents", 0), "initial_balance_cents")
    box = money_box_service.create_money_box(
        name=data.get("name"),
        created_by_user_id=g.current_user.id,
        initial_balance_cents=initial,
        notes=coerce_optional_str(data.get("notes"), "notes"),
    )
    return jsonify({"money_box": box.to_dict()}), 201


@cash_bp.get("/money-boxes/<int:money_box_id>")
@require_actor
@json_errors("Failed to load money box")
def money_box_summary_route(money_box_id: int):
    return jsonify(money_box_service.get_money_box_summary(money_box_id)), 200


@cash_bp.post("/money-boxes/<int:money_box_id>/deposit")
@require_actor
@json_errors("Failed to deposit to money box")
def deposit_route(money_box_id: int):
    data = json_body()
    entry = money_box_service.deposit(
        money_box_id,
        coerce_amount_cents(data.get("amount_cents")),
        g.current_user.id,
        coerce_optional_str(data.get("reason"), "reason", 255),
    )
    return jsonify({"entry": entry.to_dict()}), 201


@cash_bp.post("/money-boxes/<int:money_box_id>/withdraw")
@require_actor
@json_errors("Failed to withdraw from money box")
def withdraw_route(money_box_id: int):
    data = json_body()
    entry = money_box_service.withdraw(
        money_box_id,
        coerce_amount_cents(data.get("amount_cents")),
        g.current_user.id,
        coerce_optional_str(data.get("reason"), "reason", 255),
    )
    return jsonify({"entry": entry.to_dict()}), 201


@cash_bp.post("/money-boxes/transfer")
@require_actor
@json_errors("Failed to transfer between money boxes")
def transfer_route():
    """
    Request body:
    {
        "from_money_box_id": 1,
        "to_money_box_id": 2,
        "amount_cents": 5000,
        "reason": "..."  (optional)
    }
    """
    data = json_body()
    out_entry, in_entry = money_box_service.transfer(
        _required_id(data, "from_money_box_id"),
        _required_id(data, "to_money_box_id"),
        coerce_amount_cents(data.get("amount_cents")),
        g.current_user.id,
        coerce_optional_str(data.get("reason"), "reason", 255),
    )
    return jsonify({"transfer_out": out_entry.to_dict(), "transfer_in": in_entry.to_dict()}), 201
