# Overview: Flask API routes for budgets; parses input and returns JSON responses.

# backend/procure/routes/budgets.py
"""
Budget API routes.

Reading a department's budget is open to its own members; allocation and
changes are finance/admin work. Reserve/commit/release are never exposed
directly; they only happen as side effects of request transitions.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_auth, require_role
from ..models.org import ROLE_ADMIN, ROLE_FINANCE
from ..services import budget_service
from ..services.concurrency import run_in_transaction
from ..time_utils import current_year
from ..validation import ProcurementError, ValidationError, coerce_int


budgets_bp = Blueprint("budgets", __name__, url_prefix="/api/budgets")

BUDGET_ADMIN_ROLES = (ROLE_FINANCE, ROLE_ADMIN)


def _error(e: ProcurementError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


@budgets_bp.get("/<int:department_id>")
@require_auth
def get_department_budget(department_id: int):
    """
    Budget summary for a department.

    Query params:
        year: int (default current year)
    """
    user = g.current_user
    if user.department_id != department_id and not user.has_role(*BUDGET_ADMIN_ROLES):
        return jsonify({"error": "Permission denied"}), 403

    try:
        year = coerce_int(request.args.get("year", current_year()), "year")
        return jsonify(budget_service.get_budget(department_id, year)), 200
    except ProcurementError as e:
        return _error(e)


@budgets_bp.get("")
@require_auth
@require_role(*BUDGET_ADMIN_ROLES)
def list_budgets():
    try:
        department_id = request.args.get("department_id")
        year = request.args.get("year")
        limit = coerce_int(request.args.get("limit", 100), "limit")
        offset = coerce_int(request.args.get("offset", 0), "offset")

        rows, total = budget_service.list_budgets(
            department_id=coerce_int(department_id, "department_id") if department_id else None,
            year=coerce_int(year, "year") if year else None,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [b.to_dict() for b in rows],
            "count": len(rows),
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except ProcurementError as e:
        return _error(e)


@budgets_bp.route("", methods=["POST"])
@require_auth
@require_role(*BUDGET_ADMIN_ROLES)
def create_budget():
    """
    Allocate a department's budget for a year.

    Request body:
    {
        "department_id": int,
        "year": int (default current year),
        "total_cents": int,
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        if data.get("department_id") is None:
            raise ValidationError("department_id is required")
        department_id = coerce_int(data["department_id"], "department_id")
        year = coerce_int(data.get("year", current_year()), "year")

        budget = run_in_transaction(lambda: budget_service.create_budget(
            department_id=department_id,
            year=year,
            total_cents=data.get("total_cents"),
            notes=data.get("notes"),
        ))
        return jsonify(budget.to_dict()), 201

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create budget")
        return jsonify({"error": "Internal server error"}), 500


@budgets_bp.put("/<int:budget_id>")
@require_auth
@require_role(*BUDGET_ADMIN_ROLES)
def update_budget(budget_id: int):
    """
    Change a budget's total (never below used + reserved).

    Request body:
    {
        "total_cents": int,
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        budget = run_in_transaction(lambda: budget_service.update_budget(
            budget_id,
            total_cents=data.get("total_cents"),
            notes=data.get("notes"),
        ))
        return jsonify(budget.to_dict()), 200

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update budget %s", budget_id)
        return jsonify({"error": "Internal server error"}), 500
