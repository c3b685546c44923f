# Overview: Flask API routes for purchase requests; parses input and returns JSON responses.

# backend/procure/routes/purchase_requests.py
"""
Purchase request API routes.

Every mutating route runs its service call through run_in_transaction, so
the status change, budget movement and history row commit together or not
at all.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_auth, require_role
from ..models.org import ROLE_ADMIN, ROLE_FINANCE, ROLE_MANAGER, ROLE_PROCUREMENT
from ..models.requests import APPROVAL_LEVEL_FINANCE, APPROVAL_LEVEL_MANAGER
from ..services import approval_history_service, purchase_request_service
from ..services.concurrency import run_in_transaction
from ..validation import ProcurementError, coerce_bool, coerce_int


purchase_requests_bp = Blueprint("purchase_requests", __name__, url_prefix="/api/purchase-requests")

# Roles that may read any request
OVERSIGHT_ROLES = (ROLE_FINANCE, ROLE_ADMIN, ROLE_PROCUREMENT)


def _can_view(user, pr) -> bool:
    if pr.requester_id == user.id:
        return True
    if user.has_role(*OVERSIGHT_ROLES):
        return True
    return user.role == ROLE_MANAGER and user.department_id == pr.department_id


def _page_args() -> tuple[int, int]:
    limit = coerce_int(request.args.get("limit", 50), "limit")
    offset = coerce_int(request.args.get("offset", 0), "offset")
    return limit, offset


def _page(rows, total, limit, offset):
    return {
        "items": [pr.to_dict(include_items=False) for pr in rows],
        "count": len(rows),
        "total": total,
        "limit": limit,
        "offset": offset,
    }


def _error(e: ProcurementError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


@purchase_requests_bp.route("", methods=["POST"])
@require_auth
def create_purchase_request():
    """
    Create a purchase request for the caller's department.

    Request body:
    {
        "title": str (optional, defaults to description),
        "description": str,
        "required_date": "YYYY-MM-DD" (optional),
        "items": [{"item_name", "description", "quantity", "unit", "unit_price_cents"}],
        "submit": bool (default true)
    }

    Returns:
        201: Request created (DRAFT, or pending approval when submitted)
        400: Invalid request
        404: No budget for the department this year
        409: Insufficient budget
    """
    data = request.get_json(silent=True) or {}
    user_id = g.current_user.id

    try:
        pr = run_in_transaction(lambda: purchase_request_service.create_request(
            user_id,
            data.get("items"),
            data.get("description"),
            title=data.get("title"),
            required_date=data.get("required_date"),
            submit_now=coerce_bool(data.get("submit", True), "submit"),
        ))
        return jsonify(pr.to_dict()), 201

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase request")
        return jsonify({"error": "Internal server error"}), 500


@purchase_requests_bp.get("/mine")
@require_auth
def list_my_requests():
    try:
        limit, offset = _page_args()
        rows, total = purchase_request_service.list_my_requests(
            g.current_user.id,
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return jsonify(_page(rows, total, limit, offset)), 200
    except ProcurementError as e:
        return _error(e)


@purchase_requests_bp.get("/department")
@require_auth
@require_role(ROLE_MANAGER)
def list_department_requests():
    """All requests of the manager's own department."""
    try:
        limit, offset = _page_args()
        rows, total = purchase_request_service.list_department_requests(
            g.current_user.department_id,
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return jsonify(_page(rows, total, limit, offset)), 200
    except ProcurementError as e:
        return _error(e)


@purchase_requests_bp.get("/pending")
@require_auth
@require_role(ROLE_MANAGER, ROLE_FINANCE)
def list_pending_approvals():
    """
    Requests waiting on the caller.

    Query params:
        level: 1 (manager) or 2 (finance); defaults from the caller's role
    """
    user = g.current_user
    default_level = APPROVAL_LEVEL_MANAGER if user.role == ROLE_MANAGER else APPROVAL_LEVEL_FINANCE
    try:
        limit, offset = _page_args()
        rows, total = purchase_request_service.list_pending_approvals(
            user.id,
            request.args.get("level", default_level),
            limit=limit,
            offset=offset,
        )
        return jsonify(_page(rows, total, limit, offset)), 200
    except ProcurementError as e:
        return _error(e)


@purchase_requests_bp.get("/<int:pr_id>")
@require_auth
def get_purchase_request(pr_id: int):
    try:
        pr = purchase_request_service.get_request(pr_id)
    except ProcurementError as e:
        return _error(e)

    if not _can_view(g.current_user, pr):
        return jsonify({"error": "Permission denied"}), 403
    return jsonify(pr.to_dict(include_history=True)), 200


@purchase_requests_bp.put("/<int:pr_id>")
@require_auth
def update_purchase_request(pr_id: int):
    """
    Replace the items of a DRAFT request (requester only).

    Request body: same fields as create, minus "submit".
    """
    data = request.get_json(silent=True) or {}
    user_id = g.current_user.id

    try:
        pr = run_in_transaction(lambda: purchase_request_service.update_draft(
            pr_id,
            user_id,
            data.get("items"),
            data.get("description"),
            title=data.get("title"),
            required_date=data.get("required_date"),
        ))
        return jsonify(pr.to_dict()), 200

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update purchase request %s", pr_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_requests_bp.post("/<int:pr_id>/submit")
@require_auth
def submit_purchase_request(pr_id: int):
    """
    Submit a DRAFT request and reserve its total.

    Returns:
        200: Submitted
        404: Request or budget not found
        409: Not a draft, or insufficient budget
    """
    user_id = g.current_user.id
    try:
        pr = run_in_transaction(lambda: purchase_request_service.submit(pr_id, user_id))
        return jsonify(pr.to_dict()), 200

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to submit purchase request %s", pr_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_requests_bp.post("/<int:pr_id>/approve")
@require_auth
@require_role(ROLE_MANAGER, ROLE_FINANCE)
def approve_purchase_request(pr_id: int):
    """
    Approve at level 1 (manager) or 2 (finance).

    Request body:
    {
        "level": int (optional, defaults from the caller's role),
        "comments": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    user = g.current_user
    level = data.get("level")
    if level is None:
        level = APPROVAL_LEVEL_MANAGER if user.role == ROLE_MANAGER else APPROVAL_LEVEL_FINANCE
    user_id = user.id

    try:
        pr = run_in_transaction(lambda: purchase_request_service.approve(
            pr_id, user_id, level, data.get("comments")
        ))
        return jsonify(pr.to_dict(include_history=True)), 200

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve purchase request %s", pr_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_requests_bp.post("/<int:pr_id>/reject")
@require_auth
@require_role(ROLE_MANAGER, ROLE_FINANCE)
def reject_purchase_request(pr_id: int):
    """
    Reject a pending request.

    Request body:
    {
        "reason": str (required)
    }
    """
    data = request.get_json(silent=True) or {}
    user_id = g.current_user.id

    try:
        pr = run_in_transaction(lambda: purchase_request_service.reject(
            pr_id, user_id, data.get("reason")
        ))
        return jsonify(pr.to_dict(include_history=True)), 200

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reject purchase request %s", pr_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_requests_bp.post("/<int:pr_id>/cancel")
@require_auth
def cancel_purchase_request(pr_id: int):
    """Withdraw a request (requester only); releases any reservation."""
    data = request.get_json(silent=True) or {}
    user_id = g.current_user.id

    try:
        pr = run_in_transaction(lambda: purchase_request_service.cancel_purchase_request(
            pr_id, user_id, data.get("reason")
        ))
        return jsonify(pr.to_dict(include_history=True)), 200

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel purchase request %s", pr_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_requests_bp.get("/<int:pr_id>/history")
@require_auth
def get_approval_history(pr_id: int):
    try:
        pr = purchase_request_service.get_request(pr_id)
        if not _can_view(g.current_user, pr):
            return jsonify({"error": "Permission denied"}), 403
        rows = approval_history_service.list_for_request(pr_id)
        return jsonify({"items": [row.to_dict() for row in rows], "count": len(rows)}), 200
    except ProcurementError as e:
        return _error(e)
