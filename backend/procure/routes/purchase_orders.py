# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

# backend/procure/routes/purchase_orders.py
"""
Purchase order API routes.

Generation, editing and status changes are procurement work; finance and
admin may act too. Budget is never touched from here.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_auth, require_role
from ..models.org import ROLE_ADMIN, ROLE_FINANCE, ROLE_PROCUREMENT
from ..services import po_lifecycle, purchase_order_service
from ..services.concurrency import run_in_transaction
from ..validation import ProcurementError, ValidationError, coerce_int


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")

PO_ROLES = (ROLE_PROCUREMENT, ROLE_FINANCE, ROLE_ADMIN)


def _error(e: ProcurementError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _with_transitions(po) -> dict:
    data = po.to_dict()
    data["allowed_transitions"] = po_lifecycle.allowed_transitions(po.status)
    data["editable"] = po_lifecycle.can_edit(po)
    return data


@purchase_orders_bp.route("", methods=["POST"])
@require_auth
@require_role(*PO_ROLES)
def generate_purchase_order():
    """
    Generate a DRAFT purchase order from an APPROVED request.

    Request body:
    {
        "purchase_request_id": int,
        "vendor_id": int,
        "lines": [{"request_item_id", "item_name", "description", "quantity",
                   "unit", "unit_price_cents"}] (optional, copies request items),
        "terms": {"tax_rate_bps", "shipping_cost_cents", "discount_cents", "currency",
                  "payment_terms", "po_date", "incoterms", "expected_delivery_date",
                  "quotation_reference", "shipping_address", "billing_address",
                  "notes"} (optional)
    }

    Returns:
        201: Order created
        400: Invalid input or inactive vendor
        404: Request or vendor not found
        409: Request not approved, or already has an active order
    """
    data = request.get_json(silent=True) or {}
    user_id = g.current_user.id

    try:
        if data.get("purchase_request_id") is None or data.get("vendor_id") is None:
            raise ValidationError("purchase_request_id and vendor_id are required")
        pr_id = coerce_int(data["purchase_request_id"], "purchase_request_id")
        vendor_id = coerce_int(data["vendor_id"], "vendor_id")

        po = run_in_transaction(lambda: purchase_order_service.generate_purchase_order(
            pr_id,
            vendor_id,
            data.get("lines"),
            data.get("terms"),
            user_id,
        ))
        return jsonify(_with_transitions(po)), 201

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to generate purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("")
@require_auth
@require_role(*PO_ROLES)
def list_purchase_orders():
    try:
        limit = coerce_int(request.args.get("limit", 50), "limit")
        offset = coerce_int(request.args.get("offset", 0), "offset")
        vendor_id = request.args.get("vendor_id")
        pr_id = request.args.get("purchase_request_id")

        rows, total = purchase_order_service.list_purchase_orders(
            status=request.args.get("status"),
            vendor_id=coerce_int(vendor_id, "vendor_id") if vendor_id else None,
            purchase_request_id=coerce_int(pr_id, "purchase_request_id") if pr_id else None,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [po.to_dict(include_items=False) for po in rows],
            "count": len(rows),
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except ProcurementError as e:
        return _error(e)


@purchase_orders_bp.get("/<int:po_id>")
@require_auth
def get_purchase_order(po_id: int):
    """Procurement staff see every order; a requester sees orders for their own requests."""
    try:
        po = purchase_order_service.get_purchase_order(po_id)
    except ProcurementError as e:
        return _error(e)

    user = g.current_user
    if not user.has_role(*PO_ROLES) and po.purchase_request.requester_id != user.id:
        return jsonify({"error": "Permission denied"}), 403
    return jsonify(_with_transitions(po)), 200


@purchase_orders_bp.put("/<int:po_id>")
@require_auth
@require_role(*PO_ROLES)
def update_purchase_order(po_id: int):
    """
    Edit a DRAFT order.

    Request body:
    {
        "lines": [...] (optional, replaces all lines),
        "terms": {...} (optional, overlays the header)
    }
    """
    data = request.get_json(silent=True) or {}
    user_id = g.current_user.id

    try:
        po = run_in_transaction(lambda: purchase_order_service.update_draft_purchase_order(
            po_id,
            data.get("lines"),
            data.get("terms"),
            user_id,
        ))
        return jsonify(_with_transitions(po)), 200

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update purchase order %s", po_id)
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:po_id>/status")
@require_auth
@require_role(*PO_ROLES)
def change_purchase_order_status(po_id: int):
    """
    Move an order along its fulfillment lifecycle.

    Request body:
    {
        "status": str,
        "notes": str (required for CANCELLED)
    }
    """
    data = request.get_json(silent=True) or {}
    user_id = g.current_user.id

    try:
        po = run_in_transaction(lambda: po_lifecycle.transition_purchase_order(
            po_id,
            data.get("status"),
            user_id,
            data.get("notes"),
        ))
        return jsonify(_with_transitions(po)), 200

    except ProcurementError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change status of purchase order %s", po_id)
        return jsonify({"error": "Internal server error"}), 500
