# Overview: Service-layer operations for purchase orders; generation from approved requests and draft editing.

"""
Purchase Order Generator

WHY: An approved request becomes an order to one vendor. The order is a
snapshot: lines are copied from the request (optionally repriced after
negotiation), totals are computed once and stored, and the request's own
items are never touched.

RULES:
1. Source request must be APPROVED
2. At most one order per request whose status is not CANCELLED
3. Vendor must exist and be ACTIVE
4. grand_total = subtotal + tax + shipping - discount, never negative
5. tax = round_half_up(subtotal * tax_rate_bps / 10000)
6. No budget movement; the request committed its total at approval.
   The difference is exposed as budget_variance_cents, not reconciled.
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem, PurchaseRequest, User, Vendor
from ..models.org import PAYMENT_TERMS
from ..models.orders import PO_STATUS_CANCELLED, PO_STATUS_DRAFT, PO_STATUSES
from ..models.requests import PR_STATUS_APPROVED
from ..time_utils import parse_iso_date, utcnow
from ..validation import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    check_amount_limit,
    coerce_amount,
    coerce_int,
    coerce_quantity,
    coerce_tax_rate_bps,
    optional_text,
    require_text,
)
from .activity_service import record_activity
from .concurrency import lock_for_update
from .document_service import next_purchase_order_number
from .po_lifecycle import can_edit


ENTITY_TYPE = "purchase_order"
MAX_LINES_PER_ORDER = 200
BPS_DENOMINATOR = 10_000


# =============================================================================
# Totals
# =============================================================================

def compute_tax(subtotal_cents: int, tax_rate_bps: int) -> int:
    """Half-up rounding of subtotal * rate, in whole minor units."""
    return (subtotal_cents * tax_rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def compute_totals(
    subtotal_cents: int,
    *,
    tax_rate_bps: int,
    shipping_cost_cents: int = 0,
    discount_cents: int = 0,
) -> dict:
    check_amount_limit(subtotal_cents, "Order subtotal")
    tax = compute_tax(subtotal_cents, tax_rate_bps)
    grand_total = subtotal_cents + tax + shipping_cost_cents - discount_cents
    if grand_total < 0:
        raise ValidationError(
            f"Discount {discount_cents} exceeds order value; grand total would be {grand_total}"
        )
    check_amount_limit(grand_total, "Order grand total")
    return {
        "subtotal_cents": subtotal_cents,
        "tax_amount_cents": tax,
        "grand_total_cents": grand_total,
    }


def _apply_totals(po: PurchaseOrder, items: list[PurchaseOrderItem]) -> None:
    totals = compute_totals(
        sum(item.total_cents for item in items),
        tax_rate_bps=po.tax_rate_bps,
        shipping_cost_cents=po.shipping_cost_cents,
        discount_cents=po.discount_cents,
    )
    po.subtotal_cents = totals["subtotal_cents"]
    po.tax_amount_cents = totals["tax_amount_cents"]
    po.grand_total_cents = totals["grand_total_cents"]


# =============================================================================
# Input parsing
# =============================================================================

def _coerce_date(value, field: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def _build_lines(pr: PurchaseRequest, lines) -> list[PurchaseOrderItem]:
    """
    Order lines from caller input, or a straight copy of the request items
    when no lines are given.

    A line that names request_item_id inherits any field it omits from that
    request item; the id must belong to `pr`.
    """
    request_items = {item.id: item for item in pr.items}

    if not lines:
        return [
            PurchaseOrderItem(
                request_item_id=item.id,
                item_name=item.item_name,
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price_cents=item.unit_price_cents,
                total_cents=item.subtotal_cents,
            )
            for item in pr.items
        ]

    if not isinstance(lines, list):
        raise ValidationError("lines must be a list")
    if len(lines) > MAX_LINES_PER_ORDER:
        raise ValidationError(f"An order cannot have more than {MAX_LINES_PER_ORDER} lines")

    built = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object")

        source = None
        if raw.get("request_item_id") is not None:
            request_item_id = coerce_int(raw["request_item_id"], f"lines[{index}].request_item_id")
            source = request_items.get(request_item_id)
            if source is None:
                raise ValidationError(
                    f"lines[{index}].request_item_id {request_item_id} does not belong to "
                    f"request {pr.request_number}"
                )

        def pick(key, fallback=None):
            value = raw.get(key)
            if value is None and source is not None:
                return getattr(source, key)
            return value if value is not None else fallback

        quantity = coerce_quantity(pick("quantity"), f"lines[{index}].quantity")
        unit_price = coerce_amount(pick("unit_price_cents"), f"lines[{index}].unit_price_cents")
        built.append(PurchaseOrderItem(
            request_item_id=source.id if source is not None else None,
            item_name=require_text(pick("item_name"), f"lines[{index}].item_name", max_length=200),
            description=optional_text(pick("description"), f"lines[{index}].description"),
            quantity=quantity,
            unit=optional_text(pick("unit"), f"lines[{index}].unit", max_length=16) or "pcs",
            unit_price_cents=unit_price,
            total_cents=check_amount_limit(quantity * unit_price, f"lines[{index}] total"),
        ))
    return built


def _apply_terms(po: PurchaseOrder, terms: dict, vendor: Vendor) -> None:
    """Overlay `terms` onto `po`; keys that are absent keep the current value."""
    if terms is None:
        terms = {}
    if not isinstance(terms, dict):
        raise ValidationError("terms must be an object")

    if "tax_rate_bps" in terms:
        po.tax_rate_bps = coerce_tax_rate_bps(terms["tax_rate_bps"])
    if "shipping_cost_cents" in terms:
        po.shipping_cost_cents = coerce_amount(terms["shipping_cost_cents"], "shipping_cost_cents")
    if "discount_cents" in terms:
        po.discount_cents = coerce_amount(terms["discount_cents"], "discount_cents")

    if "currency" in terms:
        currency = require_text(terms["currency"], "currency").upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError("currency must be a 3-letter ISO code")
        po.currency = currency

    if "payment_terms" in terms:
        payment_terms = require_text(terms["payment_terms"], "payment_terms").upper()
        if payment_terms not in PAYMENT_TERMS:
            raise ValidationError(
                f"payment_terms must be one of: {', '.join(PAYMENT_TERMS)}"
            )
        po.payment_terms = payment_terms
    elif po.payment_terms is None:
        po.payment_terms = vendor.payment_terms

    if "po_date" in terms:
        po.po_date = _coerce_date(terms["po_date"], "po_date") or utcnow().date()
    if "expected_delivery_date" in terms:
        po.expected_delivery_date = _coerce_date(terms["expected_delivery_date"], "expected_delivery_date")
    if po.expected_delivery_date and po.po_date and po.expected_delivery_date < po.po_date:
        raise ValidationError("expected_delivery_date cannot be before po_date")

    if "incoterms" in terms:
        po.incoterms = optional_text(terms["incoterms"], "incoterms", max_length=16)
    if "quotation_reference" in terms:
        po.quotation_reference = optional_text(terms["quotation_reference"], "quotation_reference", max_length=100)
    for field in ("shipping_address", "billing_address", "notes"):
        if field in terms:
            setattr(po, field, optional_text(terms[field], field))


# =============================================================================
# Generation and editing
# =============================================================================

def get_for_request(pr_id: int) -> PurchaseOrder | None:
    """The request's active (not CANCELLED) order, if any."""
    return (
        db.session.query(PurchaseOrder)
        .filter(
            PurchaseOrder.purchase_request_id == pr_id,
            PurchaseOrder.status != PO_STATUS_CANCELLED,
        )
        .order_by(PurchaseOrder.id.desc())
        .first()
    )


def generate_purchase_order(pr_id: int, vendor_id: int, lines, terms, actor_id: int) -> PurchaseOrder:
    """
    Create a DRAFT purchase order for an approved request.

    Args:
        pr_id: Approved purchase request
        vendor_id: ACTIVE vendor receiving the order
        lines: Line overrides; empty or None copies the request items
        terms: Commercial terms (tax_rate_bps, shipping_cost_cents, discount_cents,
            currency, payment_terms, po_date, incoterms, expected_delivery_date,
            quotation_reference, shipping_address, billing_address, notes)
        actor_id: User generating the order

    Returns:
        PurchaseOrder: flushed, status DRAFT

    Raises:
        NotFoundError: request, vendor or actor missing
        InvalidTransitionError: request not APPROVED, or already has an active order
        ValidationError: inactive vendor, bad lines/terms, negative grand total
    """
    actor = db.session.query(User).filter_by(id=actor_id).first()
    if actor is None:
        raise NotFoundError("User", actor_id)

    # Serialises concurrent generators for the same request
    pr = lock_for_update(db.session.query(PurchaseRequest).filter_by(id=pr_id)).first()
    if pr is None:
        raise NotFoundError("PurchaseRequest", pr_id)
    if pr.status != PR_STATUS_APPROVED:
        raise InvalidTransitionError(
            pr.status,
            "generate purchase order",
            message=f"Request {pr.request_number} is {pr.status}; only APPROVED requests can be ordered",
        )

    existing = get_for_request(pr.id)
    if existing is not None:
        raise InvalidTransitionError(
            pr.status,
            "generate purchase order",
            message=(
                f"Request {pr.request_number} already has active purchase order "
                f"{existing.po_number} ({existing.status})"
            ),
        )

    vendor = db.session.query(Vendor).filter_by(id=vendor_id).first()
    if vendor is None:
        raise NotFoundError("Vendor", vendor_id)
    if not vendor.can_receive_po():
        raise ValidationError(f"Vendor {vendor.code} is {vendor.status} and cannot receive purchase orders")

    items = _build_lines(pr, lines)
    if not items:
        raise ValidationError("A purchase order needs at least one line")

    now = utcnow()
    po = PurchaseOrder(
        purchase_request_id=pr.id,
        vendor_id=vendor.id,
        po_date=now.date(),
        currency=current_app.config.get("PROCURE_CURRENCY", "IDR"),
        tax_rate_bps=int(current_app.config.get("PROCURE_DEFAULT_TAX_RATE_BPS", 0)),
        shipping_cost_cents=0,
        discount_cents=0,
        status=PO_STATUS_DRAFT,
        status_changed_at=now,
        generated_by_id=actor.id,
        generated_at=now,
    )
    _apply_terms(po, terms, vendor)
    _apply_totals(po, items)

    po.po_number = next_purchase_order_number(now)
    po.items.extend(items)
    db.session.add(po)

    # Bump the request's version so a racing generator loses the compare-and-swap
    pr.updated_at = now
    db.session.flush()

    record_activity(
        actor.id,
        "purchase_order.generated",
        ENTITY_TYPE,
        po.id,
        f"{po.po_number} from {pr.request_number} to vendor {vendor.code}: {po.grand_total_cents}",
    )
    current_app.logger.info(
        "Purchase order %s generated from %s by user %s (grand total %s)",
        po.po_number, pr.request_number, actor.id, po.grand_total_cents,
    )
    return po


def update_draft_purchase_order(po_id: int, lines, terms, actor_id: int) -> PurchaseOrder:
    """
    Edit a DRAFT order.

    lines=None keeps the current items; a list replaces them all (one bulk
    DELETE, then inserts). Terms overlay the current header. Totals are
    recomputed either way.
    """
    actor = db.session.query(User).filter_by(id=actor_id).first()
    if actor is None:
        raise NotFoundError("User", actor_id)

    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if po is None:
        raise NotFoundError("PurchaseOrder", po_id)
    if not can_edit(po):
        raise InvalidTransitionError(po.status, "edit")

    _apply_terms(po, terms, po.vendor)

    if lines is None:
        items = list(po.items)
    else:
        if not lines:
            raise ValidationError("A purchase order needs at least one line")
        items = _build_lines(po.purchase_request, lines)

    _apply_totals(po, items)
    po.updated_at = utcnow()

    if lines is not None:
        (
            db.session.query(PurchaseOrderItem)
            .filter(PurchaseOrderItem.purchase_order_id == po.id)
            .delete(synchronize_session=False)
        )
        db.session.expire(po, ["items"])
        for item in items:
            item.purchase_order_id = po.id
            db.session.add(item)

    db.session.flush()
    db.session.expire(po, ["items"])

    record_activity(actor.id, "purchase_order.updated", ENTITY_TYPE, po.id, po.po_number)
    return po


# =============================================================================
# Queries
# =============================================================================

def get_purchase_order(po_id: int) -> PurchaseOrder:
    po = db.session.query(PurchaseOrder).filter_by(id=po_id).first()
    if po is None:
        raise NotFoundError("PurchaseOrder", po_id)
    return po


def list_purchase_orders(
    *,
    status: str | None = None,
    vendor_id: int | None = None,
    purchase_request_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[PurchaseOrder], int]:
    query = db.session.query(PurchaseOrder)
    if status is not None:
        if status not in PO_STATUSES:
            raise ValidationError(f"Unknown purchase order status: {status}")
        query = query.filter(PurchaseOrder.status == status)
    if vendor_id is not None:
        query = query.filter(PurchaseOrder.vendor_id == vendor_id)
    if purchase_request_id is not None:
        query = query.filter(PurchaseOrder.purchase_request_id == purchase_request_id)

    total = query.count()
    rows = (
        query.order_by(PurchaseOrder.generated_at.desc(), PurchaseOrder.id.desc())
        .offset(max(offset, 0))
        .limit(min(max(limit, 1), 200))
        .all()
    )
    return rows, total
