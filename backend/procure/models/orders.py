from __future__ import annotations

from ..extensions import db
from procure.time_utils import to_utc_z, to_iso_date


# Purchase order statuses
PO_STATUS_DRAFT = "DRAFT"
PO_STATUS_ISSUED = "ISSUED"
PO_STATUS_ACKNOWLEDGED = "ACKNOWLEDGED"
PO_STATUS_PARTIAL_RECEIVED = "PARTIAL_RECEIVED"
PO_STATUS_RECEIVED = "RECEIVED"
PO_STATUS_INVOICED = "INVOICED"
PO_STATUS_CLOSED = "CLOSED"
PO_STATUS_CANCELLED = "CANCELLED"
PO_STATUSES = (
    PO_STATUS_DRAFT,
    PO_STATUS_ISSUED,
    PO_STATUS_ACKNOWLEDGED,
    PO_STATUS_PARTIAL_RECEIVED,
    PO_STATUS_RECEIVED,
    PO_STATUS_INVOICED,
    PO_STATUS_CLOSED,
    PO_STATUS_CANCELLED,
)


class PurchaseOrder(db.Model):
    """
    Order issued to a vendor for an approved purchase request.

    LIFECYCLE (see services/po_lifecycle.py for the transition table):
    DRAFT -> ISSUED -> ACKNOWLEDGED -> [PARTIAL_RECEIVED] -> RECEIVED
          -> INVOICED -> CLOSED, with CANCELLED reachable from every
    non-terminal state.

    DESIGN PRINCIPLES:
    - Items are a snapshot of the request items, repriced at generation;
      the request's own items are never touched
    - Header and items are editable only while DRAFT
    - grand_total = subtotal + tax + shipping - discount, recomputed on
      every write
    - Never moves budget; the request consumed it at approval
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("po_number", name="uq_purchase_orders_number"),
        db.Index("ix_purchase_orders_request_status", "purchase_request_id", "status"),
        db.Index("ix_purchase_orders_status_generated", "status", "generated_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "PO-2026-0001")
    po_number = db.Column(db.String(32), nullable=False)

    purchase_request_id = db.Column(db.Integer, db.ForeignKey("purchase_requests.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)

    po_date = db.Column(db.Date, nullable=False)
    quotation_reference = db.Column(db.String(100), nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)
    billing_address = db.Column(db.Text, nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="IDR")

    # Financials (minor units; tax rate in basis points)
    subtotal_cents = db.Column(db.BigInteger, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    shipping_cost_cents = db.Column(db.BigInteger, nullable=False, default=0)
    discount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    grand_total_cents = db.Column(db.BigInteger, nullable=False, default=0)

    payment_terms = db.Column(db.String(16), nullable=False, default="NET30")
    incoterms = db.Column(db.String(16), nullable=True)
    expected_delivery_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=PO_STATUS_DRAFT, index=True)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_reason = db.Column(db.Text, nullable=True)

    generated_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    generated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    purchase_request = db.relationship("PurchaseRequest", backref=db.backref("purchase_orders", lazy=True))
    vendor = db.relationship("Vendor", backref=db.backref("purchase_orders", lazy=True))
    generated_by = db.relationship("User", foreign_keys=[generated_by_id])
    cancelled_by = db.relationship("User", foreign_keys=[cancelled_by_id])
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def budget_variance_cents(self) -> int | None:
        """Negotiated grand total minus the request total that was committed to the budget."""
        if self.purchase_request is None:
            return None
        return self.grand_total_cents - self.purchase_request.total_cents

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "po_number": self.po_number,
            "purchase_request_id": self.purchase_request_id,
            "request_number": self.purchase_request.request_number if self.purchase_request else None,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor.name if self.vendor else None,
            "po_date": to_iso_date(self.po_date),
            "quotation_reference": self.quotation_reference,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_amount_cents": self.tax_amount_cents,
            "shipping_cost_cents": self.shipping_cost_cents,
            "discount_cents": self.discount_cents,
            "grand_total_cents": self.grand_total_cents,
            "budget_variance_cents": self.budget_variance_cents,
            "payment_terms": self.payment_terms,
            "incoterms": self.incoterms,
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "notes": self.notes,
            "status": self.status,
            "status_changed_at": to_utc_z(self.status_changed_at) if self.status_changed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_id": self.cancelled_by_id,
            "cancelled_reason": self.cancelled_reason,
            "generated_by_id": self.generated_by_id,
            "generated_at": to_utc_z(self.generated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    """
    Line on a purchase order.

    request_item_id is a soft reference back to the originating RequestItem
    (no FK, no cascade); the line is otherwise an independent copy whose
    price may be renegotiated before the order is issued.
    """
    __tablename__ = "purchase_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    request_item_id = db.Column(db.Integer, nullable=True, index=True)

    item_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    total_cents = db.Column(db.BigInteger, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "request_item_id": self.request_item_id,
            "item_name": self.item_name,
            "description": self.description,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
        }
