from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from procure.time_utils import to_utc_z, to_iso_date


# Purchase request statuses
PR_STATUS_DRAFT = "DRAFT"
PR_STATUS_PENDING_MANAGER = "PENDING_MANAGER"
PR_STATUS_PENDING_FINANCE = "PENDING_FINANCE"
PR_STATUS_APPROVED = "APPROVED"
PR_STATUS_REJECTED = "REJECTED"
PR_STATUS_CANCELLED = "CANCELLED"
PR_STATUSES = (
    PR_STATUS_DRAFT,
    PR_STATUS_PENDING_MANAGER,
    PR_STATUS_PENDING_FINANCE,
    PR_STATUS_APPROVED,
    PR_STATUS_REJECTED,
    PR_STATUS_CANCELLED,
)
PR_TERMINAL_STATUSES = frozenset({PR_STATUS_APPROVED, PR_STATUS_REJECTED, PR_STATUS_CANCELLED})

# Approval history actions and levels
APPROVAL_ACTION_APPROVED = "APPROVED"
APPROVAL_ACTION_REJECTED = "REJECTED"
APPROVAL_ACTION_CANCELLED = "CANCELLED"

APPROVAL_LEVEL_REQUESTER = 0
APPROVAL_LEVEL_MANAGER = 1
APPROVAL_LEVEL_FINANCE = 2


class PurchaseRequest(db.Model):
    """
    Internal requisition raised by an employee.

    LIFECYCLE:
    1. DRAFT:           Owned by the requester, items editable, no budget held
    2. PENDING_MANAGER: Submitted; total frozen and reserved against the budget
    3. PENDING_FINANCE: Department manager approved (level 1)
    4. APPROVED:        Finance approved (level 2); reservation committed
    5. REJECTED:        Rejected at level 1 or 2; reservation released
    6. CANCELLED:       Withdrawn by the requester; reservation released

    `status` is the single source of truth. The approval/rejection
    timestamps are descriptive metadata only.

    version_id backs compare-and-swap on status: two concurrent transitions
    on the same row cannot both flush.
    """
    __tablename__ = "purchase_requests"
    __table_args__ = (
        db.UniqueConstraint("request_number", name="uq_purchase_requests_number"),
        db.Index("ix_purchase_requests_department_status", "department_id", "status"),
        db.Index("ix_purchase_requests_requester_created", "requester_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "PR-202601-0001")
    request_number = db.Column(db.String(32), nullable=False)

    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    required_date = db.Column(db.Date, nullable=True)

    total_cents = db.Column(db.BigInteger, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=PR_STATUS_DRAFT, index=True)

    # Budget row the submission reserved against (set on submit)
    budget_id = db.Column(db.Integer, db.ForeignKey("budgets.id"), nullable=True, index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Level 1 - department manager
    manager_approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    manager_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    manager_notes = db.Column(db.Text, nullable=True)

    # Level 2 - finance
    finance_approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    finance_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finance_notes = db.Column(db.Text, nullable=True)

    rejected_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    cancelled_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    requester = db.relationship("User", foreign_keys=[requester_id], backref=db.backref("purchase_requests", lazy=True))
    department = db.relationship("Department", backref=db.backref("purchase_requests", lazy=True))
    budget = db.relationship("Budget")
    manager_approver = db.relationship("User", foreign_keys=[manager_approver_id])
    finance_approver = db.relationship("User", foreign_keys=[finance_approver_id])
    rejected_by = db.relationship("User", foreign_keys=[rejected_by_id])

    items = db.relationship(
        "RequestItem",
        backref="purchase_request",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="RequestItem.id",
    )
    approval_histories = db.relationship(
        "ApprovalHistory",
        backref="purchase_request",
        lazy=True,
        order_by="ApprovalHistory.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def items_total_cents(self) -> int:
        return sum(item.subtotal_cents for item in self.items)

    @property
    def is_terminal(self) -> bool:
        return self.status in PR_TERMINAL_STATUSES

    def to_dict(self, *, include_items: bool = True, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "request_number": self.request_number,
            "requester_id": self.requester_id,
            "department_id": self.department_id,
            "title": self.title,
            "description": self.description,
            "required_date": to_iso_date(self.required_date),
            "total_cents": self.total_cents,
            "status": self.status,
            "budget_id": self.budget_id,
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "manager_approver_id": self.manager_approver_id,
            "manager_approved_at": to_utc_z(self.manager_approved_at) if self.manager_approved_at else None,
            "manager_notes": self.manager_notes,
            "finance_approver_id": self.finance_approver_id,
            "finance_approved_at": to_utc_z(self.finance_approved_at) if self.finance_approved_at else None,
            "finance_notes": self.finance_notes,
            "rejected_by_id": self.rejected_by_id,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "rejection_reason": self.rejection_reason,
            "cancelled_by_id": self.cancelled_by_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
            "item_count": len(self.items),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_history:
            data["approval_histories"] = [h.to_dict() for h in self.approval_histories]
        return data


class RequestItem(db.Model):
    """
    Line on a purchase request. Free-text; no catalog reference required.

    subtotal = quantity * unit_price. The request's total is recomputed from
    these lines on submission and frozen afterwards.
    """
    __tablename__ = "request_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_request_id = db.Column(db.Integer, db.ForeignKey("purchase_requests.id"), nullable=False, index=True)

    item_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")
    unit_price_cents = db.Column(db.BigInteger, nullable=False)

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_request_id": self.purchase_request_id,
            "item_name": self.item_name,
            "description": self.description,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class ApprovalHistory(db.Model):
    """
    One append-only row per purchase request transition.

    approval_level: 0 = requester action, 1 = manager, 2 = finance.
    amount_cents is the request total at the time of the action.

    IMMUTABLE: rows are never updated or deleted (enforced by the mapper
    events below). Written only by approval_history_service inside the same
    transaction as the status change it records.
    """
    __tablename__ = "approval_histories"
    __table_args__ = (
        db.Index("ix_approval_histories_request_created", "purchase_request_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_request_id = db.Column(db.Integer, db.ForeignKey("purchase_requests.id"), nullable=False, index=True)
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    approval_level = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(16), nullable=False)
    previous_status = db.Column(db.String(20), nullable=False)
    new_status = db.Column(db.String(20), nullable=False)

    amount_cents = db.Column(db.BigInteger, nullable=False)
    # Budget available after the transition, when a budget row is involved
    department_remaining_cents = db.Column(db.BigInteger, nullable=True)

    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    approver = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_request_id": self.purchase_request_id,
            "approver_id": self.approver_id,
            "approval_level": self.approval_level,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "amount_cents": self.amount_cents,
            "department_remaining_cents": self.department_remaining_cents,
            "comments": self.comments,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(ApprovalHistory, "before_update")
def _reject_history_update(mapper, connection, target):
    raise ValueError("ApprovalHistory rows are immutable")


@event.listens_for(ApprovalHistory, "before_delete")
def _reject_history_delete(mapper, connection, target):
    raise ValueError("ApprovalHistory rows cannot be deleted")
