# Overview: Service-layer operations for approval history; append-only record of purchase request transitions.

from __future__ import annotations

from ..extensions import db
from ..models import ApprovalHistory, PurchaseRequest
from ..models.requests import (
    APPROVAL_ACTION_APPROVED,
    APPROVAL_ACTION_CANCELLED,
    APPROVAL_ACTION_REJECTED,
    APPROVAL_LEVEL_FINANCE,
    APPROVAL_LEVEL_MANAGER,
    APPROVAL_LEVEL_REQUESTER,
)
from ..validation import NotFoundError
"""
Approval History Invariants (authoritative)

- Exactly one row per purchase request transition (approve, reject, cancel).
- Written in the same DB transaction as the status change; a rolled back
  transition leaves no history row behind.
- Rows are never updated or deleted (ApprovalHistory mapper events raise).
"""


VALID_ACTIONS = {APPROVAL_ACTION_APPROVED, APPROVAL_ACTION_REJECTED, APPROVAL_ACTION_CANCELLED}
VALID_LEVELS = {APPROVAL_LEVEL_REQUESTER, APPROVAL_LEVEL_MANAGER, APPROVAL_LEVEL_FINANCE}


def record_transition(
    pr: PurchaseRequest,
    *,
    approver_id: int,
    level: int,
    action: str,
    previous_status: str,
    new_status: str,
    comments: str | None = None,
    department_remaining_cents: int | None = None,
) -> ApprovalHistory:
    """Append one history row for a transition of `pr`."""
    if action not in VALID_ACTIONS:
        raise ValueError(f"Unknown approval action: {action}")
    if level not in VALID_LEVELS:
        raise ValueError(f"Unknown approval level: {level}")

    entry = ApprovalHistory(
        purchase_request=pr,
        approver_id=approver_id,
        approval_level=level,
        action=action,
        previous_status=previous_status,
        new_status=new_status,
        amount_cents=pr.total_cents,
        department_remaining_cents=department_remaining_cents,
        comments=comments,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_for_request(pr_id: int) -> list[ApprovalHistory]:
    """History rows of a request, oldest first."""
    exists = db.session.query(PurchaseRequest.id).filter_by(id=pr_id).first()
    if exists is None:
        raise NotFoundError("PurchaseRequest", pr_id)
    return (
        db.session.query(ApprovalHistory)
        .filter_by(purchase_request_id=pr_id)
        .order_by(ApprovalHistory.id.asc())
        .all()
    )
