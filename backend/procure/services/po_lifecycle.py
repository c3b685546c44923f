# Overview: Service-layer operations for purchase order fulfillment; explicit transition table.

"""
Purchase Order Lifecycle Service

================================================================================
PURPOSE: Track a purchase order from issue through receipt and invoicing
================================================================================

STATE MACHINE:
    DRAFT -> ISSUED -> ACKNOWLEDGED -> [PARTIAL_RECEIVED] -> RECEIVED
          -> INVOICED -> CLOSED

    DRAFT:            Generated from an approved request, header/items editable
    ISSUED:           Sent to the vendor, frozen
    ACKNOWLEDGED:     Vendor confirmed
    PARTIAL_RECEIVED: Some goods arrived
    RECEIVED:         All goods arrived
    INVOICED:         Vendor invoice booked
    CLOSED:           Terminal
    CANCELLED:        Terminal, reachable from every non-terminal state

RULES (NON-NEGOTIABLE):
1. Only transitions listed in TRANSITIONS are allowed; no skipping, no going back
2. CLOSED and CANCELLED have no way out
3. Cancelling requires a reason, stored on the order
4. The budget is never touched here; the request consumed it at approval
================================================================================
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import PurchaseOrder, User
from ..models.orders import (
    PO_STATUS_ACKNOWLEDGED,
    PO_STATUS_CANCELLED,
    PO_STATUS_CLOSED,
    PO_STATUS_DRAFT,
    PO_STATUS_INVOICED,
    PO_STATUS_ISSUED,
    PO_STATUS_PARTIAL_RECEIVED,
    PO_STATUS_RECEIVED,
    PO_STATUSES,
)
from ..time_utils import utcnow
from ..validation import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    optional_text,
)
from .activity_service import record_activity
from .concurrency import lock_for_update


TRANSITIONS = {
    PO_STATUS_DRAFT: frozenset({PO_STATUS_ISSUED, PO_STATUS_CANCELLED}),
    PO_STATUS_ISSUED: frozenset({PO_STATUS_ACKNOWLEDGED, PO_STATUS_CANCELLED}),
    PO_STATUS_ACKNOWLEDGED: frozenset({PO_STATUS_PARTIAL_RECEIVED, PO_STATUS_RECEIVED, PO_STATUS_CANCELLED}),
    PO_STATUS_PARTIAL_RECEIVED: frozenset({PO_STATUS_RECEIVED, PO_STATUS_CANCELLED}),
    PO_STATUS_RECEIVED: frozenset({PO_STATUS_INVOICED, PO_STATUS_CANCELLED}),
    PO_STATUS_INVOICED: frozenset({PO_STATUS_CLOSED, PO_STATUS_CANCELLED}),
    PO_STATUS_CLOSED: frozenset(),
    PO_STATUS_CANCELLED: frozenset(),
}


def validate_status(status: str) -> None:
    """
    Raises:
        ValidationError: If status is not a purchase order status
    """
    if status not in PO_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(PO_STATUSES)}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check a (from, to) pair against the transition table.

    Same-state moves are not transitions and return False.
    """
    validate_status(from_status)
    validate_status(to_status)
    return to_status in TRANSITIONS[from_status]


def allowed_transitions(status: str) -> list[str]:
    """Statuses reachable from `status`, in lifecycle order."""
    validate_status(status)
    return [s for s in PO_STATUSES if s in TRANSITIONS[status]]


def can_edit(po: PurchaseOrder) -> bool:
    """Header and items are editable only while DRAFT."""
    return po.status == PO_STATUS_DRAFT


def is_terminal(status: str) -> bool:
    validate_status(status)
    return not TRANSITIONS[status]


def transition_purchase_order(
    po_id: int,
    new_status: str,
    actor_id: int,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Move a purchase order to `new_status`.

    Args:
        po_id: Purchase order ID
        new_status: Target status
        actor_id: User performing the change
        notes: Free text; required (and stored as the reason) for CANCELLED

    Returns:
        The updated purchase order (flushed, not committed)

    Raises:
        ValidationError: unknown status, or CANCELLED without notes
        NotFoundError: order or actor missing
        InvalidTransitionError: (current, new) not in TRANSITIONS
    """
    if not isinstance(new_status, str):
        raise ValidationError("status is required")
    new_status = new_status.strip().upper()
    validate_status(new_status)
    notes = optional_text(notes, "notes")

    actor = db.session.query(User).filter_by(id=actor_id).first()
    if actor is None:
        raise NotFoundError("User", actor_id)

    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if po is None:
        raise NotFoundError("PurchaseOrder", po_id)

    current = po.status
    if not can_transition(current, new_status):
        raise InvalidTransitionError(
            current,
            new_status,
            message=f"Cannot change purchase order {po.po_number} from {current} to {new_status}",
        )

    now = utcnow()
    if new_status == PO_STATUS_CANCELLED:
        if not notes:
            raise ValidationError("A reason (notes) is required to cancel a purchase order")
        po.cancelled_at = now
        po.cancelled_by_id = actor.id
        po.cancelled_reason = notes

    po.status = new_status
    po.status_changed_at = now
    po.updated_at = now
    db.session.flush()

    details = f"{current} -> {new_status}"
    if notes:
        details = f"{details}: {notes}"
    record_activity(actor.id, "purchase_order.status_changed", "purchase_order", po.id, details)
    current_app.logger.info(
        "Purchase order %s moved %s -> %s by user %s",
        po.po_number, current, new_status, actor.id,
    )
    return po
