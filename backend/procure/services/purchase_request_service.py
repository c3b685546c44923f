# Overview: Service-layer operations for purchase requests; the two-level approval state machine.

"""
Purchase Request State Machine

WHY: Every request must pass the department manager and then finance
before money is committed, and the department budget must account for
the request from the moment it is submitted.

LIFECYCLE:
1. DRAFT:           Created by the requester, items editable, no budget held
2. PENDING_MANAGER: Submitted; total frozen and RESERVED against the budget
3. PENDING_FINANCE: Manager approved (level 1)
4. APPROVED:        Finance approved (level 2); reservation COMMITTED
5. REJECTED:        Rejected at level 1 or 2; reservation RELEASED
6. CANCELLED:       Withdrawn by the requester; reservation RELEASED

TRANSITIONS (anything else raises InvalidTransitionError, no side effect):
    DRAFT            --submit-->        PENDING_MANAGER  reserve
    PENDING_MANAGER  --approve(1)-->    PENDING_FINANCE  history(1, APPROVED)
    PENDING_FINANCE  --approve(2)-->    APPROVED         commit, history(2, APPROVED)
    PENDING_*        --reject-->        REJECTED         release, history(level, REJECTED)
    non-terminal     --cancel-->        CANCELLED        release, history(0, CANCELLED)

UNIT OF WORK:
Functions here flush but never commit. The caller wraps each call in
concurrency.run_in_transaction so the status change, ledger movement,
history row and activity entry land in one transaction. The request row is
read FOR UPDATE and carries a version_id, so a racing transition either
waits or loses the compare-and-swap and is retried from a fresh read.
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..models import PurchaseRequest, RequestItem, User
from ..models.org import ROLE_FINANCE, ROLE_MANAGER
from ..models.requests import (
    APPROVAL_ACTION_APPROVED,
    APPROVAL_ACTION_CANCELLED,
    APPROVAL_ACTION_REJECTED,
    APPROVAL_LEVEL_FINANCE,
    APPROVAL_LEVEL_MANAGER,
    APPROVAL_LEVEL_REQUESTER,
    PR_STATUS_APPROVED,
    PR_STATUS_CANCELLED,
    PR_STATUS_DRAFT,
    PR_STATUS_PENDING_FINANCE,
    PR_STATUS_PENDING_MANAGER,
    PR_STATUS_REJECTED,
    PR_STATUSES,
)
from ..time_utils import current_year, parse_iso_date, utcnow
from ..validation import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    check_amount_limit,
    coerce_amount,
    coerce_int,
    coerce_quantity,
    optional_text,
    require_text,
)
from . import approval_history_service, budget_service, settings_service
from .activity_service import record_activity
from .concurrency import lock_for_update
from .document_service import next_purchase_request_number


ENTITY_TYPE = "purchase_request"
MAX_ITEMS_PER_REQUEST = 200

# Pending status -> approval level that acts on it
PENDING_LEVELS = {
    PR_STATUS_PENDING_MANAGER: APPROVAL_LEVEL_MANAGER,
    PR_STATUS_PENDING_FINANCE: APPROVAL_LEVEL_FINANCE,
}


# =============================================================================
# Helpers
# =============================================================================

def _get_user(user_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None:
        raise NotFoundError("User", user_id)
    if not user.is_active:
        raise AuthorizationError(f"User {user_id} is inactive")
    return user


def _lock_request(pr_id: int) -> PurchaseRequest:
    pr = lock_for_update(db.session.query(PurchaseRequest).filter_by(id=pr_id)).first()
    if pr is None:
        raise NotFoundError("PurchaseRequest", pr_id)
    return pr


def _build_items(items) -> list[RequestItem]:
    """Validate raw item payloads into unsaved RequestItem rows."""
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    if len(items) > MAX_ITEMS_PER_REQUEST:
        raise ValidationError(f"A request cannot have more than {MAX_ITEMS_PER_REQUEST} items")

    built = []
    total = 0
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        item = RequestItem(
            item_name=require_text(raw.get("item_name"), f"items[{index}].item_name", max_length=200),
            description=optional_text(raw.get("description"), f"items[{index}].description"),
            quantity=coerce_quantity(raw.get("quantity"), f"items[{index}].quantity"),
            unit=optional_text(raw.get("unit"), f"items[{index}].unit", max_length=16) or "pcs",
            unit_price_cents=coerce_amount(raw.get("unit_price_cents"), f"items[{index}].unit_price_cents"),
        )
        total += check_amount_limit(item.quantity * item.unit_price_cents, f"items[{index}] subtotal")
        built.append(item)
    check_amount_limit(total, "Request total")
    return built


def _coerce_date(value, field: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def _coerce_level(level) -> int:
    level = coerce_int(level, "level")
    if level not in (APPROVAL_LEVEL_MANAGER, APPROVAL_LEVEL_FINANCE):
        raise ValidationError("level must be 1 (manager) or 2 (finance)")
    return level


def _check_approver(pr: PurchaseRequest, approver: User, level: int) -> None:
    """Raise AuthorizationError unless `approver` may act at `level` on `pr`."""
    if level == APPROVAL_LEVEL_MANAGER:
        if approver.role != ROLE_MANAGER or approver.department_id != pr.department_id:
            raise AuthorizationError(
                "Only a manager of the request's department can act at level 1"
            )
    elif level == APPROVAL_LEVEL_FINANCE:
        if approver.role != ROLE_FINANCE:
            raise AuthorizationError("Only finance can act at level 2")


def _remaining(budget_id: int | None) -> int | None:
    if budget_id is None:
        return None
    return budget_service.get_budget_record(budget_id).available_cents


def _set_status(pr: PurchaseRequest, new_status: str) -> str:
    previous = pr.status
    pr.status = new_status
    pr.updated_at = utcnow()
    # Compare-and-swap on version_id happens here
    db.session.flush()
    return previous


# =============================================================================
# Draft creation and editing
# =============================================================================

def create_request(
    requester_id: int,
    items,
    description: str | None = None,
    *,
    title: str | None = None,
    required_date=None,
    submit_now: bool = True,
) -> PurchaseRequest:
    """
    Create a purchase request for the requester's department.

    Args:
        requester_id: Employee raising the request
        items: List of {item_name, description, quantity, unit, unit_price_cents}
        description: Free-text justification
        title: Short title (defaults to the start of the description)
        required_date: Date the goods are needed by
        submit_now: Run the submit transition in the same unit of work

    Returns:
        PurchaseRequest: DRAFT, or PENDING_MANAGER / PENDING_FINANCE when submitted

    Raises:
        ValidationError: bad items or missing department
        NotFoundError: requester or department budget missing
        InsufficientBudgetError: submission would overcommit the budget
    """
    requester = _get_user(requester_id)
    if requester.department_id is None:
        raise ValidationError("Requester must belong to a department")
    if not requester.department.is_active:
        raise ValidationError(f"Department {requester.department.code} is inactive")

    description = optional_text(description, "description")
    if title is None and description:
        title = description.splitlines()[0][:200]
    title = require_text(title, "title", max_length=200)

    new_items = _build_items(items)

    pr = PurchaseRequest(
        request_number=next_purchase_request_number(),
        requester_id=requester.id,
        department_id=requester.department_id,
        title=title,
        description=description,
        required_date=_coerce_date(required_date, "required_date"),
        status=PR_STATUS_DRAFT,
    )
    pr.items.extend(new_items)
    pr.total_cents = pr.items_total_cents
    db.session.add(pr)
    db.session.flush()

    record_activity(
        requester.id,
        "purchase_request.created",
        ENTITY_TYPE,
        pr.id,
        f"{pr.request_number}: {pr.title}",
    )

    if submit_now:
        _submit(pr, requester)
    return pr


def submit_purchase_request(
    requester_id: int,
    items,
    description: str | None = None,
    *,
    title: str | None = None,
    required_date=None,
) -> PurchaseRequest:
    """Create and submit in one step; the request leaves this call pending approval."""
    return create_request(
        requester_id,
        items,
        description,
        title=title,
        required_date=required_date,
        submit_now=True,
    )


def update_draft(
    pr_id: int,
    requester_id: int,
    items,
    description: str | None = None,
    *,
    title: str | None = None,
    required_date=None,
) -> PurchaseRequest:
    """
    Replace the items (and optionally header fields) of a DRAFT request.

    Only the requester may edit, and only while the request is DRAFT.
    """
    pr = _lock_request(pr_id)
    if pr.status != PR_STATUS_DRAFT:
        raise InvalidTransitionError(pr.status, "edit")
    if pr.requester_id != requester_id:
        raise AuthorizationError("Only the requester can edit this request")

    new_items = _build_items(items)

    if description is not None:
        pr.description = optional_text(description, "description")
    if title is not None:
        pr.title = require_text(title, "title", max_length=200)
    if required_date is not None:
        pr.required_date = _coerce_date(required_date, "required_date")

    pr.items.clear()
    pr.items.extend(new_items)
    pr.total_cents = sum(item.subtotal_cents for item in new_items)
    pr.updated_at = utcnow()
    db.session.flush()

    record_activity(requester_id, "purchase_request.updated", ENTITY_TYPE, pr.id, pr.request_number)
    return pr


# =============================================================================
# Transitions
# =============================================================================

def _submit(pr: PurchaseRequest, requester: User) -> PurchaseRequest:
    if pr.status != PR_STATUS_DRAFT:
        raise InvalidTransitionError(pr.status, "submit")
    if pr.requester_id != requester.id:
        raise AuthorizationError("Only the requester can submit this request")
    if not pr.items:
        raise ValidationError("A request needs at least one item to be submitted")

    total = pr.items_total_cents
    if total <= 0:
        raise ValidationError("Request total must be greater than zero")

    budget = budget_service.require_budget(pr.department_id, current_year())

    pr.total_cents = total
    pr.budget_id = budget.id
    pr.submitted_at = utcnow()
    _set_status(pr, PR_STATUS_PENDING_MANAGER)

    budget = budget_service.reserve(budget.id, total)

    record_activity(
        requester.id,
        "purchase_request.submitted",
        ENTITY_TYPE,
        pr.id,
        f"{pr.request_number} reserved {total} against budget {budget.id}",
    )
    current_app.logger.info(
        "Purchase request %s submitted by user %s for %s (budget %s available %s)",
        pr.request_number, requester.id, total, budget.id, budget.available_cents,
    )

    _maybe_auto_approve(pr, requester)
    return pr


def _maybe_auto_approve(pr: PurchaseRequest, requester: User) -> None:
    """Skip manager approval for small requests when the setting is on."""
    if not settings_service.get_value(settings_service.AUTO_APPROVAL_ENABLED):
        return
    threshold = settings_service.get_value(settings_service.AUTO_APPROVAL_MANAGER_THRESHOLD)
    if pr.total_cents > threshold:
        return

    comment = f"Auto-approved (total within manager threshold {threshold})"
    pr.manager_approver_id = requester.id
    pr.manager_approved_at = utcnow()
    pr.manager_notes = comment
    previous = _set_status(pr, PR_STATUS_PENDING_FINANCE)

    approval_history_service.record_transition(
        pr,
        approver_id=requester.id,
        level=APPROVAL_LEVEL_MANAGER,
        action=APPROVAL_ACTION_APPROVED,
        previous_status=previous,
        new_status=PR_STATUS_PENDING_FINANCE,
        comments=comment,
        department_remaining_cents=_remaining(pr.budget_id),
    )
    record_activity(requester.id, "purchase_request.auto_approved", ENTITY_TYPE, pr.id, comment)
    current_app.logger.info("Purchase request %s auto-approved at level 1", pr.request_number)


def submit(pr_id: int, requester_id: int) -> PurchaseRequest:
    """Submit an existing DRAFT: freeze the total and reserve it."""
    requester = _get_user(requester_id)
    pr = _lock_request(pr_id)
    return _submit(pr, requester)


def approve(pr_id: int, approver_id: int, level, comments: str | None = None) -> PurchaseRequest:
    """
    Approve a pending request at `level` (1 = manager, 2 = finance).

    Raises:
        InvalidTransitionError: request not pending at `level`
        AuthorizationError: approver not eligible for `level`
    """
    level = _coerce_level(level)
    approver = _get_user(approver_id)
    pr = _lock_request(pr_id)

    pending_level = PENDING_LEVELS.get(pr.status)
    if pending_level is None:
        raise InvalidTransitionError(pr.status, "approve")
    if pending_level != level:
        raise InvalidTransitionError(
            pr.status,
            f"approve at level {level}",
            message=f"Request {pr.request_number} is awaiting level {pending_level} approval, not level {level}",
        )
    _check_approver(pr, approver, level)

    comments = optional_text(comments, "comments")
    now = utcnow()

    if level == APPROVAL_LEVEL_MANAGER:
        pr.manager_approver_id = approver.id
        pr.manager_approved_at = now
        pr.manager_notes = comments
        previous = _set_status(pr, PR_STATUS_PENDING_FINANCE)
        remaining = _remaining(pr.budget_id)
    else:
        pr.finance_approver_id = approver.id
        pr.finance_approved_at = now
        pr.finance_notes = comments
        previous = _set_status(pr, PR_STATUS_APPROVED)
        budget = budget_service.commit(pr.budget_id, pr.total_cents)
        remaining = budget.available_cents

    approval_history_service.record_transition(
        pr,
        approver_id=approver.id,
        level=level,
        action=APPROVAL_ACTION_APPROVED,
        previous_status=previous,
        new_status=pr.status,
        comments=comments,
        department_remaining_cents=remaining,
    )
    record_activity(
        approver.id,
        "purchase_request.approved",
        ENTITY_TYPE,
        pr.id,
        f"{pr.request_number} level {level}: {previous} -> {pr.status}",
    )
    current_app.logger.info(
        "Purchase request %s approved at level %s by user %s (%s)",
        pr.request_number, level, approver.id, pr.total_cents,
    )
    return pr


def approve_by_manager(pr_id: int, approver_id: int, comments: str | None = None) -> PurchaseRequest:
    return approve(pr_id, approver_id, APPROVAL_LEVEL_MANAGER, comments)


def approve_by_finance(pr_id: int, approver_id: int, comments: str | None = None) -> PurchaseRequest:
    return approve(pr_id, approver_id, APPROVAL_LEVEL_FINANCE, comments)


def reject(pr_id: int, approver_id: int, reason: str) -> PurchaseRequest:
    """
    Reject a pending request and release its reservation.

    The approver must be eligible for the level the request is waiting on.
    """
    approver = _get_user(approver_id)
    pr = _lock_request(pr_id)

    level = PENDING_LEVELS.get(pr.status)
    if level is None:
        raise InvalidTransitionError(pr.status, "reject")
    _check_approver(pr, approver, level)
    reason = require_text(reason, "reason")

    pr.rejected_by_id = approver.id
    pr.rejected_at = utcnow()
    pr.rejection_reason = reason
    previous = _set_status(pr, PR_STATUS_REJECTED)

    remaining = None
    if pr.budget_id is not None:
        remaining = budget_service.release(pr.budget_id, pr.total_cents).available_cents

    approval_history_service.record_transition(
        pr,
        approver_id=approver.id,
        level=level,
        action=APPROVAL_ACTION_REJECTED,
        previous_status=previous,
        new_status=PR_STATUS_REJECTED,
        comments=reason,
        department_remaining_cents=remaining,
    )
    record_activity(approver.id, "purchase_request.rejected", ENTITY_TYPE, pr.id, reason)
    current_app.logger.info(
        "Purchase request %s rejected at level %s by user %s",
        pr.request_number, level, approver.id,
    )
    return pr


def cancel_purchase_request(pr_id: int, requester_id: int, reason: str | None = None) -> PurchaseRequest:
    """
    Withdraw a request that has not reached a terminal state.

    Releases the reservation when the request was already submitted.
    """
    pr = _lock_request(pr_id)
    if pr.is_terminal:
        raise InvalidTransitionError(pr.status, "cancel")
    if pr.requester_id != requester_id:
        raise AuthorizationError("Only the requester can cancel this request")

    was_submitted = pr.status != PR_STATUS_DRAFT
    pr.cancelled_by_id = requester_id
    pr.cancelled_at = utcnow()
    previous = _set_status(pr, PR_STATUS_CANCELLED)

    remaining = None
    if was_submitted and pr.budget_id is not None:
        remaining = budget_service.release(pr.budget_id, pr.total_cents).available_cents

    approval_history_service.record_transition(
        pr,
        approver_id=requester_id,
        level=APPROVAL_LEVEL_REQUESTER,
        action=APPROVAL_ACTION_CANCELLED,
        previous_status=previous,
        new_status=PR_STATUS_CANCELLED,
        comments=optional_text(reason, "reason"),
        department_remaining_cents=remaining,
    )
    record_activity(
        requester_id,
        "purchase_request.cancelled",
        ENTITY_TYPE,
        pr.id,
        f"{pr.request_number}: {previous} -> {PR_STATUS_CANCELLED}",
    )
    current_app.logger.info("Purchase request %s cancelled by user %s", pr.request_number, requester_id)
    return pr


# =============================================================================
# Queries
# =============================================================================

def get_request(pr_id: int) -> PurchaseRequest:
    pr = db.session.query(PurchaseRequest).filter_by(id=pr_id).first()
    if pr is None:
        raise NotFoundError("PurchaseRequest", pr_id)
    return pr


def _paginate(query, limit: int, offset: int):
    total = query.count()
    rows = (
        query.order_by(PurchaseRequest.created_at.desc(), PurchaseRequest.id.desc())
        .offset(max(offset, 0))
        .limit(min(max(limit, 1), 200))
        .all()
    )
    return rows, total


def _filter_status(query, status: str | None):
    if status is None:
        return query
    if status not in PR_STATUSES:
        raise ValidationError(f"Unknown purchase request status: {status}")
    return query.filter(PurchaseRequest.status == status)


def list_my_requests(user_id: int, *, status: str | None = None, limit: int = 50, offset: int = 0):
    query = db.session.query(PurchaseRequest).filter(PurchaseRequest.requester_id == user_id)
    return _paginate(_filter_status(query, status), limit, offset)


def list_department_requests(department_id: int, *, status: str | None = None, limit: int = 50, offset: int = 0):
    query = db.session.query(PurchaseRequest).filter(PurchaseRequest.department_id == department_id)
    return _paginate(_filter_status(query, status), limit, offset)


def list_pending_approvals(approver_id: int, level, *, limit: int = 50, offset: int = 0):
    """
    Requests waiting on `approver_id` at `level`.

    Level 1: PENDING_MANAGER requests of the manager's own department.
    Level 2: every PENDING_FINANCE request.
    """
    level = _coerce_level(level)
    approver = _get_user(approver_id)

    query = db.session.query(PurchaseRequest)
    if level == APPROVAL_LEVEL_MANAGER:
        if approver.role != ROLE_MANAGER or approver.department_id is None:
            raise AuthorizationError("Only department managers have level 1 approvals")
        query = query.filter(
            PurchaseRequest.status == PR_STATUS_PENDING_MANAGER,
            PurchaseRequest.department_id == approver.department_id,
        )
    else:
        if approver.role != ROLE_FINANCE:
            raise AuthorizationError("Only finance has level 2 approvals")
        query = query.filter(PurchaseRequest.status == PR_STATUS_PENDING_FINANCE)

    return _paginate(query, limit, offset)
