# Overview: Service-layer operations for the budget ledger; encapsulates business logic and database work.

"""
Budget Ledger

WHY: A department's yearly allocation must never be overcommitted, even
when many requests hit the same budget row at once.

BUCKETS:
    total     allocated ceiling
    reserved  earmarked by requests still in approval
    used      committed by fully approved requests
    available = total - used - reserved

OPERATIONS (each a single conditional UPDATE against one row):
    reserve(x)  reserved += x            only if x <= available
    commit(x)   reserved -= x, used += x (reserved clamped at zero)
    release(x)  reserved -= x            (clamped at zero)

RULES (NON-NEGOTIABLE):
1. reserved >= 0, used >= 0 and reserved + used <= total after every call
2. used never decreases; committed spend is permanent
3. Read-check-write happens inside the database statement, never in Python,
   so two concurrent reservations cannot both pass the availability check
"""

from __future__ import annotations

from sqlalchemy import case, update

from ..extensions import db
from ..models import Budget, Department
from ..time_utils import current_year, utcnow
from .concurrency import lock_for_update
from ..validation import (
    InsufficientBudgetError,
    NotFoundError,
    ValidationError,
    coerce_amount,
)


def get_budget_record(budget_id: int) -> Budget:
    """Fresh read of the row, overwriting any stale copy held by the session."""
    budget = (
        db.session.query(Budget)
        .populate_existing()
        .filter_by(id=budget_id)
        .first()
    )
    if budget is None:
        raise NotFoundError("Budget", budget_id)
    return budget


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("amount must be an integer number of minor units")
    if amount < 0:
        raise ValidationError("amount must be >= 0")
    return amount


def _clamped_reserved(amount: int):
    return case(
        (Budget.reserved_cents >= amount, Budget.reserved_cents - amount),
        else_=0,
    )


def reserve(budget_id: int, amount: int) -> Budget:
    """
    Earmark `amount` for an in-flight request.

    Raises:
        NotFoundError: budget row missing
        InsufficientBudgetError: amount > available (nothing is changed)
    """
    amount = _check_amount(amount)

    stmt = (
        update(Budget)
        .where(
            Budget.id == budget_id,
            Budget.total_cents - Budget.used_cents - Budget.reserved_cents >= amount,
        )
        .values(reserved_cents=Budget.reserved_cents + amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    budget = get_budget_record(budget_id)
    if result.rowcount != 1:
        raise InsufficientBudgetError(
            available_cents=budget.available_cents,
            requested_cents=amount,
        )
    return budget


def commit(budget_id: int, amount: int) -> Budget:
    """
    Move `amount` from reserved to used.

    The caller guarantees the amount was reserved earlier; reserved is clamped
    at zero rather than going negative. The UPDATE still refuses to push
    used + reserved above total.
    """
    amount = _check_amount(amount)
    new_reserved = _clamped_reserved(amount)

    stmt = (
        update(Budget)
        .where(
            Budget.id == budget_id,
            Budget.used_cents + amount + new_reserved <= Budget.total_cents,
        )
        .values(
            reserved_cents=new_reserved,
            used_cents=Budget.used_cents + amount,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    budget = get_budget_record(budget_id)
    if result.rowcount != 1:
        raise InsufficientBudgetError(
            available_cents=budget.available_cents + min(budget.reserved_cents, amount),
            requested_cents=amount,
        )
    return budget


def release(budget_id: int, amount: int) -> Budget:
    """Return `amount` of reservation to available (reserved clamped at zero)."""
    amount = _check_amount(amount)

    stmt = (
        update(Budget)
        .where(Budget.id == budget_id)
        .values(reserved_cents=_clamped_reserved(amount), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise NotFoundError("Budget", budget_id)
    return get_budget_record(budget_id)


# =============================================================================
# Lookups
# =============================================================================

def find_budget(department_id: int, year: int | None = None) -> Budget | None:
    year = year or current_year()
    return (
        db.session.query(Budget)
        .filter_by(department_id=department_id, year=year)
        .first()
    )


def require_budget(department_id: int, year: int | None = None) -> Budget:
    year = year or current_year()
    budget = find_budget(department_id, year)
    if budget is None:
        raise NotFoundError(
            "Budget",
            f"{department_id}/{year}",
            message=f"No budget found for department {department_id} in {year}",
        )
    return budget


def get_budget_for_update(department_id: int, year: int | None = None) -> Budget:
    """Budget row for a department/year, locked FOR UPDATE (where the backend supports it)."""
    year = year or current_year()
    budget = lock_for_update(
        db.session.query(Budget).filter_by(department_id=department_id, year=year)
    ).first()
    if budget is None:
        raise NotFoundError(
            "Budget",
            f"{department_id}/{year}",
            message=f"No budget found for department {department_id} in {year}",
        )
    return budget


def get_budget(department_id: int, year: int | None = None) -> dict:
    """
    Budget summary for a department/year.

    Returns {total, used, reserved, available} (plus identifiers) in minor units.
    """
    budget = require_budget(department_id, year)
    return {
        "budget_id": budget.id,
        "department_id": budget.department_id,
        "year": budget.year,
        "total": budget.total_cents,
        "used": budget.used_cents,
        "reserved": budget.reserved_cents,
        "available": budget.available_cents,
        "usage_percentage": budget.usage_percentage,
    }


def list_budgets(
    *,
    department_id: int | None = None,
    year: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Budget], int]:
    query = db.session.query(Budget)
    if department_id is not None:
        query = query.filter(Budget.department_id == department_id)
    if year is not None:
        query = query.filter(Budget.year == year)

    total = query.count()
    rows = (
        query.order_by(Budget.year.desc(), Budget.department_id.asc())
        .offset(max(offset, 0))
        .limit(min(max(limit, 1), 500))
        .all()
    )
    return rows, total


# =============================================================================
# Administration
# =============================================================================

def create_budget(
    *,
    department_id: int,
    year: int,
    total_cents,
    notes: str | None = None,
) -> Budget:
    """
    Allocate a department's budget for a year (one row per department/year).

    Raises:
        NotFoundError: department missing
        ValidationError: duplicate department/year or bad amount
    """
    total_cents = coerce_amount(total_cents, "total_cents")
    if isinstance(year, bool) or not isinstance(year, int) or year < 2000 or year > 9999:
        raise ValidationError("year must be a four-digit year")

    department = db.session.query(Department).filter_by(id=department_id).first()
    if department is None:
        raise NotFoundError("Department", department_id)

    if find_budget(department_id, year) is not None:
        raise ValidationError(f"Budget for department {department.code} in {year} already exists")

    budget = Budget(
        department_id=department_id,
        year=year,
        total_cents=total_cents,
        used_cents=0,
        reserved_cents=0,
        notes=notes,
    )
    db.session.add(budget)
    db.session.flush()
    return budget


def update_budget(budget_id: int, *, total_cents, notes: str | None = None) -> Budget:
    """
    Change a budget's ceiling. The new total may not drop below used + reserved.
    """
    total_cents = coerce_amount(total_cents, "total_cents")

    values = {"total_cents": total_cents, "updated_at": utcnow()}
    if notes is not None:
        values["notes"] = notes

    stmt = (
        update(Budget)
        .where(
            Budget.id == budget_id,
            Budget.used_cents + Budget.reserved_cents <= total_cents,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    budget = get_budget_record(budget_id)
    if result.rowcount != 1:
        raise ValidationError(
            f"Total amount cannot be less than current usage plus reservations "
            f"({budget.used_cents + budget.reserved_cents})"
        )
    return budget
