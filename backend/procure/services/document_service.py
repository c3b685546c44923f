# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


DOCUMENT_TYPE_PURCHASE_REQUEST = "PURCHASE_REQUEST"
DOCUMENT_TYPE_PURCHASE_ORDER = "PURCHASE_ORDER"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def pr_period(now: datetime | None = None) -> str:
    """Purchase request numbers restart every month: "YYYYMM"."""
    now = now or utcnow()
    return f"{now.year}{now.month:02d}"


def po_period(now: datetime | None = None) -> str:
    """Purchase order numbers restart every year: "YYYY"."""
    now = now or utcnow()
    return f"{now.year}"


def _increment(document_type: str, period: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    period: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for a type/period.

    The UPDATE takes a row lock on (document_type, period), so concurrent
    callers serialise and never see the same number. The first number of a
    period inserts the counter row inside a SAVEPOINT; losing that insert
    race falls back to the increment without disturbing the caller's
    transaction.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period:
        raise DocumentSequenceError("period is required")

    next_num = _increment(document_type, period)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _increment(document_type, period)
            if next_num is None:
                raise DocumentSequenceError(
                    f"Could not allocate {document_type} number for period {period}"
                )

    return f"{prefix}-{period}-{next_num:0{pad}d}"


def next_purchase_request_number(now: datetime | None = None) -> str:
    """Format: PR-202601-0001"""
    return next_document_number(
        document_type=DOCUMENT_TYPE_PURCHASE_REQUEST,
        period=pr_period(now),
        prefix="PR",
    )


def next_purchase_order_number(now: datetime | None = None) -> str:
    """Format: PO-2026-0001"""
    return next_document_number(
        document_type=DOCUMENT_TYPE_PURCHASE_ORDER,
        period=po_period(now),
        prefix="PO",
    )
