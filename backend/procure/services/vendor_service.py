# Overview: Service-layer operations for vendors and departments; minimal master data the workflow reads.

"""
Vendor Service

WHY: Every purchase order goes to exactly one vendor, and only ACTIVE
vendors may receive one. Vendor master data beyond that gate (catalogs,
ratings, documents) is maintained elsewhere.

Departments live here too: they are the other piece of master data the
workflow needs to run, and need nothing beyond create/read.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Department, Vendor
from ..models.org import PAYMENT_TERMS, VALID_VENDOR_STATUSES, VENDOR_STATUS_ACTIVE
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, optional_text, require_text
from .activity_service import record_activity


def create_vendor(
    *,
    code: str,
    name: str,
    payment_terms: str = "NET30",
    status: str = VENDOR_STATUS_ACTIVE,
    contact_name: str | None = None,
    contact_email: str | None = None,
    contact_phone: str | None = None,
    address: str | None = None,
    created_by_user_id: int | None = None,
) -> Vendor:
    """
    Create a new vendor.

    Raises:
        ValidationError: missing name/code, duplicate code, unknown terms or status
    """
    code = require_text(code, "code", max_length=32).upper()
    name = require_text(name, "name", max_length=255)

    payment_terms = (payment_terms or "").strip().upper()
    if payment_terms not in PAYMENT_TERMS:
        raise ValidationError(f"payment_terms must be one of: {', '.join(PAYMENT_TERMS)}")
    status = (status or "").strip().upper()
    if status not in VALID_VENDOR_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(VALID_VENDOR_STATUSES))}")

    if db.session.query(Vendor).filter_by(code=code).first():
        raise ValidationError(f"Vendor code '{code}' already exists")

    vendor = Vendor(
        code=code,
        name=name,
        payment_terms=payment_terms,
        status=status,
        status_changed_at=utcnow(),
        contact_name=optional_text(contact_name, "contact_name", max_length=255),
        contact_email=optional_text(contact_email, "contact_email", max_length=255),
        contact_phone=optional_text(contact_phone, "contact_phone", max_length=64),
        address=optional_text(address, "address"),
    )
    db.session.add(vendor)
    db.session.flush()

    record_activity(created_by_user_id, "vendor.created", "vendor", vendor.id, f"{vendor.code}: {vendor.name}")
    return vendor


def get_vendor(vendor_id: int) -> Vendor:
    vendor = db.session.query(Vendor).filter_by(id=vendor_id).first()
    if vendor is None:
        raise NotFoundError("Vendor", vendor_id)
    return vendor


def list_vendors(*, status: str | None = None) -> list[Vendor]:
    query = db.session.query(Vendor)
    if status is not None:
        if status not in VALID_VENDOR_STATUSES:
            raise ValidationError(f"Unknown vendor status: {status}")
        query = query.filter(Vendor.status == status)
    return query.order_by(Vendor.name.asc()).all()


def set_vendor_status(
    vendor_id: int,
    status: str,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Vendor:
    """
    Change a vendor's status. Blacklisting requires a reason.

    Existing purchase orders are untouched; the gate applies to new ones.
    """
    status = (status or "").strip().upper()
    if status not in VALID_VENDOR_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(VALID_VENDOR_STATUSES))}")
    reason = optional_text(reason, "reason")
    if status == "BLACKLISTED" and not reason:
        raise ValidationError("A reason is required to blacklist a vendor")

    vendor = get_vendor(vendor_id)
    previous = vendor.status
    vendor.status = status
    vendor.status_reason = reason
    vendor.status_changed_at = utcnow()
    db.session.flush()

    record_activity(
        actor_user_id,
        "vendor.status_changed",
        "vendor",
        vendor.id,
        f"{previous} -> {status}" + (f": {reason}" if reason else ""),
    )
    return vendor


# =============================================================================
# Departments
# =============================================================================

def create_department(*, code: str, name: str) -> Department:
    code = require_text(code, "code", max_length=32).upper()
    name = require_text(name, "name", max_length=255)
    if db.session.query(Department).filter_by(code=code).first():
        raise ValidationError(f"Department code '{code}' already exists")

    department = Department(code=code, name=name, is_active=True)
    db.session.add(department)
    db.session.flush()
    return department


def get_department(department_id: int) -> Department:
    department = db.session.query(Department).filter_by(id=department_id).first()
    if department is None:
        raise NotFoundError("Department", department_id)
    return department


def list_departments() -> list[Department]:
    return db.session.query(Department).order_by(Department.code.asc()).all()
