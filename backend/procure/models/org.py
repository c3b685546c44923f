from __future__ import annotations

from ..extensions import db
from procure.time_utils import to_utc_z


# User roles
ROLE_STAFF = "STAFF"
ROLE_MANAGER = "MANAGER"
ROLE_FINANCE = "FINANCE"
ROLE_ADMIN = "ADMIN"
ROLE_PROCUREMENT = "PROCUREMENT"
VALID_ROLES = {ROLE_STAFF, ROLE_MANAGER, ROLE_FINANCE, ROLE_ADMIN, ROLE_PROCUREMENT}

# Vendor statuses (only ACTIVE vendors may receive purchase orders)
VENDOR_STATUS_PENDING_REVIEW = "PENDING_REVIEW"
VENDOR_STATUS_ACTIVE = "ACTIVE"
VENDOR_STATUS_INACTIVE = "INACTIVE"
VENDOR_STATUS_BLACKLISTED = "BLACKLISTED"
VALID_VENDOR_STATUSES = {
    VENDOR_STATUS_PENDING_REVIEW,
    VENDOR_STATUS_ACTIVE,
    VENDOR_STATUS_INACTIVE,
    VENDOR_STATUS_BLACKLISTED,
}

# Payment terms, days until due
PAYMENT_TERMS = {
    "IMMEDIATE": 0,
    "NET15": 15,
    "NET30": 30,
    "NET45": 45,
    "NET60": 60,
}


class Department(db.Model):
    """
    Organisational unit that owns a yearly budget.

    Requesters, and the managers who approve their requests at level 1,
    belong to exactly one department.
    """
    __tablename__ = "departments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    User accounts for authentication and attribution.

    WHY: Every workflow action must be attributable. The role decides which
    approval level a user may act on; the department decides whose requests
    a manager may approve and which budget a requester draws against.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_department_role", "department_id", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    full_name = db.Column(db.String(255), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default=ROLE_STAFF)

    # Nullable for org-level users (finance, admin)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    department = db.relationship("Department", backref=db.backref("users", lazy=True))

    def has_role(self, *roles: str) -> bool:
        return self.role in roles

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "department_id": self.department_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Bearer session token.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout
    - 2-hour idle timeout
    - Revocable on logout
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }


class Vendor(db.Model):
    """
    Supplier that purchase orders are issued to.

    Vendor master data is maintained elsewhere; the workflow only needs the
    status gate (ACTIVE) and default payment terms.
    """
    __tablename__ = "vendors"
    __table_args__ = (
        db.Index("ix_vendors_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    # Contact information
    contact_name = db.Column(db.String(255), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.Text, nullable=True)

    payment_terms = db.Column(db.String(16), nullable=False, default="NET30")

    status = db.Column(db.String(16), nullable=False, default=VENDOR_STATUS_ACTIVE)
    status_reason = db.Column(db.Text, nullable=True)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def can_receive_po(self) -> bool:
        return self.status == VENDOR_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Vendor id={self.id} code={self.code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "address": self.address,
            "payment_terms": self.payment_terms,
            "status": self.status,
            "status_reason": self.status_reason,
            "status_changed_at": to_utc_z(self.status_changed_at) if self.status_changed_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
