# Overview: Service-layer operations for auth; password hashing, user creation and login.

"""
Authentication Service

WHY: Every workflow action must be attributable to a user whose role and
department decide what they may approve. Uses bcrypt for password hashing
and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..extensions import db
from ..models import Department, User
from ..models.org import ROLE_FINANCE, ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, ROLE_PROCUREMENT, VALID_ROLES
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, require_text


# Roles that act for a single department and therefore need one
DEPARTMENT_ROLES = {ROLE_STAFF, ROLE_MANAGER}
# Org-level roles may still be attached to a department, but need not be
ORG_ROLES = {ROLE_FINANCE, ROLE_ADMIN, ROLE_PROCUREMENT}


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    role: str = ROLE_STAFF,
    department_id: int | None = None,
    full_name: str | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash (flushed, not committed).

    Staff and managers must belong to a department; finance, procurement
    and admin users may be org-level.

    Raises:
        ValidationError: bad role, weak password, duplicate username/email
        NotFoundError: department missing
    """
    username = require_text(username, "username", max_length=64)
    email = require_text(email, "email", max_length=255)
    role = (role or "").upper()
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(VALID_ROLES))}")

    if department_id is None and role in DEPARTMENT_ROLES:
        raise ValidationError(f"{role} users must belong to a department")
    if department_id is not None:
        department = db.session.query(Department).filter_by(id=department_id).first()
        if department is None:
            raise NotFoundError("Department", department_id)

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValidationError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
        department_id=department_id,
    )
    db.session.add(user)
    db.session.flush()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
