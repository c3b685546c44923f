"""
Authentication, session and vendor master data tests.
"""

from datetime import timedelta

import pytest

from procure.models import ActivityLog, SessionToken
from procure.models.org import ROLE_FINANCE, ROLE_STAFF, VENDOR_STATUS_ACTIVE, VENDOR_STATUS_BLACKLISTED
from procure.services import auth_service, session_service, vendor_service
from procure.services.auth_service import PasswordValidationError
from procure.time_utils import utcnow
from procure.validation import NotFoundError, ValidationError

from conftest import PASSWORD


# =============================================================================
# PASSWORDS AND USERS
# =============================================================================

class TestPasswords:

    @pytest.mark.parametrize("password", [
        "Sh0rt!",
        "alllowercase1!",
        "ALLUPPERCASE1!",
        "NoDigitsHere!",
        "NoSpecials123",
    ])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_verify_password(self, password_hash):
        assert auth_service.verify_password(PASSWORD, password_hash)
        assert not auth_service.verify_password("Password123?", password_hash)

    def test_malformed_hash_is_mismatch(self):
        assert auth_service.verify_password(PASSWORD, "not-a-bcrypt-hash") is False


class TestUsers:

    def test_create_and_authenticate(self, db_session, department):
        user = auth_service.create_user(
            "new_hire", "new_hire@example.com", PASSWORD, role="staff", department_id=department.id
        )
        db_session.commit()

        assert user.role == ROLE_STAFF
        assert auth_service.authenticate("new_hire", PASSWORD).id == user.id
        assert auth_service.authenticate("new_hire@example.com", PASSWORD).id == user.id
        assert auth_service.authenticate("new_hire", "Wrong123!") is None
        assert user.last_login_at is not None

    def test_staff_requires_department(self, db_session):
        with pytest.raises(ValidationError):
            auth_service.create_user("floater", "floater@example.com", PASSWORD, role=ROLE_STAFF)

    def test_duplicate_username(self, db_session, staff):
        with pytest.raises(ValidationError):
            auth_service.create_user(staff.username, "other@example.com", PASSWORD, role=ROLE_FINANCE)

    def test_unknown_department(self, db_session):
        with pytest.raises(NotFoundError):
            auth_service.create_user("lost", "lost@example.com", PASSWORD, role=ROLE_STAFF, department_id=9999)


# =============================================================================
# SESSIONS
# =============================================================================

class TestSessions:

    def test_create_and_validate(self, db_session, staff):
        session, token = session_service.create_session(staff.id)

        assert session.token_hash == session_service.hash_token(token)
        assert session.token_hash != token
        assert session_service.validate_session(token).id == staff.id

    def test_revoked_session_invalid(self, db_session, staff):
        _, token = session_service.create_session(staff.id)

        assert session_service.revoke_session(token)
        assert session_service.validate_session(token) is None
        assert not session_service.revoke_session(token)

    def test_idle_timeout(self, db_session, staff):
        session, token = session_service.create_session(staff.id)
        session.last_used_at = utcnow() - session_service.SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None
        assert db_session.get(SessionToken, session.id).revoked_reason == "Idle timeout"

    def test_absolute_expiry(self, db_session, staff):
        session, token = session_service.create_session(staff.id)
        session.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_deactivated_user(self, db_session, staff):
        _, token = session_service.create_session(staff.id)
        staff.is_active = False
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_revoke_all(self, db_session, staff):
        _, first = session_service.create_session(staff.id)
        _, second = session_service.create_session(staff.id)

        assert session_service.revoke_all_user_sessions(staff.id) == 2
        db_session.commit()
        assert session_service.validate_session(first) is None
        assert session_service.validate_session(second) is None


# =============================================================================
# VENDORS AND DEPARTMENTS
# =============================================================================

class TestVendors:

    def test_create_vendor(self, db_session, admin):
        vendor = vendor_service.create_vendor(
            code="globex",
            name="Globex Corporation",
            payment_terms="net60",
            contact_email="sales@globex.example",
            created_by_user_id=admin.id,
        )
        db_session.commit()

        assert vendor.code == "GLOBEX"
        assert vendor.payment_terms == "NET60"
        assert vendor.status == VENDOR_STATUS_ACTIVE
        assert vendor.can_receive_po()
        assert db_session.query(ActivityLog).filter_by(action="vendor.created", entity_id=vendor.id).count() == 1

    def test_duplicate_code(self, db_session, vendor):
        with pytest.raises(ValidationError):
            vendor_service.create_vendor(code=vendor.code, name="Copycat")

    def test_unknown_payment_terms(self, db_session):
        with pytest.raises(ValidationError):
            vendor_service.create_vendor(code="X1", name="X", payment_terms="NET90")

    def test_blacklist_requires_reason(self, db_session, vendor, admin):
        with pytest.raises(ValidationError):
            vendor_service.set_vendor_status(vendor.id, VENDOR_STATUS_BLACKLISTED, actor_user_id=admin.id)

        updated = vendor_service.set_vendor_status(
            vendor.id, "blacklisted", reason="Fraudulent invoices", actor_user_id=admin.id
        )
        db_session.commit()
        assert updated.status == VENDOR_STATUS_BLACKLISTED
        assert not updated.can_receive_po()
        assert [v.code for v in vendor_service.list_vendors(status=VENDOR_STATUS_BLACKLISTED)] == [vendor.code]

    def test_missing_vendor(self, db_session):
        with pytest.raises(NotFoundError):
            vendor_service.get_vendor(31337)

    def test_departments(self, db_session, department):
        created = vendor_service.create_department(code="fin", name="Finance")
        db_session.commit()

        assert created.code == "FIN"
        assert [d.code for d in vendor_service.list_departments()] == ["FIN", "IT"]
        with pytest.raises(ValidationError):
            vendor_service.create_department(code="IT", name="Duplicate")

    def test_get_department(self, db_session, department):
        assert vendor_service.get_department(department.id).code == "IT"
        with pytest.raises(NotFoundError):
            vendor_service.get_department(4242)
