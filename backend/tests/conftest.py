"""
Pytest fixtures for procurement backend tests.

Provides the test app (in-memory SQLite), a per-test clean database,
organisation fixtures (departments, users per role, budget, vendors) and
auth helpers for API tests.
"""

import pytest

from procure import create_app
from procure.extensions import db
from procure.models import Budget, Department, User, Vendor
from procure.models.org import (
    ROLE_ADMIN,
    ROLE_FINANCE,
    ROLE_MANAGER,
    ROLE_PROCUREMENT,
    ROLE_STAFF,
    VENDOR_STATUS_ACTIVE,
    VENDOR_STATUS_BLACKLISTED,
)
from procure.services.auth_service import hash_password
from procure.services.concurrency import run_in_transaction
from procure.time_utils import current_year


PASSWORD = "Password123!"

# 100,000.00 in minor units
BUDGET_TOTAL = 10_000_000


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test, schema kept."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is deliberately slow; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    """Factory: make_user("alice", ROLE_STAFF, department)."""
    def _make(username, role, department=None, is_active=True):
        user = User(
            username=username,
            email=f"{username}@example.com",
            full_name=username.title(),
            password_hash=password_hash,
            role=role,
            department_id=department.id if department else None,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def department(db_session):
    dept = Department(code="IT", name="Information Technology", is_active=True)
    db_session.add(dept)
    db_session.commit()
    return dept


@pytest.fixture(scope='function')
def other_department(db_session):
    dept = Department(code="HR", name="Human Resources", is_active=True)
    db_session.add(dept)
    db_session.commit()
    return dept


@pytest.fixture(scope='function')
def budget(db_session, department):
    """This year's IT budget: total 10,000,000, nothing used or reserved."""
    row = Budget(
        department_id=department.id,
        year=current_year(),
        total_cents=BUDGET_TOTAL,
        used_cents=0,
        reserved_cents=0,
    )
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def staff(make_user, department):
    return make_user("staff_it", ROLE_STAFF, department)


@pytest.fixture(scope='function')
def manager(make_user, department):
    return make_user("manager_it", ROLE_MANAGER, department)


@pytest.fixture(scope='function')
def other_manager(make_user, other_department):
    return make_user("manager_hr", ROLE_MANAGER, other_department)


@pytest.fixture(scope='function')
def finance(make_user):
    return make_user("finance", ROLE_FINANCE)


@pytest.fixture(scope='function')
def procurement(make_user):
    return make_user("procurement", ROLE_PROCUREMENT)


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def vendor(db_session):
    row = Vendor(code="ACME", name="Acme Supplies", payment_terms="NET45", status=VENDOR_STATUS_ACTIVE)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def blacklisted_vendor(db_session):
    row = Vendor(
        code="SHADY",
        name="Shady Goods",
        status=VENDOR_STATUS_BLACKLISTED,
        status_reason="Failed audit",
    )
    db_session.add(row)
    db_session.commit()
    return row


def items_for(total_cents, *, name="Laptop", quantity=1):
    """Single-line item payload worth exactly `total_cents`."""
    assert total_cents % quantity == 0
    return [{
        "item_name": name,
        "quantity": quantity,
        "unit": "pcs",
        "unit_price_cents": total_cents // quantity,
    }]


def in_transaction(func):
    """Run a service call the way the routes do: one committed unit of work."""
    return run_in_transaction(func)


def refreshed_budget(budget_id):
    return db.session.query(Budget).populate_existing().filter_by(id=budget_id).one()


def get_auth_token(client, username, password=PASSWORD):
    """Helper to login and get auth token."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password,
    })
    if response.status_code == 200:
        return response.json['token']
    return None


def auth_headers(token):
    """Create authorization headers."""
    return {'Authorization': f'Bearer {token}'}
