"""
API route tests.

SECURITY: every workflow route requires a session token; role gates
return 403; domain errors map to their HTTP status codes.
"""

import pytest

from procure.models import PurchaseRequest

from conftest import PASSWORD, auth_headers, get_auth_token, items_for


@pytest.fixture
def login(client):
    def _login(user):
        token = get_auth_token(client, user.username)
        assert token is not None
        return auth_headers(token)
    return _login


def create_pr(client, headers, total_cents=100_000, **extra):
    body = {"description": "Office chairs", "items": items_for(total_cents)}
    body.update(extra)
    return client.post('/api/purchase-requests', json=body, headers=headers)


# =============================================================================
# AUTHENTICATION
# =============================================================================

class TestAuthentication:

    def test_login_and_me(self, client, staff):
        response = client.post('/api/auth/login', json={'username': staff.username, 'password': PASSWORD})
        assert response.status_code == 200
        token = response.json['token']

        me = client.get('/api/auth/me', headers=auth_headers(token))
        assert me.status_code == 200
        assert me.json['user']['username'] == staff.username
        assert me.json['user']['department']['code'] == "IT"

    def test_wrong_password(self, client, staff):
        response = client.post('/api/auth/login', json={'username': staff.username, 'password': 'nope'})
        assert response.status_code == 401

    def test_inactive_user_cannot_login(self, client, make_user, department):
        user = make_user("gone", "STAFF", department, is_active=False)
        assert get_auth_token(client, user.username) is None

    def test_logout_revokes_token(self, client, staff):
        token = get_auth_token(client, staff.username)

        assert client.post('/api/auth/logout', headers=auth_headers(token)).status_code == 200
        assert client.get('/api/auth/me', headers=auth_headers(token)).status_code == 401

    @pytest.mark.parametrize("method,path", [
        ("post", "/api/purchase-requests"),
        ("get", "/api/purchase-requests/mine"),
        ("post", "/api/purchase-requests/1/approve"),
        ("get", "/api/purchase-orders"),
        ("get", "/api/budgets/1"),
    ])
    def test_token_required(self, client, db_session, method, path):
        response = getattr(client, method)(path, json={})
        assert response.status_code == 401

    def test_invalid_token(self, client, db_session):
        response = client.get('/api/purchase-requests/mine', headers=auth_headers("forged"))
        assert response.status_code == 401


# =============================================================================
# PURCHASE REQUESTS
# =============================================================================

class TestPurchaseRequestRoutes:

    def test_create_submits_by_default(self, client, budget, staff, login):
        response = create_pr(client, login(staff), 250_000)

        assert response.status_code == 201
        assert response.json['status'] == "PENDING_MANAGER"
        assert response.json['total_cents'] == 250_000
        assert len(response.json['items']) == 1

    def test_create_as_draft(self, client, budget, staff, login):
        response = create_pr(client, login(staff), submit=False)

        assert response.status_code == 201
        assert response.json['status'] == "DRAFT"

    def test_insufficient_budget_is_409(self, client, budget, staff, login):
        response = create_pr(client, login(staff), budget.total_cents + 1)

        assert response.status_code == 409
        assert response.json['requested_cents'] == budget.total_cents + 1
        assert PurchaseRequest.query.count() == 0

    def test_invalid_items_is_400(self, client, budget, staff, login):
        response = client.post(
            '/api/purchase-requests',
            json={"description": "x", "items": [{"item_name": "A", "quantity": "1.5", "unit_price_cents": 1}]},
            headers=login(staff),
        )
        assert response.status_code == 400

    def test_oversized_line_is_400(self, client, budget, staff, login):
        response = client.post(
            '/api/purchase-requests',
            json={"description": "x", "items": [{"item_name": "A", "quantity": 10_000_000, "unit_price_cents": 10**13}]},
            headers=login(staff),
        )
        assert response.status_code == 400
        assert PurchaseRequest.query.count() == 0

    @pytest.mark.parametrize("flag,status", [("false", "DRAFT"), ("0", "DRAFT"), ("true", "PENDING_MANAGER")])
    def test_submit_flag_parsed_from_string(self, client, budget, staff, login, flag, status):
        response = create_pr(client, login(staff), submit=flag)

        assert response.status_code == 201
        assert response.json['status'] == status

    def test_unparseable_submit_flag_is_400(self, client, budget, staff, login):
        response = create_pr(client, login(staff), submit="later")

        assert response.status_code == 400
        assert PurchaseRequest.query.count() == 0

    def test_full_approval_flow(self, client, budget, staff, manager, finance, login):
        pr_id = create_pr(client, login(staff), 300_000).json['id']

        response = client.post(f'/api/purchase-requests/{pr_id}/approve', json={"comments": "ok"}, headers=login(manager))
        assert response.status_code == 200
        assert response.json['status'] == "PENDING_FINANCE"

        response = client.post(f'/api/purchase-requests/{pr_id}/approve', json={}, headers=login(finance))
        assert response.status_code == 200
        assert response.json['status'] == "APPROVED"
        assert len(response.json['approval_histories']) == 2

        summary = client.get(f'/api/budgets/{budget.department_id}', headers=login(staff))
        assert summary.status_code == 200
        assert summary.json['used'] == 300_000
        assert summary.json['reserved'] == 0

    def test_staff_cannot_approve(self, client, budget, staff, login):
        pr_id = create_pr(client, login(staff)).json['id']

        response = client.post(f'/api/purchase-requests/{pr_id}/approve', json={}, headers=login(staff))
        assert response.status_code == 403

    def test_other_department_manager_forbidden(self, client, budget, staff, other_manager, login):
        pr_id = create_pr(client, login(staff)).json['id']
        headers = login(other_manager)

        assert client.post(f'/api/purchase-requests/{pr_id}/approve', json={}, headers=headers).status_code == 403
        assert client.get(f'/api/purchase-requests/{pr_id}', headers=headers).status_code == 403

    def test_approve_twice_is_409(self, client, budget, staff, manager, login):
        pr_id = create_pr(client, login(staff)).json['id']
        headers = login(manager)

        assert client.post(f'/api/purchase-requests/{pr_id}/approve', json={}, headers=headers).status_code == 200
        response = client.post(f'/api/purchase-requests/{pr_id}/approve', json={}, headers=headers)
        assert response.status_code == 409
        assert response.json['current_status'] == "PENDING_FINANCE"

    def test_reject_requires_reason(self, client, budget, staff, manager, login):
        pr_id = create_pr(client, login(staff)).json['id']

        response = client.post(f'/api/purchase-requests/{pr_id}/reject', json={}, headers=login(manager))
        assert response.status_code == 400

    def test_cancel_and_history(self, client, budget, staff, login):
        headers = login(staff)
        pr_id = create_pr(client, headers).json['id']

        response = client.post(f'/api/purchase-requests/{pr_id}/cancel', json={"reason": "Duplicate"}, headers=headers)
        assert response.status_code == 200
        assert response.json['status'] == "CANCELLED"

        history = client.get(f'/api/purchase-requests/{pr_id}/history', headers=headers)
        assert history.status_code == 200
        assert [row['action'] for row in history.json['items']] == ["CANCELLED"]

    def test_missing_request_is_404(self, client, budget, staff, login):
        response = client.get('/api/purchase-requests/99999', headers=login(staff))
        assert response.status_code == 404

    def test_listings(self, client, budget, staff, manager, login):
        create_pr(client, login(staff), 1_000)
        create_pr(client, login(staff), 2_000, submit=False)

        mine = client.get('/api/purchase-requests/mine', headers=login(staff))
        assert mine.json['total'] == 2

        pending = client.get('/api/purchase-requests/pending', headers=login(manager))
        assert pending.status_code == 200
        assert pending.json['total'] == 1

        department = client.get('/api/purchase-requests/department?status=DRAFT', headers=login(manager))
        assert department.json['total'] == 1

        assert client.get('/api/purchase-requests/department', headers=login(staff)).status_code == 403


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

class TestPurchaseOrderRoutes:

    @pytest.fixture
    def approved_id(self, client, budget, staff, manager, finance, login):
        pr_id = create_pr(client, login(staff), 1_000_000).json['id']
        client.post(f'/api/purchase-requests/{pr_id}/approve', json={}, headers=login(manager))
        client.post(f'/api/purchase-requests/{pr_id}/approve', json={}, headers=login(finance))
        return pr_id

    def test_generate_and_walk_lifecycle(self, client, approved_id, vendor, procurement, login):
        headers = login(procurement)

        response = client.post('/api/purchase-orders', json={
            "purchase_request_id": approved_id,
            "vendor_id": vendor.id,
            "terms": {"tax_rate_bps": 1100},
        }, headers=headers)
        assert response.status_code == 201
        po = response.json
        assert po['grand_total_cents'] == 1_110_000
        assert po['allowed_transitions'] == ["ISSUED", "CANCELLED"]
        assert po['editable'] is True

        response = client.post(f"/api/purchase-orders/{po['id']}/status", json={"status": "RECEIVED"}, headers=headers)
        assert response.status_code == 409

        response = client.post(f"/api/purchase-orders/{po['id']}/status", json={"status": "ISSUED"}, headers=headers)
        assert response.status_code == 200
        assert response.json['editable'] is False

    def test_second_active_order_is_409(self, client, approved_id, vendor, procurement, login):
        headers = login(procurement)
        body = {"purchase_request_id": approved_id, "vendor_id": vendor.id}

        assert client.post('/api/purchase-orders', json=body, headers=headers).status_code == 201
        assert client.post('/api/purchase-orders', json=body, headers=headers).status_code == 409

    def test_staff_cannot_generate(self, client, approved_id, vendor, staff, login):
        response = client.post('/api/purchase-orders', json={
            "purchase_request_id": approved_id,
            "vendor_id": vendor.id,
        }, headers=login(staff))
        assert response.status_code == 403

    def test_missing_fields_is_400(self, client, approved_id, procurement, login):
        response = client.post('/api/purchase-orders', json={"purchase_request_id": approved_id}, headers=login(procurement))
        assert response.status_code == 400

    def test_requester_can_view_order(self, client, approved_id, vendor, staff, procurement, login):
        po_id = client.post('/api/purchase-orders', json={
            "purchase_request_id": approved_id,
            "vendor_id": vendor.id,
        }, headers=login(procurement)).json['id']

        response = client.get(f'/api/purchase-orders/{po_id}', headers=login(staff))
        assert response.status_code == 200
        assert response.json['purchase_request_id'] == approved_id


# =============================================================================
# BUDGETS AND SYSTEM
# =============================================================================

class TestBudgetRoutes:

    def test_member_of_other_department_forbidden(self, client, budget, other_manager, login):
        response = client.get(f'/api/budgets/{budget.department_id}', headers=login(other_manager))
        assert response.status_code == 403

    def test_finance_creates_and_updates(self, client, other_department, finance, login):
        headers = login(finance)

        response = client.post('/api/budgets', json={
            "department_id": other_department.id,
            "total_cents": 5_000_000,
        }, headers=headers)
        assert response.status_code == 201
        budget_id = response.json['id']

        response = client.put(f'/api/budgets/{budget_id}', json={"total_cents": 6_000_000}, headers=headers)
        assert response.status_code == 200
        assert response.json['available_cents'] == 6_000_000

    def test_staff_cannot_allocate(self, client, department, staff, login):
        response = client.post('/api/budgets', json={"department_id": department.id, "total_cents": 1}, headers=login(staff))
        assert response.status_code == 403


def test_health(client, db_session):
    response = client.get('/api/system/health')
    assert response.status_code == 200
    assert response.json['status'] == "healthy"
