"""
Purchase request workflow tests.

Covers the two-level approval state machine, its interaction with the
budget ledger, auto-approval, and who may perform each transition.
"""

import logging

import pytest

from procure.models import ApprovalHistory, PurchaseRequest
from procure.models.requests import (
    PR_STATUS_APPROVED,
    PR_STATUS_CANCELLED,
    PR_STATUS_DRAFT,
    PR_STATUS_PENDING_FINANCE,
    PR_STATUS_PENDING_MANAGER,
    PR_STATUS_REJECTED,
)
from procure.services import purchase_request_service as prs
from procure.services import activity_service, settings_service
from procure.validation import (
    MAX_AMOUNT_CENTS,
    AuthorizationError,
    InsufficientBudgetError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

from conftest import BUDGET_TOTAL, in_transaction, items_for, refreshed_budget


def submit_request(user, total_cents, description="Team laptops"):
    return in_transaction(lambda: prs.create_request(user.id, items_for(total_cents), description))


def draft_request(user, total_cents, description="Team laptops"):
    return in_transaction(
        lambda: prs.create_request(user.id, items_for(total_cents), description, submit_now=False)
    )


def ledger(budget):
    row = refreshed_budget(budget.id)
    return row.total_cents, row.used_cents, row.reserved_cents


# =============================================================================
# END-TO-END SCENARIO
# =============================================================================

class TestBudgetScenario:

    def test_reserve_reject_resubmit_approve(self, db_session, budget, staff, manager, finance):
        pr_a = submit_request(staff, 6_000_000, "PR-A")
        assert pr_a.status == PR_STATUS_PENDING_MANAGER
        assert ledger(budget) == (BUDGET_TOTAL, 0, 6_000_000)

        with pytest.raises(InsufficientBudgetError) as excinfo:
            submit_request(staff, 5_000_000, "PR-B")
        assert excinfo.value.available_cents == 4_000_000
        assert ledger(budget) == (BUDGET_TOTAL, 0, 6_000_000)
        assert db_session.query(PurchaseRequest).count() == 1

        in_transaction(lambda: prs.reject(pr_a.id, manager.id, "Not this quarter"))
        assert ledger(budget) == (BUDGET_TOTAL, 0, 0)

        pr_b = submit_request(staff, 5_000_000, "PR-B")
        assert ledger(budget) == (BUDGET_TOTAL, 0, 5_000_000)

        in_transaction(lambda: prs.approve(pr_b.id, manager.id, 1))
        in_transaction(lambda: prs.approve(pr_b.id, finance.id, 2))

        assert prs.get_request(pr_b.id).status == PR_STATUS_APPROVED
        assert ledger(budget) == (BUDGET_TOTAL, 5_000_000, 0)


# =============================================================================
# CREATION, EDITING AND SUBMISSION
# =============================================================================

class TestCreateAndSubmit:

    def test_create_draft_holds_no_budget(self, db_session, budget, staff):
        pr = draft_request(staff, 250_000)

        assert pr.status == PR_STATUS_DRAFT
        assert pr.total_cents == 250_000
        assert pr.budget_id is None
        assert pr.request_number.startswith("PR-")
        assert ledger(budget) == (BUDGET_TOTAL, 0, 0)

    def test_submit_draft_reserves_total(self, db_session, budget, staff):
        pr = draft_request(staff, 250_000)
        pr = in_transaction(lambda: prs.submit(pr.id, staff.id))

        assert pr.status == PR_STATUS_PENDING_MANAGER
        assert pr.budget_id == budget.id
        assert pr.submitted_at is not None
        assert ledger(budget) == (BUDGET_TOTAL, 0, 250_000)

    def test_total_is_sum_of_line_subtotals(self, db_session, budget, staff):
        items = [
            {"item_name": "Monitor", "quantity": 3, "unit_price_cents": 120_000},
            {"item_name": "Cable", "quantity": 10, "unit": "m", "unit_price_cents": 1_500},
        ]
        pr = in_transaction(lambda: prs.create_request(staff.id, items, "Desk setup"))

        assert pr.total_cents == 375_000
        assert [item.unit for item in pr.items] == ["pcs", "m"]
        assert ledger(budget) == (BUDGET_TOTAL, 0, 375_000)

    def test_title_defaults_to_first_description_line(self, db_session, budget, staff):
        pr = draft_request(staff, 1_000, "Printer toner\nFor the second floor")
        assert pr.title == "Printer toner"

    def test_submit_without_items_rejected(self, db_session, budget, staff):
        pr = in_transaction(lambda: prs.create_request(staff.id, [], "Empty", submit_now=False))

        with pytest.raises(ValidationError):
            in_transaction(lambda: prs.submit(pr.id, staff.id))
        assert prs.get_request(pr.id).status == PR_STATUS_DRAFT

    def test_submit_zero_total_rejected(self, db_session, budget, staff):
        items = [{"item_name": "Free sample", "quantity": 1, "unit_price_cents": 0}]
        with pytest.raises(ValidationError):
            in_transaction(lambda: prs.create_request(staff.id, items, "Freebie"))

    @pytest.mark.parametrize("bad_item", [
        {"item_name": "", "quantity": 1, "unit_price_cents": 100},
        {"item_name": "Chair", "quantity": 0, "unit_price_cents": 100},
        {"item_name": "Chair", "quantity": 1, "unit_price_cents": -5},
        {"item_name": "Chair", "quantity": 1, "unit_price_cents": 10.5},
    ])
    def test_invalid_items_rejected(self, db_session, budget, staff, bad_item):
        with pytest.raises(ValidationError):
            in_transaction(lambda: prs.create_request(staff.id, [bad_item], "Chairs"))
        assert db_session.query(PurchaseRequest).count() == 0

    @pytest.mark.parametrize("items", [
        [{"item_name": "Bulk order", "quantity": 10_000_000, "unit_price_cents": 100}],
        [{"item_name": "Bulk order", "quantity": 1_000_000, "unit_price_cents": 10**13}],
        [{"item_name": "Turbine", "quantity": 1, "unit_price_cents": MAX_AMOUNT_CENTS}] * 2,
    ])
    def test_totals_beyond_amount_limit_rejected(self, db_session, budget, staff, items):
        with pytest.raises(ValidationError):
            in_transaction(lambda: prs.create_request(staff.id, items, "Oversized", submit_now=False))
        assert db_session.query(PurchaseRequest).count() == 0

    def test_submit_without_budget_for_year(self, db_session, staff):
        with pytest.raises(NotFoundError):
            submit_request(staff, 1_000)
        assert db_session.query(PurchaseRequest).count() == 0

    def test_requester_without_department(self, db_session, finance):
        with pytest.raises(ValidationError):
            submit_request(finance, 1_000)

    def test_update_draft_replaces_items(self, db_session, budget, staff):
        pr = draft_request(staff, 10_000)
        pr = in_transaction(lambda: prs.update_draft(
            pr.id,
            staff.id,
            [
                {"item_name": "Keyboard", "quantity": 2, "unit_price_cents": 30_000},
                {"item_name": "Mouse", "quantity": 2, "unit_price_cents": 15_000},
            ],
            title="Peripherals",
        ))

        assert pr.title == "Peripherals"
        assert len(pr.items) == 2
        assert pr.total_cents == 90_000

    def test_update_after_submit_rejected(self, db_session, budget, staff):
        pr = submit_request(staff, 10_000)

        with pytest.raises(InvalidTransitionError):
            in_transaction(lambda: prs.update_draft(pr.id, staff.id, items_for(20_000)))
        assert prs.get_request(pr.id).total_cents == 10_000

    def test_update_by_other_user_rejected(self, db_session, budget, staff, manager):
        pr = draft_request(staff, 10_000)

        with pytest.raises(AuthorizationError):
            in_transaction(lambda: prs.update_draft(pr.id, manager.id, items_for(20_000)))

    def test_submit_by_other_user_rejected(self, db_session, budget, staff, manager):
        pr = draft_request(staff, 10_000)

        with pytest.raises(AuthorizationError):
            in_transaction(lambda: prs.submit(pr.id, manager.id))
        assert ledger(budget) == (BUDGET_TOTAL, 0, 0)

    def test_submit_purchase_request_entry_point(self, db_session, budget, staff):
        pr = in_transaction(lambda: prs.submit_purchase_request(
            staff.id, items_for(75_000), "Standing desk", required_date="2026-12-01"
        ))

        assert pr.status == PR_STATUS_PENDING_MANAGER
        assert pr.required_date.isoformat() == "2026-12-01"
        assert ledger(budget) == (BUDGET_TOTAL, 0, 75_000)

    def test_created_and_submitted_activity_logged(self, db_session, budget, staff):
        pr = submit_request(staff, 10_000)

        entries = activity_service.list_activity(entity_type="purchase_request", entity_id=pr.id)
        # newest first
        assert [row.action for row in entries] == ["purchase_request.submitted", "purchase_request.created"]
        assert all(row.actor_user_id == staff.id for row in entries)


# =============================================================================
# APPROVAL AND REJECTION
# =============================================================================

class TestApproval:

    def test_manager_approval_moves_to_finance(self, db_session, budget, staff, manager):
        pr = submit_request(staff, 400_000)
        pr = in_transaction(lambda: prs.approve_by_manager(pr.id, manager.id, "OK"))

        assert pr.status == PR_STATUS_PENDING_FINANCE
        assert pr.manager_approver_id == manager.id
        assert pr.manager_notes == "OK"
        # Reservation stays in place until finance decides
        assert ledger(budget) == (BUDGET_TOTAL, 0, 400_000)

    def test_finance_approval_commits_reservation(self, db_session, budget, staff, manager, finance):
        pr = submit_request(staff, 400_000)
        in_transaction(lambda: prs.approve_by_manager(pr.id, manager.id))
        pr = in_transaction(lambda: prs.approve_by_finance(pr.id, finance.id))

        assert pr.status == PR_STATUS_APPROVED
        assert pr.finance_approver_id == finance.id
        assert ledger(budget) == (BUDGET_TOTAL, 400_000, 0)

    def test_history_rows_for_each_level(self, db_session, budget, staff, manager, finance):
        pr = submit_request(staff, 400_000)
        in_transaction(lambda: prs.approve(pr.id, manager.id, 1, "Fine"))
        in_transaction(lambda: prs.approve(pr.id, finance.id, 2))

        history = db_session.query(ApprovalHistory).filter_by(purchase_request_id=pr.id).order_by(ApprovalHistory.id).all()
        assert [(h.approval_level, h.action, h.previous_status, h.new_status) for h in history] == [
            (1, "APPROVED", PR_STATUS_PENDING_MANAGER, PR_STATUS_PENDING_FINANCE),
            (2, "APPROVED", PR_STATUS_PENDING_FINANCE, PR_STATUS_APPROVED),
        ]
        assert history[0].comments == "Fine"
        assert history[0].amount_cents == 400_000
        assert history[0].department_remaining_cents == BUDGET_TOTAL - 400_000
        assert history[1].department_remaining_cents == BUDGET_TOTAL - 400_000

    def test_reject_at_finance_releases(self, db_session, budget, staff, manager, finance):
        pr = submit_request(staff, 400_000)
        in_transaction(lambda: prs.approve(pr.id, manager.id, 1))
        pr = in_transaction(lambda: prs.reject(pr.id, finance.id, "Over market price"))

        assert pr.status == PR_STATUS_REJECTED
        assert pr.rejected_by_id == finance.id
        assert pr.rejection_reason == "Over market price"
        assert ledger(budget) == (BUDGET_TOTAL, 0, 0)

        last = prs.get_request(pr.id).approval_histories[-1]
        assert (last.approval_level, last.action) == (2, "REJECTED")

    def test_transition_logged_on_app_logger(self, app, db_session, budget, staff, manager, caplog):
        pr = submit_request(staff, 10_000)

        with caplog.at_level(logging.INFO, logger=app.logger.name):
            in_transaction(lambda: prs.approve(pr.id, manager.id, 1))

        assert any(
            record.name == app.logger.name and pr.request_number in record.getMessage()
            for record in caplog.records
        )

    def test_reject_requires_reason(self, db_session, budget, staff, manager):
        pr = submit_request(staff, 400_000)

        with pytest.raises(ValidationError):
            in_transaction(lambda: prs.reject(pr.id, manager.id, "  "))
        assert prs.get_request(pr.id).status == PR_STATUS_PENDING_MANAGER

    def test_manager_of_other_department_cannot_approve(self, db_session, budget, staff, other_manager):
        pr = submit_request(staff, 400_000)

        with pytest.raises(AuthorizationError):
            in_transaction(lambda: prs.approve(pr.id, other_manager.id, 1))
        assert prs.get_request(pr.id).status == PR_STATUS_PENDING_MANAGER

    def test_staff_cannot_approve(self, db_session, budget, staff):
        pr = submit_request(staff, 400_000)

        with pytest.raises(AuthorizationError):
            in_transaction(lambda: prs.approve(pr.id, staff.id, 1))

    def test_manager_cannot_act_as_finance(self, db_session, budget, staff, manager):
        pr = submit_request(staff, 400_000)
        in_transaction(lambda: prs.approve(pr.id, manager.id, 1))

        with pytest.raises(AuthorizationError):
            in_transaction(lambda: prs.approve(pr.id, manager.id, 2))
        assert ledger(budget) == (BUDGET_TOTAL, 0, 400_000)

    def test_invalid_level(self, db_session, budget, staff, manager):
        pr = submit_request(staff, 400_000)

        with pytest.raises(ValidationError):
            in_transaction(lambda: prs.approve(pr.id, manager.id, 3))

    def test_pending_queues(self, db_session, budget, staff, manager, other_manager, finance):
        first = submit_request(staff, 100_000, "first")
        second = submit_request(staff, 200_000, "second")
        in_transaction(lambda: prs.approve(second.id, manager.id, 1))

        rows, total = prs.list_pending_approvals(manager.id, 1)
        assert total == 1 and rows[0].id == first.id

        rows, total = prs.list_pending_approvals(other_manager.id, 1)
        assert total == 0

        rows, total = prs.list_pending_approvals(finance.id, 2)
        assert total == 1 and rows[0].id == second.id

        with pytest.raises(AuthorizationError):
            prs.list_pending_approvals(staff.id, 1)


# =============================================================================
# CANCELLATION
# =============================================================================

class TestCancel:

    def test_cancel_draft_does_not_touch_budget(self, db_session, budget, staff):
        pr = draft_request(staff, 100_000)
        pr = in_transaction(lambda: prs.cancel_purchase_request(pr.id, staff.id))

        assert pr.status == PR_STATUS_CANCELLED
        assert ledger(budget) == (BUDGET_TOTAL, 0, 0)

    def test_cancel_pending_finance_releases(self, db_session, budget, staff, manager):
        pr = submit_request(staff, 100_000)
        in_transaction(lambda: prs.approve(pr.id, manager.id, 1))
        pr = in_transaction(lambda: prs.cancel_purchase_request(pr.id, staff.id, "No longer needed"))

        assert pr.status == PR_STATUS_CANCELLED
        assert pr.cancelled_by_id == staff.id
        assert ledger(budget) == (BUDGET_TOTAL, 0, 0)

        last = prs.get_request(pr.id).approval_histories[-1]
        assert (last.approval_level, last.action, last.comments) == (0, "CANCELLED", "No longer needed")

    def test_only_requester_can_cancel(self, db_session, budget, staff, manager):
        pr = submit_request(staff, 100_000)

        with pytest.raises(AuthorizationError):
            in_transaction(lambda: prs.cancel_purchase_request(pr.id, manager.id))
        assert ledger(budget) == (BUDGET_TOTAL, 0, 100_000)


# =============================================================================
# TRANSITION CLOSURE
# =============================================================================

class TestTransitionClosure:
    """Every (state, event) pair outside the table fails and changes nothing."""

    @pytest.fixture
    def requests_by_status(self, db_session, budget, staff, manager, finance):
        draft = draft_request(staff, 10_000, "draft")
        pending_manager = submit_request(staff, 20_000, "pending manager")
        pending_finance = submit_request(staff, 30_000, "pending finance")
        in_transaction(lambda: prs.approve(pending_finance.id, manager.id, 1))
        approved = submit_request(staff, 40_000, "approved")
        in_transaction(lambda: prs.approve(approved.id, manager.id, 1))
        in_transaction(lambda: prs.approve(approved.id, finance.id, 2))
        rejected = submit_request(staff, 50_000, "rejected")
        in_transaction(lambda: prs.reject(rejected.id, manager.id, "No"))
        cancelled = submit_request(staff, 60_000, "cancelled")
        in_transaction(lambda: prs.cancel_purchase_request(cancelled.id, staff.id))
        return {
            PR_STATUS_DRAFT: draft.id,
            PR_STATUS_PENDING_MANAGER: pending_manager.id,
            PR_STATUS_PENDING_FINANCE: pending_finance.id,
            PR_STATUS_APPROVED: approved.id,
            PR_STATUS_REJECTED: rejected.id,
            PR_STATUS_CANCELLED: cancelled.id,
        }

    INVALID = [
        (PR_STATUS_DRAFT, "approve_1"),
        (PR_STATUS_DRAFT, "approve_2"),
        (PR_STATUS_DRAFT, "reject"),
        (PR_STATUS_PENDING_MANAGER, "submit"),
        (PR_STATUS_PENDING_MANAGER, "approve_2"),
        (PR_STATUS_PENDING_FINANCE, "submit"),
        (PR_STATUS_PENDING_FINANCE, "approve_1"),
        (PR_STATUS_APPROVED, "submit"),
        (PR_STATUS_APPROVED, "approve_1"),
        (PR_STATUS_APPROVED, "approve_2"),
        (PR_STATUS_APPROVED, "reject"),
        (PR_STATUS_APPROVED, "cancel"),
        (PR_STATUS_REJECTED, "submit"),
        (PR_STATUS_REJECTED, "approve_1"),
        (PR_STATUS_REJECTED, "reject"),
        (PR_STATUS_REJECTED, "cancel"),
        (PR_STATUS_CANCELLED, "submit"),
        (PR_STATUS_CANCELLED, "approve_2"),
        (PR_STATUS_CANCELLED, "reject"),
        (PR_STATUS_CANCELLED, "cancel"),
    ]

    @pytest.mark.parametrize("status,event", INVALID)
    def test_invalid_pair(self, db_session, budget, staff, manager, finance, requests_by_status, status, event):
        pr_id = requests_by_status[status]
        calls = {
            "submit": lambda: prs.submit(pr_id, staff.id),
            "approve_1": lambda: prs.approve(pr_id, manager.id, 1),
            "approve_2": lambda: prs.approve(pr_id, finance.id, 2),
            "reject": lambda: prs.reject(pr_id, manager.id if status != PR_STATUS_PENDING_FINANCE else finance.id, "x"),
            "cancel": lambda: prs.cancel_purchase_request(pr_id, staff.id),
        }
        before_ledger = ledger(budget)
        before_history = db_session.query(ApprovalHistory).count()

        with pytest.raises(InvalidTransitionError):
            in_transaction(calls[event])

        assert prs.get_request(pr_id).status == status
        assert ledger(budget) == before_ledger
        assert db_session.query(ApprovalHistory).count() == before_history

    @pytest.mark.parametrize("status", [PR_STATUS_DRAFT, PR_STATUS_APPROVED, PR_STATUS_REJECTED, PR_STATUS_CANCELLED])
    def test_reject_without_reason_reports_state_first(self, db_session, manager, requests_by_status, status):
        pr_id = requests_by_status[status]

        with pytest.raises(InvalidTransitionError):
            in_transaction(lambda: prs.reject(pr_id, manager.id, ""))
        assert prs.get_request(pr_id).status == status


# =============================================================================
# AUTO-APPROVAL
# =============================================================================

class TestAutoApproval:

    @pytest.fixture
    def auto_approval(self, db_session):
        settings_service.set_value(settings_service.AUTO_APPROVAL_ENABLED, True)
        settings_service.set_value(settings_service.AUTO_APPROVAL_MANAGER_THRESHOLD, 1_000_000)
        db_session.commit()

    def test_small_request_skips_manager(self, db_session, budget, staff, auto_approval):
        pr = submit_request(staff, 500_000)

        assert pr.status == PR_STATUS_PENDING_FINANCE
        assert pr.manager_approver_id == staff.id
        history = prs.get_request(pr.id).approval_histories
        assert len(history) == 1
        assert history[0].approval_level == 1
        assert history[0].comments.startswith("Auto-approved")
        assert ledger(budget) == (BUDGET_TOTAL, 0, 500_000)

    def test_threshold_is_inclusive(self, db_session, budget, staff, auto_approval):
        pr = submit_request(staff, 1_000_000)
        assert pr.status == PR_STATUS_PENDING_FINANCE

    def test_large_request_waits_for_manager(self, db_session, budget, staff, auto_approval):
        pr = submit_request(staff, 1_000_001)
        assert pr.status == PR_STATUS_PENDING_MANAGER

    def test_disabled_by_default(self, db_session, budget, staff):
        pr = submit_request(staff, 1)
        assert pr.status == PR_STATUS_PENDING_MANAGER
