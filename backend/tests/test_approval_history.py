import pytest

from procure.models import ApprovalHistory
from procure.services import approval_history_service
from procure.services import purchase_request_service as prs
from procure.validation import NotFoundError

from conftest import in_transaction, items_for


@pytest.fixture
def approved_once(db_session, budget, staff, manager):
    pr = in_transaction(lambda: prs.create_request(staff.id, items_for(80_000), "Headsets"))
    in_transaction(lambda: prs.approve(pr.id, manager.id, 1, "Go ahead"))
    return pr


class TestApprovalHistory:

    def test_list_for_request_oldest_first(self, db_session, approved_once, staff):
        in_transaction(lambda: prs.cancel_purchase_request(approved_once.id, staff.id, "Bought elsewhere"))

        rows = approval_history_service.list_for_request(approved_once.id)

        assert [row.action for row in rows] == ["APPROVED", "CANCELLED"]
        assert rows[0].id < rows[1].id

    def test_list_for_missing_request(self, db_session):
        with pytest.raises(NotFoundError):
            approval_history_service.list_for_request(123456)

    def test_rows_cannot_be_updated(self, db_session, approved_once):
        row = db_session.query(ApprovalHistory).filter_by(purchase_request_id=approved_once.id).one()
        row.comments = "Rewritten"

        with pytest.raises(ValueError):
            db_session.flush()
        db_session.rollback()

        row = db_session.query(ApprovalHistory).filter_by(purchase_request_id=approved_once.id).one()
        assert row.comments == "Go ahead"

    def test_rows_cannot_be_deleted(self, db_session, approved_once):
        row = db_session.query(ApprovalHistory).filter_by(purchase_request_id=approved_once.id).one()
        db_session.delete(row)

        with pytest.raises(ValueError):
            db_session.flush()
        db_session.rollback()

        assert db_session.query(ApprovalHistory).filter_by(purchase_request_id=approved_once.id).count() == 1

    def test_unknown_action_rejected(self, db_session, approved_once, manager):
        with pytest.raises(ValueError):
            approval_history_service.record_transition(
                approved_once,
                approver_id=manager.id,
                level=1,
                action="ESCALATED",
                previous_status="PENDING_MANAGER",
                new_status="PENDING_FINANCE",
            )
