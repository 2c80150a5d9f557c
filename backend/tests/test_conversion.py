"""
Order conversion tests.

Verifies:
- Approval runs behind a password step-up and creates exactly one order
- Retried approvals answer AlreadyFinalized with the existing order number
- Stock that moved since issue blocks conversion until confirmed
- A concurrent approval that commits first wins; the loser creates nothing
- Only version conflicts are retried; store failures reach the caller
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from quoteflow import create_app
from quoteflow.errors import AlreadyFinalizedError, AvailabilityConflictError
from quoteflow.extensions import db
from quoteflow.models import AuditEvent, Quotation, SalesOrder
from quoteflow.services import (
    catalog_service,
    conversion_service,
    inventory_service,
    quotation_service,
    reconciliation_service,
    workflow_service,
)
from quoteflow.services.auth_service import create_default_roles, create_user
from quoteflow.services.concurrency import run_in_transaction


def _approve_with_password(quotation_id, buyer_id, **kwargs):
    challenge = workflow_service.decide(quotation_id, buyer_id, "approve", **kwargs)
    assert challenge.outcome == "challenge"
    return workflow_service.satisfy_challenge(
        challenge.session_ref, {"password": "Password123!"}, actor_user_id=buyer_id,
    )


class TestApproval:

    def test_approval_requires_password_then_creates_order(self, buyer, issued_quotation):
        challenge = workflow_service.decide(issued_quotation.id, buyer.id, "approve", "Looks good")

        assert challenge.outcome == "challenge"
        assert challenge.required_kinds == ["password"]
        assert challenge.to_dict()["requires_step_up"] is True
        # Nothing happens until the challenge is satisfied
        assert db.session.get(Quotation, issued_quotation.id).status == "issued"
        assert db.session.query(SalesOrder).count() == 0

        resumed = workflow_service.satisfy_challenge(
            challenge.session_ref, {"password": "Password123!"}, actor_user_id=buyer.id,
        )

        assert resumed.outcome == "resumed"
        result = resumed.result
        assert result.created is True
        assert result.order.order_number == "SO-000001"
        assert result.quotation.status == "approved"
        assert result.quotation.linked_order_number == "SO-000001"
        assert result.quotation.decision_comment == "Looks good"
        assert result.quotation.decided_by_user_id == buyer.id

    def test_second_approval_returns_already_finalized_with_same_order(self, buyer, issued_quotation):
        first = _approve_with_password(issued_quotation.id, buyer.id)
        order_number = first.result.order.order_number

        with pytest.raises(AlreadyFinalizedError) as exc_info:
            workflow_service.decide(issued_quotation.id, buyer.id, "approve")

        assert exc_info.value.status == "approved"
        assert exc_info.value.order_number == order_number
        assert exc_info.value.decided_by_user_id == buyer.id
        assert db.session.query(SalesOrder).count() == 1

    def test_order_snapshots_quotation(self, buyer, issued_quotation):
        order = _approve_with_password(issued_quotation.id, buyer.id).result.order

        assert order.quotation_reference == issued_quotation.reference_number
        assert order.buyer_id == buyer.id
        assert order.grand_total_cents == 145000
        assert order.outstanding_balance_cents == 145000
        assert order.total_paid_cents == 0
        assert order.payment_status == "pending"
        assert [(line.item_name, line.quantity, line.line_total_cents) for line in order.lines] == [
            ("Carrara Marble", 10, 125000),
        ]
        assert [event.action for event in order.timeline] == ["order_confirmed"]

    def test_order_reserves_stock(self, buyer, marble, issued_quotation):
        assert inventory_service.available(marble.id) == 10
        _approve_with_password(issued_quotation.id, buyer.id)
        assert inventory_service.available(marble.id) == 0

    def test_conversion_is_audited(self, buyer, issued_quotation):
        order = _approve_with_password(issued_quotation.id, buyer.id).result.order

        approved = db.session.query(AuditEvent).filter_by(
            entity_type="quotation", entity_id=issued_quotation.id, event_type="quotation.approved",
        ).one()
        assert approved.from_status == "issued"
        assert approved.payload == {"order_number": order.order_number}
        assert db.session.query(AuditEvent).filter_by(
            entity_type="sales_order", entity_id=order.id, event_type="order.created",
        ).count() == 1

    def test_convert_quotation_is_idempotent(self, buyer, issued_quotation):
        first = conversion_service.convert_quotation(issued_quotation.id, actor_user_id=buyer.id)
        second = conversion_service.convert_quotation(issued_quotation.id, actor_user_id=buyer.id)

        assert first.created is True
        assert second.created is False
        assert second.order.id == first.order.id
        assert db.session.query(SalesOrder).count() == 1

    def test_order_numbers_are_sequential(self, buyer, staff, marble, granite, issue_quotation):
        items = [{"catalog_item_id": granite.id, "quantity": 1}]
        first = issue_quotation(buyer, staff, items)
        second = issue_quotation(buyer, staff, items)

        a = conversion_service.convert_quotation(first.id, actor_user_id=buyer.id)
        b = conversion_service.convert_quotation(second.id, actor_user_id=buyer.id)
        assert (a.order.order_number, b.order.order_number) == ("SO-000001", "SO-000002")


class TestAvailabilityAtConversion:

    def test_stock_drop_blocks_conversion_until_confirmed(self, buyer, marble, issued_quotation):
        marble.stock_quantity = 6
        db.session.commit()

        failed = _approve_with_password(issued_quotation.id, buyer.id)
        assert failed.outcome == "failed"
        assert isinstance(failed.error, AvailabilityConflictError)
        assert failed.error.items[0]["available_quantity"] == 6
        assert db.session.get(Quotation, issued_quotation.id).status == "issued"
        assert db.session.query(SalesOrder).count() == 0

        resumed = _approve_with_password(issued_quotation.id, buyer.id, confirm_adjustments=True)
        order = resumed.result.order
        assert order.lines[0].quantity == 6
        # 6 x 125.00 + 12% tax + 50.00 shipping
        assert order.grand_total_cents == 75000 + 9000 + 5000
        assert resumed.result.quotation.last_adjustments[0]["type"] == "adjusted"

    def test_direct_conversion_raises_conflict(self, buyer, marble, issued_quotation):
        marble.stock_quantity = 0
        db.session.commit()

        with pytest.raises(AvailabilityConflictError):
            conversion_service.convert_quotation(issued_quotation.id, actor_user_id=buyer.id)
        assert db.session.get(Quotation, issued_quotation.id).linked_order_number is None


# =============================================================================
# CONCURRENT APPROVAL
# =============================================================================


@pytest.fixture
def file_app(tmp_path):
    """Separate app on a file database so a second connection can commit mid-transaction."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'BCRYPT_ROUNDS': 4,
        'RISK_VELOCITY_THRESHOLD': 100,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


class TestConcurrentApproval:

    def _seed(self):
        create_default_roles()
        buyer = create_user("racer", "racer@acme.test", "Password123!", roles=["buyer"])
        staff = create_user("pricer", "pricer@quoteflow.test", "Password123!", roles=["staff"])
        item = catalog_service.create_item(sku="TIL-001", name="Terracotta Tile", price_cents=900, stock_quantity=100)
        outcome = workflow_service.submit_quotation(buyer.id, [{"catalog_item_id": item.id, "quantity": 20}])
        quotation = quotation_service.issue(outcome.quotation.id, staff.id)
        return buyer.id, quotation.id, quotation.reference_number

    def _commit_competing_approval(self, quotation_id, buyer_id, reference_number):
        with Session(db.engine) as other:
            quotation = other.get(Quotation, quotation_id)
            quotation.status = "approved"
            quotation.linked_order_number = "SO-999999"
            quotation.decision_kind = "approve"
            quotation.decided_by_user_id = buyer_id
            other.add(SalesOrder(
                order_number="SO-999999",
                quotation_id=quotation_id,
                quotation_reference=reference_number,
                buyer_id=buyer_id,
                subtotal_cents=18000,
                grand_total_cents=18000,
                outstanding_balance_cents=18000,
            ))
            other.commit()

    def test_loser_returns_winner_order_and_creates_nothing(self, file_app, monkeypatch):
        buyer_id, quotation_id, reference = self._seed()

        real_reconcile = reconciliation_service.reconcile_lines
        calls = []

        def racing_reconcile(lines, availability=None):
            if not calls:
                self._commit_competing_approval(quotation_id, buyer_id, reference)
            calls.append(1)
            return real_reconcile(lines, availability)

        monkeypatch.setattr(reconciliation_service, "reconcile_lines", racing_reconcile)

        result = conversion_service.convert_quotation(quotation_id, actor_user_id=buyer_id)

        assert result.created is False
        assert result.order.order_number == "SO-999999"
        assert result.quotation.linked_order_number == "SO-999999"
        assert db.session.query(SalesOrder).filter_by(quotation_id=quotation_id).count() == 1

    def test_retry_after_race_reports_existing_order(self, file_app):
        buyer_id, quotation_id, reference = self._seed()
        self._commit_competing_approval(quotation_id, buyer_id, reference)

        with pytest.raises(AlreadyFinalizedError) as exc_info:
            workflow_service.decide(quotation_id, buyer_id, "approve")
        assert exc_info.value.order_number == "SO-999999"


class TestTransactionRetries:

    def test_store_failure_is_raised_after_one_call(self, app):
        calls = []

        def unavailable():
            calls.append(1)
            raise OperationalError("UPDATE quotations", {}, Exception("database is locked"))

        with pytest.raises(OperationalError):
            run_in_transaction(unavailable)
        assert len(calls) == 1

    def test_version_conflict_is_retried(self, app):
        calls = []

        def conflicting_once():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("UPDATE statement on table 'quotations' expected to update 1 row(s); 0 were matched.")
            return "ok"

        assert run_in_transaction(conflicting_once, backoff_base=0) == "ok"
        assert len(calls) == 2
