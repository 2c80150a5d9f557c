"""
Payment proof tests.

Verifies:
- Claims above the outstanding balance are rejected before any challenge (Scenario D)
- Proof submission is gated and re-validated when the challenge resumes
- Staff verification moves the balance; rejection does not
- Proofs are append-only and reviewed at most once
"""

import pytest

from quoteflow.errors import (
    AmountExceedsBalanceError,
    InvalidRequestError,
    NotFoundError,
    OwnershipError,
)
from quoteflow.extensions import db
from quoteflow.models import PaymentProof, SalesOrder, StepUpChallenge
from quoteflow.services import conversion_service, payment_service, workflow_service


@pytest.fixture
def order(buyer, issued_quotation):
    """Order for 1,450.00 created from the issued marble quotation."""
    return conversion_service.convert_quotation(issued_quotation.id, actor_user_id=buyer.id).order


def _submit_with_password(order_id, buyer_id, amount_cents, reference="TRX-001"):
    challenge = workflow_service.submit_payment_proof(order_id, buyer_id, amount_cents, reference)
    assert challenge.outcome == "challenge"
    return workflow_service.satisfy_challenge(
        challenge.session_ref, {"password": "Password123!"}, actor_user_id=buyer_id,
    )


class TestClaimValidation:

    def test_amount_above_balance_is_rejected_without_challenge(self, buyer, order):
        """Scenario D: claim 5.00 over the balance."""
        with pytest.raises(AmountExceedsBalanceError) as exc_info:
            workflow_service.submit_payment_proof(order.id, buyer.id, 145500, "TRX-001")

        assert exc_info.value.outstanding_balance_cents == 145000
        assert exc_info.value.http_status == 422
        assert exc_info.value.to_dict()["outstanding_balance_cents"] == 145000
        assert db.session.query(PaymentProof).count() == 0
        assert db.session.query(StepUpChallenge).count() == 0

    def test_rounding_tolerance_is_accepted(self, buyer, order):
        outcome = workflow_service.submit_payment_proof(order.id, buyer.id, 145001, "TRX-001")
        assert outcome.outcome == "challenge"

    @pytest.mark.parametrize("amount", [0, -100, "1000", 12.5, True, None])
    def test_invalid_amounts(self, buyer, order, amount):
        with pytest.raises(InvalidRequestError):
            workflow_service.submit_payment_proof(order.id, buyer.id, amount, "TRX-001")

    @pytest.mark.parametrize("reference", ["", "   ", None])
    def test_proof_reference_required(self, buyer, order, reference):
        with pytest.raises(InvalidRequestError):
            workflow_service.submit_payment_proof(order.id, buyer.id, 1000, reference)

    def test_other_buyer_cannot_claim(self, other_buyer, order):
        with pytest.raises(OwnershipError):
            workflow_service.submit_payment_proof(order.id, other_buyer.id, 1000, "TRX-001")

    def test_unknown_order(self, buyer):
        with pytest.raises(NotFoundError):
            workflow_service.submit_payment_proof(424242, buyer.id, 1000, "TRX-001")


class TestSubmission:

    def test_gated_submission_appends_pending_proof(self, buyer, order):
        resumed = _submit_with_password(order.id, buyer.id, 45000)

        assert resumed.outcome == "resumed"
        proof = resumed.result
        assert proof.status == "pending"
        assert proof.amount_cents == 45000
        assert proof.submitted_by_user_id == buyer.id

        refreshed = db.session.get(SalesOrder, order.id)
        assert refreshed.payment_status == "payment_in_progress"
        # Pending proofs do not move the balance
        assert refreshed.outstanding_balance_cents == 145000
        assert [event.action for event in refreshed.timeline] == ["order_confirmed", "payment_submitted"]

    def test_claim_is_revalidated_on_resume(self, buyer, staff, order):
        challenge = workflow_service.submit_payment_proof(order.id, buyer.id, 145000, "TRX-FULL")

        # Balance drops while the challenge is open
        other = payment_service.submit_payment_proof(order.id, buyer.id, 100000, "TRX-EARLY")
        payment_service.verify_payment_proof(order.id, other.id, staff.id)

        failed = workflow_service.satisfy_challenge(
            challenge.session_ref, {"password": "Password123!"}, actor_user_id=buyer.id,
        )

        assert failed.outcome == "failed"
        assert isinstance(failed.error, AmountExceedsBalanceError)
        assert failed.http_status == 422
        assert failed.error.outstanding_balance_cents == 45000
        assert db.session.query(PaymentProof).filter_by(proof_reference="TRX-FULL").count() == 0


class TestReview:

    def test_partial_then_full_payment(self, buyer, staff, order):
        first = payment_service.submit_payment_proof(order.id, buyer.id, 45000, "TRX-1")
        after_first = payment_service.verify_payment_proof(order.id, first.id, staff.id, notes="Bank confirmed")

        assert after_first.outstanding_balance_cents == 100000
        assert after_first.total_paid_cents == 45000
        assert after_first.payment_status == "payment_in_progress"

        second = payment_service.submit_payment_proof(order.id, buyer.id, 100000, "TRX-2")
        after_second = payment_service.verify_payment_proof(order.id, second.id, staff.id)

        assert after_second.outstanding_balance_cents == 0
        assert after_second.total_paid_cents == 145000
        assert after_second.payment_status == "fully_paid"
        assert [event.action for event in after_second.timeline] == [
            "order_confirmed",
            "payment_submitted",
            "payment_approved",
            "payment_submitted",
            "payment_approved",
        ]

    def test_overpayment_within_tolerance_clamps_balance(self, buyer, staff, order):
        proof = payment_service.submit_payment_proof(order.id, buyer.id, 145001, "TRX-1")
        updated = payment_service.verify_payment_proof(order.id, proof.id, staff.id)

        assert updated.outstanding_balance_cents == 0
        assert updated.payment_status == "fully_paid"

    def test_rejection_keeps_balance(self, buyer, staff, order):
        proof = payment_service.submit_payment_proof(order.id, buyer.id, 45000, "TRX-1")
        updated = payment_service.reject_payment_proof(order.id, proof.id, staff.id, notes="Unreadable slip")

        assert updated.outstanding_balance_cents == 145000
        assert updated.payment_status == "pending"
        rejected = db.session.get(PaymentProof, proof.id)
        assert rejected.status == "rejected"
        assert rejected.notes == "Unreadable slip"
        assert rejected.reviewed_by_user_id == staff.id

    def test_proof_is_reviewed_once(self, buyer, staff, order):
        proof = payment_service.submit_payment_proof(order.id, buyer.id, 45000, "TRX-1")
        payment_service.verify_payment_proof(order.id, proof.id, staff.id)

        with pytest.raises(InvalidRequestError):
            payment_service.verify_payment_proof(order.id, proof.id, staff.id)
        with pytest.raises(InvalidRequestError):
            payment_service.reject_payment_proof(order.id, proof.id, staff.id)

        assert db.session.get(SalesOrder, order.id).outstanding_balance_cents == 100000

    def test_proof_must_belong_to_order(self, buyer, staff, order):
        proof = payment_service.submit_payment_proof(order.id, buyer.id, 45000, "TRX-1")

        with pytest.raises(NotFoundError):
            payment_service.verify_payment_proof(order.id + 1, proof.id, staff.id)


class TestOrderAccess:

    def test_buyer_sees_own_orders_only(self, buyer, other_buyer, order):
        assert payment_service.get_order_for(order.id, buyer.id).id == order.id
        with pytest.raises(OwnershipError):
            payment_service.get_order_for(order.id, other_buyer.id)
        assert payment_service.get_order_for(order.id, other_buyer.id, can_view_all=True).id == order.id

    def test_lookup_by_order_number(self, buyer, order):
        found = payment_service.get_order_by_number_for(order.order_number, buyer.id)
        assert found.id == order.id

    def test_list_orders_filters_by_buyer(self, buyer, other_buyer, order):
        assert [o.id for o in payment_service.list_orders(buyer_id=buyer.id)] == [order.id]
        assert payment_service.list_orders(buyer_id=other_buyer.id) == []
