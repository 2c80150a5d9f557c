"""
Risk signal tests.

Verifies:
- Each signal (policy flag, prior failures, velocity, unusual amount, new IP)
  fires on its own evidence and stays quiet without it
- Any signal escalates a challenge to human verification
- Actions without base requirements pass the gate as Allowed
"""

import pytest

from quoteflow.extensions import db
from quoteflow.models import SecurityEvent
from quoteflow.services import (
    conversion_service,
    payment_service,
    risk_service,
    stepup_service,
)
from quoteflow.services.outcomes import Allowed
from quoteflow.services.session_service import create_session
from quoteflow.time_utils import utcnow


def _gate_event(user, reason="challenged", ip_address=None):
    db.session.add(SecurityEvent(
        user_id=user.id,
        event_type="STEPUP_DECISION",
        resource="quotation:1",
        action="quotation.approve",
        success=False,
        reason=reason,
        ip_address=ip_address,
        occurred_at=utcnow(),
    ))
    db.session.commit()


def _assess(user, **kwargs):
    kwargs.setdefault("action_type", "quotation.approve")
    return risk_service.assess(actor_user_id=user.id, **kwargs)


class TestSignals:

    def test_clean_actor_has_no_signals(self, buyer):
        assessment = _assess(buyer, ip_address="203.0.113.5")
        assert assessment.signals == []
        assert assessment.elevated is False

    def test_policy_flag_for_listed_action(self, app, buyer, monkeypatch):
        monkeypatch.setitem(app.config, "STEPUP_HUMAN_VERIFICATION_ACTIONS", ("payment_proof.submit",))

        assert _assess(buyer, action_type="payment_proof.submit").signals == [risk_service.POLICY_FLAG]
        assert _assess(buyer, action_type="quotation.approve").signals == []

    def test_policy_flag_for_every_action(self, app, buyer, monkeypatch):
        monkeypatch.setitem(app.config, "STEPUP_ALWAYS_REQUIRE_HUMAN_VERIFICATION", True)
        assert risk_service.POLICY_FLAG in _assess(buyer).signals

    def test_request_velocity(self, app, buyer, monkeypatch):
        monkeypatch.setitem(app.config, "RISK_VELOCITY_THRESHOLD", 2)
        _gate_event(buyer, "allowed")
        assert risk_service.REQUEST_VELOCITY not in _assess(buyer).signals

        _gate_event(buyer, "challenged")
        assert risk_service.recent_gated_requests(buyer.id) == 2
        assert risk_service.REQUEST_VELOCITY in _assess(buyer).signals

    def test_failed_attempts_do_not_count_as_requests(self, app, buyer, monkeypatch):
        monkeypatch.setitem(app.config, "RISK_VELOCITY_THRESHOLD", 1)
        _gate_event(buyer, "failed: CREDENTIAL_REJECTED")
        assert risk_service.recent_gated_requests(buyer.id) == 0

    def test_new_ip_address(self, buyer):
        # No history yet: nothing to compare against
        assert risk_service.is_new_ip_address(buyer.id, "203.0.113.5") is False

        _gate_event(buyer, ip_address="198.51.100.1")

        assert risk_service.is_new_ip_address(buyer.id, "198.51.100.1") is False
        assert risk_service.is_new_ip_address(buyer.id, "203.0.113.5") is True
        assert risk_service.NEW_IP in _assess(buyer, ip_address="203.0.113.5").signals

    def test_ip_of_login_session_is_known(self, buyer):
        _gate_event(buyer, ip_address="198.51.100.1")
        create_session(buyer.id, user_agent="pytest", ip_address="203.0.113.5")

        assert risk_service.is_new_ip_address(buyer.id, "203.0.113.5") is False

    def test_ip_tracking_can_be_disabled(self, app, buyer, monkeypatch):
        _gate_event(buyer, ip_address="198.51.100.1")
        monkeypatch.setitem(app.config, "RISK_TRACK_CLIENT_IP", False)

        assert risk_service.is_new_ip_address(buyer.id, "203.0.113.5") is False

    def test_unusual_payment_amount(self, buyer, staff, issued_quotation):
        order = conversion_service.convert_quotation(issued_quotation.id, actor_user_id=buyer.id).order
        proof = payment_service.submit_payment_proof(order.id, buyer.id, 10000, "TRX-1")
        payment_service.verify_payment_proof(order.id, proof.id, staff.id)

        # Average verified proof is 100.00; threshold is +50%
        assert risk_service.is_unusual_payment_amount(buyer.id, 15000) is False
        assert risk_service.is_unusual_payment_amount(buyer.id, 15001) is True

        signals = _assess(
            buyer,
            action_type="payment_proof.submit",
            payload={"amount_cents": 20000},
            buyer_id=buyer.id,
        ).signals
        assert signals == [risk_service.UNUSUAL_AMOUNT]

    def test_no_verified_history_is_not_unusual(self, buyer):
        assert risk_service.is_unusual_payment_amount(buyer.id, 10_000_000) is False


class TestGateEscalation:

    def test_signal_adds_human_verification(self, app, buyer, monkeypatch):
        monkeypatch.setitem(app.config, "RISK_VELOCITY_THRESHOLD", 1)
        _gate_event(buyer, "challenged")

        challenge = stepup_service.evaluate(
            actor_user_id=buyer.id,
            action_type="payment_proof.submit",
            document_type="sales_order",
            document_id=7,
            payload={"amount_cents": 100},
        )

        assert challenge.required_kinds == ["human_verification", "password"]
        assert challenge.risk_signals == [risk_service.REQUEST_VELOCITY]

    def test_action_without_requirements_is_allowed(self, buyer):
        policy = stepup_service.StepUpPolicy(action_requirements={})

        outcome = stepup_service.evaluate(
            actor_user_id=buyer.id,
            action_type="quotation.approve",
            document_type="quotation",
            document_id=1,
            policy=policy,
        )

        assert isinstance(outcome, Allowed)

    @pytest.mark.parametrize("base,signals,expected", [
        (("password",), [], ["password"]),
        (("password",), ["policy_flag"], ["human_verification", "password"]),
        (("human_verification", "password"), [], ["human_verification", "password"]),
        (("password", "human_verification"), [], ["human_verification", "password"]),
    ])
    def test_required_kinds_ordering(self, base, signals, expected):
        policy = stepup_service.StepUpPolicy(action_requirements={"x": base})
        assessment = risk_service.RiskAssessment(signals=list(signals))

        assert policy.required_kinds("x", assessment) == expected
