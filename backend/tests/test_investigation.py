"""
Tests for the investigation sub-workflow and its resolution rule.
"""
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from hestia.models.db_models import (
    InvestigationState, InvestigationVerdict, LandlordDecision, PolicyStatus, RiskLevel,
)
from hestia.services.errors import FailureCode, IllegalTransitionError, InvariantViolationError, WorkflowError
from hestia.services.investigation import InvestigationService, Resolution, resolve, validate_risk

from conftest import FIXED_NOW


def make_investigation(**fields):
    base = dict(
        id="inv-1",
        state=InvestigationState.NOT_STARTED,
        verdict=None,
        risk_level=None,
        landlord_decision=None,
        superseded_at=None,
        started_at=None,
        completed_at=None,
        notes=None,
    )
    base.update(fields)
    return SimpleNamespace(**base)


def make_policy(status=PolicyStatus.UNDER_INVESTIGATION, investigations=None):
    return SimpleNamespace(
        id="policy-1",
        status=status,
        investigations=investigations if investigations is not None else [],
        investigation_started_at=None,
        investigation_completed_at=None,
    )


@pytest.fixture
def service():
    return InvestigationService(MagicMock())


class TestResolve:
    """Verdict → resolution."""

    def test_no_investigation_is_pending(self):
        assert resolve(None) == Resolution.PENDING

    def test_no_verdict_is_pending(self):
        assert resolve(make_investigation()) == Resolution.PENDING

    def test_approved_proceeds(self):
        assert resolve(make_investigation(verdict=InvestigationVerdict.APPROVED)) == Resolution.PROCEED

    def test_rejected_rejects(self):
        assert resolve(make_investigation(verdict=InvestigationVerdict.REJECTED)) == Resolution.REJECT

    def test_high_risk_waits_for_landlord(self):
        inv = make_investigation(verdict=InvestigationVerdict.HIGH_RISK)
        assert resolve(inv) == Resolution.AWAITING_LANDLORD

    def test_high_risk_follows_landlord_decision(self):
        proceed = make_investigation(verdict=InvestigationVerdict.HIGH_RISK, landlord_decision=LandlordDecision.PROCEED)
        reject = make_investigation(verdict=InvestigationVerdict.HIGH_RISK, landlord_decision=LandlordDecision.REJECT)
        assert resolve(proceed) == Resolution.PROCEED
        assert resolve(reject) == Resolution.REJECT


class TestValidateRisk:
    """HIGH_RISK ⇔ HIGH."""

    def test_high_risk_defaults_to_high(self):
        assert validate_risk(InvestigationVerdict.HIGH_RISK, None) == RiskLevel.HIGH

    def test_high_risk_with_low_refused(self):
        with pytest.raises(WorkflowError) as exc:
            validate_risk(InvestigationVerdict.HIGH_RISK, RiskLevel.LOW)
        assert exc.value.code == FailureCode.INVALID_RISK_FOR_VERDICT

    def test_approved_with_high_refused(self):
        with pytest.raises(WorkflowError) as exc:
            validate_risk(InvestigationVerdict.APPROVED, RiskLevel.HIGH)
        assert exc.value.code == FailureCode.INVALID_RISK_FOR_VERDICT

    def test_approved_defaults_to_low(self):
        assert validate_risk(InvestigationVerdict.APPROVED, None) == RiskLevel.LOW

    def test_rejected_keeps_medium(self):
        assert validate_risk(InvestigationVerdict.REJECTED, RiskLevel.MEDIUM) == RiskLevel.MEDIUM


class TestLifecycle:
    """Open, start, complete, override."""

    def test_open_creates_not_started(self, service):
        policy = make_policy()
        investigation = service.open(policy, FIXED_NOW)
        assert investigation.state == InvestigationState.NOT_STARTED
        assert policy.investigations == [investigation]

    def test_open_twice_is_invariant_violation(self, service):
        policy = make_policy(investigations=[make_investigation()])
        with pytest.raises(InvariantViolationError):
            service.open(policy, FIXED_NOW)

    def test_two_current_investigations_is_invariant_violation(self, service):
        policy = make_policy(investigations=[make_investigation(), make_investigation(id="inv-2")])
        with pytest.raises(InvariantViolationError):
            service.current(policy)

    def test_start_assigns_and_stamps(self, service):
        policy = make_policy(investigations=[make_investigation()])
        investigation = service.start(policy, "investigator-1", now=FIXED_NOW)
        assert investigation.state == InvestigationState.IN_PROGRESS
        assert investigation.assigned_to == "investigator-1"
        assert policy.investigation_started_at == FIXED_NOW

    def test_start_twice_refused(self, service):
        policy = make_policy(investigations=[make_investigation(state=InvestigationState.IN_PROGRESS)])
        with pytest.raises(WorkflowError) as exc:
            service.start(policy, "investigator-1", now=FIXED_NOW)
        assert exc.value.code == FailureCode.ALREADY_STARTED

    def test_start_outside_investigation_refused(self, service):
        policy = make_policy(status=PolicyStatus.COLLECTING_INFO, investigations=[make_investigation()])
        with pytest.raises(WorkflowError) as exc:
            service.start(policy, "investigator-1", now=FIXED_NOW)
        assert exc.value.code == FailureCode.POLICY_NOT_ELIGIBLE

    def test_complete_computes_response_time(self, service):
        investigation = make_investigation(state=InvestigationState.IN_PROGRESS, started_at=FIXED_NOW)
        policy = make_policy(investigations=[investigation])
        service.complete(
            policy, InvestigationVerdict.APPROVED, RiskLevel.LOW, "staff-1",
            now=FIXED_NOW + timedelta(hours=26, minutes=20),
        )
        assert investigation.state == InvestigationState.COMPLETED
        assert investigation.response_time_hours == 26
        assert policy.investigation_completed_at == FIXED_NOW + timedelta(hours=26, minutes=20)

    def test_complete_before_start_refused(self, service):
        policy = make_policy(investigations=[make_investigation()])
        with pytest.raises(IllegalTransitionError):
            service.complete(policy, InvestigationVerdict.APPROVED, None, "staff-1", now=FIXED_NOW)

    def test_complete_twice_refused(self, service):
        investigation = make_investigation(
            state=InvestigationState.COMPLETED,
            verdict=InvestigationVerdict.APPROVED,
            completed_at=FIXED_NOW,
        )
        policy = make_policy(investigations=[investigation])
        with pytest.raises(WorkflowError) as exc:
            service.complete(policy, InvestigationVerdict.REJECTED, None, "staff-1", now=FIXED_NOW)
        assert exc.value.code == FailureCode.ALREADY_COMPLETED
        assert investigation.verdict == InvestigationVerdict.APPROVED

    def test_rejection_reason_kept_only_for_rejected(self, service):
        investigation = make_investigation(state=InvestigationState.IN_PROGRESS, started_at=FIXED_NOW)
        policy = make_policy(investigations=[investigation])
        service.complete(
            policy, InvestigationVerdict.APPROVED, None, "staff-1",
            rejection_reason="ignored", now=FIXED_NOW,
        )
        assert investigation.rejection_reason is None

    def test_landlord_override_requires_high_risk(self, service):
        policy = make_policy(investigations=[make_investigation(verdict=InvestigationVerdict.APPROVED)])
        with pytest.raises(WorkflowError) as exc:
            service.landlord_override(policy, LandlordDecision.PROCEED, "staff-1", now=FIXED_NOW)
        assert exc.value.code == FailureCode.VERDICT_NOT_HIGH_RISK

    def test_landlord_override_only_once(self, service):
        investigation = make_investigation(verdict=InvestigationVerdict.HIGH_RISK)
        policy = make_policy(investigations=[investigation])
        service.landlord_override(policy, LandlordDecision.PROCEED, "staff-1", "ok", now=FIXED_NOW)
        assert investigation.landlord_override is True

        with pytest.raises(WorkflowError) as exc:
            service.landlord_override(policy, LandlordDecision.REJECT, "staff-1", now=FIXED_NOW)
        assert exc.value.code == FailureCode.ALREADY_DECIDED
        assert investigation.landlord_decision == LandlordDecision.PROCEED

    def test_supersede_retires_current(self, service):
        investigation = make_investigation()
        policy = make_policy(investigations=[investigation])
        service.supersede(policy, FIXED_NOW)
        assert service.current(policy) is None
