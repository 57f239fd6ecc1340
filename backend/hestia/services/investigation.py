"""
Investigation Process

Bounded sub-workflow producing a verdict and risk level for the policy.

    NOT_STARTED → IN_PROGRESS → COMPLETED

Verdict resolution consumed by the policy lifecycle:
- APPROVED  → proceed
- REJECTED  → terminal reject
- HIGH_RISK → blocked until the landlord decides (PROCEED or REJECT), once

Verdict and risk level are immutable after completion. Only the landlord
decision may still be written, and only once.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import (
    InvestigationDB, InvestigationPriority, InvestigationState, InvestigationVerdict,
    LandlordDecision, PolicyDB, PolicyStatus, RiskLevel, utcnow,
)
from .errors import (
    FailureCode, IllegalTransitionError, InvariantViolationError, WorkflowError,
)

logger = logging.getLogger(__name__)


class Resolution(str, Enum):
    """How the investigation resolves for policy approval."""
    PENDING = "PENDING"  # No verdict yet
    PROCEED = "PROCEED"
    REJECT = "REJECT"
    AWAITING_LANDLORD = "AWAITING_LANDLORD"  # HIGH_RISK, no landlord decision


def resolve(investigation: Optional[InvestigationDB]) -> Resolution:
    """Resolution rule for an investigation (None means none exists)."""
    if investigation is None or investigation.verdict is None:
        return Resolution.PENDING

    if investigation.verdict == InvestigationVerdict.APPROVED:
        return Resolution.PROCEED

    if investigation.verdict == InvestigationVerdict.REJECTED:
        return Resolution.REJECT

    # HIGH_RISK
    if investigation.landlord_decision is None:
        return Resolution.AWAITING_LANDLORD
    if investigation.landlord_decision == LandlordDecision.PROCEED:
        return Resolution.PROCEED
    return Resolution.REJECT


def validate_risk(verdict: InvestigationVerdict, risk_level: Optional[RiskLevel]) -> RiskLevel:
    """
    HIGH_RISK requires HIGH; every other verdict requires a non-HIGH level.
    A missing level defaults to the only/lowest legal value.
    """
    if verdict == InvestigationVerdict.HIGH_RISK:
        if risk_level is None:
            return RiskLevel.HIGH
        if risk_level != RiskLevel.HIGH:
            raise WorkflowError(
                "HIGH_RISK verdict requires HIGH risk level",
                code=FailureCode.INVALID_RISK_FOR_VERDICT,
            )
        return risk_level

    if risk_level is None:
        return RiskLevel.LOW
    if risk_level == RiskLevel.HIGH:
        raise WorkflowError(
            f"{verdict.value} verdict cannot carry HIGH risk level; use HIGH_RISK",
            code=FailureCode.INVALID_RISK_FOR_VERDICT,
        )
    return risk_level


class InvestigationService:
    """Operations on the policy's current investigation."""

    def __init__(self, db: Session):
        self.db = db

    def current(self, policy: PolicyDB) -> Optional[InvestigationDB]:
        """The non-superseded investigation, if any."""
        current = [inv for inv in policy.investigations if inv.superseded_at is None]
        if len(current) > 1:
            raise InvariantViolationError(
                f"Policy {policy.id} has {len(current)} current investigations"
            )
        return current[0] if current else None

    def open(self, policy: PolicyDB, now: Optional[datetime] = None) -> InvestigationDB:
        """Create the investigation record when the policy enters investigation."""
        if self.current(policy) is not None:
            raise InvariantViolationError(
                f"Policy {policy.id} already has an open investigation"
            )

        investigation = InvestigationDB(
            id=str(uuid4()),
            policy_id=policy.id,
            state=InvestigationState.NOT_STARTED,
            priority=InvestigationPriority.NORMAL,
            created_at=now or utcnow(),
        )
        policy.investigations.append(investigation)
        self.db.add(investigation)
        return investigation

    def _require_current(self, policy: PolicyDB) -> InvestigationDB:
        investigation = self.current(policy)
        if investigation is None:
            raise WorkflowError(
                "No investigation exists for this policy",
                code=FailureCode.POLICY_NOT_ELIGIBLE,
            )
        return investigation

    def start(
        self,
        policy: PolicyDB,
        assignee: str,
        priority: InvestigationPriority = InvestigationPriority.NORMAL,
        now: Optional[datetime] = None,
    ) -> InvestigationDB:
        """Assign the investigation and start the clock."""
        if policy.status != PolicyStatus.UNDER_INVESTIGATION:
            raise WorkflowError(
                f"Policy in {policy.status.value} status cannot start an investigation",
                code=FailureCode.POLICY_NOT_ELIGIBLE,
            )

        investigation = self._require_current(policy)
        if investigation.state != InvestigationState.NOT_STARTED:
            raise WorkflowError("Investigation already started", code=FailureCode.ALREADY_STARTED)

        now = now or utcnow()
        investigation.state = InvestigationState.IN_PROGRESS
        investigation.assigned_to = assignee
        investigation.priority = priority or InvestigationPriority.NORMAL
        investigation.started_at = now
        policy.investigation_started_at = now

        logger.info(f"Investigation {investigation.id} started for policy {policy.id}, assigned to {assignee}")
        return investigation

    def complete(
        self,
        policy: PolicyDB,
        verdict: InvestigationVerdict,
        risk_level: Optional[RiskLevel],
        completed_by: str,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> InvestigationDB:
        """Record the verdict. Computes response time from the start timestamp."""
        if policy.status != PolicyStatus.UNDER_INVESTIGATION:
            raise WorkflowError(
                f"Policy in {policy.status.value} status has no investigation to complete",
                code=FailureCode.POLICY_NOT_ELIGIBLE,
            )

        investigation = self._require_current(policy)
        if investigation.completed_at is not None:
            raise WorkflowError("Investigation already completed", code=FailureCode.ALREADY_COMPLETED)

        if investigation.state != InvestigationState.IN_PROGRESS:
            raise IllegalTransitionError("Investigation must be started before it can be completed")

        risk_level = validate_risk(verdict, risk_level)

        now = now or utcnow()
        started_at = investigation.started_at or policy.investigation_started_at or now
        investigation.state = InvestigationState.COMPLETED
        investigation.verdict = verdict
        investigation.risk_level = risk_level
        investigation.notes = notes or investigation.notes
        investigation.rejection_reason = rejection_reason if verdict == InvestigationVerdict.REJECTED else None
        investigation.completed_by = completed_by
        investigation.completed_at = now
        investigation.response_time_hours = round((now - started_at).total_seconds() / 3600)
        policy.investigation_completed_at = now

        logger.info(
            f"Investigation {investigation.id} completed: verdict={verdict.value} "
            f"risk={risk_level.value} response_time={investigation.response_time_hours}h"
        )
        return investigation

    def landlord_override(
        self,
        policy: PolicyDB,
        decision: LandlordDecision,
        decided_by: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> InvestigationDB:
        """Landlord decision on a HIGH_RISK verdict. Callable once."""
        investigation = self._require_current(policy)

        if investigation.verdict != InvestigationVerdict.HIGH_RISK:
            raise WorkflowError(
                "Landlord override is only available for HIGH_RISK verdicts",
                code=FailureCode.VERDICT_NOT_HIGH_RISK,
            )

        if investigation.landlord_decision is not None:
            raise WorkflowError(
                f"Landlord already decided {investigation.landlord_decision.value}",
                code=FailureCode.ALREADY_DECIDED,
            )

        investigation.landlord_decision = decision
        investigation.landlord_override = True
        investigation.landlord_notes = notes
        investigation.landlord_decided_by = decided_by
        investigation.landlord_decided_at = now or utcnow()

        logger.info(f"Landlord override on investigation {investigation.id}: {decision.value}")
        return investigation

    def supersede(self, policy: PolicyDB, now: Optional[datetime] = None) -> Optional[InvestigationDB]:
        """Retire the current investigation, keeping it as history."""
        investigation = self.current(policy)
        if investigation is not None:
            investigation.superseded_at = now or utcnow()
        return investigation
