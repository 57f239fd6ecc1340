"""
Verification Tracker

Per-actor approval sub-state, independent of policy status.

    PENDING → APPROVED | REJECTED | IN_REVIEW
    IN_REVIEW → APPROVED | REJECTED
    REJECTED → PENDING (automatic, on resubmission only)
    APPROVED → REJECTED (staff revocation, only while the actor is unlocked)

An actor cannot be approved while its information is incomplete.
Rejection keeps every submitted field so the actor can correct it.
"""
import logging
from datetime import datetime
from typing import List, Optional

from ..models.db_models import (
    ActorDB, ActorRole, GuarantorRequirement, PolicyDB, VerificationStatus, utcnow,
)
from .errors import FailureCode, IllegalTransitionError, ValidationError, WorkflowError

logger = logging.getLogger(__name__)


TRANSITIONS = {
    VerificationStatus.PENDING: [
        VerificationStatus.APPROVED,
        VerificationStatus.REJECTED,
        VerificationStatus.IN_REVIEW,
    ],
    VerificationStatus.IN_REVIEW: [
        VerificationStatus.APPROVED,
        VerificationStatus.REJECTED,
    ],
    VerificationStatus.REJECTED: [VerificationStatus.PENDING],
    VerificationStatus.APPROVED: [VerificationStatus.REJECTED],
}

# Guarantor roles demanded by each requirement
GUARANTOR_ROLES = {
    GuarantorRequirement.NONE: [],
    GuarantorRequirement.JOINT_OBLIGOR: [ActorRole.JOINT_OBLIGOR],
    GuarantorRequirement.AVAL: [ActorRole.AVAL],
    GuarantorRequirement.BOTH: [ActorRole.JOINT_OBLIGOR, ActorRole.AVAL],
}


def required_roles(requirement: GuarantorRequirement) -> List[ActorRole]:
    """Every role that must be present on a policy with this requirement."""
    return [ActorRole.LANDLORD, ActorRole.TENANT] + GUARANTOR_ROLES[requirement]


def required_actors(policy: PolicyDB) -> List[ActorDB]:
    """Actors whose approval gates the policy."""
    roles = set(required_roles(policy.guarantor_requirement))
    return [actor for actor in policy.actors if actor.role in roles]


def missing_roles(policy: PolicyDB) -> List[ActorRole]:
    """Required roles with no actor on the policy."""
    present = {actor.role for actor in policy.actors}
    return [role for role in required_roles(policy.guarantor_requirement) if role not in present]


def all_complete(policy: PolicyDB) -> bool:
    """Every required actor present and informationComplete."""
    if missing_roles(policy):
        return False
    return all(actor.information_complete for actor in required_actors(policy))


def all_approved(policy: PolicyDB) -> bool:
    """Every required actor present and individually APPROVED."""
    if missing_roles(policy):
        return False
    return all(
        actor.verification_status == VerificationStatus.APPROVED
        for actor in required_actors(policy)
    )


class VerificationTracker:
    """Applies verification transitions to a single actor."""

    def can_transition(
        self,
        from_status: VerificationStatus,
        to_status: VerificationStatus,
    ) -> bool:
        return to_status in TRANSITIONS.get(from_status, [])

    def _check_unlocked(self, actor: ActorDB) -> None:
        if actor.locked_at is not None:
            raise IllegalTransitionError(
                f"Actor {actor.id} is locked; the policy has already been approved"
            )

    def approve(self, actor: ActorDB, approver_id: str, now: Optional[datetime] = None) -> bool:
        """
        Approve the actor.

        Returns True when the status changed, False when already APPROVED.
        """
        if not actor.information_complete:
            raise WorkflowError(
                "Actor information is incomplete and cannot be approved",
                code=FailureCode.NOT_COMPLETE,
            )

        if actor.verification_status == VerificationStatus.APPROVED:
            return False

        self._check_unlocked(actor)

        if not self.can_transition(actor.verification_status, VerificationStatus.APPROVED):
            raise IllegalTransitionError(
                f"Cannot approve actor in {actor.verification_status.value} status"
            )

        now = now or utcnow()
        actor.verification_status = VerificationStatus.APPROVED
        actor.verified_at = now
        actor.verified_by = approver_id
        actor.rejection_reason = None
        actor.rejected_at = None
        actor.rejected_by = None

        logger.info(f"Actor {actor.id} approved by {approver_id}")
        return True

    def reject(
        self,
        actor: ActorDB,
        approver_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Reject the actor with a reason that is shown back to them.

        The actor must resubmit; submitted fields are kept.
        """
        if reason is None or not reason.strip():
            raise ValidationError("Rejection reason is required", code=FailureCode.EMPTY_REASON)

        self._check_unlocked(actor)

        if not self.can_transition(actor.verification_status, VerificationStatus.REJECTED):
            raise IllegalTransitionError(
                f"Cannot reject actor in {actor.verification_status.value} status"
            )

        now = now or utcnow()
        actor.verification_status = VerificationStatus.REJECTED
        actor.rejection_reason = reason.strip()
        actor.rejected_at = now
        actor.rejected_by = approver_id
        actor.verified_at = None
        actor.verified_by = None
        actor.information_complete = False

        logger.info(f"Actor {actor.id} rejected by {approver_id}: {actor.rejection_reason}")

    def mark_in_review(self, actor: ActorDB, reviewer_id: str, now: Optional[datetime] = None) -> None:
        """Move a pending actor under active review."""
        self._check_unlocked(actor)

        if not self.can_transition(actor.verification_status, VerificationStatus.IN_REVIEW):
            raise IllegalTransitionError(
                f"Cannot review actor in {actor.verification_status.value} status"
            )

        actor.verification_status = VerificationStatus.IN_REVIEW
        actor.reviewed_at = now or utcnow()
        logger.info(f"Actor {actor.id} in review by {reviewer_id}")

    def on_resubmission(self, actor: ActorDB) -> bool:
        """
        Reset a rejected actor to PENDING after they resubmit.

        Returns True when a reset happened.
        """
        if actor.verification_status != VerificationStatus.REJECTED:
            return False
        actor.verification_status = VerificationStatus.PENDING
        actor.rejection_reason = None
        return True
