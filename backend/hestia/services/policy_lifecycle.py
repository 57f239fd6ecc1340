"""
Policy Lifecycle

The only component allowed to change policy status. Every operation:
1. Serializes on the per-policy lock
2. Evaluates guards against actors, verification, investigation and contracts
3. Applies all side effects and commits, or rolls back and returns a typed failure
4. Delivers notifications after the commit, outside the lock

Guard failures are returned as OperationResult values, never raised.
InvariantViolationError is the only exception that escapes.
"""
import logging
import secrets
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import CONTRACT_DOWNLOAD_URL_TTL_SECONDS, DEFAULT_CONTRACT_LENGTH_MONTHS
from ..models.db_models import (
    AccessGrantDB, ActorDB, ActorKind, ActorRole, DocumentCategory, GuarantorRequirement,
    InvestigationPriority, InvestigationVerdict, LandlordDecision, PerformerType,
    PolicyActivityDB, PolicyDB, PolicyStatus, RiskLevel, VerificationStatus, utcnow,
)
from .access_grants import AccessGrantService
from .activity_log import ActivityLog
from .actors import ActorService, evaluate
from .collaborators import (
    LocalStorageProvider, LoggingNotifier, Notifier, PolicyRenderer, StorageProvider,
    TextPolicyRenderer,
)
from .context import SYSTEM, StaffContext
from .contracts import UPLOADABLE_STATUSES, ContractService, compute_expiry, validate_contract_file
from .errors import (
    ConcurrencyConflictError, FailureCode, IllegalTransitionError, NotFoundError,
    OperationResult, ValidationError, WorkflowError,
)
from .investigation import InvestigationService, Resolution, resolve
from .locking import PolicyLockRegistry, policy_locks
from .verification import (
    VerificationTracker, all_approved, all_complete, missing_roles, required_actors,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# allowed_transitions: the closed set of target states
# terminal: Cancel is refused; InvestigationRejected leaves only via an
#           explicit staff reopen
# actors_editable: actor records may still be edited and submitted
#
# =============================================================================

STATE_CONFIG = {
    PolicyStatus.DRAFT: {
        "description": "Policy created, actors being added",
        "allowed_transitions": [PolicyStatus.COLLECTING_INFO, PolicyStatus.CANCELLED],
        "terminal": False,
        "actors_editable": True,
    },
    PolicyStatus.COLLECTING_INFO: {
        "description": "Invitations sent, actors completing their information",
        "allowed_transitions": [PolicyStatus.UNDER_INVESTIGATION, PolicyStatus.CANCELLED],
        "terminal": False,
        "actors_editable": True,
    },
    PolicyStatus.UNDER_INVESTIGATION: {
        "description": "Background investigation open",
        "allowed_transitions": [
            PolicyStatus.PENDING_APPROVAL,
            PolicyStatus.INVESTIGATION_REJECTED,
            PolicyStatus.CANCELLED,
        ],
        "terminal": False,
        "actors_editable": True,
    },
    PolicyStatus.INVESTIGATION_REJECTED: {
        "description": "Investigation rejected the policy",
        "allowed_transitions": [PolicyStatus.COLLECTING_INFO],  # Staff reopen only
        "terminal": True,
        "actors_editable": True,
    },
    PolicyStatus.PENDING_APPROVAL: {
        "description": "Investigation resolved favorably, awaiting final approval",
        "allowed_transitions": [PolicyStatus.APPROVED, PolicyStatus.CANCELLED],
        "terminal": False,
        "actors_editable": True,
    },
    PolicyStatus.APPROVED: {
        "description": "Policy approved, actor records frozen",
        "allowed_transitions": [PolicyStatus.CONTRACT_PENDING, PolicyStatus.CANCELLED],
        "terminal": False,
        "actors_editable": False,
    },
    PolicyStatus.CONTRACT_PENDING: {
        "description": "Contract uploaded, awaiting signature",
        "allowed_transitions": [PolicyStatus.ACTIVE, PolicyStatus.CANCELLED],
        "terminal": False,
        "actors_editable": False,
    },
    PolicyStatus.CONTRACT_SIGNED: {
        "description": "Signed; passed through on the way to ACTIVE",
        "allowed_transitions": [PolicyStatus.ACTIVE],
        "terminal": False,
        "actors_editable": False,
    },
    PolicyStatus.ACTIVE: {
        "description": "Coverage in force until expires_at",
        "allowed_transitions": [PolicyStatus.EXPIRED, PolicyStatus.CANCELLED],
        "terminal": False,
        "actors_editable": False,
    },
    PolicyStatus.EXPIRED: {
        "description": "Coverage period elapsed",
        "allowed_transitions": [],
        "terminal": True,
        "actors_editable": False,
    },
    PolicyStatus.CANCELLED: {
        "description": "Cancelled by staff",
        "allowed_transitions": [],
        "terminal": True,
        "actors_editable": False,
    },
}

# (label, callable) pairs delivered after commit
Outbox = List[Tuple[str, Callable[[], None]]]


def generate_policy_number(now: datetime) -> str:
    """POL-YYYYMMDD-XXXXXX"""
    return f"POL-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


class PolicyLifecycle:
    """
    Orchestrates the policy state machine.

    Collaborators default to local/logging implementations; tests inject fakes.
    """

    def __init__(
        self,
        db: Session,
        storage: Optional[StorageProvider] = None,
        notifier: Optional[Notifier] = None,
        renderer: Optional[PolicyRenderer] = None,
        locks: Optional[PolicyLockRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.storage = storage or LocalStorageProvider()
        self.notifier = notifier or LoggingNotifier()
        self.renderer = renderer or TextPolicyRenderer()
        self.locks = locks or policy_locks
        self.clock = clock or utcnow

        self.actors = ActorService(db)
        self.grants = AccessGrantService(db)
        self.verification = VerificationTracker()
        self.investigations = InvestigationService(db)
        self.contracts = ContractService(db)
        self.activity = ActivityLog(db)

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def get_state_config(self, status: PolicyStatus) -> Dict[str, Any]:
        return STATE_CONFIG.get(status, {})

    def can_transition(self, from_status: PolicyStatus, to_status: PolicyStatus) -> Tuple[bool, str]:
        """
        Check if a status transition is allowed.

        Returns (allowed, reason)
        """
        allowed = self.get_state_config(from_status).get("allowed_transitions", [])
        if to_status in allowed:
            return True, "Transition allowed"
        return False, f"Cannot transition from {from_status.value} to {to_status.value}"

    def is_terminal(self, status: PolicyStatus) -> bool:
        return self.get_state_config(status).get("terminal", False)

    def actors_editable(self, policy: PolicyDB) -> bool:
        return self.get_state_config(policy.status).get("actors_editable", False)

    def _transition(
        self,
        policy: PolicyDB,
        to_status: PolicyStatus,
        ctx: StaffContext,
        trigger: str,
        outbox: Outbox,
        now: datetime,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Apply a status change and its audit record. Caller commits."""
        from_status = policy.status
        allowed, reason = self.can_transition(from_status, to_status)
        if not allowed:
            raise IllegalTransitionError(reason)

        policy.status = to_status
        self.activity.record(
            policy,
            "status_transition",
            ctx.user_id,
            ctx.performer_type,
            description=f"Status changed from {from_status.value} to {to_status.value}. Trigger: {trigger}",
            details={"from_status": from_status, "to_status": to_status, "trigger": trigger, **(details or {})},
            now=now,
        )
        outbox.append((
            f"status change to {to_status.value}",
            partial(self.notifier.send_status_change, policy, to_status),
        ))
        logger.info(f"Policy {policy.id}: {from_status.value} -> {to_status.value} ({trigger})")

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _load(self, policy_id: str) -> PolicyDB:
        policy = (
            self.db.query(PolicyDB)
            .populate_existing()
            .filter(PolicyDB.id == policy_id)
            .first()
        )
        if policy is None:
            raise NotFoundError("Policy not found", details={"policy_id": policy_id})
        return policy

    def _run(
        self,
        policy_id: str,
        operation: str,
        apply: Callable[[PolicyDB, datetime, Outbox], OperationResult],
    ) -> OperationResult:
        """Run one operation atomically under the policy lock."""
        outbox: Outbox = []
        try:
            with self.locks.hold(policy_id):
                # The previous holder may have committed through another session
                self.db.expire_all()
                policy = self._load(policy_id)
                result = apply(policy, self.clock(), outbox)
                self.db.commit()
        except WorkflowError as e:
            self.db.rollback()
            logger.warning(f"{operation} on policy {policy_id} failed: {e.code.value} - {e.message}")
            return OperationResult.fail(e)
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"{operation} on policy {policy_id} lost a concurrent write")
            return OperationResult.fail(ConcurrencyConflictError(
                "Policy was modified concurrently; retry",
                details={"policy_id": policy_id},
            ))
        except Exception:
            self.db.rollback()
            raise

        self._deliver(policy_id, outbox)
        return result

    def _read(self, apply: Callable[[], OperationResult]) -> OperationResult:
        try:
            return apply()
        except WorkflowError as e:
            return OperationResult.fail(e)

    def _deliver(self, policy_id: str, outbox: Outbox) -> None:
        """Fire-and-forget notifications. Failures are logged and recorded, never rolled back."""
        for label, send in outbox:
            try:
                send()
            except Exception as e:
                logger.exception(f"Notification failed for policy {policy_id}: {label}")
                self._record_notification_failure(policy_id, label, str(e))

    def _record_notification_failure(self, policy_id: str, label: str, error: str) -> None:
        try:
            with self.locks.hold(policy_id):
                policy = self._load(policy_id)
                self.activity.record(
                    policy,
                    "notification_failed",
                    None,
                    PerformerType.SYSTEM,
                    description=f"Notification failed: {label}. Manual resend required.",
                    details={"notification": label, "error": error},
                    now=self.clock(),
                )
                self.db.commit()
        except WorkflowError as e:
            self.db.rollback()
            logger.warning(f"Could not record notification failure for policy {policy_id}: {e.message}")

    def _queue_invitation(
        self,
        outbox: Outbox,
        actor: ActorDB,
        grant: AccessGrantDB,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = self.grants.share_url(actor, grant)
        outbox.append((
            f"invitation to {actor.role.value} {actor.id}",
            partial(self.notifier.send_invitation, actor, grant.token, grant.expires_at, url, reason=reason),
        ))
        return {
            "actor_id": actor.id,
            "role": actor.role.value,
            "email": actor.email,
            "url": url,
            "expires_at": grant.expires_at,
        }

    def _check_actors_editable(self, policy: PolicyDB) -> None:
        if not self.actors_editable(policy):
            raise WorkflowError(
                f"Actor information can no longer change in {policy.status.value} status",
                code=FailureCode.ALREADY_LOCKED,
            )

    def _lock_actors(self, policy: PolicyDB, now: datetime) -> None:
        for actor in policy.actors:
            self.actors.lock(actor, now)

    # =========================================================================
    # INTAKE
    # =========================================================================

    def create_policy(
        self,
        ctx: StaffContext,
        property_address: Optional[str],
        rent_amount: Optional[float],
        guarantor_requirement: GuarantorRequirement = GuarantorRequirement.NONE,
        contract_length_months: Optional[int] = None,
    ) -> OperationResult:
        """Create a DRAFT policy."""
        months = contract_length_months if contract_length_months is not None else DEFAULT_CONTRACT_LENGTH_MONTHS
        if months <= 0:
            return OperationResult.fail(ValidationError("Contract length must be a positive number of months"))
        if rent_amount is not None and rent_amount < 0:
            return OperationResult.fail(ValidationError("Rent amount cannot be negative"))

        now = self.clock()
        policy = PolicyDB(
            id=str(uuid4()),
            policy_number=generate_policy_number(now),
            status=PolicyStatus.DRAFT,
            guarantor_requirement=guarantor_requirement,
            contract_length_months=months,
            property_address=property_address,
            rent_amount=rent_amount,
            created_by=ctx.user_id if ctx.is_staff else None,
            created_at=now,
        )
        self.db.add(policy)
        self.activity.record(
            policy,
            "policy_created",
            ctx.user_id,
            ctx.performer_type,
            description=f"Policy {policy.policy_number} created",
            details={"guarantor_requirement": guarantor_requirement, "contract_length_months": months},
            now=now,
        )
        self.db.commit()

        logger.info(f"Created policy {policy.policy_number} ({guarantor_requirement.value})")
        return OperationResult.ok(f"Policy {policy.policy_number} created", policy=policy)

    def add_actor(
        self,
        ctx: StaffContext,
        policy_id: str,
        role: ActorRole,
        actor_kind: ActorKind = ActorKind.INDIVIDUAL,
        profile: Optional[Dict[str, Any]] = None,
        is_primary: bool = False,
    ) -> OperationResult:
        """Attach an actor. In COLLECTING_INFO the new actor is invited immediately."""
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            if policy.status not in (PolicyStatus.DRAFT, PolicyStatus.COLLECTING_INFO):
                raise IllegalTransitionError(
                    f"Actors can only be added in DRAFT or COLLECTING_INFO, not {policy.status.value}"
                )

            actor = self.actors.create(policy, role, actor_kind, profile, is_primary, now)
            self.activity.record(
                policy,
                "actor_added",
                ctx.user_id,
                ctx.performer_type,
                description=f"{role.value} added",
                actor_id=actor.id,
                now=now,
            )

            link = None
            if policy.status == PolicyStatus.COLLECTING_INFO and actor.email:
                grant = self.grants.issue(actor, issued_by=ctx.user_id, now=now)
                link = self._queue_invitation(outbox, actor, grant)

            return OperationResult.ok(f"{role.value} added", actor=actor, link=link)

        return self._run(policy_id, "add_actor", apply)

    def send_invitations(
        self,
        ctx: StaffContext,
        policy_id: str,
        ttl: Optional[timedelta] = None,
    ) -> OperationResult:
        """
        DRAFT → COLLECTING_INFO, issuing one grant per actor.

        In COLLECTING_INFO, re-issues links only for actors not yet complete.
        """
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            if policy.status == PolicyStatus.DRAFT:
                missing = missing_roles(policy)
                if missing:
                    raise IllegalTransitionError(
                        f"Missing required actors: {', '.join(role.value for role in missing)}",
                        details={"missing_roles": [role.value for role in missing]},
                    )
                targets = list(policy.actors)
            elif policy.status == PolicyStatus.COLLECTING_INFO:
                targets = [a for a in policy.actors if not a.information_complete and a.locked_at is None]
            else:
                raise IllegalTransitionError(
                    f"Invitations cannot be sent in {policy.status.value} status"
                )

            no_email = [a.id for a in targets if not a.email]
            if no_email:
                raise ValidationError(
                    "Every invited actor needs an email address",
                    details={"actor_ids": no_email},
                )

            links = []
            for actor in targets:
                grant = self.grants.issue(actor, ttl=ttl, issued_by=ctx.user_id, now=now)
                links.append(self._queue_invitation(outbox, actor, grant))

            if policy.status == PolicyStatus.DRAFT:
                self._transition(
                    policy, PolicyStatus.COLLECTING_INFO, ctx, "send_invitations", outbox, now,
                    details={"invited": len(links)},
                )
            else:
                self.activity.record(
                    policy,
                    "invitations_resent",
                    ctx.user_id,
                    ctx.performer_type,
                    description=f"Re-sent {len(links)} invitation(s)",
                    now=now,
                )

            return OperationResult.ok(f"{len(links)} invitation(s) sent", policy=policy, links=links)

        return self._run(policy_id, "send_invitations", apply)

    def share_links(self, policy_id: str) -> OperationResult:
        """Live self-service URLs per actor (None where no usable grant exists)."""
        def apply() -> OperationResult:
            policy = self._load(policy_id)
            now = self.clock()
            links = []
            for actor in policy.actors:
                grant = self.grants.live_grant(actor, now)
                links.append({
                    "actor_id": actor.id,
                    "role": actor.role.value,
                    "name": actor.display_name,
                    "email": actor.email,
                    "information_complete": actor.information_complete,
                    "url": self.grants.share_url(actor, grant) if grant else None,
                    "expires_at": grant.expires_at if grant else None,
                })
            return OperationResult.ok(links=links)

        return self._read(apply)

    # =========================================================================
    # ACTOR SELF-SERVICE (token holders)
    # =========================================================================

    def _run_with_token(
        self,
        token: str,
        operation: str,
        apply: Callable[[PolicyDB, AccessGrantDB, datetime, Outbox], OperationResult],
    ) -> OperationResult:
        grant = self.grants.find(token) if token else None
        if grant is None:
            return OperationResult.fail(NotFoundError("Access link not found"))
        policy_id = grant.actor.policy_id

        def locked(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            redeemed = self.grants.redeem(token, now)
            return apply(policy, redeemed, now, outbox)

        return self._run(policy_id, operation, locked)

    def get_actor_by_token(self, token: str) -> OperationResult:
        """Resolve a self-service link to its actor and completeness report."""
        def apply() -> OperationResult:
            grant = self.grants.redeem(token, self.clock())
            actor = grant.actor
            return OperationResult.ok(actor=actor, report=evaluate(actor), expires_at=grant.expires_at)

        return self._read(apply)

    def save_actor_progress(self, token: str, payload: Dict[str, Any]) -> OperationResult:
        """Partial save. Does not consume the grant."""
        def apply(policy: PolicyDB, grant: AccessGrantDB, now: datetime, outbox: Outbox) -> OperationResult:
            self._check_actors_editable(policy)
            actor = grant.actor
            changed = self.actors.update(actor, payload)
            return OperationResult.ok("Progress saved", actor=actor, changed=changed, report=evaluate(actor))

        return self._run_with_token(token, "save_actor_progress", apply)

    def _submit(self, policy: PolicyDB, actor: ActorDB, performed_by: str, performer_type: PerformerType, now: datetime) -> OperationResult:
        self._check_actors_editable(policy)
        report = self.actors.submit(actor, now)
        was_rejected = self.verification.on_resubmission(actor)
        self.activity.record(
            policy,
            "actor_submitted",
            performed_by,
            performer_type,
            description=f"{actor.role.value} submitted information" + (" after rejection" if was_rejected else ""),
            details={"resubmission": was_rejected},
            actor_id=actor.id,
            now=now,
        )
        return OperationResult.ok("Information submitted", actor=actor, report=report)

    def submit_actor(self, token: str) -> OperationResult:
        """Mark the actor complete and consume the grant."""
        def apply(policy: PolicyDB, grant: AccessGrantDB, now: datetime, outbox: Outbox) -> OperationResult:
            actor = grant.actor
            result = self._submit(policy, actor, actor.id, PerformerType.ACTOR, now)
            self.grants.consume(grant, now)
            return result

        return self._run_with_token(token, "submit_actor", apply)

    def upload_actor_document(
        self,
        token: str,
        category: DocumentCategory,
        file_name: str,
        content: bytes,
        mime_type: str,
    ) -> OperationResult:
        """Store the file, then register it against the actor."""
        try:
            grant = self.grants.redeem(token, self.clock())
        except WorkflowError as e:
            return OperationResult.fail(e)
        if not content:
            return OperationResult.fail(ValidationError("Document file is empty"))

        # Storage I/O happens before the lock is taken
        document_id = self.storage.put_document(grant.actor_id, category.value, file_name, content, mime_type)

        def apply(policy: PolicyDB, redeemed: AccessGrantDB, now: datetime, outbox: Outbox) -> OperationResult:
            self._check_actors_editable(policy)
            document = self.actors.register_document(redeemed.actor, document_id, category, file_name, now)
            return OperationResult.ok("Document uploaded", document=document)

        return self._run_with_token(token, "upload_actor_document", apply)

    # =========================================================================
    # ACTOR REVIEW (staff)
    # =========================================================================

    def staff_update_actor(self, ctx: StaffContext, policy_id: str, actor_id: str, payload: Dict[str, Any]) -> OperationResult:
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            self._check_actors_editable(policy)
            actor = self.actors.get(policy, actor_id)
            if payload.get("is_primary"):
                self.actors.set_primary(policy, actor)
            previous = actor.verification_status
            changed = self.actors.update(actor, payload)
            details: Dict[str, Any] = {"fields": changed}
            if actor.verification_status != previous:
                details["verification_reset"] = previous.value
            self.activity.record(
                policy,
                "actor_updated",
                ctx.user_id,
                ctx.performer_type,
                description=f"{actor.role.value} edited by staff",
                details=details,
                actor_id=actor.id,
                now=now,
            )
            return OperationResult.ok("Actor updated", actor=actor, report=evaluate(actor))

        return self._run(policy_id, "staff_update_actor", apply)

    def staff_submit_actor(self, ctx: StaffContext, policy_id: str, actor_id: str) -> OperationResult:
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            actor = self.actors.get(policy, actor_id)
            return self._submit(policy, actor, ctx.user_id, ctx.performer_type, now)

        return self._run(policy_id, "staff_submit_actor", apply)

    def resend_invitation(
        self,
        ctx: StaffContext,
        policy_id: str,
        actor_id: str,
        ttl: Optional[timedelta] = None,
    ) -> OperationResult:
        """Issue a fresh link for an actor who has not completed their information."""
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            self._check_actors_editable(policy)
            actor = self.actors.get(policy, actor_id)
            if not actor.email:
                raise ValidationError("Actor has no email address")
            grant = self.grants.resend(actor, ttl=ttl, issued_by=ctx.user_id, now=now)
            link = self._queue_invitation(outbox, actor, grant)
            self.activity.record(
                policy,
                "invitation_resent",
                ctx.user_id,
                ctx.performer_type,
                description=f"New access link issued to {actor.role.value}",
                actor_id=actor.id,
                now=now,
            )
            return OperationResult.ok("Invitation re-sent", link=link)

        return self._run(policy_id, "resend_invitation", apply)

    def approve_actor(self, ctx: StaffContext, policy_id: str, actor_id: str) -> OperationResult:
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            actor = self.actors.get(policy, actor_id)
            changed = self.verification.approve(actor, ctx.user_id, now)
            if not changed:
                return OperationResult.ok("Actor already approved", actor=actor)

            self.activity.record(
                policy,
                "actor_approved",
                ctx.user_id,
                ctx.performer_type,
                description=f"{actor.role.value} {actor.display_name} approved",
                actor_id=actor.id,
                now=now,
            )
            return OperationResult.ok("Actor approved", actor=actor)

        return self._run(policy_id, "approve_actor", apply)

    def reject_actor(self, ctx: StaffContext, policy_id: str, actor_id: str, reason: str) -> OperationResult:
        """
        Reject an actor's submission. The actor gets a new link carrying the
        reason; their previous link was consumed by the submission.
        """
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            actor = self.actors.get(policy, actor_id)
            self.verification.reject(actor, ctx.user_id, reason, now)
            self.activity.record(
                policy,
                "actor_rejected",
                ctx.user_id,
                ctx.performer_type,
                description=f"{actor.role.value} {actor.display_name} rejected: {actor.rejection_reason}",
                details={"reason": actor.rejection_reason},
                actor_id=actor.id,
                now=now,
            )

            link = None
            if actor.email:
                grant = self.grants.issue(actor, issued_by=ctx.user_id, now=now)
                link = self._queue_invitation(outbox, actor, grant, reason=actor.rejection_reason)

            return OperationResult.ok(actor.rejection_reason, actor=actor, link=link)

        return self._run(policy_id, "reject_actor", apply)

    def mark_actor_in_review(self, ctx: StaffContext, policy_id: str, actor_id: str) -> OperationResult:
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            actor = self.actors.get(policy, actor_id)
            self.verification.mark_in_review(actor, ctx.user_id, now)
            self.activity.record(
                policy,
                "actor_in_review",
                ctx.user_id,
                ctx.performer_type,
                description=f"{actor.role.value} {actor.display_name} under review",
                actor_id=actor.id,
                now=now,
            )
            return OperationResult.ok("Actor in review", actor=actor)

        return self._run(policy_id, "mark_actor_in_review", apply)

    # =========================================================================
    # INVESTIGATION
    # =========================================================================

    def start_investigation(self, ctx: StaffContext, policy_id: str, staff_override: bool = False) -> OperationResult:
        """
        COLLECTING_INFO → UNDER_INVESTIGATION.

        Requires every required actor approved, or with staff_override every
        required actor complete.
        """
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            if policy.status != PolicyStatus.COLLECTING_INFO:
                raise IllegalTransitionError(
                    f"Investigation can only start from COLLECTING_INFO, not {policy.status.value}"
                )

            approved = all_approved(policy)
            if not approved and not (staff_override and all_complete(policy)):
                if staff_override:
                    message = "Not every required actor has completed their information"
                    pending = [a.id for a in required_actors(policy) if not a.information_complete]
                else:
                    message = "Not every required actor is approved"
                    pending = [
                        a.id for a in required_actors(policy)
                        if a.verification_status != VerificationStatus.APPROVED
                    ]
                raise IllegalTransitionError(
                    message,
                    code=FailureCode.ACTORS_NOT_APPROVED,
                    details={
                        "missing_roles": [role.value for role in missing_roles(policy)],
                        "pending_actor_ids": pending,
                    },
                )

            if policy.submitted_at is None:
                policy.submitted_at = now
            self._transition(
                policy, PolicyStatus.UNDER_INVESTIGATION, ctx, "start_investigation", outbox, now,
                details={"staff_override": not approved},
            )
            investigation = self.investigations.open(policy, now)
            return OperationResult.ok("Investigation opened", policy=policy, investigation=investigation)

        return self._run(policy_id, "start_investigation", apply)

    def assign_investigation(
        self,
        ctx: StaffContext,
        policy_id: str,
        assignee: Optional[str] = None,
        priority: InvestigationPriority = InvestigationPriority.NORMAL,
    ) -> OperationResult:
        """Start the investigation process: assign it and start the clock."""
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            investigation = self.investigations.start(policy, assignee or ctx.user_id, priority, now)
            self.activity.record(
                policy,
                "investigation_started",
                ctx.user_id,
                ctx.performer_type,
                description=f"Investigation assigned to {investigation.assigned_to}",
                details={"assigned_to": investigation.assigned_to, "priority": investigation.priority},
                now=now,
            )
            return OperationResult.ok("Investigation started", investigation=investigation)

        return self._run(policy_id, "assign_investigation", apply)

    def complete_investigation(
        self,
        ctx: StaffContext,
        policy_id: str,
        verdict: InvestigationVerdict,
        risk_level: Optional[RiskLevel] = None,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> OperationResult:
        """
        Record the verdict and move the policy per its resolution.
        HIGH_RISK keeps the policy UNDER_INVESTIGATION until the landlord decides.
        """
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            investigation = self.investigations.complete(
                policy, verdict, risk_level, ctx.user_id, notes, rejection_reason, now,
            )
            self.activity.record(
                policy,
                "investigation_completed",
                ctx.user_id,
                ctx.performer_type,
                description=f"Investigation verdict {verdict.value} ({investigation.risk_level.value} risk)",
                details={
                    "verdict": verdict,
                    "risk_level": investigation.risk_level,
                    "response_time_hours": investigation.response_time_hours,
                },
                now=now,
            )

            resolution = resolve(investigation)
            if resolution == Resolution.PROCEED:
                self._transition(policy, PolicyStatus.PENDING_APPROVAL, ctx, "investigation_approved", outbox, now)
            elif resolution == Resolution.REJECT:
                self._transition(
                    policy, PolicyStatus.INVESTIGATION_REJECTED, ctx, "investigation_rejected", outbox, now,
                    details={"reason": investigation.rejection_reason},
                )

            return OperationResult.ok(
                f"Investigation completed: {verdict.value}",
                policy=policy,
                investigation=investigation,
                resolution=resolution,
            )

        return self._run(policy_id, "complete_investigation", apply)

    def landlord_override(
        self,
        ctx: StaffContext,
        policy_id: str,
        decision: LandlordDecision,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """Landlord's one-time decision on a HIGH_RISK verdict."""
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            investigation = self.investigations.landlord_override(policy, decision, ctx.user_id, notes, now)
            if policy.status != PolicyStatus.UNDER_INVESTIGATION:
                raise IllegalTransitionError(
                    f"Landlord override requires UNDER_INVESTIGATION, not {policy.status.value}"
                )

            self.activity.record(
                policy,
                "landlord_override",
                ctx.user_id,
                ctx.performer_type,
                description=f"Landlord decided {decision.value} on HIGH_RISK verdict",
                details={"decision": decision, "notes": notes},
                now=now,
            )
            if decision == LandlordDecision.PROCEED:
                self._transition(policy, PolicyStatus.PENDING_APPROVAL, ctx, "landlord_proceed", outbox, now)
            else:
                self._transition(policy, PolicyStatus.INVESTIGATION_REJECTED, ctx, "landlord_reject", outbox, now)

            return OperationResult.ok(f"Landlord decision {decision.value} recorded", policy=policy, investigation=investigation)

        return self._run(policy_id, "landlord_override", apply)

    # =========================================================================
    # APPROVAL
    # =========================================================================

    def approve_policy(self, ctx: StaffContext, policy_id: str, notes: Optional[str] = None) -> OperationResult:
        """PENDING_APPROVAL → APPROVED. Freezes every actor record."""
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            if policy.status == PolicyStatus.UNDER_INVESTIGATION:
                raise IllegalTransitionError(
                    "Investigation has not resolved favorably",
                    code=FailureCode.INVESTIGATION_UNRESOLVED,
                    details={"resolution": resolve(self.investigations.current(policy)).value},
                )
            if policy.status != PolicyStatus.PENDING_APPROVAL:
                raise IllegalTransitionError(
                    f"Policy in {policy.status.value} status cannot be approved"
                )

            if not all_approved(policy):
                raise IllegalTransitionError(
                    "Not every required actor is approved",
                    code=FailureCode.ACTORS_NOT_APPROVED,
                    details={"missing_roles": [role.value for role in missing_roles(policy)]},
                )

            resolution = resolve(self.investigations.current(policy))
            if resolution != Resolution.PROCEED:
                raise IllegalTransitionError(
                    "Investigation has not resolved favorably",
                    code=FailureCode.INVESTIGATION_UNRESOLVED,
                    details={"resolution": resolution.value},
                )

            policy.approved_at = now
            if notes:
                policy.review_notes = notes
            self._lock_actors(policy, now)
            self._transition(policy, PolicyStatus.APPROVED, ctx, "approve_policy", outbox, now)
            return OperationResult.ok("Policy approved", policy=policy)

        return self._run(policy_id, "approve_policy", apply)

    # =========================================================================
    # CONTRACTS
    # =========================================================================

    def upload_contract(
        self,
        ctx: StaffContext,
        policy_id: str,
        file_name: str,
        content: bytes,
        mime_type: str,
    ) -> OperationResult:
        """Store a new contract version. APPROVED moves to CONTRACT_PENDING."""
        try:
            validate_contract_file(file_name, len(content or b""), mime_type)
            policy = self._load(policy_id)
        except WorkflowError as e:
            return OperationResult.fail(e)
        if policy.status not in UPLOADABLE_STATUSES:
            return OperationResult.fail(IllegalTransitionError(
                "Contract can only be uploaded for policies in APPROVED or CONTRACT_PENDING status"
            ))

        # Storage I/O happens before the lock is taken
        document_id = self.storage.put_document(policy_id, "contract", file_name, content, mime_type)

        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            contract = self.contracts.upload(
                policy, document_id, file_name, len(content), mime_type, ctx.user_id, now,
            )
            self.activity.record(
                policy,
                "contract_uploaded",
                ctx.user_id,
                ctx.performer_type,
                description=f"Contract version {contract.version} uploaded",
                details={"version": contract.version, "file_name": file_name},
                now=now,
            )
            if policy.status == PolicyStatus.APPROVED:
                self._transition(policy, PolicyStatus.CONTRACT_PENDING, ctx, "contract_uploaded", outbox, now)
            return OperationResult.ok(f"Contract version {contract.version} uploaded", contract=contract, version=contract.version)

        return self._run(policy_id, "upload_contract", apply)

    def mark_contract_signed(self, ctx: StaffContext, policy_id: str) -> OperationResult:
        """
        CONTRACT_PENDING → ACTIVE in one step.
        Sets contract_signed_at, activated_at and the one-time expires_at.
        """
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            if policy.status != PolicyStatus.CONTRACT_PENDING:
                raise IllegalTransitionError(
                    f"Contract can only be signed in CONTRACT_PENDING, not {policy.status.value}"
                )

            contract = self.contracts.mark_signed(policy, ctx.user_id, now)
            policy.contract_signed_at = contract.signed_at
            policy.activated_at = now
            if policy.expires_at is None:
                policy.expires_at = compute_expiry(contract.signed_at, policy.contract_length_months)

            self._transition(
                policy, PolicyStatus.ACTIVE, ctx, "contract_signed", outbox, now,
                details={
                    "via": PolicyStatus.CONTRACT_SIGNED,
                    "version": contract.version,
                    "expires_at": policy.expires_at,
                },
            )
            return OperationResult.ok("Contract signed; policy active", policy=policy, contract=contract)

        return self._run(policy_id, "mark_contract_signed", apply)

    def get_contract_download_url(self, policy_id: str, ttl_seconds: Optional[int] = None) -> OperationResult:
        def apply() -> OperationResult:
            policy = self._load(policy_id)
            contract = self.contracts.current(policy)
            if contract is None:
                raise WorkflowError("No contract uploaded for this policy", code=FailureCode.NO_CURRENT_CONTRACT)
            url = self.storage.get_signed_download_url(
                contract.document_id, ttl_seconds or CONTRACT_DOWNLOAD_URL_TTL_SECONDS,
            )
            return OperationResult.ok(url=url, version=contract.version, file_name=contract.file_name)

        return self._read(apply)

    # =========================================================================
    # CANCEL / REOPEN
    # =========================================================================

    def cancel(self, ctx: StaffContext, policy_id: str, reason: str) -> OperationResult:
        """Staff-only. Available from any non-terminal state."""
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            if not ctx.is_staff:
                raise IllegalTransitionError("Only staff can cancel a policy")
            if reason is None or not reason.strip():
                raise ValidationError("Cancellation reason is required", code=FailureCode.EMPTY_REASON)
            if self.is_terminal(policy.status):
                raise IllegalTransitionError(
                    f"Policy in terminal status {policy.status.value} cannot be cancelled"
                )

            policy.cancelled_at = now
            policy.cancellation_reason = reason.strip()
            self._lock_actors(policy, now)
            for actor in policy.actors:
                for grant in actor.grants:
                    if grant.consumed_at is None and grant.revoked_at is None:
                        grant.revoked_at = now

            self._transition(
                policy, PolicyStatus.CANCELLED, ctx, "cancel", outbox, now,
                details={"reason": policy.cancellation_reason},
            )
            return OperationResult.ok(policy.cancellation_reason, policy=policy)

        return self._run(policy_id, "cancel", apply)

    def reopen_policy(self, ctx: StaffContext, policy_id: str, reason: str) -> OperationResult:
        """Explicit staff action: INVESTIGATION_REJECTED → COLLECTING_INFO."""
        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            if not ctx.is_staff:
                raise IllegalTransitionError("Only staff can reopen a policy")
            if reason is None or not reason.strip():
                raise ValidationError("Reopen reason is required", code=FailureCode.EMPTY_REASON)
            if policy.status != PolicyStatus.INVESTIGATION_REJECTED:
                raise IllegalTransitionError(
                    f"Only INVESTIGATION_REJECTED policies can be reopened, not {policy.status.value}"
                )

            superseded = self.investigations.supersede(policy, now)
            self._transition(
                policy, PolicyStatus.COLLECTING_INFO, ctx, "reopen", outbox, now,
                details={"reason": reason.strip(), "superseded_investigation": superseded.id if superseded else None},
            )
            return OperationResult.ok("Policy reopened", policy=policy)

        return self._run(policy_id, "reopen_policy", apply)

    # =========================================================================
    # READS
    # =========================================================================

    def _is_expiry_due(self, policy: PolicyDB, now: datetime) -> bool:
        return (
            policy.status == PolicyStatus.ACTIVE
            and policy.expires_at is not None
            and now > policy.expires_at
        )

    def get_policy(self, policy_id: str) -> OperationResult:
        """Load a policy, applying lazy expiry first."""
        try:
            policy = self._load(policy_id)
        except WorkflowError as e:
            return OperationResult.fail(e)

        if not self._is_expiry_due(policy, self.clock()):
            return OperationResult.ok(policy=policy)

        def apply(policy: PolicyDB, now: datetime, outbox: Outbox) -> OperationResult:
            # Re-checked under the lock; a concurrent read may have expired it
            if self._is_expiry_due(policy, now):
                self._transition(
                    policy, PolicyStatus.EXPIRED, SYSTEM,
                    "time_elapsed", outbox, now, details={"expires_at": policy.expires_at},
                )
            return OperationResult.ok(policy=policy)

        return self._run(policy_id, "expire", apply)

    def list_policies(self, status: Optional[PolicyStatus] = None) -> List[PolicyDB]:
        query = self.db.query(PolicyDB)
        if status is not None:
            query = query.filter(PolicyDB.status == status)
        policies = query.order_by(PolicyDB.created_at.desc()).all()

        now = self.clock()
        for policy in policies:
            if self._is_expiry_due(policy, now):
                self.get_policy(policy.id)
        if status is not None:
            policies = [p for p in policies if p.status == status]
        return policies

    def progress(self, policy_id: str) -> OperationResult:
        """Per-actor completeness and overall percentage of required actors complete."""
        def apply() -> OperationResult:
            policy = self._load(policy_id)
            actors = []
            for actor in policy.actors:
                report = evaluate(actor)
                actors.append({
                    "actor_id": actor.id,
                    "role": actor.role.value,
                    "actor_kind": actor.actor_kind.value,
                    "name": actor.display_name,
                    "is_primary": bool(actor.is_primary),
                    "information_complete": bool(actor.information_complete),
                    "verification_status": actor.verification_status.value,
                    "rejection_reason": actor.rejection_reason,
                    "missing_fields": report.missing_fields,
                    "missing_documents": report.missing_documents,
                    "valid_references": report.valid_references,
                    "reference_error": report.reference_error,
                })

            required = required_actors(policy)
            expected = len(required) + len(missing_roles(policy))
            complete = sum(1 for actor in required if actor.information_complete)
            percentage = round(complete * 100 / expected) if expected else 0

            return OperationResult.ok(
                policy_id=policy.id,
                status=policy.status.value,
                actors=actors,
                missing_roles=[role.value for role in missing_roles(policy)],
                complete_actors=complete,
                required_actors=expected,
                percentage=percentage,
                all_complete=all_complete(policy),
                all_approved=all_approved(policy),
            )

        return self._read(apply)

    def list_activities(self, policy_id: str) -> OperationResult:
        def apply() -> OperationResult:
            policy = self._load(policy_id)
            entries: List[PolicyActivityDB] = self.activity.entries(policy)
            return OperationResult.ok(activities=entries)

        return self._read(apply)

    def render_policy_document(self, policy_id: str) -> OperationResult:
        """Read-only export through the rendering collaborator."""
        def apply() -> OperationResult:
            policy = self._load(policy_id)
            return OperationResult.ok(content=self.renderer.render_policy_document(policy), policy_number=policy.policy_number)

        return self._read(apply)
