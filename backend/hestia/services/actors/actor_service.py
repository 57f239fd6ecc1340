"""
Actor Service

Creates actors and applies edits to their records. Used by the policy
lifecycle for both self-service (grant holders) and staff edits.

Rules:
- Role must be allowed by the policy's guarantor requirement
- At most one tenant per policy
- Exactly one primary landlord; marking another primary demotes the previous
- Locked actors (policy approved or cancelled) reject every edit
- Edits that make a complete record incomplete clear informationComplete
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import MAX_REFERENCES
from ...models.db_models import (
    ActorDB, ActorDocumentDB, ActorKind, ActorReferenceDB, ActorRole,
    DocumentCategory, Nationality, PolicyDB, ReferenceKind, VerificationStatus, utcnow,
)
from ..errors import FailureCode, NotFoundError, ValidationError, WorkflowError
from ..verification import GUARANTOR_ROLES
from .completeness import REFERENCE_KIND, CompletenessReport, evaluate, is_complete

logger = logging.getLogger(__name__)


# Plain columns an actor or staff member may write
PROFILE_FIELDS = [
    "first_name", "middle_name", "paternal_last_name", "maternal_last_name",
    "curp", "passport_number",
    "company_name", "rfc", "legal_rep_name", "legal_rep_id",
    "email", "phone", "address",
    "occupation", "employer_name", "monthly_income",
    "bank_name", "clabe", "guarantee_property_address",
]


class ActorService:
    """Record-level operations on actors. Never touches policy status."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # CREATION
    # =========================================================================

    def check_role_allowed(self, policy: PolicyDB, role: ActorRole) -> None:
        if role in (ActorRole.LANDLORD, ActorRole.TENANT):
            if role == ActorRole.TENANT and any(a.role == ActorRole.TENANT for a in policy.actors):
                raise ValidationError("Policy already has a tenant")
            return

        if role not in GUARANTOR_ROLES[policy.guarantor_requirement]:
            raise ValidationError(
                f"{role.value} is not allowed for guarantor requirement "
                f"{policy.guarantor_requirement.value}"
            )

    def create(
        self,
        policy: PolicyDB,
        role: ActorRole,
        actor_kind: ActorKind = ActorKind.INDIVIDUAL,
        profile: Optional[Dict[str, Any]] = None,
        is_primary: bool = False,
        now: Optional[datetime] = None,
    ) -> ActorDB:
        """Attach a new actor to the policy."""
        self.check_role_allowed(policy, role)

        now = now or utcnow()
        actor = ActorDB(
            id=str(uuid4()),
            policy_id=policy.id,
            role=role,
            actor_kind=actor_kind or ActorKind.INDIVIDUAL,
            nationality=Nationality.MEXICAN,
            information_complete=False,
            created_at=now,
        )
        policy.actors.append(actor)
        self.db.add(actor)

        if role == ActorRole.LANDLORD:
            landlords = [a for a in policy.actors if a.role == ActorRole.LANDLORD]
            if is_primary or len(landlords) == 1:
                self.set_primary(policy, actor)
            else:
                actor.is_primary = False

        if profile:
            self._apply_profile(actor, profile)

        logger.info(f"Added {role.value} actor {actor.id} to policy {policy.id}")
        return actor

    def set_primary(self, policy: PolicyDB, actor: ActorDB) -> None:
        """Make this landlord the primary one."""
        if actor.role != ActorRole.LANDLORD:
            raise ValidationError("Only landlords can be marked primary")
        for other in policy.actors:
            if other.role == ActorRole.LANDLORD:
                other.is_primary = other is actor

    # =========================================================================
    # EDITS
    # =========================================================================

    def check_editable(self, actor: ActorDB) -> None:
        if actor.locked_at is not None:
            raise WorkflowError(
                "Actor information is locked and can no longer be edited",
                code=FailureCode.ALREADY_LOCKED,
            )

    def _apply_profile(self, actor: ActorDB, payload: Dict[str, Any]) -> List[str]:
        changed = []

        if payload.get("actor_kind") is not None:
            actor.actor_kind = ActorKind(payload["actor_kind"])
            changed.append("actor_kind")
        if payload.get("nationality") is not None:
            actor.nationality = Nationality(payload["nationality"])
            changed.append("nationality")

        for name in PROFILE_FIELDS:
            if name in payload:
                setattr(actor, name, payload[name])
                changed.append(name)
        return changed

    def _replace_references(self, actor: ActorDB, references: List[Dict[str, Any]]) -> None:
        if len(references) > MAX_REFERENCES:
            raise ValidationError(
                f"At most {MAX_REFERENCES} references allowed ({len(references)} provided)"
            )

        default_kind = REFERENCE_KIND[actor.actor_kind]
        replacement = []
        for position, data in enumerate(references):
            kind = ReferenceKind(data["kind"]) if data.get("kind") else default_kind
            replacement.append(ActorReferenceDB(
                id=str(uuid4()),
                actor_id=actor.id,
                kind=kind,
                position=position,
                name=data.get("name"),
                contact_name=data.get("contact_name"),
                phone=data.get("phone"),
                email=data.get("email"),
                relationship_type=data.get("relationship"),
            ))
        actor.references = replacement

    def update(self, actor: ActorDB, payload: Dict[str, Any]) -> List[str]:
        """
        Partial update of profile fields, references and document registrations.

        Returns the names of changed fields. A record that stops being complete
        loses its informationComplete flag, and any approval or review in
        progress drops back to PENDING.
        """
        self.check_editable(actor)

        changed = self._apply_profile(actor, payload)

        if payload.get("references") is not None:
            self._replace_references(actor, payload["references"])
            changed.append("references")

        for doc in payload.get("documents") or []:
            self.register_document(actor, doc["document_id"], DocumentCategory(doc["category"]), doc.get("file_name"))
            changed.append("documents")

        if actor.information_complete and not is_complete(actor):
            actor.information_complete = False
            logger.info(f"Actor {actor.id} no longer complete after edit")

            if actor.verification_status in (VerificationStatus.APPROVED, VerificationStatus.IN_REVIEW):
                logger.info(f"Actor {actor.id} verification reset from {actor.verification_status.value}")
                actor.verification_status = VerificationStatus.PENDING
                actor.verified_at = None
                actor.verified_by = None
                actor.reviewed_at = None

        return changed

    def register_document(
        self,
        actor: ActorDB,
        document_id: str,
        category: DocumentCategory,
        file_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActorDocumentDB:
        """Record a stored document against the actor."""
        self.check_editable(actor)
        document = ActorDocumentDB(
            id=str(uuid4()),
            actor_id=actor.id,
            document_id=document_id,
            category=category,
            file_name=file_name,
            uploaded_at=now or utcnow(),
        )
        actor.documents.append(document)
        self.db.add(document)
        return document

    def submit(self, actor: ActorDB, now: Optional[datetime] = None) -> CompletenessReport:
        """
        Mark the actor complete.

        Raises ValidationError with the missing fields when incomplete.
        """
        self.check_editable(actor)

        report = evaluate(actor)
        if not report.complete:
            problems = list(report.missing_fields)
            if report.reference_error:
                problems.append(report.reference_error)
            raise ValidationError(
                f"Actor information is incomplete: {', '.join(problems)}",
                details={
                    "missing_fields": report.missing_fields,
                    "reference_error": report.reference_error,
                },
            )

        actor.information_complete = True
        actor.submitted_at = now or utcnow()
        logger.info(f"Actor {actor.id} submitted complete information")
        return report

    def lock(self, actor: ActorDB, now: Optional[datetime] = None) -> None:
        """Freeze the record."""
        if actor.locked_at is None:
            actor.locked_at = now or utcnow()

    def get(self, policy: PolicyDB, actor_id: str) -> ActorDB:
        for actor in policy.actors:
            if actor.id == actor_id:
                return actor
        raise NotFoundError("Actor not found on this policy")
