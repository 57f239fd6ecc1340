"""
Hestia Policy Engine - SQLAlchemy ORM Models
Persistent storage for policies, actors, access grants, investigations,
contracts and the append-only activity log.
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (all stored datetimes are naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS FOR THE POLICY WORKFLOW
# =============================================================================

class PolicyStatus(str, Enum):
    """States in the policy lifecycle state machine."""
    DRAFT = "DRAFT"
    COLLECTING_INFO = "COLLECTING_INFO"
    UNDER_INVESTIGATION = "UNDER_INVESTIGATION"
    INVESTIGATION_REJECTED = "INVESTIGATION_REJECTED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    CONTRACT_PENDING = "CONTRACT_PENDING"
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_alias(cls, value: str) -> "PolicyStatus":
        """Resolve legacy status names used by older screens."""
        normalized = value.strip().upper()
        if normalized in STATUS_ALIASES:
            return STATUS_ALIASES[normalized]
        return cls(normalized)


# Older screens used a second vocabulary for the same lifecycle
STATUS_ALIASES = {
    "SENT_TO_TENANT": PolicyStatus.COLLECTING_INFO,
    "IN_PROGRESS": PolicyStatus.COLLECTING_INFO,
    "INVESTIGATION_IN_PROGRESS": PolicyStatus.UNDER_INVESTIGATION,
    "INVESTIGATION_APPROVED": PolicyStatus.PENDING_APPROVAL,
}


class GuarantorRequirement(str, Enum):
    """Which guarantor roles a policy demands. Fixed at creation."""
    NONE = "NONE"
    JOINT_OBLIGOR = "JOINT_OBLIGOR"
    AVAL = "AVAL"
    BOTH = "BOTH"


class ActorRole(str, Enum):
    """Party to the policy."""
    LANDLORD = "LANDLORD"
    TENANT = "TENANT"
    JOINT_OBLIGOR = "JOINT_OBLIGOR"
    AVAL = "AVAL"


class ActorKind(str, Enum):
    """Legal sub-type of an actor."""
    INDIVIDUAL = "INDIVIDUAL"
    COMPANY = "COMPANY"


class Nationality(str, Enum):
    MEXICAN = "MEXICAN"
    FOREIGN = "FOREIGN"


class VerificationStatus(str, Enum):
    """Per-actor approval sub-state, independent of policy status."""
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ReferenceKind(str, Enum):
    PERSONAL = "PERSONAL"  # individuals
    COMMERCIAL = "COMMERCIAL"  # companies


class DocumentCategory(str, Enum):
    IDENTIFICATION = "IDENTIFICATION"
    INCOME_PROOF = "INCOME_PROOF"
    ADDRESS_PROOF = "ADDRESS_PROOF"
    BANK_STATEMENT = "BANK_STATEMENT"
    IMMIGRATION_DOCUMENT = "IMMIGRATION_DOCUMENT"
    COMPANY_CONSTITUTION = "COMPANY_CONSTITUTION"
    LEGAL_POWERS = "LEGAL_POWERS"
    TAX_STATUS_CERTIFICATE = "TAX_STATUS_CERTIFICATE"
    PROPERTY_DEED = "PROPERTY_DEED"
    PROPERTY_TAX_STATEMENT = "PROPERTY_TAX_STATEMENT"
    PROPERTY_REGISTRY = "PROPERTY_REGISTRY"


class InvestigationState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class InvestigationVerdict(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    HIGH_RISK = "HIGH_RISK"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class LandlordDecision(str, Enum):
    PROCEED = "PROCEED"
    REJECT = "REJECT"


class InvestigationPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class PerformerType(str, Enum):
    """Who performed an action recorded in the activity log."""
    STAFF = "STAFF"
    ACTOR = "ACTOR"
    SYSTEM = "SYSTEM"


# =============================================================================
# STAFF ACCOUNTS
# =============================================================================

class UserDB(Base):
    """Staff account. Actors never hold accounts; they use access grants."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="staff")  # staff | admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# POLICY
# =============================================================================

class PolicyDB(Base):
    """
    A rental guarantee policy.
    Status is mutated only by the policy lifecycle service.
    """
    __tablename__ = "policies"

    id = Column(String(36), primary_key=True)  # UUID
    policy_number = Column(String(32), unique=True, nullable=False, index=True)

    status = Column(SQLEnum(PolicyStatus), nullable=False, default=PolicyStatus.DRAFT)
    guarantor_requirement = Column(SQLEnum(GuarantorRequirement), nullable=False, default=GuarantorRequirement.NONE)
    contract_length_months = Column(Integer, nullable=False, default=12)

    # Property
    property_address = Column(String(500), nullable=True)
    rent_amount = Column(Float, nullable=True)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Lifecycle timestamps - null until the corresponding transition fires
    submitted_at = Column(DateTime, nullable=True)
    investigation_started_at = Column(DateTime, nullable=True)
    investigation_completed_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    contract_uploaded_at = Column(DateTime, nullable=True)
    contract_signed_at = Column(DateTime, nullable=True)
    activated_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)  # Set once, at activation
    cancelled_at = Column(DateTime, nullable=True)

    # Optimistic concurrency counter
    lock_version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": lock_version}

    # Relationships
    actors = relationship("ActorDB", back_populates="policy", cascade="all, delete-orphan", order_by="ActorDB.created_at")
    investigations = relationship("InvestigationDB", back_populates="policy", cascade="all, delete-orphan", order_by="InvestigationDB.created_at")
    contracts = relationship("ContractDB", back_populates="policy", cascade="all, delete-orphan", order_by="ContractDB.version")
    activities = relationship("PolicyActivityDB", back_populates="policy", cascade="all, delete-orphan", order_by="PolicyActivityDB.sequence")


# =============================================================================
# ACTORS
# =============================================================================

class ActorDB(Base):
    """
    A party to the policy. One table for every role; `role` and `actor_kind`
    select which fields are required for completeness.
    """
    __tablename__ = "actors"

    id = Column(String(36), primary_key=True)  # UUID
    policy_id = Column(String(36), ForeignKey("policies.id", ondelete="CASCADE"), nullable=False, index=True)

    role = Column(SQLEnum(ActorRole), nullable=False)
    actor_kind = Column(SQLEnum(ActorKind), nullable=False, default=ActorKind.INDIVIDUAL)
    is_primary = Column(Boolean, default=False)  # Landlords only
    nationality = Column(SQLEnum(Nationality), nullable=False, default=Nationality.MEXICAN)

    # ==========================================================================
    # IDENTITY - individual branch
    # ==========================================================================
    first_name = Column(String(100), nullable=True)
    middle_name = Column(String(100), nullable=True)
    paternal_last_name = Column(String(100), nullable=True)
    maternal_last_name = Column(String(100), nullable=True)
    curp = Column(String(18), nullable=True)  # Mexican nationals
    passport_number = Column(String(50), nullable=True)  # Foreign nationals

    # ==========================================================================
    # IDENTITY - company branch
    # ==========================================================================
    company_name = Column(String(255), nullable=True)
    rfc = Column(String(13), nullable=True)  # Tax ID
    legal_rep_name = Column(String(255), nullable=True)
    legal_rep_id = Column(String(50), nullable=True)

    # ==========================================================================
    # CONTACT
    # ==========================================================================
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)

    # ==========================================================================
    # EMPLOYMENT / FINANCIAL
    # ==========================================================================
    occupation = Column(String(100), nullable=True)
    employer_name = Column(String(255), nullable=True)
    monthly_income = Column(Float, nullable=True)
    bank_name = Column(String(100), nullable=True)  # Landlord payouts
    clabe = Column(String(18), nullable=True)
    guarantee_property_address = Column(String(500), nullable=True)  # Aval collateral

    # Submission state
    information_complete = Column(Boolean, default=False)
    submitted_at = Column(DateTime, nullable=True)
    locked_at = Column(DateTime, nullable=True)  # Edits frozen once the policy is approved

    # Verification sub-state
    verification_status = Column(SQLEnum(VerificationStatus), nullable=False, default=VerificationStatus.PENDING)
    rejection_reason = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verified_by = Column(String(36), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    policy = relationship("PolicyDB", back_populates="actors")
    references = relationship("ActorReferenceDB", back_populates="actor", cascade="all, delete-orphan", order_by="ActorReferenceDB.position")
    documents = relationship("ActorDocumentDB", back_populates="actor", cascade="all, delete-orphan")
    grants = relationship("AccessGrantDB", back_populates="actor", cascade="all, delete-orphan", order_by="AccessGrantDB.issued_at")

    @property
    def display_name(self) -> str:
        if self.actor_kind == ActorKind.COMPANY and self.company_name:
            return self.company_name
        parts = [self.first_name, self.paternal_last_name]
        name = " ".join(p for p in parts if p)
        return name or self.email or self.role.value.replace("_", " ").title()


class ActorReferenceDB(Base):
    """Personal (individuals) or commercial (companies) reference."""
    __tablename__ = "actor_references"

    id = Column(String(36), primary_key=True)  # UUID
    actor_id = Column(String(36), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(SQLEnum(ReferenceKind), nullable=False, default=ReferenceKind.PERSONAL)
    position = Column(Integer, nullable=False, default=0)

    name = Column(String(255), nullable=True)  # Person name, or company name for commercial references
    contact_name = Column(String(255), nullable=True)  # Commercial references only
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    relationship_type = Column("relationship", String(100), nullable=True)

    created_at = Column(DateTime, default=utcnow)

    actor = relationship("ActorDB", back_populates="references")


class ActorDocumentDB(Base):
    """
    Document registered for an actor. Bytes live with the storage
    collaborator; only identity and category are tracked here.
    """
    __tablename__ = "actor_documents"

    id = Column(String(36), primary_key=True)  # UUID
    actor_id = Column(String(36), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(String(255), nullable=False)  # Storage collaborator ID
    category = Column(SQLEnum(DocumentCategory), nullable=False)
    file_name = Column(String(255), nullable=True)
    uploaded_at = Column(DateTime, default=utcnow)

    actor = relationship("ActorDB", back_populates="documents")


class AccessGrantDB(Base):
    """
    Time-boxed self-service token bound to one actor.
    At most one live (unconsumed, unrevoked) grant per actor.
    """
    __tablename__ = "access_grants"

    id = Column(String(36), primary_key=True)  # UUID
    actor_id = Column(String(36), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(128), unique=True, nullable=False, index=True)

    issued_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    issued_by = Column(String(36), nullable=True)

    consumed_at = Column(DateTime, nullable=True)  # Set on successful submission
    revoked_at = Column(DateTime, nullable=True)  # Set when superseded by a newer grant

    actor = relationship("ActorDB", back_populates="grants")


# =============================================================================
# INVESTIGATION
# =============================================================================

class InvestigationDB(Base):
    """
    Background investigation of the policy as a whole.
    One current row per policy; reopened policies keep the superseded row.
    """
    __tablename__ = "investigations"

    id = Column(String(36), primary_key=True)  # UUID
    policy_id = Column(String(36), ForeignKey("policies.id", ondelete="CASCADE"), nullable=False, index=True)

    state = Column(SQLEnum(InvestigationState), nullable=False, default=InvestigationState.NOT_STARTED)
    priority = Column(SQLEnum(InvestigationPriority), nullable=False, default=InvestigationPriority.NORMAL)
    assigned_to = Column(String(36), nullable=True)
    started_at = Column(DateTime, nullable=True)

    # Outcome - immutable once completed_at is set
    verdict = Column(SQLEnum(InvestigationVerdict), nullable=True)
    risk_level = Column(SQLEnum(RiskLevel), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    completed_by = Column(String(36), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    response_time_hours = Column(Integer, nullable=True)

    # Landlord override (HIGH_RISK verdicts only, written once)
    landlord_decision = Column(SQLEnum(LandlordDecision), nullable=True)
    landlord_override = Column(Boolean, default=False)
    landlord_notes = Column(Text, nullable=True)
    landlord_decided_by = Column(String(36), nullable=True)
    landlord_decided_at = Column(DateTime, nullable=True)

    superseded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    policy = relationship("PolicyDB", back_populates="investigations")


# =============================================================================
# CONTRACTS
# =============================================================================

class ContractDB(Base):
    """
    One uploaded version of the lease contract.
    Exactly one version per policy is current.
    """
    __tablename__ = "contracts"
    __table_args__ = (UniqueConstraint("policy_id", "version", name="uq_contract_policy_version"),)

    id = Column(String(36), primary_key=True)  # UUID
    policy_id = Column(String(36), ForeignKey("policies.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    is_current = Column(Boolean, nullable=False, default=True)

    document_id = Column(String(255), nullable=False)  # Storage collaborator ID
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(100), nullable=False)

    uploaded_by = Column(String(36), nullable=False)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow)

    signed_at = Column(DateTime, nullable=True)  # Set at most once
    signed_by = Column(String(36), nullable=True)

    policy = relationship("PolicyDB", back_populates="contracts")


# =============================================================================
# ACTIVITY LOG
# =============================================================================

class PolicyActivityDB(Base):
    """
    Immutable record of every committed transition and actor review.
    Append-only. Never read by transition guards.
    """
    __tablename__ = "policy_activities"

    id = Column(String(36), primary_key=True)  # UUID
    sequence = Column(Integer, nullable=False, default=0)  # Insertion order within a policy
    policy_id = Column(String(36), ForeignKey("policies.id", ondelete="CASCADE"), nullable=False, index=True)
    actor_id = Column(String(36), nullable=True, index=True)

    action = Column(String(50), nullable=False)  # status_transition, actor_approved, contract_uploaded, etc.
    performed_by = Column(String(36), nullable=True)
    performed_by_type = Column(SQLEnum(PerformerType), nullable=False)
    description = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    policy = relationship("PolicyDB", back_populates="activities")
