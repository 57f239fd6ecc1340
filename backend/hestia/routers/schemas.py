"""
Shared request models, serializers and result → HTTP mapping for the routers.
"""
from typing import Any, Dict, List, Literal, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field, field_validator

from ..config import DEFAULT_CONTRACT_LENGTH_MONTHS
from ..models.db_models import (
    ActorDB, ActorKind, ActorRole, DocumentCategory, GuarantorRequirement, InvestigationDB,
    InvestigationPriority, InvestigationVerdict, LandlordDecision, Nationality,
    PolicyActivityDB, PolicyDB, ReferenceKind, RiskLevel,
)
from ..services.actors import evaluate
from ..services.errors import FailureCode, OperationResult


# =============================================================================
# FAILURE → HTTP STATUS
# =============================================================================

STATUS_BY_CODE = {
    FailureCode.NOT_FOUND: 404,
    FailureCode.EXPIRED: 410,
    FailureCode.VALIDATION_FAILED: 422,
    FailureCode.EMPTY_REASON: 422,
    FailureCode.INVALID_RISK_FOR_VERDICT: 422,
    FailureCode.NOT_COMPLETE: 422,
}


def raise_for_result(result: OperationResult) -> OperationResult:
    """Translate a failed OperationResult into an HTTPException (guard failures → 409)."""
    if result.success:
        return result
    raise HTTPException(
        status_code=STATUS_BY_CODE.get(result.error, 409),
        detail={"code": result.error.value, "message": result.message, **result.data},
    )


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreatePolicyRequest(BaseModel):
    """Request to open a new DRAFT policy."""
    property_address: Optional[str] = Field(None, description="Address of the rented property")
    rent_amount: Optional[float] = Field(None, ge=0, description="Monthly rent")
    guarantor_requirement: GuarantorRequirement = Field(default=GuarantorRequirement.NONE)
    contract_length_months: int = Field(default=DEFAULT_CONTRACT_LENGTH_MONTHS, gt=0)


class ReferenceInput(BaseModel):
    """Personal (individual) or commercial (company) reference."""
    name: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    relationship: Optional[str] = None
    kind: Optional[ReferenceKind] = None


class DocumentInput(BaseModel):
    """Registration of a document already held by storage."""
    document_id: str
    category: DocumentCategory
    file_name: Optional[str] = None


class ActorProfileInput(BaseModel):
    """Partial actor update. Only fields that are sent are written."""
    actor_kind: Optional[ActorKind] = None
    nationality: Optional[Nationality] = None

    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    paternal_last_name: Optional[str] = None
    maternal_last_name: Optional[str] = None
    curp: Optional[str] = None
    passport_number: Optional[str] = None

    company_name: Optional[str] = None
    rfc: Optional[str] = None
    legal_rep_name: Optional[str] = None
    legal_rep_id: Optional[str] = None

    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    occupation: Optional[str] = None
    employer_name: Optional[str] = None
    monthly_income: Optional[float] = Field(None, ge=0)
    bank_name: Optional[str] = None
    clabe: Optional[str] = None
    guarantee_property_address: Optional[str] = None

    references: Optional[List[ReferenceInput]] = None
    documents: Optional[List[DocumentInput]] = None

    @field_validator('curp')
    @classmethod
    def normalize_curp(cls, v):
        if v is not None:
            v = v.strip().upper()
            if v and len(v) != 18:
                raise ValueError('CURP must be 18 characters')
        return v

    @field_validator('clabe')
    @classmethod
    def validate_clabe(cls, v):
        if v is not None and v.strip():
            v = v.strip()
            if not v.isdigit() or len(v) != 18:
                raise ValueError('CLABE must be exactly 18 digits')
        return v

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class AddActorRequest(ActorProfileInput):
    """Request to attach an actor to a policy."""
    role: ActorRole
    actor_kind: ActorKind = ActorKind.INDIVIDUAL
    is_primary: bool = False


class StaffActorUpdateRequest(ActorProfileInput):
    is_primary: Optional[bool] = None


class TtlRequest(BaseModel):
    ttl_days: Optional[int] = Field(None, gt=0, description="Override the default link lifetime")


class VerifyActorRequest(BaseModel):
    """Staff review decision on one actor."""
    action: Literal["approve", "reject", "review"]
    reason: Optional[str] = Field(None, description="Required for reject; shown to the actor")


class StartInvestigationRequest(BaseModel):
    staff_override: bool = Field(default=False, description="Start with complete but unapproved actors")


class AssignInvestigationRequest(BaseModel):
    assignee: Optional[str] = Field(None, description="Staff user ID; defaults to the caller")
    priority: InvestigationPriority = InvestigationPriority.NORMAL


class CompleteInvestigationRequest(BaseModel):
    verdict: InvestigationVerdict
    risk_level: Optional[RiskLevel] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class LandlordOverrideRequest(BaseModel):
    decision: LandlordDecision
    notes: Optional[str] = None


class ApprovePolicyRequest(BaseModel):
    notes: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: str = ""


# =============================================================================
# SERIALIZERS
# =============================================================================

def _enum(value):
    return value.value if value is not None else None


def serialize_actor(actor: ActorDB, include_details: bool = True) -> Dict[str, Any]:
    data = {
        "id": actor.id,
        "policy_id": actor.policy_id,
        "role": _enum(actor.role),
        "actor_kind": _enum(actor.actor_kind),
        "nationality": _enum(actor.nationality),
        "is_primary": bool(actor.is_primary),
        "name": actor.display_name,
        "email": actor.email,
        "phone": actor.phone,
        "information_complete": bool(actor.information_complete),
        "submitted_at": actor.submitted_at,
        "locked": actor.locked_at is not None,
        "verification_status": _enum(actor.verification_status),
        "rejection_reason": actor.rejection_reason,
    }
    if include_details:
        data.update({
            "first_name": actor.first_name,
            "middle_name": actor.middle_name,
            "paternal_last_name": actor.paternal_last_name,
            "maternal_last_name": actor.maternal_last_name,
            "curp": actor.curp,
            "passport_number": actor.passport_number,
            "company_name": actor.company_name,
            "rfc": actor.rfc,
            "legal_rep_name": actor.legal_rep_name,
            "legal_rep_id": actor.legal_rep_id,
            "address": actor.address,
            "occupation": actor.occupation,
            "employer_name": actor.employer_name,
            "monthly_income": actor.monthly_income,
            "bank_name": actor.bank_name,
            "clabe": actor.clabe,
            "guarantee_property_address": actor.guarantee_property_address,
            "references": [
                {
                    "name": ref.name,
                    "contact_name": ref.contact_name,
                    "phone": ref.phone,
                    "email": ref.email,
                    "relationship": ref.relationship_type,
                    "kind": _enum(ref.kind),
                }
                for ref in actor.references
            ],
            "documents": [
                {
                    "document_id": doc.document_id,
                    "category": _enum(doc.category),
                    "file_name": doc.file_name,
                    "uploaded_at": doc.uploaded_at,
                }
                for doc in actor.documents
            ],
        })
        report = evaluate(actor)
        data["completeness"] = {
            "complete": report.complete,
            "missing_fields": report.missing_fields,
            "valid_references": report.valid_references,
            "reference_error": report.reference_error,
            "missing_documents": report.missing_documents,
        }
    return data


def serialize_investigation(investigation: Optional[InvestigationDB]) -> Optional[Dict[str, Any]]:
    if investigation is None:
        return None
    return {
        "id": investigation.id,
        "state": _enum(investigation.state),
        "priority": _enum(investigation.priority),
        "assigned_to": investigation.assigned_to,
        "started_at": investigation.started_at,
        "verdict": _enum(investigation.verdict),
        "risk_level": _enum(investigation.risk_level),
        "rejection_reason": investigation.rejection_reason,
        "notes": investigation.notes,
        "completed_by": investigation.completed_by,
        "completed_at": investigation.completed_at,
        "response_time_hours": investigation.response_time_hours,
        "landlord_decision": _enum(investigation.landlord_decision),
        "landlord_override": bool(investigation.landlord_override),
        "landlord_notes": investigation.landlord_notes,
    }


def serialize_policy(policy: PolicyDB, include_actors: bool = True) -> Dict[str, Any]:
    current_investigation = next((i for i in policy.investigations if i.superseded_at is None), None)
    current_contract = next((c for c in policy.contracts if c.is_current), None)

    data = {
        "id": policy.id,
        "policy_number": policy.policy_number,
        "status": _enum(policy.status),
        "guarantor_requirement": _enum(policy.guarantor_requirement),
        "contract_length_months": policy.contract_length_months,
        "property_address": policy.property_address,
        "rent_amount": policy.rent_amount,
        "review_notes": policy.review_notes,
        "cancellation_reason": policy.cancellation_reason,
        "submitted_at": policy.submitted_at,
        "investigation_started_at": policy.investigation_started_at,
        "investigation_completed_at": policy.investigation_completed_at,
        "approved_at": policy.approved_at,
        "contract_uploaded_at": policy.contract_uploaded_at,
        "contract_signed_at": policy.contract_signed_at,
        "activated_at": policy.activated_at,
        "expires_at": policy.expires_at,
        "cancelled_at": policy.cancelled_at,
        "created_at": policy.created_at,
        "investigation": serialize_investigation(current_investigation),
        "current_contract": {
            "version": current_contract.version,
            "file_name": current_contract.file_name,
            "uploaded_at": current_contract.uploaded_at,
            "signed_at": current_contract.signed_at,
        } if current_contract else None,
    }
    if include_actors:
        data["actors"] = [serialize_actor(actor, include_details=False) for actor in policy.actors]
    return data


def serialize_activity(entry: PolicyActivityDB) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "sequence": entry.sequence,
        "actor_id": entry.actor_id,
        "action": entry.action,
        "performed_by": entry.performed_by,
        "performed_by_type": _enum(entry.performed_by_type),
        "description": entry.description,
        "details": entry.details or {},
        "timestamp": entry.created_at,
    }
