"""
Policy API Routes (staff)

Every transition goes through PolicyLifecycle with an explicit StaffContext.
Handlers are sync so the per-policy lock never blocks the event loop.
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response

from ..auth import require_staff
from ..dependencies import get_lifecycle
from ..models.db_models import PolicyStatus
from ..services.context import StaffContext
from ..services.policy_lifecycle import PolicyLifecycle
from .schemas import (
    AddActorRequest, ApprovePolicyRequest, AssignInvestigationRequest, CompleteInvestigationRequest,
    CreatePolicyRequest, LandlordOverrideRequest, ReasonRequest, StaffActorUpdateRequest,
    StartInvestigationRequest, TtlRequest, VerifyActorRequest,
    raise_for_result, serialize_activity, serialize_actor, serialize_investigation, serialize_policy,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/policies", tags=["policies"])


def _ttl(request: Optional[TtlRequest]) -> Optional[timedelta]:
    if request is None or request.ttl_days is None:
        return None
    return timedelta(days=request.ttl_days)


# =============================================================================
# INTAKE
# =============================================================================

@router.post("", response_model=dict, status_code=201)
def create_policy(
    request: CreatePolicyRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    """Open a DRAFT policy."""
    result = raise_for_result(lifecycle.create_policy(
        ctx,
        property_address=request.property_address,
        rent_amount=request.rent_amount,
        guarantor_requirement=request.guarantor_requirement,
        contract_length_months=request.contract_length_months,
    ))
    return serialize_policy(result.data["policy"])


@router.get("", response_model=dict)
def list_policies(
    status: Optional[str] = Query(None, description="Status filter; legacy aliases accepted"),
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    status_filter = None
    if status:
        try:
            status_filter = PolicyStatus.from_alias(status)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown policy status: {status}")

    policies = lifecycle.list_policies(status_filter)
    return {
        "policies": [serialize_policy(p, include_actors=False) for p in policies],
        "total": len(policies),
    }


@router.get("/{policy_id}", response_model=dict)
def get_policy(
    policy_id: str,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    """Policy detail. Applies lazy expiry."""
    result = raise_for_result(lifecycle.get_policy(policy_id))
    return serialize_policy(result.data["policy"])


@router.post("/{policy_id}/actors", response_model=dict, status_code=201)
def add_actor(
    policy_id: str,
    request: AddActorRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    profile = request.to_payload()
    for key in ("role", "actor_kind", "is_primary", "references", "documents"):
        profile.pop(key, None)

    result = raise_for_result(lifecycle.add_actor(
        ctx, policy_id, request.role, request.actor_kind, profile, request.is_primary,
    ))
    return {"actor": serialize_actor(result.data["actor"]), "link": result.data["link"]}


@router.put("/{policy_id}/actors/{actor_id}", response_model=dict)
def staff_update_actor(
    policy_id: str,
    actor_id: str,
    request: StaffActorUpdateRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.staff_update_actor(ctx, policy_id, actor_id, request.to_payload()))
    return serialize_actor(result.data["actor"])


@router.post("/{policy_id}/actors/{actor_id}/submit", response_model=dict)
def staff_submit_actor(
    policy_id: str,
    actor_id: str,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.staff_submit_actor(ctx, policy_id, actor_id))
    return serialize_actor(result.data["actor"])


@router.post("/{policy_id}/send-invitations", response_model=dict)
def send_invitations(
    policy_id: str,
    request: Optional[TtlRequest] = None,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    """DRAFT → COLLECTING_INFO, or re-issue links for incomplete actors."""
    result = raise_for_result(lifecycle.send_invitations(ctx, policy_id, ttl=_ttl(request)))
    return {"message": result.message, "status": result.data["policy"].status.value, "links": result.data["links"]}


@router.get("/{policy_id}/share-links", response_model=dict)
def share_links(
    policy_id: str,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.share_links(policy_id))
    return {"links": result.data["links"]}


# =============================================================================
# ACTOR REVIEW
# =============================================================================

@router.post("/{policy_id}/actors/{actor_id}/verify", response_model=dict)
def verify_actor(
    policy_id: str,
    actor_id: str,
    request: VerifyActorRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    """Approve, reject (with reason) or mark an actor in review."""
    if request.action == "approve":
        result = lifecycle.approve_actor(ctx, policy_id, actor_id)
    elif request.action == "reject":
        result = lifecycle.reject_actor(ctx, policy_id, actor_id, request.reason or "")
    else:
        result = lifecycle.mark_actor_in_review(ctx, policy_id, actor_id)

    raise_for_result(result)
    return {"message": result.message, "actor": serialize_actor(result.data["actor"], include_details=False)}


@router.post("/{policy_id}/actors/{actor_id}/resend", response_model=dict)
def resend_invitation(
    policy_id: str,
    actor_id: str,
    request: Optional[TtlRequest] = None,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.resend_invitation(ctx, policy_id, actor_id, ttl=_ttl(request)))
    return {"message": result.message, "link": result.data["link"]}


# =============================================================================
# INVESTIGATION
# =============================================================================

@router.post("/{policy_id}/investigation/start", response_model=dict)
def start_investigation(
    policy_id: str,
    request: Optional[StartInvestigationRequest] = None,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    staff_override = request.staff_override if request else False
    result = raise_for_result(lifecycle.start_investigation(ctx, policy_id, staff_override=staff_override))
    return serialize_policy(result.data["policy"])


@router.post("/{policy_id}/investigation/assign", response_model=dict)
def assign_investigation(
    policy_id: str,
    request: AssignInvestigationRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.assign_investigation(ctx, policy_id, request.assignee, request.priority))
    return serialize_investigation(result.data["investigation"])


@router.post("/{policy_id}/investigation/complete", response_model=dict)
def complete_investigation(
    policy_id: str,
    request: CompleteInvestigationRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.complete_investigation(
        ctx, policy_id, request.verdict, request.risk_level, request.notes, request.rejection_reason,
    ))
    return {
        "message": result.message,
        "status": result.data["policy"].status.value,
        "resolution": result.data["resolution"].value,
        "investigation": serialize_investigation(result.data["investigation"]),
    }


@router.post("/{policy_id}/investigation/landlord-override", response_model=dict)
def landlord_override(
    policy_id: str,
    request: LandlordOverrideRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.landlord_override(ctx, policy_id, request.decision, request.notes))
    return {
        "message": result.message,
        "status": result.data["policy"].status.value,
        "investigation": serialize_investigation(result.data["investigation"]),
    }


# =============================================================================
# APPROVAL & CONTRACTS
# =============================================================================

@router.post("/{policy_id}/approve", response_model=dict)
def approve_policy(
    policy_id: str,
    request: Optional[ApprovePolicyRequest] = None,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    notes = request.notes if request else None
    result = raise_for_result(lifecycle.approve_policy(ctx, policy_id, notes))
    return serialize_policy(result.data["policy"])


@router.post("/{policy_id}/contracts/upload", response_model=dict, status_code=201)
def upload_contract(
    policy_id: str,
    file: UploadFile = File(...),
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    content = file.file.read()
    result = raise_for_result(lifecycle.upload_contract(
        ctx, policy_id, file.filename, content, file.content_type,
    ))
    contract = result.data["contract"]
    return {
        "message": result.message,
        "version": contract.version,
        "file_name": contract.file_name,
        "file_size": contract.file_size,
        "uploaded_at": contract.uploaded_at,
    }


@router.post("/{policy_id}/contracts/mark-signed", response_model=dict)
def mark_contract_signed(
    policy_id: str,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    """Signing activates the policy and fixes its expiry date."""
    result = raise_for_result(lifecycle.mark_contract_signed(ctx, policy_id))
    return serialize_policy(result.data["policy"])


@router.get("/{policy_id}/contracts/download-url", response_model=dict)
def contract_download_url(
    policy_id: str,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.get_contract_download_url(policy_id))
    return result.data


# =============================================================================
# CANCEL / REOPEN
# =============================================================================

@router.post("/{policy_id}/cancel", response_model=dict)
def cancel_policy(
    policy_id: str,
    request: ReasonRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.cancel(ctx, policy_id, request.reason))
    return serialize_policy(result.data["policy"])


@router.post("/{policy_id}/reopen", response_model=dict)
def reopen_policy(
    policy_id: str,
    request: ReasonRequest,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.reopen_policy(ctx, policy_id, request.reason))
    return serialize_policy(result.data["policy"])


# =============================================================================
# READS
# =============================================================================

@router.get("/{policy_id}/progress", response_model=dict)
def policy_progress(
    policy_id: str,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    return raise_for_result(lifecycle.progress(policy_id)).data


@router.get("/{policy_id}/activities", response_model=dict)
def policy_activities(
    policy_id: str,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    result = raise_for_result(lifecycle.list_activities(policy_id))
    return {"activities": [serialize_activity(entry) for entry in result.data["activities"]]}


@router.get("/{policy_id}/document")
def policy_document(
    policy_id: str,
    ctx: StaffContext = Depends(require_staff),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    """Plain-text export for audit."""
    result = raise_for_result(lifecycle.render_policy_document(policy_id))
    return Response(
        content=result.data["content"],
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{result.data["policy_number"]}.txt"'},
    )
