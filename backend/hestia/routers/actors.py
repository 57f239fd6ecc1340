"""
Actor Self-Service Routes

Unauthenticated; the access-grant token in the path is the credential.
Expired links answer 410 so the client can offer "request a new link".
"""
import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ..dependencies import get_lifecycle
from ..models.db_models import DocumentCategory
from ..services.policy_lifecycle import PolicyLifecycle
from .schemas import ActorProfileInput, raise_for_result, serialize_actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/actor", tags=["actor self-service"])


@router.get("/{token}", response_model=dict)
def get_actor_form(token: str, lifecycle: PolicyLifecycle = Depends(get_lifecycle)):
    """Current record behind a self-service link."""
    result = raise_for_result(lifecycle.get_actor_by_token(token))
    return {"actor": serialize_actor(result.data["actor"]), "expires_at": result.data["expires_at"]}


@router.put("/{token}", response_model=dict)
def save_progress(
    token: str,
    request: ActorProfileInput,
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    """Partial save. The link stays usable."""
    result = raise_for_result(lifecycle.save_actor_progress(token, request.to_payload()))
    return {"actor": serialize_actor(result.data["actor"]), "changed": result.data["changed"]}


@router.post("/{token}/submit", response_model=dict)
def submit(token: str, lifecycle: PolicyLifecycle = Depends(get_lifecycle)):
    """Final submission. Consumes the link."""
    result = raise_for_result(lifecycle.submit_actor(token))
    return {"message": result.message, "actor": serialize_actor(result.data["actor"], include_details=False)}


@router.post("/{token}/documents", response_model=dict, status_code=201)
def upload_document(
    token: str,
    category: DocumentCategory = Form(...),
    file: UploadFile = File(...),
    lifecycle: PolicyLifecycle = Depends(get_lifecycle),
):
    content = file.file.read()
    result = raise_for_result(lifecycle.upload_actor_document(
        token, category, file.filename, content, file.content_type or "application/octet-stream",
    ))
    document = result.data["document"]
    return {
        "document_id": document.document_id,
        "category": document.category.value,
        "file_name": document.file_name,
    }
