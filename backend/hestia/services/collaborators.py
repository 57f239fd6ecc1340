"""
External Collaborators

Boundary contracts for storage, notifications and document rendering.
The workflow core only calls these; it never depends on how they deliver.

Default implementations:
- LocalStorageProvider: files on disk, HMAC-signed download URLs
- LoggingNotifier: writes notifications to the log (no email transport)
- TextPolicyRenderer: deterministic plain-text policy export
"""
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional
from uuid import uuid4

from ..config import APP_BASE_URL, JWT_SECRET_KEY, STORAGE_DIR
from ..models.db_models import ActorDB, PolicyDB, PolicyStatus

logger = logging.getLogger(__name__)


# =============================================================================
# STORAGE
# =============================================================================

class StorageProvider(ABC):
    """Holds document bytes on behalf of the core."""

    @abstractmethod
    def put_document(self, owner_id: str, category: str, file_name: str, content: bytes, mime_type: str) -> str:
        """Store a document and return its ID."""

    @abstractmethod
    def get_signed_download_url(self, document_id: str, ttl_seconds: int) -> str:
        """Time-limited download URL for a stored document."""


class LocalStorageProvider(StorageProvider):
    """Stores files under a local directory, one folder per owner."""

    def __init__(self, root: Optional[str] = None, secret: str = JWT_SECRET_KEY):
        self.root = Path(root or STORAGE_DIR)
        self.secret = secret.encode("utf-8")

    def put_document(self, owner_id: str, category: str, file_name: str, content: bytes, mime_type: str) -> str:
        suffix = Path(file_name).suffix.lower()
        document_id = f"{owner_id}/{category.lower()}/{uuid4().hex}{suffix}"
        path = self.root / document_id
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info(f"Stored document {document_id} ({len(content)} bytes, {mime_type})")
        return document_id

    def _signature(self, document_id: str, expires: int) -> str:
        message = f"{document_id}:{expires}".encode("utf-8")
        return hmac.new(self.secret, message, hashlib.sha256).hexdigest()

    def get_signed_download_url(self, document_id: str, ttl_seconds: int) -> str:
        expires = int(time.time()) + ttl_seconds
        signature = self._signature(document_id, expires)
        return f"{APP_BASE_URL}/files/{document_id}?expires={expires}&signature={signature}"

    def verify_signature(self, document_id: str, expires: int, signature: str) -> bool:
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self._signature(document_id, expires), signature)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class Notifier(ABC):
    """Outbound messages. Fire-and-forget from the core's perspective."""

    @abstractmethod
    def send_invitation(
        self,
        actor: ActorDB,
        token: str,
        expires_at: datetime,
        url: str,
        reason: Optional[str] = None,
    ) -> None:
        """Invite an actor to complete their information (reason set on rejection)."""

    @abstractmethod
    def send_status_change(self, policy: PolicyDB, new_status: PolicyStatus) -> None:
        """Tell interested parties the policy moved to a new status."""


class LoggingNotifier(Notifier):
    """Records notifications in the application log."""

    def send_invitation(self, actor, token, expires_at, url, reason=None):
        if reason:
            logger.info(f"Invitation to {actor.email} ({actor.role.value}) after rejection: {reason} -> {url}")
        else:
            logger.info(f"Invitation to {actor.email} ({actor.role.value}) until {expires_at.isoformat()} -> {url}")

    def send_status_change(self, policy, new_status):
        logger.info(f"Policy {policy.policy_number} is now {new_status.value}")


# =============================================================================
# DOCUMENT RENDERING
# =============================================================================

class PolicyRenderer(ABC):
    """Read-only export of a policy. Never mutates core state."""

    @abstractmethod
    def render_policy_document(self, policy: PolicyDB) -> bytes:
        """Render the policy for audit or export."""


def _fmt(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


class TextPolicyRenderer(PolicyRenderer):
    """Deterministic plain-text export, same input → same bytes."""

    def render_policy_document(self, policy: PolicyDB) -> bytes:
        lines = [
            f"POLICY {policy.policy_number}",
            "=" * 60,
            f"Status: {_fmt(policy.status)}",
            f"Property: {_fmt(policy.property_address)}",
            f"Rent: {_fmt(policy.rent_amount)}",
            f"Guarantor requirement: {_fmt(policy.guarantor_requirement)}",
            f"Contract length (months): {policy.contract_length_months}",
            "",
            "TIMELINE",
            "-" * 60,
        ]
        for label, value in (
            ("Submitted", policy.submitted_at),
            ("Investigation started", policy.investigation_started_at),
            ("Investigation completed", policy.investigation_completed_at),
            ("Approved", policy.approved_at),
            ("Contract uploaded", policy.contract_uploaded_at),
            ("Contract signed", policy.contract_signed_at),
            ("Activated", policy.activated_at),
            ("Expires", policy.expires_at),
            ("Cancelled", policy.cancelled_at),
        ):
            lines.append(f"{label}: {_fmt(value)}")

        lines.extend(["", "ACTORS", "-" * 60])
        for actor in policy.actors:
            primary = " (primary)" if actor.is_primary else ""
            lines.append(
                f"{actor.role.value}{primary}: {actor.display_name} "
                f"[{actor.actor_kind.value}] complete={actor.information_complete} "
                f"verification={actor.verification_status.value}"
            )

        return ("\n".join(lines) + "\n").encode("utf-8")
