"""
Contract Process

Versioned lease contract files for a policy.
- Every upload creates a new version and makes it current
- Earlier versions are demoted, never deleted
- The current version may be marked signed once

Policy expiry is derived from the signature date:
    expires_at = signed_at + contract_length_months
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ..config import CONTRACT_ALLOWED_MIME_TYPES, CONTRACT_MAX_BYTES
from ..models.db_models import ContractDB, PolicyDB, PolicyStatus, utcnow
from .errors import (
    FailureCode, IllegalTransitionError, InvariantViolationError, ValidationError, WorkflowError,
)

logger = logging.getLogger(__name__)

UPLOADABLE_STATUSES = (PolicyStatus.APPROVED, PolicyStatus.CONTRACT_PENDING)


def compute_expiry(signed_at: datetime, contract_length_months: int) -> datetime:
    """Calendar-month addition; end-of-month dates clamp to the last day."""
    return signed_at + relativedelta(months=contract_length_months)


def validate_contract_file(file_name: str, file_size: int, mime_type: str) -> None:
    """Reject files storage should never see."""
    if not file_name:
        raise ValidationError("No file provided")
    if mime_type not in CONTRACT_ALLOWED_MIME_TYPES:
        raise ValidationError("Invalid file type. Only PDF, DOC, and DOCX files are allowed.")
    if file_size <= 0:
        raise ValidationError("Contract file is empty")
    if file_size > CONTRACT_MAX_BYTES:
        raise ValidationError(
            f"File too large. Maximum size is {CONTRACT_MAX_BYTES // (1024 * 1024)}MB."
        )


class ContractService:
    """Upload and signature tracking for contract versions."""

    def __init__(self, db: Session):
        self.db = db

    def current(self, policy: PolicyDB) -> Optional[ContractDB]:
        """The single current version, or None before the first upload."""
        current = [contract for contract in policy.contracts if contract.is_current]
        if len(current) > 1:
            raise InvariantViolationError(
                f"Policy {policy.id} has {len(current)} contract versions marked current"
            )
        return current[0] if current else None

    def upload(
        self,
        policy: PolicyDB,
        document_id: str,
        file_name: str,
        file_size: int,
        mime_type: str,
        uploaded_by: str,
        now: Optional[datetime] = None,
    ) -> ContractDB:
        """Add a new current version and demote the previous one."""
        if policy.status not in UPLOADABLE_STATUSES:
            raise IllegalTransitionError(
                "Contract can only be uploaded for policies in APPROVED or CONTRACT_PENDING status"
            )

        # Guards against a corrupted history before writing on top of it
        previous = self.current(policy)

        now = now or utcnow()
        next_version = max((c.version for c in policy.contracts), default=0) + 1

        for contract in policy.contracts:
            contract.is_current = False

        contract = ContractDB(
            id=str(uuid4()),
            policy_id=policy.id,
            version=next_version,
            is_current=True,
            document_id=document_id,
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            uploaded_by=uploaded_by,
            uploaded_at=now,
        )
        policy.contracts.append(contract)
        self.db.add(contract)
        policy.contract_uploaded_at = now

        logger.info(
            f"Contract v{next_version} uploaded for policy {policy.id}"
            + (f" (replaces v{previous.version})" if previous else "")
        )
        return contract

    def mark_signed(
        self,
        policy: PolicyDB,
        signed_by: str,
        now: Optional[datetime] = None,
    ) -> ContractDB:
        """Record the signature on the current version."""
        contract = self.current(policy)
        if contract is None:
            raise WorkflowError("No contract found to mark as signed", code=FailureCode.NO_CURRENT_CONTRACT)

        if contract.signed_at is not None:
            raise WorkflowError("Contract is already marked as signed", code=FailureCode.ALREADY_SIGNED)

        contract.signed_at = now or utcnow()
        contract.signed_by = signed_by

        logger.info(f"Contract v{contract.version} for policy {policy.id} marked signed")
        return contract
