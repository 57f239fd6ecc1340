"""
Workflow Errors

Typed failures raised by the sub-workflows and recovered at the
orchestrator boundary into OperationResult values.

InvariantViolationError is the only fatal condition. It is not a
WorkflowError, so the orchestrator rolls back and lets it propagate.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class FailureCode(str, Enum):
    """Machine-readable reason a requested operation did not commit."""
    # Policy guards
    ILLEGAL_TRANSITION = "IllegalTransition"
    ACTORS_NOT_APPROVED = "ActorsNotApproved"
    INVESTIGATION_UNRESOLVED = "InvestigationUnresolved"

    # Verification
    NOT_COMPLETE = "NotComplete"
    EMPTY_REASON = "EmptyReason"

    # Investigation
    ALREADY_STARTED = "AlreadyStarted"
    POLICY_NOT_ELIGIBLE = "PolicyNotEligible"
    ALREADY_COMPLETED = "AlreadyCompleted"
    INVALID_RISK_FOR_VERDICT = "InvalidRiskForVerdict"
    VERDICT_NOT_HIGH_RISK = "VerdictNotHighRisk"
    ALREADY_DECIDED = "AlreadyDecided"

    # Contracts
    NO_CURRENT_CONTRACT = "NoCurrentContract"
    ALREADY_SIGNED = "AlreadySigned"

    # Access grants
    EXPIRED = "Expired"
    NOT_FOUND = "NotFound"
    ALREADY_LOCKED = "AlreadyLocked"

    VALIDATION_FAILED = "ValidationFailed"
    CONCURRENCY_CONFLICT = "ConcurrencyConflict"


class WorkflowError(Exception):
    """Base class for recoverable workflow failures."""
    default_code = FailureCode.ILLEGAL_TRANSITION

    def __init__(self, message: str, code: Optional[FailureCode] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}


class ValidationError(WorkflowError):
    """Malformed input, e.g. a missing rejection reason."""
    default_code = FailureCode.VALIDATION_FAILED


class IllegalTransitionError(WorkflowError):
    """A guard failed for the current state."""
    default_code = FailureCode.ILLEGAL_TRANSITION


class NotFoundError(WorkflowError):
    """Unknown policy, actor, or token."""
    default_code = FailureCode.NOT_FOUND


class ExpiredGrantError(WorkflowError):
    """Access grant past its expiry. Distinct from NotFound so callers can offer a new link."""
    default_code = FailureCode.EXPIRED


class ConcurrencyConflictError(WorkflowError):
    """Lost the per-policy lock race or wrote against a stale snapshot."""
    default_code = FailureCode.CONCURRENCY_CONFLICT


class InvariantViolationError(Exception):
    """Stored data breaks a structural invariant. Requires manual repair."""
    pass


@dataclass
class OperationResult:
    """
    Outcome of an orchestrator operation.

    success: True when every side effect committed
    error: FailureCode when nothing committed
    message: Human-readable explanation (persisted reasons are echoed here)
    data: Operation payload (policy snapshot, token, version, ...)
    """
    success: bool
    error: Optional[FailureCode] = None
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data: Any) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: WorkflowError) -> "OperationResult":
        return cls(success=False, error=error.code, message=error.message, data=dict(error.details))
