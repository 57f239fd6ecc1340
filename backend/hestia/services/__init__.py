"""
Policy Workflow Services

PolicyLifecycle orchestrates the sub-workflows below and is the only
writer of policy status:
- ActorService / completeness: actor records and their completeness rules
- AccessGrantService: self-service tokens
- VerificationTracker: per-actor approval sub-state
- InvestigationService: verdict, risk level, landlord override
- ContractService: versioned contracts and expiry
- ActivityLog: append-only audit trail
"""

from .access_grants import AccessGrantService
from .activity_log import ActivityLog
from .actors import ActorService
from .context import SYSTEM, StaffContext
from .contracts import ContractService
from .errors import FailureCode, OperationResult, WorkflowError
from .investigation import InvestigationService
from .locking import PolicyLockRegistry, policy_locks
from .policy_lifecycle import PolicyLifecycle
from .verification import VerificationTracker

__all__ = [
    'AccessGrantService',
    'ActivityLog',
    'ActorService',
    'ContractService',
    'FailureCode',
    'InvestigationService',
    'OperationResult',
    'PolicyLifecycle',
    'PolicyLockRegistry',
    'StaffContext',
    'SYSTEM',
    'VerificationTracker',
    'WorkflowError',
    'policy_locks',
]
