"""
Hestia Policy Engine - Service wiring for FastAPI routes.
Collaborators are process-wide; the lifecycle is built per request session.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from .database import get_db
from .services.collaborators import LocalStorageProvider, LoggingNotifier, TextPolicyRenderer
from .services.locking import policy_locks
from .services.policy_lifecycle import PolicyLifecycle

storage = LocalStorageProvider()
notifier = LoggingNotifier()
renderer = TextPolicyRenderer()


def get_lifecycle(db: Session = Depends(get_db)) -> PolicyLifecycle:
    """Dependency for FastAPI - policy lifecycle bound to the request session."""
    return PolicyLifecycle(
        db,
        storage=storage,
        notifier=notifier,
        renderer=renderer,
        locks=policy_locks,
    )
