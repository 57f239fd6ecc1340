"""
Policy Activity Log

Append-only audit trail: every committed transition and every actor
approve/reject emits one record. Observational only; guards never read it.
"""
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import PerformerType, PolicyActivityDB, PolicyDB, utcnow


def _jsonable(value: Any) -> Any:
    """Coerce enums and timestamps so details fit a JSON column."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class ActivityLog:
    """Writes and reads the policy activity trail."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        policy: PolicyDB,
        action: str,
        performed_by: Optional[str],
        performed_by_type: PerformerType,
        description: str = "",
        details: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PolicyActivityDB:
        """Append one immutable entry."""
        entry = PolicyActivityDB(
            id=str(uuid4()),
            sequence=len(policy.activities) + 1,
            policy_id=policy.id,
            actor_id=actor_id,
            action=action,
            performed_by=performed_by,
            performed_by_type=performed_by_type,
            description=description,
            details=_jsonable(details or {}),
            created_at=now or utcnow(),
        )
        policy.activities.append(entry)
        self.db.add(entry)
        return entry

    def entries(self, policy: PolicyDB) -> List[PolicyActivityDB]:
        return list(policy.activities)
