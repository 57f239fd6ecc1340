"""
Call context passed explicitly into every orchestrator operation.
Audit attribution never reads ambient session state.
"""
from dataclasses import dataclass
from typing import Optional

from ..models.db_models import PerformerType

STAFF_ROLES = ("staff", "admin")


@dataclass(frozen=True)
class StaffContext:
    """Authenticated staff member triggering an operation."""
    user_id: str
    role: str = "staff"
    email: Optional[str] = None

    @property
    def performer_type(self) -> PerformerType:
        if self.role == "system":
            return PerformerType.SYSTEM
        return PerformerType.STAFF

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


SYSTEM = StaffContext(user_id="system", role="system")
