"""Actor records: completeness rules and record-level edits."""
from .actor_service import ActorService
from .completeness import CompletenessReport, evaluate, is_complete

__all__ = ["ActorService", "CompletenessReport", "evaluate", "is_complete"]
