"""Hestia Policy Engine - Data Models"""
from .db_models import (
    # Enums
    PolicyStatus, GuarantorRequirement, ActorRole, ActorKind, Nationality,
    VerificationStatus, ReferenceKind, DocumentCategory, InvestigationState,
    InvestigationVerdict, RiskLevel, LandlordDecision, InvestigationPriority,
    PerformerType,
    # Tables
    UserDB, PolicyDB, ActorDB, ActorReferenceDB, ActorDocumentDB,
    AccessGrantDB, InvestigationDB, ContractDB, PolicyActivityDB,
    utcnow,
)

__all__ = [
    "PolicyStatus", "GuarantorRequirement", "ActorRole", "ActorKind", "Nationality",
    "VerificationStatus", "ReferenceKind", "DocumentCategory", "InvestigationState",
    "InvestigationVerdict", "RiskLevel", "LandlordDecision", "InvestigationPriority",
    "PerformerType",
    "UserDB", "PolicyDB", "ActorDB", "ActorReferenceDB", "ActorDocumentDB",
    "AccessGrantDB", "InvestigationDB", "ContractDB", "PolicyActivityDB",
    "utcnow",
]
