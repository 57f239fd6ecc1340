"""
Actor Completeness

Pure evaluation of whether an actor's submission is complete.
Required fields are selected by (role, kind, nationality); fields that belong
to the other branch are ignored, never reported as errors.

Reference rule:
- 3 to 5 references of the kind matching the actor (personal for
  individuals, commercial for companies)
- at least 3 of them valid (name, phone and relationship all present)

Nothing here mutates state.
"""
from dataclasses import dataclass, field
from typing import Iterable, List

from ...config import MIN_REFERENCES, MAX_REFERENCES
from ...models.db_models import (
    ActorKind, ActorRole, DocumentCategory, Nationality, ReferenceKind,
)


# =============================================================================
# FIELD REQUIREMENTS
# =============================================================================

COMMON_FIELDS = ["email", "phone", "address"]

IDENTITY_FIELDS = {
    ActorKind.INDIVIDUAL: ["first_name", "paternal_last_name"],
    ActorKind.COMPANY: ["company_name", "rfc", "legal_rep_name", "legal_rep_id"],
}

# National ID for individuals depends on nationality
NATIONAL_ID_FIELD = {
    Nationality.MEXICAN: "curp",
    Nationality.FOREIGN: "passport_number",
}

ROLE_FIELDS = {
    (ActorRole.LANDLORD, ActorKind.INDIVIDUAL): ["bank_name", "clabe"],
    (ActorRole.LANDLORD, ActorKind.COMPANY): ["bank_name", "clabe"],
    (ActorRole.TENANT, ActorKind.INDIVIDUAL): ["employer_name", "monthly_income"],
    (ActorRole.TENANT, ActorKind.COMPANY): [],
    (ActorRole.JOINT_OBLIGOR, ActorKind.INDIVIDUAL): ["monthly_income"],
    (ActorRole.JOINT_OBLIGOR, ActorKind.COMPANY): [],
    (ActorRole.AVAL, ActorKind.INDIVIDUAL): ["guarantee_property_address"],
    (ActorRole.AVAL, ActorKind.COMPANY): ["guarantee_property_address"],
}

REFERENCE_KIND = {
    ActorKind.INDIVIDUAL: ReferenceKind.PERSONAL,
    ActorKind.COMPANY: ReferenceKind.COMMERCIAL,
}


# =============================================================================
# DOCUMENT REQUIREMENTS (informational, reported by progress)
# =============================================================================

# (category, required, condition)
DOCUMENT_REQUIREMENTS = {
    (ActorRole.TENANT, ActorKind.INDIVIDUAL): [
        (DocumentCategory.IDENTIFICATION, True, None),
        (DocumentCategory.INCOME_PROOF, True, None),
        (DocumentCategory.ADDRESS_PROOF, True, None),
        (DocumentCategory.BANK_STATEMENT, True, None),
        (DocumentCategory.IMMIGRATION_DOCUMENT, True, "foreign"),
    ],
    (ActorRole.TENANT, ActorKind.COMPANY): [
        (DocumentCategory.COMPANY_CONSTITUTION, True, None),
        (DocumentCategory.LEGAL_POWERS, True, None),
        (DocumentCategory.IDENTIFICATION, True, None),
        (DocumentCategory.TAX_STATUS_CERTIFICATE, True, None),
        (DocumentCategory.BANK_STATEMENT, True, None),
        (DocumentCategory.ADDRESS_PROOF, False, None),
    ],
    (ActorRole.LANDLORD, ActorKind.INDIVIDUAL): [
        (DocumentCategory.IDENTIFICATION, True, None),
        (DocumentCategory.TAX_STATUS_CERTIFICATE, False, None),
        (DocumentCategory.PROPERTY_DEED, True, None),
        (DocumentCategory.PROPERTY_TAX_STATEMENT, True, None),
        (DocumentCategory.BANK_STATEMENT, False, None),
    ],
    (ActorRole.LANDLORD, ActorKind.COMPANY): [
        (DocumentCategory.COMPANY_CONSTITUTION, True, None),
        (DocumentCategory.LEGAL_POWERS, True, None),
        (DocumentCategory.TAX_STATUS_CERTIFICATE, True, None),
        (DocumentCategory.PROPERTY_DEED, True, None),
        (DocumentCategory.PROPERTY_TAX_STATEMENT, True, None),
        (DocumentCategory.BANK_STATEMENT, False, None),
    ],
    (ActorRole.AVAL, ActorKind.INDIVIDUAL): [
        (DocumentCategory.IDENTIFICATION, True, None),
        (DocumentCategory.INCOME_PROOF, True, None),
        (DocumentCategory.ADDRESS_PROOF, True, None),
        (DocumentCategory.BANK_STATEMENT, True, None),
        (DocumentCategory.IMMIGRATION_DOCUMENT, True, "foreign"),
        (DocumentCategory.PROPERTY_REGISTRY, False, None),
    ],
    (ActorRole.AVAL, ActorKind.COMPANY): [
        (DocumentCategory.COMPANY_CONSTITUTION, True, None),
        (DocumentCategory.LEGAL_POWERS, True, None),
        (DocumentCategory.IDENTIFICATION, True, None),
        (DocumentCategory.TAX_STATUS_CERTIFICATE, True, None),
        (DocumentCategory.BANK_STATEMENT, True, None),
        (DocumentCategory.PROPERTY_REGISTRY, False, None),
    ],
    (ActorRole.JOINT_OBLIGOR, ActorKind.INDIVIDUAL): [
        (DocumentCategory.IDENTIFICATION, True, None),
        (DocumentCategory.ADDRESS_PROOF, True, None),
        (DocumentCategory.BANK_STATEMENT, True, None),
        (DocumentCategory.INCOME_PROOF, True, None),
        (DocumentCategory.IMMIGRATION_DOCUMENT, True, "foreign"),
    ],
    (ActorRole.JOINT_OBLIGOR, ActorKind.COMPANY): [
        (DocumentCategory.COMPANY_CONSTITUTION, True, None),
        (DocumentCategory.LEGAL_POWERS, True, None),
        (DocumentCategory.IDENTIFICATION, True, None),
        (DocumentCategory.TAX_STATUS_CERTIFICATE, True, None),
        (DocumentCategory.BANK_STATEMENT, True, None),
    ],
}


@dataclass
class CompletenessReport:
    """Result of evaluating one actor."""
    complete: bool
    missing_fields: List[str] = field(default_factory=list)
    total_references: int = 0
    valid_references: int = 0
    reference_error: str = ""
    missing_documents: List[str] = field(default_factory=list)


# =============================================================================
# EVALUATION
# =============================================================================

def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def required_fields(role: ActorRole, kind: ActorKind, nationality: Nationality) -> List[str]:
    """Fields that must be populated for this actor variant."""
    fields = list(COMMON_FIELDS) + list(IDENTITY_FIELDS[kind])
    if kind == ActorKind.INDIVIDUAL:
        fields.append(NATIONAL_ID_FIELD[nationality or Nationality.MEXICAN])
    fields.extend(ROLE_FIELDS.get((role, kind), []))
    return fields


def missing_fields(actor) -> List[str]:
    """Required fields that are still empty on the actor."""
    return [
        name for name in required_fields(actor.role, actor.actor_kind, actor.nationality)
        if _is_blank(getattr(actor, name, None))
    ]


def is_reference_valid(reference) -> bool:
    """A reference counts only when name, phone and relationship are present."""
    return not (
        _is_blank(reference.name)
        or _is_blank(reference.phone)
        or _is_blank(reference.relationship_type)
    )


def applicable_references(actor) -> list:
    """References of the kind that matches the actor's current sub-type."""
    expected = REFERENCE_KIND[actor.actor_kind]
    return [ref for ref in (actor.references or []) if ref.kind == expected]


def reference_error(references: Iterable) -> str:
    """Empty string when the reference rule holds, otherwise the reason."""
    refs = list(references)
    if len(refs) > MAX_REFERENCES:
        return f"At most {MAX_REFERENCES} references allowed ({len(refs)} provided)"
    valid = sum(1 for ref in refs if is_reference_valid(ref))
    if valid < MIN_REFERENCES:
        return f"At least {MIN_REFERENCES} complete references required ({valid} complete)"
    return ""


def missing_documents(actor) -> List[str]:
    """Required document categories with no registered document."""
    present = {doc.category for doc in (actor.documents or [])}
    missing = []
    for category, required, condition in DOCUMENT_REQUIREMENTS.get((actor.role, actor.actor_kind), []):
        if not required:
            continue
        if condition == "foreign" and actor.nationality != Nationality.FOREIGN:
            continue
        if category not in present:
            missing.append(category.value)
    return missing


def evaluate(actor) -> CompletenessReport:
    """Full completeness report for progress screens."""
    refs = applicable_references(actor)
    missing = missing_fields(actor)
    ref_error = reference_error(refs)
    return CompletenessReport(
        complete=not missing and not ref_error,
        missing_fields=missing,
        total_references=len(refs),
        valid_references=sum(1 for ref in refs if is_reference_valid(ref)),
        reference_error=ref_error,
        missing_documents=missing_documents(actor),
    )


def is_complete(actor) -> bool:
    """True when every required field is populated and the reference rule holds."""
    return not missing_fields(actor) and not reference_error(applicable_references(actor))
