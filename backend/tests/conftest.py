"""
Shared fixtures: in-memory SQLite session, fixed clock, recording collaborators.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hestia.database import Base
from hestia.models import db_models  # noqa: F401
from hestia.models.db_models import ActorKind, ActorRole, GuarantorRequirement
from hestia.services.collaborators import Notifier, StorageProvider, TextPolicyRenderer
from hestia.services.context import StaffContext
from hestia.services.locking import PolicyLockRegistry
from hestia.services.policy_lifecycle import PolicyLifecycle


FIXED_NOW = datetime(2025, 1, 15, 10, 0, 0)


class FixedClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier(Notifier):
    def __init__(self):
        self.invitations = []
        self.status_changes = []

    def send_invitation(self, actor, token, expires_at, url, reason=None):
        self.invitations.append({
            "actor_id": actor.id,
            "token": token,
            "expires_at": expires_at,
            "url": url,
            "reason": reason,
        })

    def send_status_change(self, policy, new_status):
        self.status_changes.append((policy.id, new_status))


class MemoryStorage(StorageProvider):
    def __init__(self):
        self.files = {}

    def put_document(self, owner_id, category, file_name, content, mime_type):
        document_id = f"{owner_id}/{category}/{uuid4().hex}"
        self.files[document_id] = (file_name, content, mime_type)
        return document_id

    def get_signed_download_url(self, document_id, ttl_seconds):
        return f"memory://{document_id}?ttl={ttl_seconds}"


STAFF = StaffContext(user_id="staff-1", role="staff", email="staff@hestia.test")


# =============================================================================
# ACTOR PAYLOADS
# =============================================================================

def valid_references(count=3):
    return [
        {"name": f"Reference {i}", "phone": f"55512340{i}", "relationship": "friend"}
        for i in range(count)
    ]


ROLE_EXTRAS = {
    ActorRole.LANDLORD: {"bank_name": "Banorte", "clabe": "072180001234567890"},
    ActorRole.TENANT: {"employer_name": "Acme SA", "monthly_income": 45000.0},
    ActorRole.JOINT_OBLIGOR: {"monthly_income": 60000.0},
    ActorRole.AVAL: {"guarantee_property_address": "Av. Reforma 100, CDMX"},
}


def complete_individual(role, **overrides):
    """Payload that makes an individual actor of this role complete."""
    payload = {
        "first_name": "Ana",
        "paternal_last_name": "García",
        "curp": "GAAA800101MDFRRN09",
        "email": f"{role.value.lower()}@example.com",
        "phone": "5512345678",
        "address": "Calle 1, CDMX",
        "references": valid_references(),
    }
    payload.update(ROLE_EXTRAS[role])
    payload.update(overrides)
    return payload


def complete_company(role, **overrides):
    payload = {
        "actor_kind": ActorKind.COMPANY,
        "company_name": "Inmobiliaria Norte SA de CV",
        "rfc": "INO010101AB1",
        "legal_rep_name": "Luis Pérez",
        "legal_rep_id": "ID-998877",
        "email": f"{role.value.lower()}-co@example.com",
        "phone": "5587654321",
        "address": "Blvd. 2, Monterrey",
        "references": [
            {"name": f"Supplier {i}", "contact_name": "Contact", "phone": f"81800000{i}", "relationship": "supplier"}
            for i in range(3)
        ],
    }
    payload.update(ROLE_EXTRAS[role] if role != ActorRole.TENANT else {})
    payload.update(overrides)
    return payload


def token_from(link):
    return link["url"].rsplit("/", 1)[1]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def locks():
    return PolicyLockRegistry(timeout=0.05)


@pytest.fixture
def lifecycle(db, storage, notifier, locks, clock):
    return PolicyLifecycle(
        db,
        storage=storage,
        notifier=notifier,
        renderer=TextPolicyRenderer(),
        locks=locks,
        clock=clock,
    )


@pytest.fixture
def staff():
    return STAFF


@pytest.fixture
def invited_policy(lifecycle):
    """
    Policy with landlord, tenant and one joint obligor, invitations sent.

    Returns a factory so tests can pick the guarantor requirement.
    """
    def build(requirement=GuarantorRequirement.JOINT_OBLIGOR):
        policy = lifecycle.create_policy(
            STAFF, "Av. Insurgentes 500, CDMX", 18000.0, requirement,
        ).data["policy"]

        roles = [ActorRole.LANDLORD, ActorRole.TENANT]
        if requirement in (GuarantorRequirement.JOINT_OBLIGOR, GuarantorRequirement.BOTH):
            roles.append(ActorRole.JOINT_OBLIGOR)
        if requirement in (GuarantorRequirement.AVAL, GuarantorRequirement.BOTH):
            roles.append(ActorRole.AVAL)

        actor_ids = {}
        for role in roles:
            result = lifecycle.add_actor(
                STAFF, policy.id, role, ActorKind.INDIVIDUAL,
                profile={"email": f"{role.value.lower()}@example.com"},
            )
            assert result.success, result.message
            actor_ids[role] = result.data["actor"].id

        sent = lifecycle.send_invitations(STAFF, policy.id)
        assert sent.success, sent.message
        tokens = {link["role"]: token_from(link) for link in sent.data["links"]}
        return policy.id, actor_ids, {role: tokens[role.value] for role in roles}

    return build


@pytest.fixture
def submitted_policy(lifecycle, invited_policy):
    """Every actor has saved complete information and submitted."""
    def build(requirement=GuarantorRequirement.JOINT_OBLIGOR):
        policy_id, actor_ids, tokens = invited_policy(requirement)
        for role, token in tokens.items():
            saved = lifecycle.save_actor_progress(token, complete_individual(role))
            assert saved.success, saved.message
            submitted = lifecycle.submit_actor(token)
            assert submitted.success, submitted.message
        return policy_id, actor_ids, tokens

    return build


@pytest.fixture
def approved_actors_policy(lifecycle, submitted_policy):
    """Every actor submitted and approved by staff."""
    def build(requirement=GuarantorRequirement.JOINT_OBLIGOR):
        policy_id, actor_ids, tokens = submitted_policy(requirement)
        for actor_id in actor_ids.values():
            result = lifecycle.approve_actor(STAFF, policy_id, actor_id)
            assert result.success, result.message
        return policy_id, actor_ids, tokens

    return build


@pytest.fixture
def investigating_policy(lifecycle, approved_actors_policy):
    """Policy UNDER_INVESTIGATION with the investigation started."""
    def build(requirement=GuarantorRequirement.JOINT_OBLIGOR):
        policy_id, actor_ids, tokens = approved_actors_policy(requirement)
        assert lifecycle.start_investigation(STAFF, policy_id).success
        assert lifecycle.assign_investigation(STAFF, policy_id, "investigator-1").success
        return policy_id, actor_ids, tokens

    return build
