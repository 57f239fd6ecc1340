"""
Access Grant Service

Single-use, time-boxed tokens that let an actor reach their own
self-service form without an account.

Rules:
- At most one live grant per actor. Issuing revokes any earlier live grant.
- Expiry is a hard stop. Grants are never extended; a new one is issued.
- Redemption distinguishes NotFound, Expired and AlreadyLocked so the caller
  can offer "request a new link" instead of a hard 404.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..config import ACCESS_GRANT_TTL_DAYS, APP_BASE_URL
from ..models.db_models import AccessGrantDB, ActorDB, ActorRole, utcnow
from .errors import ExpiredGrantError, FailureCode, NotFoundError, WorkflowError

logger = logging.getLogger(__name__)

# URL path segment per role
ROLE_SLUGS = {
    ActorRole.LANDLORD: "landlord",
    ActorRole.TENANT: "tenant",
    ActorRole.JOINT_OBLIGOR: "joint-obligor",
    ActorRole.AVAL: "aval",
}


def generate_token() -> str:
    """Opaque, unguessable token."""
    return secrets.token_urlsafe(32)


class AccessGrantService:
    """Issues, redeems and consumes actor access grants."""

    def __init__(self, db: Session):
        self.db = db

    def issue(
        self,
        actor: ActorDB,
        ttl: Optional[timedelta] = None,
        issued_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AccessGrantDB:
        """
        Issue a new grant for the actor.

        Always succeeds. Any prior live grant for the same actor is revoked.
        """
        now = now or utcnow()
        ttl = ttl or timedelta(days=ACCESS_GRANT_TTL_DAYS)

        for grant in actor.grants:
            if grant.consumed_at is None and grant.revoked_at is None:
                grant.revoked_at = now

        grant = AccessGrantDB(
            id=str(uuid4()),
            actor_id=actor.id,
            token=generate_token(),
            issued_at=now,
            expires_at=now + ttl,
            issued_by=issued_by,
        )
        actor.grants.append(grant)
        self.db.add(grant)

        logger.info(f"Issued access grant for actor {actor.id} expiring {grant.expires_at.isoformat()}")
        return grant

    def find(self, token: str) -> Optional[AccessGrantDB]:
        return self.db.query(AccessGrantDB).filter(AccessGrantDB.token == token).first()

    def redeem(self, token: str, now: Optional[datetime] = None) -> AccessGrantDB:
        """
        Validate a token for submission.

        Returns the grant (its actor is grant.actor).

        Raises:
            NotFoundError: unknown token
            WorkflowError(ALREADY_LOCKED): grant consumed or actor frozen
            ExpiredGrantError: past expiry or superseded by a newer grant
        """
        now = now or utcnow()
        grant = self.find(token) if token else None
        if grant is None:
            raise NotFoundError("Access link not found")

        actor = grant.actor
        if grant.consumed_at is not None or actor.locked_at is not None or actor.information_complete:
            raise WorkflowError(
                "Information was already submitted and is under review",
                code=FailureCode.ALREADY_LOCKED,
            )

        if grant.revoked_at is not None:
            raise ExpiredGrantError("Access link was replaced by a newer link")

        if now >= grant.expires_at:
            raise ExpiredGrantError(
                "Access link has expired",
                details={"expired_at": grant.expires_at.isoformat()},
            )

        return grant

    def consume(self, grant: AccessGrantDB, now: Optional[datetime] = None) -> None:
        """Mark the grant used by a successful submission."""
        grant.consumed_at = now or utcnow()

    def resend(
        self,
        actor: ActorDB,
        ttl: Optional[timedelta] = None,
        issued_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AccessGrantDB:
        """
        Re-issue a link for an actor who has not completed their information.
        """
        if actor.information_complete or actor.locked_at is not None:
            raise WorkflowError(
                "Actor information is already complete; no new link is needed",
                code=FailureCode.ALREADY_LOCKED,
            )
        return self.issue(actor, ttl=ttl, issued_by=issued_by, now=now)

    def live_grant(self, actor: ActorDB, now: Optional[datetime] = None) -> Optional[AccessGrantDB]:
        """The actor's usable grant, if any."""
        now = now or utcnow()
        for grant in reversed(actor.grants):
            if grant.consumed_at is None and grant.revoked_at is None and now < grant.expires_at:
                return grant
        return None

    @staticmethod
    def share_url(actor: ActorDB, grant: AccessGrantDB) -> str:
        """Self-service URL for the grant."""
        return f"{APP_BASE_URL}/actor/{ROLE_SLUGS[actor.role]}/{grant.token}"
