"""
Session Issuer

Persists an extension session and signs a credential that caches the
resolved tier for the credential's lifetime. The tier is never re-resolved
from the token; a downgrade takes effect on the next issuance, or at once
if the session is revoked.

No partial result: if signing or persistence fails, nothing is returned
and SessionIssuanceError is raised.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt
from pymongo.errors import DuplicateKeyError, PyMongoError

from utils.auth import sign_token

from .config import COLLECTIONS, SESSION_ID_PREFIX, SESSION_TTL_SECONDS
from .errors import SessionIssuanceError
from .models import CredentialClaims, EntitlementRecord, IssuedSession, Session

logger = logging.getLogger(__name__)


def new_session_id(subject_id: str, now: datetime) -> str:
    """Unique per subject and issuance instant; the random suffix covers same-millisecond issues."""
    millis = int(now.timestamp() * 1000)
    return f"{SESSION_ID_PREFIX}_{subject_id}_{millis}_{secrets.token_hex(4)}"


class SessionIssuer:
    """Creates sessions and their signed credentials."""

    def __init__(
        self,
        db,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        signer: Callable[[dict, int, datetime], str] = sign_token
    ):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.signer = signer

    @property
    def sessions(self):
        return self.db[COLLECTIONS["sessions"]]

    @property
    def revoked(self):
        return self.db[COLLECTIONS["revoked"]]

    async def issue_session(
        self,
        entitlement: EntitlementRecord,
        device_fingerprint: str,
        remote_address: str,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
        daily_activation_time: Optional[str] = None
    ) -> IssuedSession:
        """
        Create a session and sign its credential.

        Args:
            entitlement: resolved entitlement; its tier is embedded in the credential
            device_fingerprint: caller's device
            remote_address: caller's network address
            user_agent: optional client user agent
            now: issuance instant (defaults to current UTC time)
            daily_activation_time: set when issued from the daily activation flow

        Raises:
            SessionIssuanceError: signing or persistence failed
        """
        now = now or datetime.now(timezone.utc)
        stamp = now.isoformat()
        session_id = new_session_id(entitlement.subject_id, now)

        session = Session(
            session_id=session_id,
            user_id=entitlement.subject_id,
            email=entitlement.email,
            subscription_status=entitlement.tier,
            device_fingerprint=device_fingerprint,
            ip_address=remote_address or "unknown",
            user_agent=user_agent or "unknown",
            start_time=stamp,
            last_activity=stamp,
            last_heartbeat=stamp,
            data_source=entitlement.source,
            activated_via_website=daily_activation_time is not None,
            daily_activation_time=daily_activation_time,
        )

        try:
            credential = self.signer(
                {
                    "session_id": session_id,
                    "sub": entitlement.subject_id,
                    "device_fingerprint": device_fingerprint,
                    "ip_address": session.ip_address,
                    "tier": entitlement.tier.value,
                },
                self.ttl_seconds,
                now
            )
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.error(f"Credential signing failed for {entitlement.subject_id}: {e}")
            raise SessionIssuanceError(details={"reason": "signing_failed"}) from e

        try:
            await self.sessions.insert_one(session.model_dump(mode="json"))
        except (DuplicateKeyError, PyMongoError) as e:
            logger.error(f"Session persistence failed for {entitlement.subject_id}: {e}")
            raise SessionIssuanceError(details={"reason": "persistence_failed"}) from e

        source = entitlement.source.value if entitlement.source else "default"
        logger.info(f"Created session {session_id} ({entitlement.tier.value}, source={source})")

        return IssuedSession(
            session=session,
            credential=credential,
            expires_in=self.ttl_seconds,
            expires_at=(now + timedelta(seconds=self.ttl_seconds)).isoformat(),
        )

    @staticmethod
    def credential_claims(payload: Dict[str, Any]) -> CredentialClaims:
        return CredentialClaims(**payload)

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.sessions.find_one({"session_id": session_id}, {"_id": 0})

    # ==================== REVOCATION ====================

    async def revoke_session(self, session_id: str, reason: str = "revoked") -> bool:
        """
        Mark a session revoked and deny its credential until it would have expired.

        Returns True if an active session was revoked.
        """
        now = datetime.now(timezone.utc)
        result = await self.sessions.update_one(
            {"session_id": session_id, "status": "active"},
            {"$set": {"status": "revoked", "revoked_at": now.isoformat(), "revoked_reason": reason}}
        )
        await self.revoked.update_one(
            {"_id": session_id},
            {"$set": {
                "reason": reason,
                "revoked_at": now.isoformat(),
                "expires_at": now + timedelta(seconds=self.ttl_seconds),
            }},
            upsert=True
        )
        if result.modified_count > 0:
            logger.info(f"Revoked session {session_id}: {reason}")
            return True
        return False

    async def is_revoked(self, session_id: str) -> bool:
        doc = await self.revoked.find_one({"_id": session_id}, {"_id": 1})
        return doc is not None
