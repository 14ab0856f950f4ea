"""
Extension Access Service

Orchestrates the three extension flows on top of the resolver, the daily
ledger and the session issuer:

- activate_daily_use: resolve -> (ledger for non-premium) -> issue session
- check_status: resolve -> describe the tier's grant
- start_session: resolve (record required) -> issue session

Unknown subjects get the default "limited" entitlement; entitlement never
defaults upward.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import DAILY_LIMIT_MS, DEFAULT_PUBLIC_APP_URL, HEARTBEAT_PATH, TIER_REASONS
from .errors import (
    AuthenticationRequiredError,
    DeviceFingerprintRequiredError,
    EntitlementNotFoundError,
    ExtensionAccessDeniedError,
    QuotaExceededError,
)
from .identity_resolver import IdentityResolver
from .models import AuthStatusResponse, EntitlementRecord, IdentityHint, IssuedSession, Tier
from .normalizer import daily_limit_ms, has_extension_access, is_legacy_status, is_unlimited
from .quota_ledger import DailyQuotaLedger, next_reset_time
from .session_issuer import SessionIssuer

logger = logging.getLogger(__name__)


def default_entitlement(subject_id: Optional[str], email: Optional[str]) -> EntitlementRecord:
    """Entitlement for a subject no source knows about."""
    return EntitlementRecord(
        subject_id=subject_id or "anonymous",
        email=email,
        tier=Tier.LIMITED,
        source=None,
    )


def heartbeat_url(origin: Optional[str]) -> str:
    base = origin or os.environ.get("PUBLIC_APP_URL") or DEFAULT_PUBLIC_APP_URL
    return f"{base.rstrip('/')}{HEARTBEAT_PATH}"


def session_block(issued: IssuedSession, origin: Optional[str]) -> Dict[str, Any]:
    return {
        "sessionId": issued.session.session_id,
        "credential": issued.credential,
        "expiresInSeconds": issued.expires_in,
        "tier": issued.session.subscription_status.value,
        "heartbeatUrl": heartbeat_url(origin),
    }


class ExtensionAccessService:
    """Entry point used by the extension routes."""

    def __init__(
        self,
        db,
        resolver: Optional[IdentityResolver] = None,
        ledger: Optional[DailyQuotaLedger] = None,
        issuer: Optional[SessionIssuer] = None
    ):
        self.db = db
        self.resolver = resolver or IdentityResolver(db)
        self.ledger = ledger or DailyQuotaLedger(db)
        self.issuer = issuer or SessionIssuer(db)

    async def _lookup(
        self,
        user_id: Optional[str],
        email: Optional[str],
        email_fallback: bool = False
    ) -> Optional[EntitlementRecord]:
        """
        By id when one is given, by email only when it is not.

        With email_fallback (session start only), an id unknown everywhere is
        retried by email.
        """
        if user_id:
            record = await self.resolver.resolve(IdentityHint(subject_id=user_id))
            if record is not None or not email_fallback:
                return record
        record = None
        if email:
            record = await self.resolver.resolve(IdentityHint(email=email))
        return record

    # ==================== DAILY ACTIVATION ====================

    async def activate_daily_use(
        self,
        user_id: Optional[str],
        user_email: Optional[str],
        device_fingerprint: Optional[str],
        remote_address: str = "unknown",
        user_agent: Optional[str] = None,
        origin: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Activate today's usage window on a device and issue a session.

        Raises:
            AuthenticationRequiredError: user id or email missing
            DeviceFingerprintRequiredError: device fingerprint missing
            ExtensionAccessDeniedError: subject resolved to the free tier
            QuotaExceededError: another subject holds today's grant on the device
            QuotaLedgerError / SessionIssuanceError: store or signing failure
        """
        if not user_id or not user_email:
            raise AuthenticationRequiredError()
        if not device_fingerprint:
            raise DeviceFingerprintRequiredError()

        now = now or datetime.now(timezone.utc)
        record = await self._lookup(user_id, user_email)
        entitlement = record or default_entitlement(user_id, user_email)

        if not has_extension_access(entitlement.tier):
            raise ExtensionAccessDeniedError()

        activated_at = now.isoformat()
        reset_at = next_reset_time(now).isoformat()

        if is_unlimited(entitlement.tier):
            # Premium usage is never metered by the daily ledger
            daily_limit = daily_limit_ms(entitlement.tier)
        else:
            result = await self.ledger.activate(device_fingerprint, user_id, user_email, now)
            if not result.granted:
                raise QuotaExceededError(result.next_reset_time)
            activated_at = result.activated_at
            reset_at = result.next_reset_time
            daily_limit = result.usage_limit_ms

        await self.resolver.record_daily_activation(entitlement.subject_id, now)

        issued = await self.issuer.issue_session(
            entitlement,
            device_fingerprint,
            remote_address,
            user_agent=user_agent,
            now=now,
            daily_activation_time=activated_at
        )

        return {
            "success": True,
            "activated": True,
            "message": "Daily use activated successfully",
            "dailyLimit": daily_limit,
            "activatedAt": activated_at,
            "nextResetTime": reset_at,
            "session": session_block(issued, origin),
        }

    # ==================== STATUS CHECK ====================

    async def check_status(self, user_id: Optional[str], user_email: Optional[str]) -> AuthStatusResponse:
        """Describe what the caller may do. Unauthenticated callers get the limited grant."""
        record = None
        if user_id or user_email:
            record = await self._lookup(user_id, user_email)
            if record is not None:
                await self.resolver.touch_last_access(record.subject_id)

        if record is None:
            return self._limited_status()

        if is_legacy_status(record.raw_status):
            return AuthStatusResponse(
                tier=Tier.LIMITED,
                can_use=True,
                reason=TIER_REASONS["trial"],
                time_remaining_ms=DAILY_LIMIT_MS,
                has_premium_feature=False,
                trial_expired=True,
            )

        if record.tier == Tier.PREMIUM:
            return AuthStatusResponse(
                tier=Tier.PREMIUM,
                can_use=True,
                reason=TIER_REASONS["premium"],
                time_remaining_ms=daily_limit_ms(Tier.PREMIUM),
                has_premium_feature=True,
                subscription_end_date=record.valid_until,
            )

        if record.tier == Tier.FREE:
            return AuthStatusResponse(
                tier=Tier.FREE,
                can_use=False,
                reason=TIER_REASONS["free"],
                time_remaining_ms=daily_limit_ms(Tier.FREE),
                has_premium_feature=False,
            )

        return self._limited_status()

    @staticmethod
    def _limited_status() -> AuthStatusResponse:
        return AuthStatusResponse(
            tier=Tier.LIMITED,
            can_use=True,
            reason=TIER_REASONS["limited"],
            time_remaining_ms=DAILY_LIMIT_MS,
            has_premium_feature=False,
        )

    # ==================== SESSION START ====================

    async def start_session(
        self,
        user_id: Optional[str],
        email: Optional[str],
        device_fingerprint: Optional[str],
        remote_address: str = "unknown",
        user_agent: Optional[str] = None,
        origin: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Start a session for a subject with an existing identity record.

        Raises:
            DeviceFingerprintRequiredError, AuthenticationRequiredError,
            EntitlementNotFoundError, ExtensionAccessDeniedError,
            SessionIssuanceError
        """
        if not device_fingerprint:
            raise DeviceFingerprintRequiredError()
        if not user_id or not email:
            raise AuthenticationRequiredError()

        record = await self._lookup(user_id, email, email_fallback=True)
        if record is None:
            raise EntitlementNotFoundError(details={"subject": user_id})
        if not has_extension_access(record.tier):
            raise ExtensionAccessDeniedError()

        issued = await self.issuer.issue_session(
            record,
            device_fingerprint,
            remote_address,
            user_agent=user_agent
        )

        return {
            "success": True,
            "sessionType": "authenticated",
            "dailyLimit": issued.daily_limit,
            **session_block(issued, origin),
        }

    async def revoke_session(self, session_id: str, reason: str) -> Dict[str, Any]:
        revoked = await self.issuer.revoke_session(session_id, reason)
        return {"success": True, "sessionId": session_id, "revoked": revoked}
