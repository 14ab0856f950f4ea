"""
Extension Access Data Models

Pydantic models for entitlement resolution, the daily ledger and sessions.
Stored documents use snake_case; request models also accept the camelCase
names the extension sends.
"""

from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ==================== ENTITLEMENT MODELS ====================

class Tier(str, Enum):
    """Canonical entitlement tier."""
    FREE = "free"          # No extension access
    LIMITED = "limited"    # Bounded daily access
    PREMIUM = "premium"    # Unlimited


class SourceTag(str, Enum):
    """Entitlement data sources, highest precedence first."""
    SUBSCRIPTION_STORE = "authoritative-subscription-store"
    PROVIDER_CLAIMS = "provider-claims"
    LEGACY_PROFILE = "legacy-profile-store"


class IdentityHint(BaseModel):
    subject_id: Optional[str] = None
    email: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.subject_id or self.email)


class EntitlementRecord(BaseModel):
    """Resolved, read-only view of a subject's entitlement."""
    model_config = ConfigDict(frozen=True)

    subject_id: str
    email: Optional[str] = None
    tier: Tier
    source: Optional[SourceTag] = None  # None when the default policy applied
    raw_status: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    valid_from: Optional[str] = None   # ISO datetime string
    valid_until: Optional[str] = None  # ISO datetime string
    quota_overrides: Optional[Dict[str, Any]] = None


# ==================== LEDGER MODELS ====================

class DailyActivation(BaseModel):
    """Ledger document for one device on one UTC day."""
    device_fingerprint: str
    date: str  # YYYY-MM-DD
    user_id: str
    user_email: Optional[str] = None
    activated: bool = True
    activated_at: str
    usage_start_time: str
    usage_limit_ms: int
    total_usage_time: int = 0
    created_at: str
    updated_at: str


class ActivationResult(BaseModel):
    granted: bool
    superseded: bool = False
    ledger_key: str
    day: str
    activated_at: Optional[str] = None
    usage_limit_ms: int = 0
    next_reset_time: str


# ==================== SESSION MODELS ====================

class Session(BaseModel):
    session_id: str
    user_id: str
    email: Optional[str] = None
    subscription_status: Tier
    device_fingerprint: str
    ip_address: str
    user_agent: str = "unknown"
    start_time: str
    last_activity: str
    last_heartbeat: str
    total_usage_time: int = 0
    heartbeat_count: int = 0
    status: Literal["active", "expired", "revoked"] = "active"
    type: str = "authenticated"
    data_source: Optional[SourceTag] = None
    activated_via_website: bool = False
    daily_activation_time: Optional[str] = None


class CredentialClaims(BaseModel):
    """Payload embedded in the signed credential."""
    session_id: str
    sub: str
    device_fingerprint: str
    ip_address: str
    tier: Tier
    iat: int
    exp: int


class IssuedSession(BaseModel):
    session: Session
    credential: str
    expires_in: int
    expires_at: str

    @property
    def daily_limit(self) -> int:
        from .normalizer import daily_limit_ms
        return daily_limit_ms(self.session.subscription_status)


# ==================== REQUEST MODELS ====================

class ActivateDailyUseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    user_email: Optional[str] = Field(None, alias="userEmail")
    device_fingerprint: Optional[str] = Field(None, alias="deviceFingerprint")


class AuthStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    user_email: Optional[str] = Field(None, alias="userEmail")


class SessionStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    email: Optional[str] = None
    device_fingerprint: Optional[str] = Field(None, alias="deviceFingerprint")
    user_agent: Optional[str] = Field(None, alias="userAgent")


class SessionRevokeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: str = "user_requested"


# ==================== RESPONSE MODELS ====================

class AuthStatusResponse(BaseModel):
    """Status-check answer; camelCase on the wire for the extension."""
    model_config = ConfigDict(populate_by_name=True)

    tier: Tier
    can_use: bool = Field(..., alias="canUse")
    reason: str
    time_remaining_ms: int = Field(..., alias="timeRemainingMs")
    has_premium_feature: bool = Field(..., alias="hasPremiumFeature")
    trial_expired: Optional[bool] = Field(None, alias="trialExpired")
    subscription_end_date: Optional[str] = Field(None, alias="subscriptionEndDate")
