"""
Extension Access Configuration and Constants

Daily limits, credential lifetime, collection names and error codes are defined here.
All durations are in milliseconds unless the name says otherwise.
"""

# ==================== USAGE LIMITS ====================
DAILY_LIMIT_MS = 3600000  # 1 hour of extension use per device per day
UNLIMITED = -1            # Sentinel surfaced to clients for premium
NO_ACCESS_MS = 0

# ==================== CREDENTIALS ====================
SESSION_TTL_SECONDS = 7200  # 2 hours, same for every tier
SESSION_ID_PREFIX = "auth"

# ==================== COLLECTIONS ====================
COLLECTIONS = {
    "subscriptions": "premium_users",
    "claims": "provider_claims",
    "legacy": "users",
    "ledger": "daily_limits",
    "sessions": "sessions",
    "revoked": "revoked_sessions",
}

# ==================== PROVIDER CLAIMS ====================
# Any one of these marks a subject as premium in the provider claims
PREMIUM_CLAIM_MARKERS = {
    "stripeRole": "premium",
    "premium": True,
    "subscriptionStatus": "premium",
}

# Claims removed by the diagnostics claim cleanup
PREMIUM_CLAIM_FIELDS = [
    "premium",
    "stripeRole",
    "subscriptionStatus",
    "stripeCustomerId",
    "stripeSubscriptionId",
    "subscriptionStartDate",
    "subscriptionEndDate",
]

# ==================== STATUS REASONS ====================
TIER_REASONS = {
    "premium": "premium_unlimited",
    "limited": "limited_daily_access",
    "free": "subscription_required",
    "trial": "trial_expired_limited_access",
}

# ==================== ERROR CODES ====================
ERROR_CODES = {
    "INVALID_INPUT": "Either a user id or an email must be provided.",
    "AUTHENTICATION_REQUIRED": "Please sign in to use the extension.",
    "DEVICE_FINGERPRINT_REQUIRED": "Device fingerprint is required.",
    "USER_NOT_FOUND": "User not found in any data source.",
    "EXTENSION_ACCESS_DENIED": "Your plan does not include extension access.",
    "DAILY_LIMIT_USED": "You have already used your daily hour today. Try again tomorrow.",
    "ACTIVATION_ERROR": "Failed to activate daily use.",
    "SESSION_START_ERROR": "Failed to start session.",
    "SESSION_REVOKED": "Session has been revoked.",
}

HEARTBEAT_PATH = "/api/v2/session/heartbeat"
DEFAULT_PUBLIC_APP_URL = "https://webtutorialai.com"
