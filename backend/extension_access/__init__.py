"""
Extension Access Module
Entitlement resolution and daily-use gating for the browser extension

This module provides:
- Identity resolution across the subscription, provider-claims and legacy stores
- Status normalization to the canonical tiers (free / limited / premium)
- Device-scoped daily quota ledger (atomic, concurrency-safe)
- Session issuance with signed, time-boxed credentials

Collections used:
- premium_users: Authoritative subscription records
- provider_claims: Mirrored identity-provider custom claims
- users: Legacy profile store
- daily_limits: Per device + UTC day activation ledger
- sessions: Extension sessions
- revoked_sessions: Short-lived credential denylist
"""

__version__ = "1.0.0"
