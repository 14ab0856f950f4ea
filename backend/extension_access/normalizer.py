"""
Entitlement Normalizer

Single place where stored status values (including deprecated ones) are
mapped to the canonical tier and its daily limit.

Rules:
- "premium" -> premium
- "free" -> free
- "trial" (deprecated), "limited", missing, anything else -> limited
- Matching is exact: case or whitespace variants are unknown values
- Entitlement never defaults upward
"""

from typing import Optional, Union

from .config import DAILY_LIMIT_MS, NO_ACCESS_MS, UNLIMITED
from .models import Tier

# Deprecated stored values that still appear in old records
LEGACY_STATUSES = {"trial", "trialing"}


def normalize_status(raw_status: Optional[Union[str, Tier]]) -> Tier:
    """Map a raw stored status to its canonical tier. Total and idempotent."""
    if isinstance(raw_status, Tier):
        return raw_status
    if not isinstance(raw_status, str):
        return Tier.LIMITED

    # Exact match only; "PREMIUM" or " premium " is an unknown value
    if raw_status == Tier.PREMIUM.value:
        return Tier.PREMIUM
    if raw_status == Tier.FREE.value:
        return Tier.FREE
    return Tier.LIMITED


def is_legacy_status(raw_status: Optional[str]) -> bool:
    return isinstance(raw_status, str) and raw_status.strip().lower() in LEGACY_STATUSES


def daily_limit_ms(tier: Tier) -> int:
    """Daily usage limit for a tier; -1 means unlimited."""
    if tier == Tier.PREMIUM:
        return UNLIMITED
    if tier == Tier.FREE:
        return NO_ACCESS_MS
    return DAILY_LIMIT_MS


def is_unlimited(tier: Tier) -> bool:
    return tier == Tier.PREMIUM


def has_extension_access(tier: Tier) -> bool:
    return tier != Tier.FREE
