"""
Unit Tests for the Entitlement Normalizer
=========================================

- Known statuses map to their tier
- Deprecated and unknown statuses map to limited
- Normalization is total and idempotent
- Daily limits per tier
"""

import pytest

from extension_access.config import DAILY_LIMIT_MS, UNLIMITED
from extension_access.models import Tier
from extension_access.normalizer import (
    daily_limit_ms,
    has_extension_access,
    is_legacy_status,
    normalize_status,
)

RAW_VALUES = [
    "premium", "PREMIUM", " premium ", "free", "limited", "trial", "trialing",
    "", "   ", None, "gold", "cancelled", "premium_plus", 0, True,
]


class TestNormalizeStatus:

    def test_premium(self):
        assert normalize_status("premium") == Tier.PREMIUM

    @pytest.mark.parametrize("raw", ["PREMIUM", "Premium", " premium ", "premium\n"])
    def test_premium_variants_are_limited(self, raw):
        assert normalize_status(raw) == Tier.LIMITED

    def test_free_variants_are_limited(self):
        assert normalize_status("FREE") == Tier.LIMITED
        assert normalize_status(" free") == Tier.LIMITED

    def test_free(self):
        assert normalize_status("free") == Tier.FREE

    def test_deprecated_trial_is_limited(self):
        assert normalize_status("trial") == Tier.LIMITED

    def test_missing_is_limited(self):
        assert normalize_status(None) == Tier.LIMITED
        assert normalize_status("") == Tier.LIMITED

    def test_unknown_never_defaults_upward(self):
        assert normalize_status("gold") == Tier.LIMITED
        assert normalize_status("premium_plus") == Tier.LIMITED

    @pytest.mark.parametrize("raw", RAW_VALUES)
    def test_total(self, raw):
        assert normalize_status(raw) in {Tier.FREE, Tier.LIMITED, Tier.PREMIUM}

    @pytest.mark.parametrize("raw", RAW_VALUES)
    def test_idempotent(self, raw):
        once = normalize_status(raw)
        assert normalize_status(once.value) == once
        assert normalize_status(once) == once


class TestTierLimits:

    def test_daily_limits(self):
        assert daily_limit_ms(Tier.PREMIUM) == UNLIMITED == -1
        assert daily_limit_ms(Tier.LIMITED) == DAILY_LIMIT_MS == 3600000
        assert daily_limit_ms(Tier.FREE) == 0

    def test_free_has_no_extension_access(self):
        assert has_extension_access(Tier.FREE) is False
        assert has_extension_access(Tier.LIMITED) is True
        assert has_extension_access(Tier.PREMIUM) is True

    def test_legacy_status_detection(self):
        assert is_legacy_status("trial") is True
        assert is_legacy_status("Trialing") is True
        assert is_legacy_status("limited") is False
        assert is_legacy_status(None) is False
