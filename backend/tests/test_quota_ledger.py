"""
Unit Tests for the Daily Quota Ledger

Tests:
1. First activation on a device/day is granted
2. Same subject re-activating supersedes (grant reset)
3. A different subject is rejected until next UTC midnight
4. Concurrent activations by different subjects: exactly one grant
5. Store failures surface as QuotaLedgerError
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from extension_access.errors import (
    AuthenticationRequiredError,
    DeviceFingerprintRequiredError,
    QuotaLedgerError,
)
from extension_access.models import DailyActivation
from extension_access.quota_ledger import (
    DailyQuotaLedger,
    ledger_key,
    next_reset_time,
    utc_day,
)


@pytest.fixture
def ledger(db):
    return DailyQuotaLedger(db)


class TestDayHelpers:

    def test_utc_day_uses_utc_calendar(self):
        tokyo = timezone(timedelta(hours=9))
        assert utc_day(datetime(2026, 3, 11, 8, 30, tzinfo=tokyo)) == "2026-03-10"

    def test_naive_datetime_taken_as_utc(self):
        assert utc_day(datetime(2026, 3, 10, 23, 59)) == "2026-03-10"

    def test_next_reset_is_next_utc_midnight(self):
        reset = next_reset_time(datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc))
        assert reset == datetime(2026, 3, 11, 0, 0, tzinfo=timezone.utc)

    def test_next_reset_at_exact_midnight(self):
        reset = next_reset_time(datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc))
        assert reset == datetime(2026, 3, 11, 0, 0, tzinfo=timezone.utc)

    def test_ledger_key_format(self):
        assert ledger_key("F1", "2026-03-10") == "F1_2026-03-10"


class TestActivation:

    @pytest.mark.asyncio
    async def test_first_activation_granted(self, db, ledger, now):
        result = await ledger.activate("F1", "A", "a@example.com", now)

        assert result.granted is True
        assert result.superseded is False
        assert result.ledger_key == "F1_2026-03-10"
        assert result.usage_limit_ms == 3600000
        assert result.activated_at == now.isoformat()

        doc = await db.daily_limits.find_one({"_id": "F1_2026-03-10"})
        assert doc["user_id"] == "A"
        assert doc["activated"] is True
        assert doc["total_usage_time"] == 0
        assert DailyActivation.model_validate(doc).usage_start_time == now.isoformat()

    @pytest.mark.asyncio
    async def test_same_subject_supersedes(self, db, ledger, now):
        await ledger.activate("F1", "A", "a@example.com", now)
        later = now + timedelta(hours=2)

        result = await ledger.activate("F1", "A", "a@example.com", later)

        assert result.granted is True
        assert result.superseded is True
        doc = await db.daily_limits.find_one({"_id": "F1_2026-03-10"})
        assert doc["activated_at"] == later.isoformat()
        assert await db.daily_limits.count_documents({}) == 1

    @pytest.mark.asyncio
    async def test_other_subject_rejected_until_midnight(self, db, ledger, now):
        await ledger.activate("F1", "A", "a@example.com", now)

        result = await ledger.activate("F1", "B", "b@example.com", now + timedelta(minutes=5))

        assert result.granted is False
        assert result.next_reset_time == "2026-03-11T00:00:00+00:00"
        doc = await db.daily_limits.find_one({"_id": "F1_2026-03-10"})
        assert doc["user_id"] == "A"

    @pytest.mark.asyncio
    async def test_other_subject_allowed_next_day(self, ledger, now):
        await ledger.activate("F1", "A", "a@example.com", now)

        result = await ledger.activate("F1", "B", "b@example.com", now + timedelta(days=1))

        assert result.granted is True
        assert result.ledger_key == "F1_2026-03-11"

    @pytest.mark.asyncio
    async def test_other_device_is_independent(self, ledger, now):
        await ledger.activate("F1", "A", "a@example.com", now)

        result = await ledger.activate("F2", "B", "b@example.com", now)

        assert result.granted is True

    @pytest.mark.asyncio
    async def test_inactive_record_can_be_claimed(self, db, ledger, now):
        db.daily_limits.seed({"_id": "F1_2026-03-10", "user_id": "A", "activated": False})

        result = await ledger.activate("F1", "B", "b@example.com", now)

        assert result.granted is True
        doc = await db.daily_limits.find_one({"_id": "F1_2026-03-10"})
        assert doc["user_id"] == "B"

    @pytest.mark.asyncio
    async def test_concurrent_activations_grant_exactly_one(self, db, ledger, now):
        results = await asyncio.gather(
            ledger.activate("F1", "A", "a@example.com", now),
            ledger.activate("F1", "B", "b@example.com", now),
        )

        granted = [r for r in results if r.granted]
        assert len(granted) == 1

        doc = await db.daily_limits.find_one({"_id": "F1_2026-03-10"})
        winner = "A" if results[0].granted else "B"
        assert doc["user_id"] == winner

    @pytest.mark.asyncio
    async def test_concurrent_activations_same_subject_both_granted(self, ledger, now):
        results = await asyncio.gather(
            ledger.activate("F1", "A", "a@example.com", now),
            ledger.activate("F1", "A", "a@example.com", now),
        )

        assert all(r.granted for r in results)


class TestActivationErrors:

    @pytest.mark.asyncio
    async def test_missing_fingerprint(self, ledger, now):
        with pytest.raises(DeviceFingerprintRequiredError):
            await ledger.activate("", "A", "a@example.com", now)

    @pytest.mark.asyncio
    async def test_missing_subject(self, ledger, now):
        with pytest.raises(AuthenticationRequiredError):
            await ledger.activate("F1", "", "a@example.com", now)

    @pytest.mark.asyncio
    async def test_store_failure_is_ledger_error(self, db, ledger, now):
        db.daily_limits.update_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))

        with pytest.raises(QuotaLedgerError) as exc_info:
            await ledger.activate("F1", "A", "a@example.com", now)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_vanishing_holder_retries_then_fails(self, db, ledger, now):
        db.daily_limits.update_one = AsyncMock(side_effect=DuplicateKeyError("E11000", 11000))

        with pytest.raises(QuotaLedgerError):
            await ledger.activate("F1", "A", "a@example.com", now)

        assert db.daily_limits.update_one.await_count == 2


class TestLedgerReads:

    @pytest.mark.asyncio
    async def test_get_activation(self, ledger, now):
        assert await ledger.get_activation("F1", now) is None

        await ledger.activate("F1", "A", "a@example.com", now)
        doc = await ledger.get_activation("F1", now)

        assert doc["user_id"] == "A"

    @pytest.mark.asyncio
    async def test_list_for_day(self, ledger, now):
        await ledger.activate("F1", "A", "a@example.com", now)
        await ledger.activate("F2", "B", "b@example.com", now)
        await ledger.activate("F3", "C", "c@example.com", now + timedelta(days=1))

        docs, truncated = await ledger.list_for_day("2026-03-10")

        assert [d["ledger_key"] for d in docs] == ["F1_2026-03-10", "F2_2026-03-10"]
        assert truncated is False

    @pytest.mark.asyncio
    async def test_list_for_day_reports_truncation(self, ledger, now):
        for n in range(4):
            await ledger.activate(f"F{n}", f"S{n}", None, now)

        docs, truncated = await ledger.list_for_day("2026-03-10", limit=3)

        assert len(docs) == 3
        assert truncated is True

        docs, truncated = await ledger.list_for_day("2026-03-10", limit=4)
        assert len(docs) == 4
        assert truncated is False
