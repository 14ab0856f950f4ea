"""
Daily Quota Ledger

One ledger document per (device fingerprint, UTC calendar day), keyed by
"<deviceFingerprint>_<YYYY-MM-DD>" in the document _id.

States for a key:
    no record -> activated(subject S)
    activated(S) + activation by S      -> superseded (grant reset for S)
    activated(S) + activation by other  -> rejected until next UTC midnight

CRITICAL: Activation is a single conditional upsert. The filter only matches
a record that is inactive or owned by the caller; if a different subject
holds the grant the upsert collides on _id and fails with DuplicateKeyError.
Two concurrent activations for the same key can never both be granted to
different subjects.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import COLLECTIONS, DAILY_LIMIT_MS
from .errors import AuthenticationRequiredError, DeviceFingerprintRequiredError, QuotaLedgerError
from .models import ActivationResult, DailyActivation

logger = logging.getLogger(__name__)

MAX_ACTIVATION_ATTEMPTS = 2


def utc_day(now: datetime) -> str:
    """Calendar day of `now` in UTC, as YYYY-MM-DD. Naive datetimes are taken as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).date().isoformat()


def next_reset_time(now: datetime) -> datetime:
    """Start of the next UTC calendar day."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    day_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return day_start + timedelta(days=1)


def ledger_key(device_fingerprint: str, day: str) -> str:
    return f"{device_fingerprint}_{day}"


class DailyQuotaLedger:
    """Per-device daily activation ledger."""

    def __init__(self, db, daily_limit_ms: int = DAILY_LIMIT_MS):
        self.db = db
        self.daily_limit_ms = daily_limit_ms

    @property
    def collection(self):
        return self.db[COLLECTIONS["ledger"]]

    async def activate(
        self,
        device_fingerprint: str,
        subject_id: str,
        email: Optional[str],
        now: datetime
    ) -> ActivationResult:
        """
        Grant today's usage window on a device to a subject.

        Returns:
            ActivationResult - granted=False when another subject already
            holds today's grant on this device

        Raises:
            DeviceFingerprintRequiredError / AuthenticationRequiredError on missing input
            QuotaLedgerError if the store fails
        """
        if not device_fingerprint:
            raise DeviceFingerprintRequiredError()
        if not subject_id:
            raise AuthenticationRequiredError()

        day = utc_day(now)
        key = ledger_key(device_fingerprint, day)
        reset_at = next_reset_time(now).isoformat()
        stamp = now.isoformat()
        activation = DailyActivation(
            device_fingerprint=device_fingerprint,
            date=day,
            user_id=subject_id,
            user_email=email,
            activated_at=stamp,
            usage_start_time=stamp,
            usage_limit_ms=self.daily_limit_ms,
            created_at=stamp,
            updated_at=stamp,
        )

        for attempt in range(MAX_ACTIVATION_ATTEMPTS):
            try:
                result = await self.collection.update_one(
                    {
                        "_id": key,
                        "$or": [
                            {"activated": {"$ne": True}},
                            {"user_id": subject_id},
                        ],
                    },
                    {"$set": activation.model_dump()},
                    upsert=True
                )
            except DuplicateKeyError:
                holder = await self._current_holder(key)
                if holder is None or holder == subject_id:
                    # Record changed between the upsert and the read; try again
                    logger.warning(f"Ledger record {key} changed during activation, retrying")
                    continue
                logger.info(f"Daily limit already used on {key} by another subject")
                return ActivationResult(
                    granted=False,
                    ledger_key=key,
                    day=day,
                    next_reset_time=reset_at,
                )
            except PyMongoError as e:
                logger.error(f"Ledger write failed for {key}: {e}")
                raise QuotaLedgerError(details={"reason": str(e)}) from e

            superseded = result.matched_count > 0
            if superseded:
                logger.info(f"Re-activation by same subject on {key}, grant reset")
            else:
                logger.info(f"Daily use activated for {subject_id} on {key}")
            return ActivationResult(
                granted=True,
                superseded=superseded,
                ledger_key=key,
                day=day,
                activated_at=stamp,
                usage_limit_ms=self.daily_limit_ms,
                next_reset_time=reset_at,
            )

        raise QuotaLedgerError("Daily activation failed after retry. Please try again.")

    async def _current_holder(self, key: str) -> Optional[str]:
        """Subject holding an active grant on `key`, if any."""
        try:
            doc = await self.collection.find_one({"_id": key}, {"_id": 0, "user_id": 1, "activated": 1})
        except PyMongoError as e:
            raise QuotaLedgerError(details={"reason": str(e)}) from e
        if not doc or not doc.get("activated"):
            return None
        return doc.get("user_id")

    async def get_activation(self, device_fingerprint: str, now: datetime) -> Optional[Dict[str, Any]]:
        key = ledger_key(device_fingerprint, utc_day(now))
        return await self.collection.find_one({"_id": key}, {"_id": 0})

    async def list_for_day(self, day: str, limit: int = 500) -> Tuple[List[Dict[str, Any]], bool]:
        """
        Ledger records for a UTC day, ordered by key.

        Returns:
            (records, truncated) - truncated is True when more than `limit` exist
        """
        cursor = self.collection.find({"date": day}).sort("_id", 1)
        docs = await cursor.to_list(limit + 1)
        truncated = len(docs) > limit
        docs = docs[:limit]
        for doc in docs:
            doc["ledger_key"] = doc.pop("_id", None)
        return docs, truncated
