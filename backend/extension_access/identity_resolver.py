"""
Identity Resolver - Resolves who a caller is and what they are entitled to

Sources are consulted in strict precedence order:
    1. premium_users (authoritative subscription store)
    2. provider_claims (id lookups only)
    3. users (legacy profile store)

Once a source answers, lower sources are never consulted, so stale claims or
legacy records cannot override a fresher authoritative record.

A failing source is logged and treated as absent; resolution continues with
the next source. The resolver itself never applies the "limited" default for
unknown subjects - callers do, so both policies can be tested separately.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .errors import EntitlementNotFoundError, InvalidInputError, UpstreamLookupFailure
from .models import EntitlementRecord, IdentityHint, SourceTag, Tier
from .store_adapters import EntitlementSource, default_sources

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Precedence-ordered entitlement lookup across all sources."""

    def __init__(self, db, sources: Optional[List[EntitlementSource]] = None):
        self.db = db
        self.sources = sources if sources is not None else default_sources(db)

    def _source(self, tag: SourceTag) -> Optional[EntitlementSource]:
        for source in self.sources:
            if source.source_tag == tag:
                return source
        return None

    # ==================== RESOLUTION ====================

    async def resolve(self, hint: IdentityHint) -> Optional[EntitlementRecord]:
        """
        Resolve one authoritative entitlement record.

        Args:
            hint: subject id and/or email; the id wins when both are given

        Returns:
            EntitlementRecord, or None when no source knows the subject

        Raises:
            InvalidInputError: neither subject id nor email supplied
        """
        if hint.is_empty():
            raise InvalidInputError()

        if hint.subject_id:
            return await self.resolve_by_id(hint.subject_id)
        return await self.resolve_by_email(hint.email)

    async def resolve_by_id(self, subject_id: str) -> Optional[EntitlementRecord]:
        for source in self.sources:
            record = await self._safe_lookup(source, "id", subject_id)
            if record is not None:
                logger.debug(f"Resolved {subject_id} from {source.source_tag.value}: {record.tier.value}")
                return record
        return None

    async def resolve_by_email(self, email: str) -> Optional[EntitlementRecord]:
        for source in self.sources:
            if not source.supports_email:
                continue
            record = await self._safe_lookup(source, "email", email)
            if record is not None:
                logger.debug(f"Resolved {email} by email from {source.source_tag.value}: {record.tier.value}")
                return record
        return None

    async def _safe_lookup(self, source: EntitlementSource, field: str, value: str) -> Optional[EntitlementRecord]:
        try:
            if field == "id":
                return await source.lookup_by_id(value)
            return await source.lookup_by_email(value)
        except Exception as e:
            failure = UpstreamLookupFailure(source.source_tag.value, e)
            logger.warning(f"{failure} - treating source as absent")
            return None

    async def require(self, hint: IdentityHint) -> EntitlementRecord:
        """Resolve or raise EntitlementNotFoundError."""
        record = await self.resolve(hint)
        if record is None:
            raise EntitlementNotFoundError(details={"subject": hint.subject_id or hint.email})
        return record

    async def resolve_many(self, subject_ids: Iterable[str]) -> List[Optional[EntitlementRecord]]:
        """Batch lookup; results keep the order of the input ids."""
        return list(await asyncio.gather(*(self.resolve_by_id(sid) for sid in subject_ids)))

    async def is_premium(self, subject_id: str) -> bool:
        """Premium check against the subscription store and claims only."""
        for source in self.sources:
            if source.source_tag == SourceTag.LEGACY_PROFILE:
                continue
            record = await self._safe_lookup(source, "id", subject_id)
            if record is not None:
                return record.tier == Tier.PREMIUM
        return False

    # ==================== BOOKKEEPING ====================

    async def _stamp_found_record(self, subject_id: str, fields: Dict[str, Any], what: str) -> Optional[SourceTag]:
        """
        Stamp fields on the subscription record, else the legacy profile.

        Failures are logged and swallowed; bookkeeping never fails a request.
        """
        for tag in (SourceTag.SUBSCRIPTION_STORE, SourceTag.LEGACY_PROFILE):
            source = self._source(tag)
            if source is None:
                continue
            try:
                if await source.stamp(subject_id, fields):
                    return tag
            except Exception as e:
                logger.warning(f"Failed to update {what} in {tag.value} for {subject_id}: {e}")
        return None

    async def touch_last_access(self, subject_id: str) -> Optional[SourceTag]:
        now = datetime.now(timezone.utc).isoformat()
        return await self._stamp_found_record(
            subject_id, {"last_access": now, "updated_at": now}, "last access"
        )

    async def record_daily_activation(self, subject_id: str, now: datetime) -> Optional[SourceTag]:
        stamp = now.isoformat()
        return await self._stamp_found_record(
            subject_id, {"last_daily_activation": stamp, "updated_at": stamp}, "last daily activation"
        )

    # ==================== WRITES ====================

    async def update_subscription_status(
        self,
        subject_id: str,
        status: str,
        extra: Optional[Dict[str, Any]] = None
    ) -> SourceTag:
        """
        Write a subscription status to the subscription record if present,
        otherwise to the legacy profile. A failed legacy write is raised.
        """
        now = datetime.now(timezone.utc).isoformat()
        fields = {"subscription_status": status, **(extra or {})}

        subscriptions = self._source(SourceTag.SUBSCRIPTION_STORE)
        if subscriptions is not None:
            try:
                result = await subscriptions.collection.update_one(
                    {"id": subject_id},
                    {"$set": {**fields, "metadata.updated_at": now}}
                )
                if result.matched_count > 0:
                    logger.info(f"Updated subscription record {subject_id} to {status}")
                    return SourceTag.SUBSCRIPTION_STORE
            except Exception as e:
                logger.warning(f"Failed to update premium_users for {subject_id}: {e}")

        legacy = self._source(SourceTag.LEGACY_PROFILE)
        await legacy.collection.update_one(
            {"id": subject_id},
            {"$set": {**fields, "updated_at": now}}
        )
        logger.info(f"Updated legacy profile {subject_id} to {status}")
        return SourceTag.LEGACY_PROFILE

    async def ensure_profile(self, subject_id: str, email: str, status: str = Tier.FREE.value) -> EntitlementRecord:
        """Create a legacy profile if none exists, then resolve."""
        now = datetime.now(timezone.utc).isoformat()
        legacy = self._source(SourceTag.LEGACY_PROFILE)
        await legacy.collection.update_one(
            {"id": subject_id},
            {"$setOnInsert": {
                "id": subject_id,
                "email": email,
                "subscription_status": status,
                "subscription_start_date": now,
                "created_at": now,
                "updated_at": now,
            }},
            upsert=True
        )
        record = await self.resolve_by_id(subject_id)
        if record is None:
            raise EntitlementNotFoundError(details={"subject": subject_id})
        return record
