"""
Entitlement Store Adapters

Uniform read access to the three collections that hold entitlement facts.
Each adapter owns its collection's defaulting rule; precedence between the
adapters is the resolver's concern, not theirs.

Adapters let driver errors propagate. The resolver decides what a failed
source means.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import COLLECTIONS, PREMIUM_CLAIM_MARKERS
from .models import EntitlementRecord, SourceTag, Tier
from .normalizer import normalize_status

logger = logging.getLogger(__name__)


def _to_iso(value: Any) -> Optional[str]:
    """Stored dates may be datetimes, ISO strings or epoch seconds (claims)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    return str(value)


class EntitlementSource:
    """Capability interface shared by every entitlement source."""

    source_tag: SourceTag
    collection_name: str
    supports_email = True

    def __init__(self, db):
        self.db = db

    @property
    def collection(self):
        return self.db[self.collection_name]

    async def lookup_by_id(self, subject_id: str) -> Optional[EntitlementRecord]:
        doc = await self.collection.find_one({"id": subject_id}, {"_id": 0})
        if not doc:
            return None
        return self.to_record(doc, subject_id)

    async def lookup_by_email(self, email: str) -> Optional[EntitlementRecord]:
        if not self.supports_email:
            return None
        docs = await self.collection.find({"email": email}, {"_id": 0}).limit(1).to_list(1)
        if not docs:
            return None
        doc = docs[0]
        return self.to_record(doc, doc.get("id"))

    async def raw_document(self, subject_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"id": subject_id}, {"_id": 0})

    async def stamp(self, subject_id: str, fields: Dict[str, Any]) -> bool:
        """Set bookkeeping fields on an existing record. Returns False if absent."""
        result = await self.collection.update_one(
            {"id": subject_id},
            {"$set": self._stamp_fields(fields)}
        )
        return result.matched_count > 0

    def _stamp_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return dict(fields)

    def to_record(self, doc: Dict[str, Any], subject_id: Optional[str]) -> Optional[EntitlementRecord]:
        raise NotImplementedError


class SubscriptionStoreSource(EntitlementSource):
    """
    premium_users - authoritative subscription store.

    Presence implies premium: a record whose status field is missing or
    empty resolves to premium. Any stored status is normalized as usual.
    """

    source_tag = SourceTag.SUBSCRIPTION_STORE
    collection_name = COLLECTIONS["subscriptions"]

    def to_record(self, doc, subject_id):
        raw_status = doc.get("subscription_status")
        tier = normalize_status(raw_status) if raw_status else Tier.PREMIUM
        return EntitlementRecord(
            subject_id=doc.get("id") or subject_id,
            email=doc.get("email"),
            tier=tier,
            source=self.source_tag,
            raw_status=raw_status,
            stripe_customer_id=doc.get("stripe_customer_id"),
            stripe_subscription_id=doc.get("stripe_subscription_id"),
            valid_from=_to_iso(doc.get("subscription_start_date")),
            valid_until=_to_iso(doc.get("subscription_end_date")),
            quota_overrides=doc.get("quota_overrides"),
        )

    def _stamp_fields(self, fields):
        # Bookkeeping lives under metadata on subscription records
        return {f"metadata.{key}": value for key, value in fields.items()}


class ProviderClaimsSource(EntitlementSource):
    """
    provider_claims - custom claims mirrored from the identity provider.

    Claims are keyed by uid only, so email lookup is unsupported. A record
    counts only when one of the premium markers is set.
    """

    source_tag = SourceTag.PROVIDER_CLAIMS
    collection_name = COLLECTIONS["claims"]
    supports_email = False

    @staticmethod
    def has_premium_marker(claims: Dict[str, Any]) -> bool:
        for field, expected in PREMIUM_CLAIM_MARKERS.items():
            value = claims.get(field)
            if expected is True:
                if value is True:
                    return True
            elif value == expected:
                return True
        return False

    def to_record(self, doc, subject_id):
        claims = doc.get("custom_claims") or {}
        if not self.has_premium_marker(claims):
            return None
        return EntitlementRecord(
            subject_id=doc.get("id") or subject_id,
            email=doc.get("email") or "",
            tier=Tier.PREMIUM,
            source=self.source_tag,
            raw_status="premium",
            stripe_customer_id=claims.get("stripeCustomerId"),
            stripe_subscription_id=claims.get("stripeSubscriptionId"),
            valid_from=_to_iso(claims.get("subscriptionStartDate")),
            valid_until=_to_iso(claims.get("subscriptionEndDate")),
        )

    async def stamp(self, subject_id, fields):
        # Claims are owned by the identity provider
        return False


class LegacyProfileSource(EntitlementSource):
    """
    users - legacy profile store.

    A record whose status field is missing or empty resolves to free.
    """

    source_tag = SourceTag.LEGACY_PROFILE
    collection_name = COLLECTIONS["legacy"]

    def to_record(self, doc, subject_id):
        raw_status = doc.get("subscription_status") or Tier.FREE.value
        return EntitlementRecord(
            subject_id=doc.get("id") or subject_id,
            email=doc.get("email"),
            tier=normalize_status(raw_status),
            source=self.source_tag,
            raw_status=raw_status,
            stripe_customer_id=doc.get("stripe_customer_id"),
            stripe_subscription_id=doc.get("stripe_subscription_id"),
            valid_from=_to_iso(doc.get("subscription_start_date")),
            valid_until=_to_iso(doc.get("subscription_end_date")),
        )


def default_sources(db):
    """Entitlement sources in strict precedence order."""
    return [
        SubscriptionStoreSource(db),
        ProviderClaimsSource(db),
        LegacyProfileSource(db),
    ]
