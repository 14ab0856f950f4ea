"""
Diagnostics - separately gated inspection tools

Raw source documents and ledger dumps are only ever exposed here, never
logged inline by the resolver or ledger. Disabled unless
EXTENSION_DIAGNOSTICS_ENABLED is set, and always disabled in production.
"""

import logging
import os
from typing import Any, Dict, Optional

from utils.environment import is_production

from .config import PREMIUM_CLAIM_FIELDS
from .identity_resolver import IdentityResolver
from .models import IdentityHint, SourceTag
from .quota_ledger import DailyQuotaLedger
from .store_adapters import ProviderClaimsSource

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def diagnostics_enabled() -> bool:
    if is_production():
        return False
    return os.environ.get("EXTENSION_DIAGNOSTICS_ENABLED", "").strip().lower() in TRUTHY


class Diagnostics:
    """Read-mostly view over every entitlement source and the ledger."""

    def __init__(self, db, resolver: Optional[IdentityResolver] = None, ledger: Optional[DailyQuotaLedger] = None):
        self.db = db
        self.resolver = resolver or IdentityResolver(db)
        self.ledger = ledger or DailyQuotaLedger(db)

    async def explain_subject(self, subject_id: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
        """
        Show each source's raw document next to what the resolver decided.

        has_stale_claims is set when the claims carry a premium marker but a
        higher-precedence source answered.
        """
        hint = IdentityHint(subject_id=subject_id, email=email)
        record = await self.resolver.resolve(hint)
        actual_id = subject_id or (record.subject_id if record else None)

        sources: Dict[str, Any] = {}
        if actual_id:
            for source in self.resolver.sources:
                try:
                    doc = await source.raw_document(actual_id)
                    sources[source.source_tag.value] = {"exists": doc is not None, "data": doc}
                except Exception as e:
                    sources[source.source_tag.value] = {"error": str(e)}

        claims_doc = (sources.get(SourceTag.PROVIDER_CLAIMS.value) or {}).get("data") or {}
        claims = claims_doc.get("custom_claims") or {}
        has_premium_claims = ProviderClaimsSource.has_premium_marker(claims)
        resolved_source = record.source.value if record and record.source else None

        return {
            "subject_id": actual_id,
            "email": email or (record.email if record else None),
            "resolved": record.model_dump(mode="json") if record else None,
            "summary": {
                "final_source": resolved_source or "none",
                "final_tier": record.tier.value if record else "limited",
                "has_stale_claims": has_premium_claims and resolved_source not in (None, SourceTag.PROVIDER_CLAIMS.value),
            },
            "sources": sources,
        }

    async def dump_ledger(self, day: str, limit: int = 500) -> Dict[str, Any]:
        records, truncated = await self.ledger.list_for_day(day, limit)
        return {"day": day, "records": records, "count": len(records), "truncated": truncated}

    async def clear_premium_claims(self, subject_id: str, preserve: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Remove premium markers and subscription fields from mirrored claims.

        Other claims are kept; with `preserve`, exactly those claims (minus
        the premium fields) are written instead.
        """
        claims_source = ProviderClaimsSource(self.db)
        doc = await claims_source.raw_document(subject_id) or {}
        current = doc.get("custom_claims") or {}

        base = dict(preserve) if preserve is not None else dict(current)
        cleaned = {key: value for key, value in base.items() if key not in PREMIUM_CLAIM_FIELDS}
        removed = [field for field in PREMIUM_CLAIM_FIELDS if field in current]

        await claims_source.collection.update_one(
            {"id": subject_id},
            {"$set": {"custom_claims": cleaned}},
            upsert=True
        )
        logger.info(f"Cleared premium claims for {subject_id}: removed {removed}")

        return {
            "success": True,
            "subject_id": subject_id,
            "removed_claims": removed,
            "remaining_claims": cleaned,
        }
