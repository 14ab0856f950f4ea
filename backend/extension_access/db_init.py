"""
Extension Access Database Initialization Script

Rules:
1. Environment Guard - requires EXTENSION_DB_INIT_CONFIRM=YES for production
2. Idempotent - running multiple times must not duplicate anything
3. No destructive operations - no dropping, deleting, truncation
4. Safe index creation - handles "index already exists" gracefully
5. Dry-run mode - --dry-run prints what it would do
6. Version stamp - tracks init version

The daily ledger relies on the built-in _id uniqueness; no extra unique
index is needed for its conditional upsert.

Usage:
    CLI one-off: python -m extension_access.db_init
    With dry-run: python -m extension_access.db_init --dry-run
    In production: ENVIRONMENT=production EXTENSION_DB_INIT_CONFIRM=YES python -m extension_access.db_init
"""

import os
import sys
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import CollectionInvalid, OperationFailure

from .config import COLLECTIONS

logger = logging.getLogger(__name__)

# Version tracking
INIT_VERSION = "v1.0.0"
META_COLLECTION = "extension_access_meta"

# Collections to create (if not exist)
REQUIRED_COLLECTIONS = list(COLLECTIONS.values()) + [META_COLLECTION]

# Index definitions: (collection, index_spec, options)
REQUIRED_INDEXES = [
    (COLLECTIONS["subscriptions"], [("id", 1)], {"unique": True, "name": "idx_id_unique"}),
    (COLLECTIONS["subscriptions"], [("email", 1)], {"name": "idx_email"}),

    (COLLECTIONS["claims"], [("id", 1)], {"unique": True, "name": "idx_id_unique"}),

    (COLLECTIONS["legacy"], [("id", 1)], {"unique": True, "name": "idx_id_unique"}),
    (COLLECTIONS["legacy"], [("email", 1)], {"name": "idx_email"}),

    (COLLECTIONS["ledger"], [("date", 1)], {"name": "idx_date"}),
    (COLLECTIONS["ledger"], [("user_id", 1), ("date", -1)], {"name": "idx_user_date"}),

    (COLLECTIONS["sessions"], [("session_id", 1)], {"unique": True, "name": "idx_session_id_unique"}),
    (COLLECTIONS["sessions"], [("user_id", 1), ("start_time", -1)], {"name": "idx_user_start"}),

    (COLLECTIONS["revoked"], [("expires_at", 1)], {"expireAfterSeconds": 0, "name": "idx_expires_ttl"}),
]


def check_environment() -> Tuple[bool, str]:
    """
    Check environment and confirm if production execution is allowed.

    Returns:
        Tuple of (allowed, message)
    """
    app_env = os.environ.get("ENVIRONMENT", "development")

    if app_env.lower() == "production":
        confirm = os.environ.get("EXTENSION_DB_INIT_CONFIRM", "")
        if confirm != "YES":
            return False, (
                "PRODUCTION ENVIRONMENT DETECTED!\n"
                "To run init in production, set: EXTENSION_DB_INIT_CONFIRM=YES\n"
                "Current value: EXTENSION_DB_INIT_CONFIRM='%s'" % confirm
            )

    return True, f"Environment: {app_env}"


async def create_collection_if_not_exists(db, collection_name: str, dry_run: bool = False) -> str:
    """Create a collection if it doesn't exist."""
    existing = await db.list_collection_names()

    if collection_name in existing:
        return f"  [SKIP] Collection '{collection_name}' already exists"

    if dry_run:
        return f"  [DRY-RUN] Would create collection '{collection_name}'"

    try:
        await db.create_collection(collection_name)
        return f"  [CREATE] Created collection '{collection_name}'"
    except CollectionInvalid:
        return f"  [SKIP] Collection '{collection_name}' already exists (race)"


async def create_index_if_not_exists(
    db,
    collection_name: str,
    index_spec: List[Tuple],
    options: dict,
    dry_run: bool = False
) -> str:
    """Create an index if it doesn't exist."""
    collection = db[collection_name]
    index_name = options.get("name", str(index_spec))

    existing_indexes = await collection.index_information()

    if index_name in existing_indexes:
        return f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists"

    if dry_run:
        return f"  [DRY-RUN] Would create index '{index_name}' on '{collection_name}'"

    try:
        await collection.create_index(index_spec, **options)
        return f"  [CREATE] Created index '{index_name}' on '{collection_name}'"
    except OperationFailure as e:
        if "already exists" in str(e).lower():
            return f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists (race)"
        raise


async def ensure_indexes(db, dry_run: bool = False) -> List[str]:
    """Create every required index; used at startup and by the CLI."""
    results = []
    for collection_name, index_spec, options in REQUIRED_INDEXES:
        results.append(await create_index_if_not_exists(db, collection_name, index_spec, options, dry_run))
    return results


async def update_version_stamp(db, dry_run: bool = False) -> str:
    """Update or create version stamp document."""
    if dry_run:
        return f"  [DRY-RUN] Would update version stamp to {INIT_VERSION}"

    await db[META_COLLECTION].update_one(
        {"_id": "extension_access_init"},
        {
            "$set": {
                "version": INIT_VERSION,
                "applied_at": datetime.now(timezone.utc).isoformat()
            }
        },
        upsert=True
    )
    return f"  [UPDATE] Version stamp updated to {INIT_VERSION}"


async def run_init_on(db, dry_run: bool = False) -> List[str]:
    """Collections, indexes and version stamp against an open database."""
    lines = ["=== Collections ==="]
    for collection_name in REQUIRED_COLLECTIONS:
        lines.append(await create_collection_if_not_exists(db, collection_name, dry_run))

    lines.append("=== Indexes ===")
    lines.extend(await ensure_indexes(db, dry_run))

    lines.append("=== Version Stamp ===")
    lines.append(await update_version_stamp(db, dry_run))
    return lines


async def run_init(dry_run: bool = False):
    """Run the database initialization."""
    from dotenv import load_dotenv

    env_path = Path(__file__).parent.parent / '.env'
    load_dotenv(env_path)

    allowed, env_message = check_environment()
    logger.info(env_message)

    if not allowed:
        logger.error("Init blocked due to environment guard")
        sys.exit(1)

    mongo_url = os.environ.get('MONGO_URL')
    db_name = os.environ.get('DB_NAME')

    if not mongo_url or not db_name:
        logger.error("Missing MONGO_URL or DB_NAME environment variables")
        sys.exit(1)

    logger.info(f"Database: {db_name}")
    logger.info(f"Dry Run: {dry_run}")
    logger.info("-" * 50)

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    try:
        await client.admin.command('ping')
        logger.info("MongoDB connection: OK")
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        sys.exit(1)

    for line in await run_init_on(db, dry_run):
        logger.info(line)

    client.close()

    logger.info("=" * 50)
    logger.info("SUCCESS: Extension access DB init completed")
    logger.info("=" * 50)


def main():
    """Main entry point."""
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description="Extension Access Database Initialization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Development (default)
    python -m extension_access.db_init

    # Dry run (no changes)
    python -m extension_access.db_init --dry-run

    # Production
    ENVIRONMENT=production EXTENSION_DB_INIT_CONFIRM=YES python -m extension_access.db_init
        """
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print what would be done without making changes'
    )

    args = parser.parse_args()

    asyncio.run(run_init(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
