"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap and index management for the collections
    the generation pipeline touches: ``users`` (credit balances, owned by the
    account service), ``fixtures`` (read-only snapshot written by ingest) and
    ``credit_charges`` (one ledger document per charged request).

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("betai.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=settings.MONGO_MAX_POOL_SIZE,
        serverSelectionTimeoutMS=settings.MONGO_SERVER_SELECTION_TIMEOUT_MS,
        tz_aware=True,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()
    logger.info("Connected to MongoDB database %r", settings.MONGO_DB)


async def close_db() -> None:
    global client
    if client:
        client.close()
        client = None


async def ping() -> bool:
    """True when the server answers ``ping``; never raises."""
    if db is None:
        return False
    try:
        result = await db.command("ping")
    except PyMongoError:
        logger.warning("MongoDB ping failed", exc_info=True)
        return False
    return result.get("ok") == 1.0


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # Soft-deleted accounts are excluded from every credit lookup
    await db.users.create_index("is_deleted")

    # Fixture snapshot is read in kickoff order
    await db.fixtures.create_index("starting_at")

    # Ledger: per-account history and sweeps over unsettled charges
    await db.credit_charges.create_index([("user_id", 1), ("created_at", -1)])
    await db.credit_charges.create_index([("status", 1), ("created_at", 1)])
