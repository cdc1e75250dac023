"""
Persistence for the per-user merchant cache.
The cache is loaded once per run and the changed entries are written
back after every batch. Concurrent runs for one user resolve by last writer.
"""

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from csv_ingest.models.database import dialect_insert
from csv_ingest.models.tables import MerchantCacheEntry
from csv_ingest.pipeline.merchant_cache import CacheEntry, MerchantCache
from csv_ingest.storage.crypto import Cipher, CipherError

logger = structlog.get_logger(__name__)


async def load_merchant_cache(session: AsyncSession, cipher: Cipher, user_id: uuid.UUID) -> MerchantCache:
    result = await session.execute(
        select(MerchantCacheEntry).where(MerchantCacheEntry.user_id == user_id)
    )

    entries: dict[str, CacheEntry] = {}
    unreadable = 0
    for record in result.scalars():
        try:
            key = cipher.decrypt(record.merchant_key)
            details = cipher.decrypt_json(record.encrypted_data) or {}
        except CipherError:
            unreadable += 1
            continue
        if not key:
            continue
        entries[key] = CacheEntry(
            category=record.category,
            subcategory=details.get("subcategory", "Unknown"),
            merchant_name=details.get("merchant_name", "Unknown"),
            merchant_type=details.get("merchant_type", "Unknown"),
            confidence=float(record.confidence or 0),
            usage_count=record.usage_count,
            last_used=record.last_used,
        )

    if unreadable:
        logger.warning("merchant_cache_entries_unreadable", user_id=str(user_id), count=unreadable)
    logger.info("merchant_cache_loaded", user_id=str(user_id), entries=len(entries))
    return MerchantCache(entries)


async def save_merchant_cache(
    session: AsyncSession,
    cipher: Cipher,
    user_id: uuid.UUID,
    cache: MerchantCache,
) -> int:
    """Upsert entries changed since the last save. Returns how many were written."""
    insert = dialect_insert(session)
    items = cache.dirty_items()

    for key, entry in items:
        stmt = insert(MerchantCacheEntry).values(
            id=uuid.uuid4(),
            user_id=user_id,
            key_digest=cipher.digest(key),
            merchant_key=cipher.encrypt(key),
            category=entry.category,
            encrypted_data=cipher.encrypt_json({
                "subcategory": entry.subcategory,
                "merchant_name": entry.merchant_name,
                "merchant_type": entry.merchant_type,
            }),
            confidence=round(entry.confidence, 4),
            usage_count=entry.usage_count,
            last_used=entry.last_used,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "key_digest"],
            set_={
                "category": stmt.excluded.category,
                "encrypted_data": stmt.excluded.encrypted_data,
                "confidence": stmt.excluded.confidence,
                "usage_count": stmt.excluded.usage_count,
                "last_used": stmt.excluded.last_used,
            },
        )
        await session.execute(stmt)

    cache.clear_dirty()
    if items:
        logger.debug("merchant_cache_saved", user_id=str(user_id), entries=len(items))
    return len(items)
