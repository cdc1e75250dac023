"""
Raw line store.

Every physical CSV line is stored encrypted with its own processed flag,
so an interrupted upload resumes from the first unprocessed line instead
of starting over.
"""

import uuid
from typing import Iterable, Optional

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from csv_ingest.config import settings
from csv_ingest.models.tables import RawLine
from csv_ingest.storage.crypto import Cipher

logger = structlog.get_logger(__name__)


class RawLineStore:
    """
    Encrypted, resumable storage of source lines.
    Callers own the session and the transaction boundary.
    """

    def __init__(self, cipher: Cipher, insert_batch: Optional[int] = None):
        self.cipher = cipher
        self.insert_batch = max(1, insert_batch or settings.RAW_LINE_INSERT_BATCH)

    async def store_lines(
        self,
        session: AsyncSession,
        upload_id: uuid.UUID,
        user_id: uuid.UUID,
        lines: Iterable[str],
        start_line: int = 0,
    ) -> int:
        """Bulk insert lines in batches. Line numbers count up from start_line. Returns count stored."""
        stored = 0
        batch: list[dict] = []

        for offset, line in enumerate(lines):
            batch.append({
                "id": uuid.uuid4(),
                "upload_id": upload_id,
                "user_id": user_id,
                "line_number": start_line + offset,
                "raw_data": self.cipher.encrypt(line),
                "processed": False,
            })
            if len(batch) >= self.insert_batch:
                await session.execute(insert(RawLine), batch)
                stored += len(batch)
                batch = []

        if batch:
            await session.execute(insert(RawLine), batch)
            stored += len(batch)

        logger.info("raw_lines_stored", upload_id=str(upload_id), count=stored)
        return stored

    async def head(self, session: AsyncSession, upload_id: uuid.UUID, limit: int) -> list[RawLine]:
        """First lines of the file regardless of processed state."""
        result = await session.execute(
            select(RawLine)
            .where(RawLine.upload_id == upload_id)
            .order_by(RawLine.line_number)
            .limit(limit)
        )
        return list(result.scalars())

    async def header_line(self, session: AsyncSession, upload_id: uuid.UUID) -> Optional[RawLine]:
        lines = await self.head(session, upload_id, 1)
        return lines[0] if lines else None

    async def next_unprocessed(self, session: AsyncSession, upload_id: uuid.UUID, limit: int) -> list[RawLine]:
        result = await session.execute(
            select(RawLine)
            .where(RawLine.upload_id == upload_id, RawLine.processed.is_(False))
            .order_by(RawLine.line_number)
            .limit(limit)
        )
        return list(result.scalars())

    def decrypt_line(self, line: RawLine) -> str:
        """Raises CipherError when the stored line is unreadable."""
        return self.cipher.decrypt(line.raw_data) or ""

    async def mark_processed(self, session: AsyncSession, line_ids: list[uuid.UUID]) -> None:
        if not line_ids:
            return
        await session.execute(
            update(RawLine).where(RawLine.id.in_(line_ids)).values(processed=True)
        )

    async def mark_failed(self, session: AsyncSession, line_id: uuid.UUID, error: str) -> None:
        """Consume a line that cannot be processed, keeping the reason encrypted."""
        await session.execute(
            update(RawLine)
            .where(RawLine.id == line_id)
            .values(processed=True, processing_error=self.cipher.encrypt(error))
        )

    async def count_lines(self, session: AsyncSession, upload_id: uuid.UUID) -> int:
        return await session.scalar(
            select(func.count()).select_from(RawLine).where(RawLine.upload_id == upload_id)
        ) or 0

    async def count_processed(self, session: AsyncSession, upload_id: uuid.UUID) -> int:
        return await session.scalar(
            select(func.count()).select_from(RawLine)
            .where(RawLine.upload_id == upload_id, RawLine.processed.is_(True))
        ) or 0

    async def count_failed(self, session: AsyncSession, upload_id: uuid.UUID) -> int:
        return await session.scalar(
            select(func.count()).select_from(RawLine)
            .where(RawLine.upload_id == upload_id, RawLine.processing_error.is_not(None))
        ) or 0
