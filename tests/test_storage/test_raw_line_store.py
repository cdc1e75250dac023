"""
Tests for the encrypted raw line store.
"""

import uuid

from csv_ingest.models.tables import Upload
from csv_ingest.storage.raw_lines import RawLineStore


async def _upload(session, user_id):
    upload = Upload(id=uuid.uuid4(), user_id=user_id)
    session.add(upload)
    await session.commit()
    return upload


class TestRawLineStore:
    """Test storing and checkpointing raw lines."""

    async def test_store_in_batches(self, session_factory, cipher, user_id):
        store = RawLineStore(cipher, insert_batch=2)
        lines = [f"line {i}" for i in range(5)]

        async with session_factory() as session:
            upload = await _upload(session, user_id)
            stored = await store.store_lines(session, upload.id, user_id, lines)
            await session.commit()

            assert stored == 5
            assert await store.count_lines(session, upload.id) == 5
            head = await store.head(session, upload.id, 5)
            assert [store.decrypt_line(line) for line in head] == lines

    async def test_resume_order(self, session_factory, cipher, user_id):
        store = RawLineStore(cipher)

        async with session_factory() as session:
            upload = await _upload(session, user_id)
            await store.store_lines(session, upload.id, user_id, ["h", "a", "b", "c"])
            first = await store.next_unprocessed(session, upload.id, 2)
            await store.mark_processed(session, [line.id for line in first])
            await session.commit()

            rest = await store.next_unprocessed(session, upload.id, 10)

        assert [line.line_number for line in first] == [0, 1]
        assert [line.line_number for line in rest] == [2, 3]

    async def test_failed_line_consumed_with_reason(self, session_factory, cipher, user_id):
        store = RawLineStore(cipher)

        async with session_factory() as session:
            upload = await _upload(session, user_id)
            await store.store_lines(session, upload.id, user_id, ["h", "bad"])
            bad = (await store.head(session, upload.id, 2))[1]
            await store.mark_failed(session, bad.id, "unparseable date 'invalid'")
            await session.commit()
            await session.refresh(bad)

            assert bad.processed
            assert cipher.decrypt(bad.processing_error) == "unparseable date 'invalid'"
            assert await store.count_failed(session, upload.id) == 1
            assert await store.count_processed(session, upload.id) == 1
            assert [line.line_number for line in await store.next_unprocessed(session, upload.id, 10)] == [0]

    async def test_header_line(self, session_factory, cipher, user_id):
        store = RawLineStore(cipher)

        async with session_factory() as session:
            upload = await _upload(session, user_id)
            assert await store.header_line(session, upload.id) is None
            await store.store_lines(session, upload.id, user_id, ["Date;Amount", "01/01/2024;1,00"])
            header = await store.header_line(session, upload.id)

        assert store.decrypt_line(header) == "Date;Amount"
