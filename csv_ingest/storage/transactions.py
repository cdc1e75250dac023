"""
Dedup-aware transaction persistence.

A transaction's identity is a SHA-256 over the fields that describe the
money movement. Inserts ignore conflicts on (user_id, transaction_hash),
so reprocessing a batch after a crash cannot create duplicates.
"""

import hashlib
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from csv_ingest.models.database import dialect_insert
from csv_ingest.models.enums import Category
from csv_ingest.models.tables import Transaction
from csv_ingest.observability.metrics import transactions_persisted_total
from csv_ingest.pipeline.date_parser import to_date
from csv_ingest.schemas.canonical import CanonicalRow, CategorizedRow
from csv_ingest.storage.crypto import Cipher

logger = structlog.get_logger(__name__)


def transaction_hash(user_id, row: CanonicalRow) -> str:
    parts = [
        str(user_id),
        row.date,
        f"{row.amount:.2f}",
        row.currency,
        row.kind,
        row.description,
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


@dataclass
class PersistOutcome:
    inserted: int = 0
    duplicates: int = 0
    balance_filtered: int = 0
    invalid: int = 0


class TransactionWriter:

    def __init__(self, cipher: Cipher):
        self.cipher = cipher

    def _values(
        self,
        item: CategorizedRow,
        user_id: uuid.UUID,
        account_id: Optional[uuid.UUID],
        upload_id: uuid.UUID,
    ) -> Optional[dict]:
        row = item.row
        tx_date = to_date(row.date)
        if tx_date is None or not row.kind:
            return None

        payload = {
            "description": row.description,
            "code": row.code,
            "subcategory": item.subcategory,
            "merchant_name": item.merchant_name,
            "merchant_type": item.merchant_type,
        }
        return {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "account_id": account_id,
            "upload_id": upload_id,
            "raw_line_id": uuid.UUID(item.raw_line_id) if item.raw_line_id else None,
            "transaction_date": tx_date,
            "transaction_month": f"{tx_date.year:04d}-{tx_date.month:02d}",
            "transaction_year": tx_date.year,
            "kind": row.kind,
            "amount": Decimal(f"{row.amount:.2f}"),
            "currency": row.currency,
            "category": item.category,
            "encrypted_data": self.cipher.encrypt_json(payload),
            "confidence": Decimal(f"{item.confidence:.4f}"),
            "transaction_hash": transaction_hash(user_id, row),
        }

    async def persist(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        account_id: Optional[uuid.UUID],
        upload_id: uuid.UUID,
        items: list[CategorizedRow],
    ) -> PersistOutcome:
        """Insert categorized rows, skipping Balance snapshots and known hashes."""
        outcome = PersistOutcome()
        insert = dialect_insert(session)

        for item in items:
            if item.category == Category.BALANCE.value:
                outcome.balance_filtered += 1
                continue

            values = self._values(item, user_id, account_id, upload_id)
            if values is None:
                outcome.invalid += 1
                continue

            stmt = (
                insert(Transaction)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["user_id", "transaction_hash"])
                .returning(Transaction.id)
            )
            result = await session.execute(stmt)
            if result.first() is not None:
                outcome.inserted += 1
            else:
                outcome.duplicates += 1

        transactions_persisted_total.labels("inserted").inc(outcome.inserted)
        transactions_persisted_total.labels("duplicate").inc(outcome.duplicates)
        transactions_persisted_total.labels("balance_filtered").inc(outcome.balance_filtered)

        logger.info(
            "transactions_persisted",
            upload_id=str(upload_id),
            inserted=outcome.inserted,
            duplicates=outcome.duplicates,
            balance_filtered=outcome.balance_filtered,
            invalid=outcome.invalid,
        )
        return outcome
