"""
SQLAlchemy ORM models.
Columns holding user data are ciphertext produced by storage.crypto.Cipher.
Types are portable so the same metadata runs on PostgreSQL and SQLite.
"""

import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from csv_ingest.models.database import Base
from csv_ingest.models.enums import PipelineStage, UploadStatus


JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ────────────────────────────────────────────────────────────
# UPLOADS
# ────────────────────────────────────────────────────────────
class Upload(Base):
    __tablename__ = "uploads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    filename: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UploadStatus.UPLOADING.value
    )
    stage: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PipelineStage.PENDING.value
    )
    total_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    separator: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    field_mappings: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    statistics_json: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
        server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    raw_lines = relationship("RawLine", back_populates="upload", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="upload", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_uploads_user", "user_id"),
        Index("idx_uploads_status", "status"),
    )


# ────────────────────────────────────────────────────────────
# RAW LINES
# ────────────────────────────────────────────────────────────
class RawLine(Base):
    __tablename__ = "raw_lines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    upload_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("uploads.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_data: Mapped[str] = mapped_column(Text, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    upload = relationship("Upload", back_populates="raw_lines")

    __table_args__ = (
        UniqueConstraint("upload_id", "line_number", name="uq_raw_line_upload_number"),
        Index("idx_raw_lines_pending", "upload_id", "processed", "line_number"),
    )


# ────────────────────────────────────────────────────────────
# TRANSACTIONS
# ────────────────────────────────────────────────────────────
class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    upload_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("uploads.id", ondelete="CASCADE"), nullable=False
    )
    raw_line_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_month: Mapped[str] = mapped_column(String(7), nullable=False)
    transaction_year: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(1), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_data: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False, default=0)
    transaction_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    # Relationships
    upload = relationship("Upload", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("user_id", "transaction_hash", name="uq_tx_user_hash"),
        Index("idx_tx_upload", "upload_id"),
        Index("idx_tx_user_month", "user_id", "transaction_month"),
        Index("idx_tx_category", "category"),
    )


# ────────────────────────────────────────────────────────────
# MERCHANT CACHE
# ────────────────────────────────────────────────────────────
class MerchantCacheEntry(Base):
    __tablename__ = "merchant_cache"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    # Salted digest of the merchant key; the key itself is only stored encrypted
    key_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    merchant_key: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_data: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False, default=0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_used: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "key_digest", name="uq_merchant_cache_user_key"),
    )
