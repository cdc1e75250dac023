"""
Upload pipeline orchestrator.

Stages: PENDING → DETECTING_SEPARATOR → DETECTING_MAPPING → PROCESSING → COMPLETED
        any stage → FAILED

Progress is checkpointed per raw line, so re-running process() on a
failed or interrupted upload only handles the lines that are still
unprocessed, and reuses a separator or mapping that is already stored.
"""

import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from csv_ingest.config import settings
from csv_ingest.models.database import async_session_factory
from csv_ingest.models.enums import PipelineStage, ProgressEvent, TransactionKind, UploadStatus
from csv_ingest.models.tables import RawLine, Transaction, Upload
from csv_ingest.notify.base import NullProgressSink, ProgressSink
from csv_ingest.observability.metrics import (
    batch_duration_seconds,
    lines_processed_total,
    uploads_active,
    uploads_completed_total,
    uploads_failed_total,
)
from csv_ingest.oracle.base import ClassificationOracle, OracleError
from csv_ingest.pipeline.categorizer import CategorizationEngine
from csv_ingest.pipeline.field_mapper import detect_field_mapping
from csv_ingest.pipeline.merchant_cache import MerchantCache
from csv_ingest.pipeline.row_transformer import RowValidationError, transform_row, validate_canonical_row
from csv_ingest.pipeline.separator_detector import detect_separator, header_names, row_dict, split_line
from csv_ingest.schemas.canonical import CanonicalRow
from csv_ingest.schemas.contracts import FieldMappingResult
from csv_ingest.storage.crypto import Cipher, CipherError
from csv_ingest.storage.merchant_store import load_merchant_cache, save_merchant_cache
from csv_ingest.storage.raw_lines import RawLineStore
from csv_ingest.storage.transactions import PersistOutcome, TransactionWriter

logger = structlog.get_logger(__name__)

# Cumulative counters kept in Upload.statistics_json between batches
_COUNTERS = ("inserted", "duplicates", "balance_filtered", "cache_hits", "oracle_resolved", "fallback_rows")

# Upload ids this process is running right now
_in_progress: set[str] = set()


class PipelineError(Exception):
    """Fatal pipeline error."""
    def __init__(self, message: str, error_code: str = "ERR_PIPELINE"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class UploadPipeline:
    """
    Drives one Upload from stored raw lines to persisted transactions.
    Collaborators are injected; defaults come from settings.
    """

    def __init__(
        self,
        oracle: ClassificationOracle,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        sink: Optional[ProgressSink] = None,
        cipher: Optional[Cipher] = None,
        engine: Optional[CategorizationEngine] = None,
        batch_size: Optional[int] = None,
    ):
        self.oracle = oracle
        self.session_factory = session_factory or async_session_factory
        self.sink = sink or NullProgressSink()
        self.cipher = cipher or Cipher()
        self.engine = engine or CategorizationEngine(oracle)
        self.batch_size = max(1, batch_size or settings.PROCESSING_BATCH_SIZE)
        self.raw_lines = RawLineStore(self.cipher)
        self.writer = TransactionWriter(self.cipher)

    async def process(self, upload_id: str) -> dict:
        """
        Main entry point: process an upload end-to-end.
        Returns a summary dict with status, line counts and statistics.
        """
        if upload_id in _in_progress:
            logger.warning("pipeline_already_running", upload_id=upload_id)
            raise PipelineError("Processing already in progress for this upload", "ERR_IN_PROGRESS")
        _in_progress.add(upload_id)

        structlog.contextvars.bind_contextvars(upload_id=upload_id)
        uploads_active.inc()
        started_at = time.time()
        logger.info("pipeline_started")

        try:
            async with self.session_factory() as session:
                try:
                    summary = await self._run(session, uuid.UUID(upload_id))
                except PipelineError as e:
                    await self._fail_upload(session, upload_id, e.error_code, e.message)
                    raise
                except Exception as e:
                    error_msg = f"{type(e).__name__}: {str(e)}"
                    logger.error("pipeline_failed", error=error_msg, traceback=traceback.format_exc())
                    await self._fail_upload(session, upload_id, "ERR_PIPELINE", error_msg)
                    raise PipelineError(error_msg) from e

            logger.info(
                "pipeline_completed",
                status=summary["status"],
                processed_lines=summary["processed_lines"],
                failed_lines=summary["failed_lines"],
                duration_ms=int((time.time() - started_at) * 1000),
            )
            return summary
        finally:
            _in_progress.discard(upload_id)
            uploads_active.dec()
            structlog.contextvars.unbind_contextvars("upload_id")

    # ─── Run ──────────────────────────────────────────────────

    async def _run(self, session: AsyncSession, upload_id: uuid.UUID) -> dict:
        upload = await self._load_upload(session, upload_id)
        if upload.status == UploadStatus.COMPLETED.value:
            logger.info("upload_already_completed")
            return self._summary(upload)

        upload.status = UploadStatus.PROCESSING.value
        await session.commit()

        total = await self.raw_lines.count_lines(session, upload_id)
        if total == 0:
            raise PipelineError("File is empty", "ERR_EMPTY_FILE")
        upload.total_lines = total

        separator = await self._ensure_separator(session, upload)

        header = await self.raw_lines.header_line(session, upload_id)
        try:
            headers = header_names(self.raw_lines.decrypt_line(header), separator)
        except CipherError as e:
            raise PipelineError(f"Header line unreadable: {e}", "ERR_PIPELINE") from e

        mapping = await self._ensure_mapping(session, upload, headers, separator)

        upload.stage = PipelineStage.PROCESSING.value
        await session.commit()

        cache = await load_merchant_cache(session, self.cipher, upload.user_id)

        while True:
            lines = await self.raw_lines.next_unprocessed(session, upload_id, self.batch_size)
            if not lines:
                break
            with batch_duration_seconds.time():
                await self._process_batch(session, upload, lines, header.id, headers, separator, mapping, cache)

        await self._complete(session, upload)
        return self._summary(upload)

    async def _process_batch(
        self,
        session: AsyncSession,
        upload: Upload,
        lines: list[RawLine],
        header_id: uuid.UUID,
        headers: list[str],
        separator: str,
        mapping: Optional[FieldMappingResult],
        cache: MerchantCache,
    ) -> None:
        rows: list[CanonicalRow] = []
        row_line_ids: list[str] = []
        consumed: list[uuid.UUID] = []

        for line in lines:
            if line.id == header_id:
                consumed.append(line.id)
                lines_processed_total.labels("header").inc()
                continue
            try:
                if mapping is None:
                    raise RowValidationError("no field mapping available")
                values = split_line(self.raw_lines.decrypt_line(line), separator)
                canonical = transform_row(row_dict(headers, values), mapping.mappings)
                validate_canonical_row(canonical)
            except (CipherError, RowValidationError) as e:
                await self.raw_lines.mark_failed(session, line.id, str(e))
                lines_processed_total.labels("failed").inc()
                logger.debug("line_failed", line_number=line.line_number, error=str(e))
                continue
            rows.append(canonical)
            row_line_ids.append(str(line.id))
            consumed.append(line.id)

        counters = dict(upload.statistics_json or {})
        if rows:
            result = await self.engine.categorize(rows, cache, row_line_ids)
            outcome = await self.writer.persist(
                session, upload.user_id, upload.account_id, upload.id, result.rows,
            )
            _accumulate(counters, outcome, result.statistics)
            lines_processed_total.labels("ok").inc(len(rows))
            upload.successful_lines += len(rows) - outcome.invalid

        await self.raw_lines.mark_processed(session, consumed)
        await save_merchant_cache(session, self.cipher, upload.user_id, cache)

        upload.processed_lines = await self.raw_lines.count_processed(session, upload.id)
        upload.failed_lines = await self.raw_lines.count_failed(session, upload.id)
        upload.statistics_json = counters
        await session.commit()

        await self.sink.notify(str(upload.user_id), ProgressEvent.PROCESSING_PROGRESS, {
            "uploadId": str(upload.id),
            "processed": upload.processed_lines,
            "total": upload.total_lines,
            "successful": upload.successful_lines,
            "failed": upload.failed_lines,
            "percentage": round(100 * upload.processed_lines / upload.total_lines) if upload.total_lines else 100,
        })

    # ─── Stage Helpers ────────────────────────────────────────

    async def _load_upload(self, session: AsyncSession, upload_id: uuid.UUID) -> Upload:
        result = await session.execute(select(Upload).where(Upload.id == upload_id))
        upload = result.scalar_one_or_none()
        if not upload:
            raise PipelineError(f"Upload {upload_id} not found", "ERR_UPLOAD_NOT_FOUND")
        return upload

    async def _ensure_separator(self, session: AsyncSession, upload: Upload) -> str:
        if upload.separator:
            logger.info("separator_reused")
            return upload.separator

        upload.stage = PipelineStage.DETECTING_SEPARATOR.value
        await session.commit()

        sample = await self.raw_lines.head(session, upload.id, settings.SEPARATOR_SAMPLE_LINES)
        try:
            sample_lines = [self.raw_lines.decrypt_line(line) for line in sample]
            detection = await detect_separator(self.oracle, sample_lines)
        except (CipherError, OracleError, ValidationError) as e:
            raise PipelineError(f"Separator detection failed: {e}", "ERR_SEPARATOR") from e

        upload.separator = detection.separator
        await session.commit()

        await self.sink.notify(str(upload.user_id), ProgressEvent.SEPARATOR_DETECTED, {
            "uploadId": str(upload.id),
            "separator": detection.separator,
            "confidence": detection.confidence,
        })
        return detection.separator

    async def _ensure_mapping(
        self,
        session: AsyncSession,
        upload: Upload,
        headers: list[str],
        separator: str,
    ) -> Optional[FieldMappingResult]:
        if upload.field_mappings:
            try:
                stored = FieldMappingResult.model_validate(self.cipher.decrypt_json(upload.field_mappings))
            except (CipherError, ValidationError) as e:
                raise PipelineError(f"Stored field mapping unreadable: {e}", "ERR_MAPPING") from e
            logger.info("field_mapping_reused")
            return stored

        first_lines = await self.raw_lines.head(session, upload.id, settings.SEPARATOR_SAMPLE_LINES + 1)
        if len(first_lines) < 2:
            # Header only: nothing to map
            return None

        upload.stage = PipelineStage.DETECTING_MAPPING.value
        await session.commit()

        sample_values = self._mapping_sample(first_lines[1:], headers, separator)
        if sample_values is None:
            raise PipelineError("Field mapping failed: no readable data line to sample", "ERR_MAPPING")
        try:
            result = await detect_field_mapping(self.oracle, headers, row_dict(headers, sample_values))
        except (OracleError, ValidationError) as e:
            raise PipelineError(f"Field mapping failed: {e}", "ERR_MAPPING") from e

        upload.field_mappings = self.cipher.encrypt_json(result.model_dump(by_alias=True))
        await session.commit()

        m = result.mappings
        await self.sink.notify(str(upload.user_id), ProgressEvent.MAPPING_DETECTED, {
            "uploadId": str(upload.id),
            "confidence": result.confidence,
            "columns": {
                "Date": m.date.source_field,
                "FieldForOutgoing": m.outgoing.source_field,
                "FieldForIncoming": m.incoming.source_field,
                "Currency": m.currency.source_field,
                "Description": m.description.source_field,
                "Code": m.code.source_field,
            },
        })
        return result

    def _mapping_sample(self, lines: list[RawLine], headers: list[str], separator: str) -> Optional[list[str]]:
        """
        Values of the first data line worth showing the oracle: one that
        decrypts and fills every header column. Falls back to the first
        line that decrypts at all.
        """
        fallback = None
        for line in lines:
            try:
                values = split_line(self.raw_lines.decrypt_line(line), separator)
            except CipherError:
                logger.debug("mapping_sample_skipped", line_number=line.line_number)
                continue
            if len(values) >= len(headers):
                return values
            if fallback is None:
                fallback = values
        return fallback

    async def _complete(self, session: AsyncSession, upload: Upload) -> None:
        statistics = dict(upload.statistics_json or {})
        statistics.update(await self._upload_totals(session, upload.id))

        upload.status = UploadStatus.COMPLETED.value
        upload.stage = PipelineStage.COMPLETED.value
        upload.completed_at = datetime.now(timezone.utc)
        upload.statistics_json = statistics
        await session.commit()
        uploads_completed_total.inc()

        await self.sink.notify(str(upload.user_id), ProgressEvent.UPLOAD_COMPLETED, {
            "uploadId": str(upload.id),
            "totalLines": upload.total_lines,
            "successfulLines": upload.successful_lines,
            "failedLines": upload.failed_lines,
            "statistics": statistics,
        })

    async def _upload_totals(self, session: AsyncSession, upload_id: uuid.UUID) -> dict[str, Any]:
        """Spend, income and confidence over everything this upload inserted."""
        result = await session.execute(
            select(
                Transaction.kind,
                func.count(),
                func.coalesce(func.sum(Transaction.amount), 0),
                func.coalesce(func.avg(Transaction.confidence), 0),
            )
            .where(Transaction.upload_id == upload_id)
            .group_by(Transaction.kind)
        )
        totals = {"total_spent": 0.0, "total_income": 0.0, "transactions": 0, "avg_confidence": 0.0}
        weighted = 0.0
        for kind, count, amount, avg_conf in result.all():
            totals["transactions"] += count
            weighted += float(avg_conf) * count
            if kind == TransactionKind.OUTGOING.value:
                totals["total_spent"] = round(float(amount), 2)
            elif kind == TransactionKind.INCOMING.value:
                totals["total_income"] = round(float(amount), 2)
        if totals["transactions"]:
            totals["avg_confidence"] = round(weighted / totals["transactions"], 4)
        return totals

    async def _fail_upload(self, session: AsyncSession, upload_id: str, error_code: str, error_message: str):
        """Mark the upload failed and tell the user it can be retried."""
        uploads_failed_total.labels(error_code).inc()
        try:
            await session.rollback()
            upload = await session.get(Upload, uuid.UUID(upload_id))
            if upload is None:
                logger.error("failed_upload_missing", error_code=error_code)
                return
            upload.status = UploadStatus.FAILED.value
            upload.stage = PipelineStage.FAILED.value
            upload.error_message = self.cipher.encrypt_json({"error": error_message[:500]})
            await session.commit()
        except Exception:
            logger.error("failed_to_mark_failure", error_code=error_code, traceback=traceback.format_exc())
            return

        logger.warning("upload_failed", error_code=error_code)
        await self.sink.notify(str(upload.user_id), ProgressEvent.UPLOAD_FAILED, {
            "uploadId": upload_id,
            "error": error_message[:500],
            "errorCode": error_code,
            "canRetry": True,
        })

    @staticmethod
    def _summary(upload: Upload) -> dict:
        return {
            "upload_id": str(upload.id),
            "status": upload.status,
            "total_lines": upload.total_lines,
            "processed_lines": upload.processed_lines,
            "successful_lines": upload.successful_lines,
            "failed_lines": upload.failed_lines,
            "statistics": upload.statistics_json or {},
        }


def _accumulate(counters: dict, outcome: PersistOutcome, stats) -> None:
    increments = {
        "inserted": outcome.inserted,
        "duplicates": outcome.duplicates,
        "balance_filtered": outcome.balance_filtered,
        "cache_hits": stats.cache_hits,
        "oracle_resolved": stats.oracle_resolved,
        "fallback_rows": stats.fallback_rows,
    }
    for name in _COUNTERS:
        counters[name] = counters.get(name, 0) + increments[name]
