"""
Upload intake: turn received file bytes into an Upload plus encrypted raw lines.
"""

import re
import traceback
import uuid
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from csv_ingest.config import settings
from csv_ingest.models.enums import PipelineStage, ProgressEvent, UploadStatus
from csv_ingest.models.tables import Upload
from csv_ingest.notify.base import NullProgressSink, ProgressSink
from csv_ingest.observability.metrics import uploads_failed_total, uploads_received_total
from csv_ingest.storage.crypto import Cipher
from csv_ingest.storage.raw_lines import RawLineStore

logger = structlog.get_logger(__name__)


class IntakeError(Exception):
    """
    The file was rejected. Size and line limits fail before any upload
    record exists; ERR_STORE leaves the upload in failed status.
    """

    def __init__(self, message: str, error_code: str = "ERR_INTAKE"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


# Tried in order. cp1252 leaves five bytes undefined, latin-1 none.
ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")

_LINE_BREAK = re.compile(r"\r\n|\n|\r")


def decode_content(content: Union[bytes, str]) -> str:
    if isinstance(content, str):
        text = content.lstrip("\ufeff")
    else:
        for encoding in ENCODINGS:
            try:
                text = content.decode(encoding)
                break
            except UnicodeDecodeError:
                continue
    if "\x00" in text:
        raise IntakeError("file looks binary, not CSV", "ERR_NOT_CSV")
    return text


def split_lines(text: str) -> list[str]:
    """
    Physical lines, blank lines dropped. The header stays first.
    Only CR and LF end a line. str.splitlines() also breaks on U+0085,
    U+2028 and friends, which can sit inside a description.
    """
    return [line for line in _LINE_BREAK.split(text) if line.strip()]


async def receive_upload(
    session: AsyncSession,
    user_id: uuid.UUID,
    account_id: Optional[uuid.UUID],
    filename: str,
    content: Union[bytes, str],
    cipher: Cipher,
    sink: Optional[ProgressSink] = None,
) -> Upload:
    """
    Validate and store a received CSV file.

    Returns the Upload in `processing` status, ready for the pipeline, or in
    `failed` status when the file has no lines. Raises IntakeError when the
    file is rejected outright or its lines could not be stored.
    """
    sink = sink or NullProgressSink()

    size = len(content.encode("utf-8")) if isinstance(content, str) else len(content)
    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if size > max_bytes:
        raise IntakeError(f"file is {size} bytes, limit is {max_bytes}", "ERR_TOO_LARGE")

    lines = split_lines(decode_content(content))
    if len(lines) > settings.MAX_LINES_PER_FILE:
        raise IntakeError(
            f"file has {len(lines)} lines, limit is {settings.MAX_LINES_PER_FILE}", "ERR_TOO_MANY_LINES"
        )

    upload = Upload(
        id=uuid.uuid4(),
        user_id=user_id,
        account_id=account_id,
        filename=cipher.encrypt(filename),
        status=UploadStatus.UPLOADING.value,
        stage=PipelineStage.PENDING.value,
    )
    session.add(upload)
    await session.commit()
    uploads_received_total.inc()

    log = logger.bind(upload_id=str(upload.id), user_id=str(user_id))
    log.info("upload_received", size_bytes=size, lines=len(lines))
    await sink.notify(str(user_id), ProgressEvent.UPLOAD_STARTED, {
        "uploadId": str(upload.id),
        "totalLines": len(lines),
    })

    if not lines:
        await _fail_intake(session, upload, cipher, sink, "File is empty", "ERR_EMPTY_FILE", log)
        return upload

    upload_id = upload.id
    try:
        stored = await RawLineStore(cipher).store_lines(session, upload_id, user_id, lines)
        upload.total_lines = stored
        upload.status = UploadStatus.PROCESSING.value
        await session.commit()
    except Exception as e:
        log.error("upload_store_failed", error=f"{type(e).__name__}: {e}", traceback=traceback.format_exc())
        await session.rollback()
        upload = await session.get(Upload, upload_id)
        await _fail_intake(session, upload, cipher, sink, "Could not store the file, please retry", "ERR_STORE", log)
        raise IntakeError(f"storing raw lines failed: {type(e).__name__}", "ERR_STORE") from e

    log.info("upload_stored", total_lines=stored)
    return upload


async def _fail_intake(
    session: AsyncSession,
    upload: Upload,
    cipher: Cipher,
    sink: ProgressSink,
    message: str,
    error_code: str,
    log,
) -> None:
    upload.status = UploadStatus.FAILED.value
    upload.stage = PipelineStage.FAILED.value
    upload.error_message = cipher.encrypt_json({"error": message})
    await session.commit()
    uploads_failed_total.labels(error_code).inc()
    log.warning("upload_failed", error_code=error_code)
    await sink.notify(str(upload.user_id), ProgressEvent.UPLOAD_FAILED, {
        "uploadId": str(upload.id),
        "error": message,
        "errorCode": error_code,
        "canRetry": True,
    })
