"""
RQ job functions for the upload processing pipeline.
These are the entry points that the worker calls.
"""

import structlog
from redis import Redis
from rq import Queue
from rq.job import JobStatus

from csv_ingest.config import settings

logger = structlog.get_logger(__name__)

# A job in one of these states will still run the upload
_ACTIVE_JOB_STATES = (JobStatus.QUEUED, JobStatus.STARTED, JobStatus.DEFERRED, JobStatus.SCHEDULED)


def get_queue() -> Queue:
    """Get the ingestion job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def job_id_for(upload_id: str) -> str:
    return f"upload-{upload_id}"


def enqueue_processing(upload_id: str, queue: Queue = None) -> str:
    """
    Enqueue an upload for processing. Also used to retry a failed upload.

    Each upload has one job ID, so an upload that is already queued or
    running is not enqueued a second time. Returns the job ID.
    """
    q = queue or get_queue()
    job_id = job_id_for(upload_id)

    existing = q.fetch_job(job_id)
    if existing is not None:
        status = existing.get_status(refresh=True)
        if status in _ACTIVE_JOB_STATES:
            logger.info("job_already_active", upload_id=upload_id, job_id=job_id, status=str(status))
            return existing.id

    job = q.enqueue(
        process_upload_job,
        upload_id,
        job_id=job_id,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("job_enqueued", upload_id=upload_id, job_id=job.id)
    return job.id


def process_upload_job(upload_id: str) -> dict:
    """
    Main job function: run one upload through the pipeline.
    This runs inside the RQ worker process.
    """
    import asyncio

    logger.info("job_started", upload_id=upload_id)

    try:
        result = asyncio.run(_process_upload_async(upload_id))
        logger.info("job_completed", upload_id=upload_id, status=result.get("status"))
        return result
    except Exception as e:
        logger.error("job_failed", upload_id=upload_id, error=str(e))
        raise


async def _process_upload_async(upload_id: str) -> dict:
    """Build the production collaborators and run the orchestrator."""
    from csv_ingest.models.database import close_db
    from csv_ingest.notify.redis_sink import RedisProgressSink
    from csv_ingest.oracle.openai_oracle import OpenAIOracle
    from csv_ingest.pipeline.orchestrator import UploadPipeline

    sink = RedisProgressSink()
    try:
        pipeline = UploadPipeline(oracle=OpenAIOracle(), sink=sink)
        return await pipeline.process(upload_id)
    finally:
        await sink.close()
        # Each job runs in a fresh event loop; pooled connections must not outlive it
        await close_db()
