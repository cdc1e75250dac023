"""
Worker entry point.
Run with: python -m csv_ingest.worker.runner
"""

import structlog
from prometheus_client import start_http_server
from redis import Redis
from rq import Worker

from csv_ingest.config import settings
from csv_ingest.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def main():
    """Start the RQ worker."""
    setup_logging()

    # Sentry init if configured
    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.rq import RqIntegration
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[RqIntegration()],
            release=f"{settings.APP_NAME}@{settings.APP_VERSION}",
            traces_sample_rate=0.0,
        )

    if settings.PROMETHEUS_ENABLED:
        start_http_server(settings.METRICS_PORT)

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[settings.QUEUE_NAME],
        connection=conn,
        name=f"ingestion-worker-{settings.APP_VERSION}",
    )

    logger.info("worker_starting", queue=settings.QUEUE_NAME, metrics=settings.PROMETHEUS_ENABLED)
    worker.work(with_scheduler=False)


if __name__ == "__main__":
    main()
