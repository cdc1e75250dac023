"""
structlog setup for the ingestion worker.

Every event logged while a job runs carries the upload_id bound by the
pipeline. Bank data never reaches the log stream: fields that could hold
statement text are masked before rendering.
"""

import logging
import sys

import structlog

from csv_ingest.config import settings

# Event keys that may carry decrypted statement content
SENSITIVE_KEYS = frozenset({"description", "raw_line", "filename", "row", "sample_lines"})


def redact_sensitive(logger, method_name: str, event_dict: dict) -> dict:
    """Mask statement content so it is never written in clear."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def setup_logging(process_name: str = "worker") -> None:
    """
    Route structlog and stdlib logging (rq, SQLAlchemy, openai) through one
    handler on stdout. DEBUG switches from JSON lines to console output.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive,
    ]

    if settings.DEBUG:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    structlog.contextvars.bind_contextvars(process=process_name, app=settings.APP_NAME)

    # Request bodies from the model client would include statement lines
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("rq.worker").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DB_ECHO else logging.WARNING
    )
