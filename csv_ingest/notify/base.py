"""
Progress sink interface.
The pipeline pushes lifecycle events through an injected sink and never
waits on delivery.
"""

from abc import ABC, abstractmethod
from typing import Any

import structlog

from csv_ingest.models.enums import ProgressEvent

logger = structlog.get_logger(__name__)


class ProgressSink(ABC):
    """
    Fire-and-forget delivery of upload events to a user.
    Implementations must not raise: a lost notification never fails an upload.
    """

    @abstractmethod
    async def notify(self, user_id: str, event: ProgressEvent, payload: dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        return None


class NullProgressSink(ProgressSink):
    """Logs events instead of delivering them."""

    async def notify(self, user_id: str, event: ProgressEvent, payload: dict[str, Any]) -> None:
        logger.debug("progress_event", user_id=user_id, event=event.value)
