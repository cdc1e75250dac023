"""
Redis pub/sub progress sink. One channel per user:
    {NOTIFY_CHANNEL_PREFIX}:{user_id}
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from csv_ingest.config import settings
from csv_ingest.models.enums import ProgressEvent
from csv_ingest.notify.base import ProgressSink

logger = structlog.get_logger(__name__)


class RedisProgressSink(ProgressSink):

    def __init__(self, client: Optional[aioredis.Redis] = None, prefix: Optional[str] = None):
        self.client = client or aioredis.from_url(settings.REDIS_URL)
        self.prefix = prefix or settings.NOTIFY_CHANNEL_PREFIX

    def channel(self, user_id: str) -> str:
        return f"{self.prefix}:{user_id}"

    async def notify(self, user_id: str, event: ProgressEvent, payload: dict[str, Any]) -> None:
        message = json.dumps({
            "type": event.value,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }, default=str)
        try:
            receivers = await self.client.publish(self.channel(user_id), message)
        except (RedisError, OSError) as e:
            logger.warning("progress_publish_failed", user_id=user_id, event=event.value, error=str(e))
            return
        logger.debug("progress_published", user_id=user_id, event=event.value, receivers=receivers)

    async def close(self) -> None:
        await self.client.aclose()
