"""Redis-backed cache of weather records keyed by location and hour."""

import logging
import math
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from route_forecast.config import CACHE_EXPIRE_SECONDS, CACHE_PREFIX, REDIS_URL
from route_forecast.weather.models import WeatherRecord

logger = logging.getLogger(__name__)


class WeatherCache:
    """Weather record cache using Redis string keys with expiry.

    Redis errors are logged and treated as cache misses.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        expire_seconds: int = CACHE_EXPIRE_SECONDS,
        prefix: str = CACHE_PREFIX,
    ):
        """Initialize the cache.

        Args:
            redis_client: Optional Redis client. If None, creates new client.
            expire_seconds: Time-to-live of cached records
            prefix: Key prefix
        """
        self.redis_client = redis_client or redis.from_url(REDIS_URL)
        self.expire_seconds = expire_seconds
        self.prefix = prefix

    def key(self, lat: float, lon: float, timestamp: datetime) -> str:
        hour = math.floor(timestamp.timestamp() / 3600) * 3600
        return f"{self.prefix}:{lat:.4f},{lon:.4f},{hour}h"

    async def get(self, key: str) -> Optional[WeatherRecord]:
        try:
            raw = await self.redis_client.get(key)
        except RedisError as e:
            logger.error(f"Weather cache read failed for {key}: {e}")
            return None

        if raw is None:
            logger.debug(f"Cache miss for {key}")
            return None

        try:
            record = WeatherRecord.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(f"Discarding invalid cache entry {key}: {e}")
            return None

        logger.debug(f"Cache hit for {key}")
        return record

    async def set(self, key: str, record: WeatherRecord) -> None:
        try:
            await self.redis_client.set(key, record.model_dump_json(), ex=self.expire_seconds)
        except RedisError as e:
            logger.error(f"Weather cache write failed for {key}: {e}")

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.close()
