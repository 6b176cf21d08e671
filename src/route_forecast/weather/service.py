"""Weather service serving forecast points from the upstream API and cache."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from route_forecast.config import SERVICE_GROUP_DELAY_SECONDS, SERVICE_GROUP_SIZE
from route_forecast.errors import ForecastError, InvalidCoordinate, ProviderError
from route_forecast.pipeline.models import RetryPolicy
from route_forecast.pipeline.reporting import ErrorReporter, LoggingErrorReporter, safe_report
from route_forecast.track.models import ForecastPoint
from route_forecast.weather.cache import WeatherCache
from route_forecast.weather.models import WeatherRecord
from route_forecast.weather.openweather import default_weather_client

logger = logging.getLogger(__name__)


class WeatherService:
    """Service resolving weather for forecast points, cache first."""

    def __init__(
        self,
        client=None,
        cache: Optional[WeatherCache] = None,
        group_size: int = SERVICE_GROUP_SIZE,
        group_delay: float = SERVICE_GROUP_DELAY_SECONDS,
        policy: Optional[RetryPolicy] = None,
        reporter: Optional[ErrorReporter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the weather service.

        Args:
            client: Upstream weather client (OpenWeather or mock if None)
            cache: Weather cache instance (creates default if None)
            group_size: Points fetched concurrently per group in get_many
            group_delay: Pause in seconds between groups
            policy: Per-point retry policy for upstream failures
            reporter: Receives every failed upstream attempt (logs if None)
            sleep: Coroutine used for backoff delays
        """
        self.client = client or default_weather_client()
        self.cache = cache or WeatherCache()
        self.group_size = group_size
        self.group_delay = group_delay
        self.policy = policy or RetryPolicy()
        self.reporter = reporter or LoggingErrorReporter()
        self.sleep = sleep

    async def fetch_point_weather(self, point: ForecastPoint) -> WeatherRecord:
        """Get weather for a point with a single upstream attempt.

        Raises:
            ProviderError: If the upstream request fails
            ValidationError: If the upstream response is invalid
        """
        key = self.cache.key(point.lat, point.lon, point.timestamp)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        record = await self.client.get_point_weather(point.lat, point.lon, point.timestamp)
        await self.cache.set(key, record)
        return record

    async def fetch_with_retry(self, point: ForecastPoint) -> WeatherRecord:
        """Get weather for a point, retrying upstream failures under the retry policy.

        Raises:
            InvalidCoordinate: If the point is out of range (not retried)
            ForecastError: The last upstream error once attempts are exhausted
        """
        attempts = self.policy.max_retries
        for attempt in range(1, attempts + 1):
            try:
                return await self.fetch_point_weather(point)
            except InvalidCoordinate:
                raise
            except ForecastError as e:
                safe_report(self.reporter, e, {
                    "lat": point.lat,
                    "lon": point.lon,
                    "attempt": attempt,
                    "max_retries": attempts,
                })
                if attempt == attempts:
                    raise
                delay = self.policy.delay_after(attempt)
                logger.warning(
                    f"Retry {attempt}/{attempts} for lat={point.lat}, lon={point.lon} in {delay:.1f}s: {e}"
                )
                await self.sleep(delay)

    async def get_point_weather(self, point: ForecastPoint) -> Optional[WeatherRecord]:
        """Get weather for a point; None if the upstream could not serve it after retries."""
        try:
            return await self.fetch_with_retry(point)
        except ForecastError as e:
            logger.error(f"Error fetching weather for lat={point.lat}, lon={point.lon}: {e}")
            return None

    async def get_many(self, points: Sequence[ForecastPoint]) -> List[Optional[WeatherRecord]]:
        """Get weather for several points, aligned with the input order.

        Points are served in concurrent groups with a short pause between
        groups to stay under upstream rate limits.
        """
        results: List[Optional[WeatherRecord]] = []
        for start in range(0, len(points), self.group_size):
            group = points[start:start + self.group_size]
            results.extend(await asyncio.gather(*(self.get_point_weather(p) for p in group)))

            if start + self.group_size < len(points):
                await asyncio.sleep(self.group_delay)

        logger.info(f"Served weather for {sum(r is not None for r in results)}/{len(points)} points")
        return results

    async def aclose(self):
        """Close the weather client and cache."""
        try:
            await self.client.aclose()
        except Exception as e:
            logger.error(f"Error closing weather client: {e}")
        try:
            await self.cache.close()
        except Exception as e:
            logger.error(f"Error closing weather cache: {e}")

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()


class ServiceWeatherProvider:
    """Weather provider running the weather service in-process.

    Batch requests retry each point inside the service and keep None for
    points it still could not serve; a batch where no point was served
    raises so the fetch orchestrator retries it. Point requests make one
    upstream attempt and raise on failure.
    """

    def __init__(self, service: WeatherService):
        self.service = service

    async def fetch_batch(self, points: Sequence[ForecastPoint]) -> List[Optional[WeatherRecord]]:
        records = await self.service.get_many(points)
        if points and all(r is None for r in records):
            raise ProviderError(f"Weather upstream served none of {len(points)} points")
        return records

    async def fetch_point(self, point: ForecastPoint) -> Optional[WeatherRecord]:
        return await self.service.fetch_point_weather(point)
