"""Batched, retried and timeout-bounded weather acquisition for forecast points."""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from route_forecast.config import FETCH_BATCH_SIZE, FETCH_MAX_WORKERS, FETCH_MODE
from route_forecast.errors import (
    FetchTimeoutError, InvalidCoordinate, InvalidParameter, PipelineExhausted, ValidationError
)
from route_forecast.pipeline.models import FetchMode, RetryPolicy
from route_forecast.pipeline.reporting import ErrorReporter, LoggingErrorReporter, safe_report
from route_forecast.track.geomath import validate_coordinate
from route_forecast.track.models import ForecastPoint
from route_forecast.weather.client import decode_record
from route_forecast.weather.models import WeatherRecord

logger = logging.getLogger(__name__)

# (points resolved so far, total points)
ProgressCallback = Callable[[int, int], None]


class WeatherProvider(Protocol):
    """Source of weather records for forecast points."""

    async def fetch_batch(self, points: Sequence[ForecastPoint]) -> List[Optional[WeatherRecord]]:
        ...

    async def fetch_point(self, point: ForecastPoint) -> Optional[WeatherRecord]:
        ...


@dataclass(frozen=True)
class RequestUnit:
    """Positions of the points sent together in one provider request."""
    indices: Tuple[int, ...]
    is_batch: bool


class WeatherFetchOrchestrator:
    """Acquires one weather record (or None) per forecast point.

    Points are grouped into request units: one unit for the whole batch (or
    ``batch_size`` chunks) in batch mode, one unit per point in point mode.
    Each unit is retried as a whole under the retry policy; a unit that
    exhausts its attempts contributes None for each of its points. Units run
    concurrently up to ``max_workers`` and results keep the input order.
    """

    def __init__(
        self,
        provider: WeatherProvider,
        policy: Optional[RetryPolicy] = None,
        reporter: Optional[ErrorReporter] = None,
        mode: Union[FetchMode, str] = FETCH_MODE,
        max_workers: int = FETCH_MAX_WORKERS,
        batch_size: int = FETCH_BATCH_SIZE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            provider: Weather provider to fetch from
            policy: Retry policy (creates default if None)
            reporter: Receives every failed attempt (logs if None)
            mode: "batch" or "point"
            max_workers: Upper bound on concurrent request units
            batch_size: Points per batch request, 0 for a single batch
            sleep: Coroutine used for backoff delays
        """
        try:
            self.mode = FetchMode(mode)
        except ValueError:
            raise InvalidParameter(f"Unknown fetch mode '{mode}'")
        if max_workers < 1:
            raise InvalidParameter(f"max_workers must be at least 1, got {max_workers}")
        if batch_size < 0:
            raise InvalidParameter(f"batch_size must not be negative, got {batch_size}")

        required = "fetch_batch" if self.mode is FetchMode.BATCH else "fetch_point"
        if not callable(getattr(provider, required, None)):
            raise InvalidParameter(f"Provider {type(provider).__name__} does not support {required}")

        self.provider = provider
        self.policy = policy or RetryPolicy()
        self.reporter = reporter or LoggingErrorReporter()
        self.max_workers = max_workers
        self.batch_size = batch_size
        self.sleep = sleep

    async def fetch_all(
        self,
        points: Sequence[ForecastPoint],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Optional[WeatherRecord]]:
        """Fetch weather for every point.

        Args:
            points: Forecast points, in route order
            on_progress: Called after each request unit resolves

        Returns:
            One record or None per input point, in input order

        Raises:
            ValidationError: If the batch is empty or structurally invalid
            PipelineExhausted: If no point obtained weather data
        """
        validate_points(points)

        total = len(points)
        units = self._plan(total)
        results: List[Optional[WeatherRecord]] = [None] * total
        semaphore = asyncio.Semaphore(min(self.max_workers, len(units)))
        processed = 0

        logger.info(f"Fetching weather for {total} points in {len(units)} {self.mode.value} request(s)")

        async def run_unit(unit: RequestUnit):
            nonlocal processed
            async with semaphore:
                records = await self._fetch_unit(unit, points)
            for index, record in zip(unit.indices, records):
                results[index] = record
            processed += len(unit.indices)
            if on_progress is not None:
                on_progress(processed, total)

        await asyncio.gather(*(run_unit(unit) for unit in units))

        available = sum(1 for r in results if r is not None)
        if available == 0:
            logger.error(f"No weather data obtained for any of {total} points")
            raise PipelineExhausted(f"Weather data unavailable for all {total} points", results=results)

        logger.info(f"Fetched weather for {available}/{total} points")
        return results

    def _plan(self, total: int) -> List[RequestUnit]:
        if self.mode is FetchMode.POINT:
            return [RequestUnit((i,), is_batch=False) for i in range(total)]

        size = self.batch_size or total
        return [
            RequestUnit(tuple(range(start, min(start + size, total))), is_batch=True)
            for start in range(0, total, size)
        ]

    async def _fetch_unit(
        self,
        unit: RequestUnit,
        points: Sequence[ForecastPoint],
    ) -> List[Optional[WeatherRecord]]:
        unit_points = [points[i] for i in unit.indices]
        timeout = self.policy.timeout_for(unit.is_batch)

        for attempt in range(1, self.policy.max_retries + 1):
            try:
                return await asyncio.wait_for(self._request(unit, unit_points), timeout)
            except asyncio.TimeoutError as e:
                error = e if isinstance(e, FetchTimeoutError) else FetchTimeoutError(
                    f"No response within {timeout}s"
                )
            except Exception as e:
                error = e

            safe_report(self.reporter, error, self._context(unit, unit_points, attempt))

            if attempt < self.policy.max_retries:
                delay = self.policy.delay_after(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.policy.max_retries} for {len(unit_points)} point(s) failed "
                    f"({type(error).__name__}: {error}), retrying in {delay:.1f}s"
                )
                await self.sleep(delay)

        logger.error(
            f"Giving up on {len(unit_points)} point(s) after {self.policy.max_retries} attempts"
        )
        return [None] * len(unit_points)

    async def _request(
        self,
        unit: RequestUnit,
        unit_points: List[ForecastPoint],
    ) -> List[Optional[WeatherRecord]]:
        if unit.is_batch:
            records = await self.provider.fetch_batch(unit_points)
            return validate_batch_response(records, len(unit_points))

        record = await self.provider.fetch_point(unit_points[0])
        return [decode_record(record)]

    def _context(self, unit: RequestUnit, unit_points: List[ForecastPoint], attempt: int) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "attempt": attempt,
            "max_retries": self.policy.max_retries,
            "point_count": len(unit_points),
            "indices": [unit.indices[0], unit.indices[-1]],
            "coordinates": [(p.lat, p.lon) for p in unit_points],
        }


async def fetch_all(
    points: Sequence[ForecastPoint],
    provider: WeatherProvider,
    policy: Optional[RetryPolicy] = None,
    **kwargs,
) -> List[Optional[WeatherRecord]]:
    """Fetch weather for ``points`` with a one-off orchestrator."""
    return await WeatherFetchOrchestrator(provider, policy, **kwargs).fetch_all(points)


def validate_points(points: Sequence[ForecastPoint]) -> None:
    """Pre-flight check run before any provider call.

    Raises:
        ValidationError: If the sequence is empty or any element lacks a valid
            coordinate, a finite distance or a timestamp
    """
    if not points:
        raise ValidationError("Points array is required and must not be empty")

    for i, point in enumerate(points):
        if not isinstance(point, ForecastPoint):
            raise ValidationError(f"Point {i} is not a forecast point: {point!r}")
        try:
            validate_coordinate(point.lat, point.lon)
        except InvalidCoordinate as e:
            raise ValidationError(f"Point {i}: {e}") from e
        distance = point.distance_km
        if isinstance(distance, bool) or not isinstance(distance, (int, float)) or not math.isfinite(distance):
            raise ValidationError(f"Point {i} has an invalid distance: {distance!r}")
        if not isinstance(point.timestamp, datetime):
            raise ValidationError(f"Point {i} has an invalid timestamp: {point.timestamp!r}")


def validate_batch_response(records: Any, expected: int) -> List[Optional[WeatherRecord]]:
    """Check that a batch response holds one record (or None) per requested point.

    Raises:
        ValidationError: On a non-list response, a length mismatch or an invalid record
    """
    if not isinstance(records, (list, tuple)):
        raise ValidationError(f"Batch response must be a list, got {type(records).__name__}")
    if len(records) != expected:
        raise ValidationError(f"Batch response has {len(records)} records for {expected} points")
    return [decode_record(record) for record in records]
