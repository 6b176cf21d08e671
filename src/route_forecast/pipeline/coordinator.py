"""End-to-end pipeline: parse a track, sample forecast points, fetch weather."""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Union

from route_forecast.config import FETCH_BATCH_SIZE, FETCH_MAX_WORKERS, FETCH_MODE
from route_forecast.errors import Cancelled, ForecastError
from route_forecast.pipeline.fetcher import WeatherFetchOrchestrator, WeatherProvider
from route_forecast.pipeline.models import FetchMode, ForecastResult, ProgressUpdate, RetryPolicy, Stage
from route_forecast.pipeline.reporting import ErrorReporter, ProgressSink
from route_forecast.track.parser import TrackParser
from route_forecast.track.sampler import ForecastSampler

logger = logging.getLogger(__name__)

DEFAULT_ROUTE_ID = "default"


class PipelineCoordinator:
    """Runs TrackParser, ForecastSampler and WeatherFetchOrchestrator in sequence.

    A run either returns a complete ForecastResult or raises the typed error
    of the stage that failed, with ``stage`` set on the exception. At most one
    run is active per route id; starting a new run cancels the previous one.
    """

    def __init__(
        self,
        provider: Optional[WeatherProvider] = None,
        *,
        parser: Optional[TrackParser] = None,
        sampler: Optional[ForecastSampler] = None,
        policy: Optional[RetryPolicy] = None,
        reporter: Optional[ErrorReporter] = None,
        progress: Optional[ProgressSink] = None,
        mode: Union[FetchMode, str] = FETCH_MODE,
        max_workers: int = FETCH_MAX_WORKERS,
        batch_size: int = FETCH_BATCH_SIZE,
    ):
        """Initialize the coordinator.

        Args:
            provider: Default weather provider for runs that don't pass one
            parser: Track parser (creates default if None)
            sampler: Forecast sampler (creates default if None)
            policy: Retry policy for the fetch stage
            reporter: Error reporter for the fetch stage
            progress: Sink receiving stage/progress updates
            mode: Fetch mode, "batch" or "point"
            max_workers: Concurrent request units in the fetch stage
            batch_size: Points per batch request, 0 for a single batch
        """
        self.provider = provider
        self.parser = parser or TrackParser()
        self.sampler = sampler or ForecastSampler()
        self.policy = policy or RetryPolicy()
        self.reporter = reporter
        self.progress = progress
        self.mode = mode
        self.max_workers = max_workers
        self.batch_size = batch_size
        self._active: Dict[str, asyncio.Event] = {}

    async def run(
        self,
        raw_track: Union[bytes, str],
        interval_km: float,
        start_time: datetime,
        avg_speed_kmh: float,
        provider: Optional[WeatherProvider] = None,
        *,
        route_id: str = DEFAULT_ROUTE_ID,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> ForecastResult:
        """Run the pipeline for one uploaded track.

        Args:
            raw_track: Track file content
            interval_km: Distance between forecast points in kilometers
            start_time: Departure time
            avg_speed_kmh: Average travel speed
            provider: Weather provider (defaults to the coordinator's)
            route_id: Key identifying the route; a newer run for the same key
                supersedes this one
            cancel_event: Setting this event cancels the run
            timeout: Overall deadline in seconds

        Returns:
            ForecastResult with weather aligned to the forecast points

        Raises:
            Cancelled: If cancelled, superseded or past the deadline
            ForecastError: The typed error of the failing stage
        """
        provider = provider or self.provider
        if provider is None:
            raise ValueError("No weather provider configured")

        cancel_event = cancel_event or asyncio.Event()
        previous = self._active.get(route_id)
        if previous is not None:
            logger.info(f"Superseding active pipeline run for route '{route_id}'")
            previous.set()
        self._active[route_id] = cancel_event

        try:
            return await self._guard(
                self._execute(raw_track, interval_km, start_time, avg_speed_kmh, provider),
                cancel_event,
                timeout,
            )
        finally:
            if self._active.get(route_id) is cancel_event:
                del self._active[route_id]

    def cancel(self, route_id: str = DEFAULT_ROUTE_ID) -> bool:
        """Cancel the active run for a route. Returns False if none is active."""
        event = self._active.get(route_id)
        if event is None:
            return False
        event.set()
        return True

    async def _guard(self, coro, cancel_event: asyncio.Event, timeout: Optional[float]) -> ForecastResult:
        work = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done and not cancel_event.is_set():
            return work.result()

        # Cancellation wins over any outcome the work reached meanwhile
        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.info(f"Pipeline finished with {type(e).__name__} after cancellation")

        reason = "cancelled" if cancel_event.is_set() else f"timed out after {timeout}s"
        error = Cancelled(f"Pipeline run {reason}")
        self._emit(ProgressUpdate(Stage.FAILED, message=str(error)))
        logger.warning(str(error))
        raise error

    async def _execute(
        self,
        raw_track: Union[bytes, str],
        interval_km: float,
        start_time: datetime,
        avg_speed_kmh: float,
        provider: WeatherProvider,
    ) -> ForecastResult:
        stage = Stage.PARSING
        try:
            self._emit(ProgressUpdate(stage))
            track = self.parser.parse(raw_track)

            stage = Stage.SAMPLING
            self._emit(ProgressUpdate(stage, total=len(track.points)))
            points = self.sampler.sample(track, interval_km, start_time, avg_speed_kmh)

            stage = Stage.FETCHING
            total = len(points)
            self._emit(ProgressUpdate(stage, processed=0, total=total))
            orchestrator = WeatherFetchOrchestrator(
                provider,
                self.policy,
                reporter=self.reporter,
                mode=self.mode,
                max_workers=self.max_workers,
                batch_size=self.batch_size,
            )
            weather = await orchestrator.fetch_all(
                points,
                on_progress=lambda done, of: self._emit(ProgressUpdate(Stage.FETCHING, done, of)),
            )
        except ForecastError as e:
            e.stage = stage.value
            logger.error(f"Pipeline failed: {e.describe()}")
            self._emit(ProgressUpdate(Stage.FAILED, message=e.describe()))
            raise

        result = ForecastResult(points=tuple(points), weather=tuple(weather))
        self._emit(ProgressUpdate(Stage.DONE, processed=result.available_count, total=total))
        logger.info(
            f"Forecast ready for '{track.name}': {result.available_count}/{total} points with weather"
        )
        return result

    def _emit(self, update: ProgressUpdate) -> None:
        if self.progress is not None:
            self.progress(update)
