"""Pipeline result, retry policy and progress models."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from route_forecast.config import (
    BATCH_TIMEOUT_SECONDS, FETCH_BASE_DELAY_MS, FETCH_MAX_RETRIES, POINT_TIMEOUT_SECONDS
)
from route_forecast.errors import InvalidParameter
from route_forecast.track.models import ForecastPoint
from route_forecast.weather.models import WeatherRecord


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget, backoff and per-attempt deadline for provider requests.

    ``max_retries`` is the total number of attempts per request unit. The
    delay before attempt ``n + 1`` is ``base_delay_ms * n`` (linear growth).
    """

    max_retries: int = FETCH_MAX_RETRIES
    base_delay_ms: int = FETCH_BASE_DELAY_MS
    batch_timeout_s: float = BATCH_TIMEOUT_SECONDS
    point_timeout_s: float = POINT_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.max_retries < 1:
            raise InvalidParameter(f"max_retries must be at least 1, got {self.max_retries}")
        if self.base_delay_ms < 0:
            raise InvalidParameter(f"base_delay_ms must not be negative, got {self.base_delay_ms}")
        for name in ("batch_timeout_s", "point_timeout_s"):
            if getattr(self, name) <= 0:
                raise InvalidParameter(f"{name} must be positive, got {getattr(self, name)}")

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt``."""
        return self.base_delay_ms * attempt / 1000

    def timeout_for(self, is_batch: bool) -> float:
        return self.batch_timeout_s if is_batch else self.point_timeout_s


class FetchMode(str, Enum):
    BATCH = "batch"
    POINT = "point"


class Stage(str, Enum):
    PARSING = "parsing"
    SAMPLING = "sampling"
    FETCHING = "fetching"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressUpdate:
    stage: Stage
    processed: int = 0
    total: int = 0
    message: Optional[str] = None


@dataclass(frozen=True)
class ForecastResult:
    """Forecast points and their weather, aligned by index.

    A ``None`` weather entry means the data was unavailable after retries.
    """

    points: Tuple[ForecastPoint, ...]
    weather: Tuple[Optional[WeatherRecord], ...]

    def __post_init__(self):
        if len(self.points) != len(self.weather):
            raise ValueError(
                f"Result misaligned: {len(self.points)} points, {len(self.weather)} weather entries"
            )

    @property
    def available_count(self) -> int:
        return sum(1 for w in self.weather if w is not None)

    def to_dict(self) -> dict:
        return {
            "points": [p.to_payload() for p in self.points],
            "weather": [w.model_dump(mode="json") if w is not None else None for w in self.weather],
        }
