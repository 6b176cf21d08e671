from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from route_forecast.track.models import Coordinate, ForecastPoint
from route_forecast.weather.models import WeatherRecord


T0 = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

THREE_POINT_GPX = """<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1">
  <metadata><name>Morning Ride</name></metadata>
  <trk>
    <trkseg>
      <trkpt lat="0" lon="0"><ele>100</ele><time>2024-05-01T08:00:00Z</time></trkpt>
      <trkpt lat="0" lon="0.01"><ele>110</ele></trkpt>
      <trkpt lat="0" lon="0.02"><ele>105</ele></trkpt>
    </trkseg>
  </trk>
</gpx>
"""


def make_record(timestamp: datetime = T0, temperature: float = 12.5) -> WeatherRecord:
    return WeatherRecord(
        temperature_c=temperature,
        feels_like_c=temperature - 1,
        humidity_pct=60,
        pressure_hpa=1013,
        wind_speed_ms=3.2,
        wind_direction_deg=180,
        precipitation_mm=0.0,
        snow_mm=0.0,
        uv_index=3,
        icon="01d",
        description="clear sky",
        timestamp=timestamp,
    )


def make_points(count: int) -> list[ForecastPoint]:
    return [
        ForecastPoint(
            coord=Coordinate(45.0, 7.0 + i * 0.01),
            distance_km=float(i),
            timestamp=T0 + timedelta(minutes=3 * i),
            source_index=i,
        )
        for i in range(count)
    ]


class Sleeper:
    """Backoff sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingReporter:
    def __init__(self) -> None:
        self.reports: list[tuple[BaseException, dict]] = []

    def report(self, error: BaseException, context: dict) -> None:
        self.reports.append((error, context))


class FakeRedis:
    """In-memory stand-in for the async Redis client."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expiries: dict[str, int] = {}

    async def get(self, key: str):
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None):
        self.store[key] = value
        self.expiries[key] = ex
        return True

    async def close(self) -> None:
        pass


@pytest.fixture
def three_point_gpx() -> str:
    return THREE_POINT_GPX


@pytest.fixture
def sleeper() -> Sleeper:
    return Sleeper()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
