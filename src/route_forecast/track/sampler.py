"""Sampling of forecast points at fixed distance intervals along a track."""

import logging
import math
from bisect import bisect_left
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from route_forecast.config import DEFAULT_AVG_SPEED_KMH, DEFAULT_INTERVAL_KM
from route_forecast.errors import EmptyTrack, InvalidParameter
from route_forecast.track.geomath import interpolate_great_circle, interpolate_linear
from route_forecast.track.models import Coordinate, ForecastPoint, Track

logger = logging.getLogger(__name__)

# (before, after, ratio) -> (lat, lon)
Interpolator = Callable[[Coordinate, Coordinate, float], Tuple[float, float]]

INTERPOLATORS = {
    "linear": interpolate_linear,
    "great_circle": interpolate_great_circle,
}


class ForecastSampler:
    """Walks a track and emits forecast points every ``interval_km``."""

    def __init__(self, interpolator: Interpolator = interpolate_linear):
        """Initialize the sampler.

        Args:
            interpolator: Strategy used to place a sample inside a segment
        """
        self.interpolator = interpolator

    def sample(
        self,
        track: Track,
        interval_km: float = DEFAULT_INTERVAL_KM,
        start_time: Optional[datetime] = None,
        avg_speed_kmh: float = DEFAULT_AVG_SPEED_KMH,
    ) -> List[ForecastPoint]:
        """Sample forecast points along a track.

        Args:
            track: Parsed track
            interval_km: Distance between samples in kilometers
            start_time: Departure time at the first point
            avg_speed_kmh: Constant average speed used to estimate arrival times

        Returns:
            Forecast points with strictly increasing distance, starting at 0
            and ending at the track's total distance

        Raises:
            InvalidParameter: If interval or speed is not a positive number
            EmptyTrack: If the track has no points
        """
        _require_positive("interval_km", interval_km)
        _require_positive("avg_speed_kmh", avg_speed_kmh)
        if start_time is None:
            raise InvalidParameter("start_time is required")
        if not track.points:
            raise EmptyTrack("Cannot sample a track without points")

        points = track.points
        distances = [p.cumulative_distance_km for p in points]
        total = track.total_distance_km

        samples = [ForecastPoint(
            coord=points[0].coord,
            distance_km=0.0,
            timestamp=start_time,
            source_index=0,
        )]

        k = 1
        d = interval_km
        while d < total:
            before_index = _bracket(distances, d)
            before = points[before_index]
            after = points[before_index + 1]
            span = after.cumulative_distance_km - before.cumulative_distance_km
            if span > 0:
                ratio = (d - before.cumulative_distance_km) / span
                lat, lon = self.interpolator(before.coord, after.coord, ratio)
                samples.append(ForecastPoint(
                    coord=Coordinate(lat, lon),
                    distance_km=d,
                    timestamp=_arrival(start_time, d, avg_speed_kmh),
                    source_index=before_index,
                ))
            k += 1
            # Exact multiples of the interval, no accumulated error
            d = k * interval_km

        if samples[-1].distance_km != total:
            samples.append(ForecastPoint(
                coord=points[-1].coord,
                distance_km=total,
                timestamp=_arrival(start_time, total, avg_speed_kmh),
                source_index=len(points) - 1,
            ))

        logger.info(f"Sampled {len(samples)} forecast points every {interval_km} km over {total:.2f} km")
        return samples


def sample_track(
    track: Track,
    interval_km: float,
    start_time: datetime,
    avg_speed_kmh: float,
    interpolation: str = "linear",
) -> List[ForecastPoint]:
    """Sample a track using a named interpolation strategy."""
    try:
        interpolator = INTERPOLATORS[interpolation]
    except KeyError:
        raise InvalidParameter(f"Unknown interpolation '{interpolation}'")
    return ForecastSampler(interpolator).sample(track, interval_km, start_time, avg_speed_kmh)


def _bracket(distances: Sequence[float], d: float) -> int:
    """Index ``i`` such that distances[i] <= d <= distances[i + 1].

    Callers guarantee 0 < d < distances[-1].
    """
    i = bisect_left(distances, d)
    return max(i - 1, 0)


def _arrival(start_time: datetime, distance: float, speed_kmh: float) -> datetime:
    return start_time + timedelta(hours=distance / speed_kmh)


def _require_positive(name: str, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise InvalidParameter(f"{name} must be a positive number, got {value!r}")
