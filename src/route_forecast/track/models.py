"""Immutable geometry models shared by the parser and the sampler."""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from route_forecast.track.geomath import validate_coordinate


@dataclass(frozen=True)
class Coordinate:
    """Latitude/longitude pair in decimal degrees, validated on construction."""

    lat: float
    lon: float

    def __post_init__(self):
        validate_coordinate(self.lat, self.lon)


@dataclass(frozen=True)
class TrackPoint:
    coord: Coordinate
    cumulative_distance_km: float
    elevation: Optional[float] = None  # meters
    timestamp: Optional[datetime] = None

    @property
    def lat(self) -> float:
        return self.coord.lat

    @property
    def lon(self) -> float:
        return self.coord.lon


@dataclass(frozen=True)
class Track:
    """Parsed route with its distance and elevation aggregates."""

    name: str
    points: Tuple[TrackPoint, ...]
    total_distance_km: float
    elevation_gain_m: float
    elevation_loss_m: float
    min_elevation_m: float
    max_elevation_m: float


@dataclass(frozen=True)
class ForecastPoint:
    """Location and estimated arrival time at which weather is requested.

    ``source_index`` is the index of the track point that starts the
    interpolation segment the sample was taken from.
    """

    coord: Coordinate
    distance_km: float
    timestamp: datetime
    source_index: int = 0

    @property
    def lat(self) -> float:
        return self.coord.lat

    @property
    def lon(self) -> float:
        return self.coord.lon

    def to_payload(self) -> Dict[str, Any]:
        """Wire representation: unix seconds and kilometers."""
        return {
            "lat": self.coord.lat,
            "lon": self.coord.lon,
            "timestamp": math.floor(self.timestamp.timestamp()),
            "distance": self.distance_km,
        }

    @classmethod
    def from_payload(cls, lat: float, lon: float, timestamp: float, distance: float) -> "ForecastPoint":
        return cls(
            coord=Coordinate(lat, lon),
            distance_km=distance,
            timestamp=datetime.fromtimestamp(timestamp, tz=timezone.utc),
        )
