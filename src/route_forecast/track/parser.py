"""Track file parsing into a distance-annotated point sequence."""

import json
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple, Union

from lxml import etree
from pydantic import AliasChoices, BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from route_forecast.config import MAX_TRACK_BYTES
from route_forecast.errors import EmptyTrack, MalformedTrack
from route_forecast.track.geomath import distance_km
from route_forecast.track.models import Coordinate, Track, TrackPoint

logger = logging.getLogger(__name__)

DEFAULT_TRACK_NAME = "Unnamed Route"
POINT_TAGS = ("trkpt", "rtept")

_timestamp_adapter = TypeAdapter(datetime)


class RawPoint(BaseModel):
    """One point of a JSON track document, before distance annotation."""
    lat: float
    lon: float
    elevation: Optional[float] = Field(None, validation_alias=AliasChoices("elevation", "ele"))
    time: Optional[datetime] = Field(None, validation_alias=AliasChoices("time", "timestamp"))


class TrackDocument(BaseModel):
    """JSON track document: an optional name and an ordered point list."""
    name: Optional[str] = None
    points: List[RawPoint]


class TrackParser:
    """Parses GPX or JSON track input into a Track."""

    def __init__(self, max_bytes: int = MAX_TRACK_BYTES):
        """Initialize the parser.

        Args:
            max_bytes: Largest accepted input size in bytes
        """
        self.max_bytes = max_bytes

    def parse(self, raw: Union[bytes, str]) -> Track:
        """Parse raw track input.

        Args:
            raw: GPX XML or JSON document, as bytes or text

        Returns:
            Track with cumulative distances and elevation aggregates

        Raises:
            MalformedTrack: If the input cannot be decoded
            EmptyTrack: If the input contains no points
            InvalidCoordinate: If any point is out of range
        """
        data = raw.encode("utf-8") if isinstance(raw, str) else raw
        if len(data) > self.max_bytes:
            raise MalformedTrack(f"Track file too large: {len(data)} bytes (limit {self.max_bytes})")

        head = data.lstrip()[:1]
        if head == b"<":
            name, points = self._parse_gpx(data)
        elif head in (b"{", b"["):
            name, points = self._parse_json(data)
        elif not head:
            raise MalformedTrack("Track file content is empty")
        else:
            raise MalformedTrack("Unrecognized track format, expected GPX or JSON")

        track = build_track(name, points)
        logger.info(
            f"Parsed track '{track.name}': {len(track.points)} points, "
            f"{track.total_distance_km:.2f} km, +{track.elevation_gain_m:.0f} m / -{track.elevation_loss_m:.0f} m"
        )
        return track

    def _parse_gpx(self, data: bytes) -> Tuple[str, List[RawPoint]]:
        parser = etree.XMLParser(resolve_entities=False, no_network=True)
        try:
            root = etree.fromstring(data, parser=parser)
        except etree.XMLSyntaxError as e:
            raise MalformedTrack(f"Invalid XML format: {e}") from e

        if etree.QName(root).localname != "gpx":
            raise MalformedTrack("Root element is not <gpx>")

        name = None
        points = []
        for elem in root.iter(etree.Element):
            local = etree.QName(elem).localname
            if local == "name" and name is None and elem.text and elem.text.strip():
                name = elem.text.strip()
            elif local in POINT_TAGS:
                points.append(self._gpx_point(elem))

        return name or DEFAULT_TRACK_NAME, points

    def _gpx_point(self, elem) -> RawPoint:
        lat = elem.get("lat")
        lon = elem.get("lon")
        if lat is None or lon is None:
            raise MalformedTrack(f"Point on line {elem.sourceline} is missing lat/lon")

        elevation = None
        timestamp = None
        for child in elem.iterchildren(etree.Element):
            local = etree.QName(child).localname
            if local == "ele" and child.text:
                elevation = _parse_float(child.text, "elevation", elem.sourceline)
            elif local == "time" and child.text:
                timestamp = _parse_timestamp(child.text.strip(), elem.sourceline)

        return RawPoint(
            lat=_parse_float(lat, "latitude", elem.sourceline),
            lon=_parse_float(lon, "longitude", elem.sourceline),
            elevation=elevation,
            time=timestamp,
        )

    def _parse_json(self, data: bytes) -> Tuple[str, List[RawPoint]]:
        try:
            payload = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedTrack(f"Invalid JSON format: {e}") from e

        if isinstance(payload, list):
            payload = {"points": payload}

        try:
            document = TrackDocument.model_validate(payload)
        except PydanticValidationError as e:
            raise MalformedTrack(f"Invalid track document: {e}") from e

        return document.name or DEFAULT_TRACK_NAME, document.points


def build_track(name: str, raw_points: Iterable[RawPoint]) -> Track:
    """Annotate raw points with cumulative distance and compute aggregates.

    Raises:
        EmptyTrack: If there are no points
        InvalidCoordinate: If any point is out of range
    """
    points: List[TrackPoint] = []
    total = 0.0
    gain = loss = 0.0
    min_ele: Optional[float] = None
    max_ele: Optional[float] = None
    prev_ele: Optional[float] = None

    for raw in raw_points:
        coord = Coordinate(raw.lat, raw.lon)
        if points:
            total += distance_km(points[-1].coord, coord)

        ele = raw.elevation
        if ele is not None:
            if prev_ele is not None:
                delta = ele - prev_ele
                if delta > 0:
                    gain += delta
                else:
                    loss += -delta
            min_ele = ele if min_ele is None else min(min_ele, ele)
            max_ele = ele if max_ele is None else max(max_ele, ele)
            prev_ele = ele

        points.append(TrackPoint(
            coord=coord,
            cumulative_distance_km=total,
            elevation=ele,
            timestamp=_as_utc(raw.time),
        ))

    if not points:
        raise EmptyTrack("No track points found in track file")

    return Track(
        name=name,
        points=tuple(points),
        total_distance_km=total,
        elevation_gain_m=gain,
        elevation_loss_m=loss,
        min_elevation_m=min_ele if min_ele is not None else 0.0,
        max_elevation_m=max_ele if max_ele is not None else 0.0,
    )


def parse_track(raw: Union[bytes, str]) -> Track:
    """Parse a track with the default parser settings."""
    return TrackParser().parse(raw)


def _parse_float(text: str, field: str, line: Optional[int]) -> float:
    try:
        return float(text.strip())
    except ValueError as e:
        raise MalformedTrack(f"Invalid {field} '{text}' on line {line}") from e


def _parse_timestamp(text: str, line: Optional[int]) -> datetime:
    try:
        return _timestamp_adapter.validate_python(text)
    except PydanticValidationError as e:
        raise MalformedTrack(f"Invalid timestamp '{text}' on line {line}") from e


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps in track files are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
