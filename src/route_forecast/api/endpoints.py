"""API endpoints for the route forecast service."""

import logging
import math
from datetime import datetime, timezone
from functools import lru_cache
from uuid import uuid4
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from route_forecast.config import (
    DEFAULT_AVG_SPEED_KMH, DEFAULT_INTERVAL_KM, FETCH_MODE, PIPELINE_TIMEOUT_SECONDS
)
from route_forecast.errors import (
    Cancelled, EmptyTrack, ForecastError, InvalidCoordinate, InvalidParameter,
    MalformedTrack, PipelineExhausted, ValidationError
)
from route_forecast.pipeline.coordinator import PipelineCoordinator
from route_forecast.pipeline.reporting import LoggingErrorReporter
from route_forecast.track.models import ForecastPoint
from route_forecast.weather.models import WeatherBatchRequest
from route_forecast.weather.service import ServiceWeatherProvider, WeatherService

logger = logging.getLogger(__name__)

weather_router = APIRouter(prefix="/api/weather", tags=["weather"])
forecast_router = APIRouter(prefix="/forecast", tags=["forecast"])

INPUT_ERRORS = (InvalidCoordinate, MalformedTrack, EmptyTrack, InvalidParameter, ValidationError)


async def get_weather_service() -> AsyncIterator[WeatherService]:
    """Dependency providing a weather service for one request."""
    service = WeatherService()
    async with service:
        yield service


@lru_cache(maxsize=1)
def get_coordinator() -> PipelineCoordinator:
    """Dependency providing the shared pipeline coordinator."""
    return PipelineCoordinator(reporter=LoggingErrorReporter(), mode=FETCH_MODE)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@weather_router.post("")
async def post_weather(
    request: Request,
    service: WeatherService = Depends(get_weather_service),
):
    """Get weather for a batch of forecast points.

    Returns:
        Envelope with one record or null per requested point
    """
    try:
        body = WeatherBatchRequest.model_validate(await request.json())
    except (ValueError, PydanticValidationError) as e:
        logger.error(f"Invalid weather batch request: {e}")
        return error_response(
            400,
            "Invalid point data. Each point must have lat, lon, timestamp, and distance as numbers.",
        )

    points = [ForecastPoint.from_payload(**p.model_dump()) for p in body.points]
    data = await service.get_many(points)
    return {"success": True, "data": [r.model_dump(mode="json") if r is not None else None for r in data]}


@weather_router.get("")
async def get_weather(
    lat: Optional[str] = Query(None, description="Latitude in decimal degrees"),
    lon: Optional[str] = Query(None, description="Longitude in decimal degrees"),
    timestamp: Optional[str] = Query(None, description="Unix timestamp in seconds"),
    distance: Optional[str] = Query(None, description="Distance from route start in km"),
    service: WeatherService = Depends(get_weather_service),
):
    """Get weather for a single forecast point."""
    values = [_parse_number(v) for v in (lat, lon, timestamp, distance)]
    if any(v is None for v in values):
        return error_response(
            400,
            "Invalid parameters. lat, lon, timestamp, and distance are required and must be numbers.",
        )

    try:
        point = ForecastPoint.from_payload(*values)
    except InvalidCoordinate as e:
        return error_response(400, str(e))

    record = await service.get_point_weather(point)
    if record is None:
        return error_response(404, "Failed to fetch weather data for the given point.")
    return {"success": True, "data": record.model_dump(mode="json")}


@forecast_router.post("")
async def create_forecast(
    request: Request,
    interval_km: float = Query(DEFAULT_INTERVAL_KM, description="Distance between forecast points in km"),
    avg_speed_kmh: float = Query(DEFAULT_AVG_SPEED_KMH, description="Average speed in km/h"),
    start_time: Optional[datetime] = Query(None, description="Departure time (ISO 8601), defaults to now"),
    route_id: Optional[str] = Query(None, description="Route key; a new run supersedes the active one for the same key"),
    service: WeatherService = Depends(get_weather_service),
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> dict:
    """Run the forecast pipeline for an uploaded track file (request body).

    Returns:
        Forecast points and weather arrays; null weather means unavailable

    Raises:
        HTTPException: If the track or parameters are invalid, or no weather
            could be fetched
    """
    raw_track = await request.body()
    if start_time is None:
        start_time = datetime.now(timezone.utc)
    elif start_time.tzinfo is None:
        start_time = start_time.replace(tzinfo=timezone.utc)
    # Unnamed uploads never supersede each other
    if not route_id:
        route_id = uuid4().hex

    try:
        result = await coordinator.run(
            raw_track,
            interval_km,
            start_time,
            avg_speed_kmh,
            ServiceWeatherProvider(service),
            route_id=route_id,
            timeout=PIPELINE_TIMEOUT_SECONDS,
        )

    except INPUT_ERRORS as e:
        logger.error(f"Rejected forecast request: {e.describe()}")
        raise HTTPException(status_code=400, detail=e.describe())

    except PipelineExhausted as e:
        logger.error(f"Weather unavailable: {e.describe()}")
        raise HTTPException(status_code=502, detail="Weather service temporarily unavailable")

    except Cancelled as e:
        raise HTTPException(status_code=504, detail=e.describe())

    except ForecastError as e:
        logger.error(f"Unexpected pipeline error: {e.describe()}")
        raise HTTPException(status_code=500, detail=e.describe())

    logger.info(f"Returning forecast with {len(result.points)} points")
    return result.to_dict()


@forecast_router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Health status response
    """
    return {"status": "healthy", "service": "route-forecast"}


@forecast_router.get("/info")
async def get_service_info() -> dict:
    """Get service information.

    Returns:
        Service information including pipeline defaults
    """
    return {
        "service": "Route Forecast Service",
        "version": "0.1.0",
        "defaults": {
            "interval_km": DEFAULT_INTERVAL_KM,
            "avg_speed_kmh": DEFAULT_AVG_SPEED_KMH,
            "fetch_mode": FETCH_MODE,
        },
        "track_formats": ["gpx", "json"],
        "data_source": "OpenWeather",
    }


def _parse_number(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None
