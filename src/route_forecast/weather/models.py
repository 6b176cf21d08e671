"""Data models for weather records and the weather API envelope."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WeatherRecord(BaseModel):
    """Weather conditions at one forecast point."""
    model_config = ConfigDict(frozen=True)

    temperature_c: float = Field(..., description="Temperature in Celsius")
    feels_like_c: float = Field(..., description="Feels-like temperature in Celsius")
    humidity_pct: float = Field(..., ge=0, le=100, description="Relative humidity percentage")
    pressure_hpa: float = Field(..., description="Atmospheric pressure in hPa")
    wind_speed_ms: float = Field(..., ge=0, description="Wind speed in m/s")
    wind_direction_deg: float = Field(..., ge=0, le=360, description="Wind direction, 0 = North")
    precipitation_mm: float = Field(0.0, ge=0, description="Rain amount in mm")
    snow_mm: float = Field(0.0, ge=0, description="Snow amount in mm")
    uv_index: Optional[float] = Field(None, ge=0, description="UV index")
    icon: str = Field(..., description="Weather icon code")
    description: str = Field(..., description="Weather description text")
    timestamp: datetime = Field(..., description="Time the conditions apply to")


class WeatherPointRequest(BaseModel):
    """Forecast point in wire form."""
    lat: float = Field(..., ge=-90, le=90, description="Latitude in decimal degrees")
    lon: float = Field(..., ge=-180, le=180, description="Longitude in decimal degrees")
    timestamp: int = Field(..., description="Unix timestamp in seconds")
    distance: float = Field(..., ge=0, description="Distance from the start of the route in km")


class WeatherBatchRequest(BaseModel):
    """Batch weather request body."""
    points: List[WeatherPointRequest] = Field(..., min_length=1, description="Forecast points")


class WeatherEnvelope(BaseModel):
    """Response envelope shared by success and error responses."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response model."""
    success: bool = False
    error: str = Field(..., description="Error message")
