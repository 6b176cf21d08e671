"""HTTP client for the OpenWeather current-weather and 3-hour forecast APIs."""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from route_forecast.config import (
    CURRENT_WEATHER_WINDOW_HOURS, OPENWEATHER_API_KEY, OPENWEATHER_BASE_URL, USER_AGENT
)
from route_forecast.errors import FetchTimeoutError, ProviderError, RateLimited, ValidationError
from route_forecast.track.geomath import validate_coordinate
from route_forecast.weather.models import WeatherRecord

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    401: "API authentication failed, check the OpenWeather API key",
    404: "Weather data not found for this location",
    429: "API rate limit exceeded",
}


class OpenWeatherClient:
    """Async client for fetching point weather from OpenWeather."""

    def __init__(
        self,
        api_key: str = OPENWEATHER_API_KEY,
        base_url: str = OPENWEATHER_BASE_URL,
        user_agent: str = USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the weather client.

        Args:
            api_key: OpenWeather API key
            base_url: Base URL for the OpenWeather 2.5 API
            user_agent: User-Agent header for API requests
            client: Preconfigured HTTP client (creates default if None)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            timeout=5.0
        )

    async def get_point_weather(
        self,
        lat: float,
        lon: float,
        timestamp: datetime,
        now: Optional[datetime] = None,
    ) -> WeatherRecord:
        """Fetch weather at a location for the given time.

        Times within CURRENT_WEATHER_WINDOW_HOURS of now use current
        conditions; later times use the forecast entry closest to ``timestamp``.

        Raises:
            InvalidCoordinate: If coordinates are invalid
            ProviderError: If the API request fails
            ValidationError: If the response format is unexpected
        """
        validate_coordinate(lat, lon)

        now = now or datetime.now(timezone.utc)
        is_current = abs(timestamp - now) < timedelta(hours=CURRENT_WEATHER_WINDOW_HOURS)
        endpoint = "weather" if is_current else "forecast"
        params = {"lat": lat, "lon": lon, "units": "metric", "appid": self.api_key}

        logger.info(f"Fetching {endpoint} for lat={lat:.4f}, lon={lon:.4f}")

        try:
            response = await self.client.get(f"{self.base_url}/{endpoint}", params=params)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(f"OpenWeather request timed out: {e}") from e
        except httpx.RequestError as e:
            logger.error(f"Request error to OpenWeather API: {e}")
            raise ProviderError(f"Request error: {e}") from e

        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as e:
            raise ValidationError(f"OpenWeather returned invalid JSON: {e}") from e

        if is_current:
            return parse_current(data)
        return parse_forecast(data, timestamp)

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        logger.error(f"HTTP error from OpenWeather API: {status} - {response.text}")
        message = STATUS_MESSAGES.get(status)
        if message is None and status >= 500:
            message = "Weather service is currently unavailable"
        message = message or f"OpenWeather API error: {status}"
        if status == 429:
            raise RateLimited(message, status_code=status)
        raise ProviderError(message, status_code=status)

    async def aclose(self):
        """Close the async HTTP client."""
        await self.client.aclose()


class MockWeatherClient:
    """Deterministic stand-in used when no OpenWeather API key is configured."""

    CONDITIONS = (
        ("01d", "clear sky"),
        ("02d", "few clouds"),
        ("03d", "scattered clouds"),
        ("04d", "broken clouds"),
        ("09d", "shower rain"),
        ("10d", "rain"),
        ("11d", "thunderstorm"),
        ("13d", "snow"),
        ("50d", "mist"),
    )

    async def get_point_weather(
        self,
        lat: float,
        lon: float,
        timestamp: datetime,
        now: Optional[datetime] = None,
    ) -> WeatherRecord:
        validate_coordinate(lat, lon)
        seed = (lat * 10 + lon * 5 + timestamp.timestamp() / 3600) % 100
        index = int(seed % len(self.CONDITIONS))
        icon, description = self.CONDITIONS[index]
        temp = 15 + math.sin(seed) * 15
        rain = (index - 3) * 2 if 4 <= index <= 6 else 0

        return WeatherRecord(
            temperature_c=round(temp, 1),
            feels_like_c=round(temp - 1.5, 1),
            humidity_pct=math.floor(40 + seed % 60),
            pressure_hpa=math.floor(980 + seed % 40),
            wind_speed_ms=round(2 + seed % 8, 1),
            wind_direction_deg=math.floor(seed * 3.6) % 360,
            precipitation_mm=rain,
            snow_mm=2.0 if description == "snow" else 0.0,
            uv_index=math.floor(seed % 11),
            icon=icon,
            description=description,
            timestamp=timestamp,
        )

    async def aclose(self):
        pass


def parse_current(data: Dict[str, Any]) -> WeatherRecord:
    """Map an OpenWeather current-weather response to a WeatherRecord."""
    return _to_record(data, bucket="1h")


def parse_forecast(data: Dict[str, Any], timestamp: datetime) -> WeatherRecord:
    """Pick the forecast entry closest to ``timestamp`` and map it."""
    entries: List[Dict[str, Any]] = data.get("list") if isinstance(data, dict) else None
    if not entries:
        raise ValidationError("No forecast entries in OpenWeather response")

    target = timestamp.timestamp()
    try:
        closest = min(entries, key=lambda entry: abs(entry["dt"] - target))
    except (KeyError, TypeError) as e:
        raise ValidationError(f"Invalid forecast entry: {e}") from e
    return _to_record(closest, bucket="3h")


def _to_record(entry: Dict[str, Any], bucket: str) -> WeatherRecord:
    try:
        main = entry["main"]
        wind = entry.get("wind", {})
        condition = entry["weather"][0]
        return WeatherRecord(
            temperature_c=main["temp"],
            feels_like_c=main["feels_like"],
            humidity_pct=main["humidity"],
            pressure_hpa=main["pressure"],
            wind_speed_ms=wind.get("speed", 0.0),
            wind_direction_deg=wind.get("deg", 0.0),
            precipitation_mm=(entry.get("rain") or {}).get(bucket, 0.0),
            snow_mm=(entry.get("snow") or {}).get(bucket, 0.0),
            icon=condition["icon"],
            description=condition["description"],
            timestamp=datetime.fromtimestamp(entry["dt"], tz=timezone.utc),
        )
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise ValidationError(f"Unexpected OpenWeather response format: {e}") from e


def uses_mock_weather(api_key: str = OPENWEATHER_API_KEY) -> bool:
    """True when no usable OpenWeather API key is configured."""
    return not api_key or api_key == "placeholder_key"


def default_weather_client():
    """OpenWeather client when an API key is configured, mock data otherwise."""
    if uses_mock_weather():
        logger.warning("Using mock weather data because no valid OpenWeather API key was provided")
        return MockWeatherClient()
    return OpenWeatherClient()
