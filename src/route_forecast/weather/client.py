"""HTTP client for the route weather API ({success, data} envelope)."""

import logging
from typing import Any, List, Optional, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from route_forecast.config import USER_AGENT, WEATHER_API_URL
from route_forecast.errors import FetchTimeoutError, ProviderError, RateLimited, ValidationError
from route_forecast.track.models import ForecastPoint
from route_forecast.weather.models import WeatherEnvelope, WeatherRecord

logger = logging.getLogger(__name__)


class HttpWeatherProvider:
    """Async weather provider backed by the route weather HTTP API.

    Each call is a single request; retries and deadlines are applied by
    the fetch orchestrator.
    """

    def __init__(
        self,
        base_url: str = WEATHER_API_URL,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = USER_AGENT,
    ):
        """Initialize the provider.

        Args:
            base_url: URL of the weather endpoint
            client: Preconfigured HTTP client (creates default if None)
            user_agent: User-Agent header for API requests
        """
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            timeout=30.0
        )

    async def fetch_batch(self, points: Sequence[ForecastPoint]) -> List[Optional[WeatherRecord]]:
        """Fetch weather for several points in one request.

        Raises:
            ProviderError: On transport errors or non-2xx responses
            FetchTimeoutError: If the transport times out
            ValidationError: If the response body is malformed
        """
        logger.info(f"Fetching weather batch for {len(points)} points")
        envelope = await self._request(
            "POST", self.base_url, json={"points": [p.to_payload() for p in points]}
        )
        if not isinstance(envelope.data, list):
            raise ValidationError(f"Expected a list of records, got {type(envelope.data).__name__}")
        return [decode_record(item) for item in envelope.data]

    async def fetch_point(self, point: ForecastPoint) -> Optional[WeatherRecord]:
        """Fetch weather for a single point; None when the API has no data for it."""
        try:
            envelope = await self._request("GET", self.base_url, params=point.to_payload())
        except ProviderError as e:
            if e.status_code == 404:
                logger.info(f"No weather data for lat={point.lat}, lon={point.lon}")
                return None
            raise
        return decode_record(envelope.data)

    async def _request(self, method: str, url: str, **kwargs) -> WeatherEnvelope:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Weather API request timed out: {e}")
            raise FetchTimeoutError(f"Weather API request timed out: {e}") from e
        except httpx.RequestError as e:
            logger.error(f"Request error to weather API: {e}")
            raise ProviderError(f"Request error: {e}") from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> WeatherEnvelope:
        status = response.status_code
        try:
            envelope = WeatherEnvelope.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            if status >= 400:
                raise ProviderError(f"HTTP {status}", status_code=status) from e
            raise ValidationError(f"Invalid weather API response: {e}") from e

        if status == 429:
            logger.warning(f"Weather API rate limited: {envelope.error}")
            raise RateLimited(envelope.error or "rate limited", status_code=status)
        if status >= 400:
            logger.error(f"HTTP error from weather API: {status} - {envelope.error}")
            raise ProviderError(f"HTTP {status}: {envelope.error}", status_code=status)
        if not envelope.success:
            raise ProviderError(envelope.error or "Unknown error", status_code=status)
        return envelope

    async def aclose(self):
        """Close the async HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()


def decode_record(item: Any) -> Optional[WeatherRecord]:
    """Validate one record from a provider response.

    Raises:
        ValidationError: If the item is neither null nor a valid record
    """
    if item is None or isinstance(item, WeatherRecord):
        return item
    try:
        return WeatherRecord.model_validate(item)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid weather record: {e}") from e
