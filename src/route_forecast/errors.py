"""Exception hierarchy for the route forecast pipeline."""

from typing import List, Optional


class ForecastError(Exception):
    """Base class for every error raised by the pipeline.

    The coordinator sets ``stage`` to the pipeline stage that failed
    (``parsing``, ``sampling`` or ``fetching``) before re-raising.
    """

    stage: Optional[str] = None

    def describe(self) -> str:
        """Return a human-readable message naming the failed stage."""
        if self.stage:
            return f"{self.stage} failed: {self}"
        return str(self)


class InvalidCoordinate(ForecastError, ValueError):
    """Raised when a latitude/longitude pair is outside the valid range."""

    def __init__(self, lat: float, lon: float):
        self.lat = lat
        self.lon = lon
        super().__init__(f"Invalid coordinates: lat={lat}, lon={lon}")


class MalformedTrack(ForecastError):
    """Raised when track input cannot be decoded."""
    pass


class EmptyTrack(ForecastError):
    """Raised when a track contains no points."""
    pass


class InvalidParameter(ForecastError, ValueError):
    """Raised for a bad sampling interval or average speed."""
    pass


class ValidationError(ForecastError):
    """Raised when a fetch batch or a provider response has the wrong shape."""
    pass


class ProviderError(ForecastError):
    """Raised when the weather provider fails to serve a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimited(ProviderError):
    """Raised when the weather provider answers with HTTP 429."""
    pass


class FetchTimeoutError(ProviderError, TimeoutError):
    """Raised when a provider request exceeds its deadline."""
    pass


class PipelineExhausted(ForecastError):
    """Raised when no forecast point obtained weather data."""

    def __init__(self, message: str, results: Optional[List] = None):
        super().__init__(message)
        self.results = results or []


class Cancelled(ForecastError):
    """Raised when a pipeline run is cancelled, timed out or superseded."""
    pass
