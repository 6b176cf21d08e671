"""Configuration settings for the route forecast service."""

import os
from typing import Final
from dotenv import load_dotenv

load_dotenv()

# Upstream weather API (OpenWeather)
OPENWEATHER_API_KEY: str = os.getenv("OPENWEATHER_API_KEY", "")
OPENWEATHER_BASE_URL: Final[str] = "https://api.openweathermap.org/data/2.5"
USER_AGENT: Final[str] = "RouteForecastService/0.1 (user@example.com)"
CURRENT_WEATHER_WINDOW_HOURS: int = int(os.getenv("CURRENT_WEATHER_WINDOW_HOURS", "3"))

# Weather provider consumed by the pipeline ({success, data} envelope API)
WEATHER_API_URL: str = os.getenv("WEATHER_API_URL", "http://localhost:8000/api/weather")

# Server configuration
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

# Redis weather cache configuration
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
CACHE_EXPIRE_SECONDS: int = int(os.getenv("CACHE_EXPIRE_SECONDS", "3600"))  # 1 hour default
CACHE_PREFIX: str = os.getenv("CACHE_PREFIX", "route-forecast")

# Backend upstream batching (points served concurrently per group)
SERVICE_GROUP_SIZE: int = int(os.getenv("SERVICE_GROUP_SIZE", "5"))
SERVICE_GROUP_DELAY_SECONDS: float = float(os.getenv("SERVICE_GROUP_DELAY_SECONDS", "0.2"))

# Fetch retry policy
FETCH_MAX_RETRIES: int = int(os.getenv("FETCH_MAX_RETRIES", "3"))
FETCH_BASE_DELAY_MS: int = int(os.getenv("FETCH_BASE_DELAY_MS", "1000"))
BATCH_TIMEOUT_SECONDS: float = float(os.getenv("BATCH_TIMEOUT_SECONDS", "15"))
POINT_TIMEOUT_SECONDS: float = float(os.getenv("POINT_TIMEOUT_SECONDS", "10"))

# Fetch fan-out
FETCH_MODE: str = os.getenv("FETCH_MODE", "batch")  # "batch" or "point"
FETCH_MAX_WORKERS: int = int(os.getenv("FETCH_MAX_WORKERS", "8"))
FETCH_BATCH_SIZE: int = int(os.getenv("FETCH_BATCH_SIZE", "0"))  # 0 sends every point in one batch

# Pipeline defaults
DEFAULT_INTERVAL_KM: float = float(os.getenv("DEFAULT_INTERVAL_KM", "5"))
DEFAULT_AVG_SPEED_KMH: float = float(os.getenv("DEFAULT_AVG_SPEED_KMH", "20"))
PIPELINE_TIMEOUT_SECONDS: float = float(os.getenv("PIPELINE_TIMEOUT_SECONDS", "120"))
MAX_TRACK_BYTES: int = int(os.getenv("MAX_TRACK_BYTES", str(5 * 1024 * 1024)))  # 5MB
