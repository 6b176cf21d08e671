"""Main FastAPI application for the route forecast service."""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from route_forecast.api.endpoints import forecast_router, weather_router
from route_forecast.config import DEBUG, FETCH_MODE, HOST, PORT, REDIS_URL
from route_forecast.logging_config import configure_logging
from route_forecast.weather.openweather import uses_mock_weather

# Configure logging
configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    try:
        logger.info(f"Weather cache at {REDIS_URL}")
        logger.info(f"Upstream weather: {'mock data' if uses_mock_weather() else 'OpenWeather'}")
        logger.info(f"Starting Route Forecast Service (fetch mode: {FETCH_MODE})")
        yield
    except Exception as e:
        logger.error(f"Startup error: {e}")
        logger.error(traceback.format_exc())
        raise
    finally:
        logger.info("Shutting down Route Forecast Service")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Route Forecast Service",
        description="Per-point weather forecasts along an uploaded GPX or JSON track",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(weather_router)
    app.include_router(forecast_router)

    @app.get("/", tags=["root"])
    async def api_info() -> dict:
        """API information endpoint.

        Returns:
            Basic service information
        """
        return {
            "message": "Route Forecast Service",
            "docs": "/docs",
            "redoc": "/redoc",
            "forecast": "/forecast",
            "weather": "/api/weather",
            "health": "/forecast/health"
        }

    return app


# Create app instance for uvicorn
app = create_app()


def main() -> None:
    """Main entry point for the application."""
    logger.info(f"Starting server on {HOST}:{PORT}")
    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        reload=DEBUG,
        log_level="info" if not DEBUG else "debug"
    )


if __name__ == "__main__":
    main()
