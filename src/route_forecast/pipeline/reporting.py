"""Error reporting and progress capabilities injected into the pipeline."""

import logging
from typing import Any, Dict, Optional, Protocol

from route_forecast.pipeline.models import ProgressUpdate

logger = logging.getLogger(__name__)


class ErrorReporter(Protocol):
    """Receives fetch failures for diagnosis of provider outages."""

    def report(self, error: BaseException, context: Dict[str, Any]) -> None:
        ...


class ProgressSink(Protocol):
    """Receives stage and progress updates from the coordinator."""

    def __call__(self, update: ProgressUpdate) -> None:
        ...


class LoggingErrorReporter:
    """Error reporter that writes failures to the application log."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logging.getLogger("route_forecast.errors")

    def report(self, error: BaseException, context: Dict[str, Any]) -> None:
        self._log.warning(f"{type(error).__name__}: {error} | context={context}")


def safe_report(reporter: Optional[ErrorReporter], error: BaseException, context: Dict[str, Any]) -> None:
    """Forward an error to the reporter without letting it affect the caller."""
    if reporter is None:
        return
    try:
        reporter.report(error, context)
    except Exception as e:
        logger.error(f"Error reporter failed: {e}")
