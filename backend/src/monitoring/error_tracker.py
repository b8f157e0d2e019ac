from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel

from backend.src.contracts.models import utcnow

logger = structlog.get_logger(__name__)

_MAX_RECENT_ERRORS = 100


class CapturedError(BaseModel):
    error_type: str
    message: str
    context: dict[str, Any]
    captured_at: datetime


class ErrorTracker:
    """IErrorTracker that logs with the traceback and keeps the most recent errors."""

    def __init__(self, now: Callable[[], datetime] = utcnow) -> None:
        self._now = now
        self._lock = threading.Lock()
        self._recent: deque[CapturedError] = deque(maxlen=_MAX_RECENT_ERRORS)

    def capture_error(self, error: BaseException, **context: Any) -> None:
        captured = CapturedError(
            error_type=type(error).__name__,
            message=str(error),
            context=context,
            captured_at=self._now(),
        )
        with self._lock:
            self._recent.append(captured)
        logger.error(
            "error_captured",
            error_type=captured.error_type,
            error=captured.message,
            exc_info=error,
            **context,
        )

    def recent_errors(self) -> list[CapturedError]:
        with self._lock:
            return list(self._recent)
