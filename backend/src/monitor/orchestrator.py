from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Sequence

import structlog

from backend.src.contracts.errors import AppError
from backend.src.contracts.interfaces import IErrorTracker, IKeyValueStore, IMetricsSink
from backend.src.contracts.models import BatchConfig, ProcessingResult, UserProcessingResult
from backend.src.contracts.result import Err, Ok, Result
from backend.src.monitor.user_processor import UserProcessor
from backend.src.searches.repository import SAVED_SEARCH_LIST_PREFIX

logger = structlog.get_logger(__name__)

METRIC_PREFIX = "price_monitoring.batch"


def partition(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchOrchestrator:
    """Runs one sweep over every user that owns saved searches.

    Users are split into chunks of ``batch_size`` and each chunk into groups
    of ``max_concurrent`` users processed concurrently; a group fully settles
    before the next one starts. Only one sweep may be in flight: a second
    ``run_batch`` while one is running returns a ``CONFLICT`` error at once.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        user_processor: UserProcessor,
        metrics: IMetricsSink,
        error_tracker: IErrorTracker,
        config: BatchConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._user_processor = user_processor
        self._metrics = metrics
        self._error_tracker = error_tracker
        self._config = config
        self._clock = clock
        self._running = False

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_batch(self) -> Result[ProcessingResult, AppError]:
        if self._running:
            logger.warning("batch_already_running")
            self._metrics.increment_counter(f"{METRIC_PREFIX}.failed", {"reason": "conflict"})
            return Err(AppError.conflict("Batch already in progress"))

        self._running = True
        batch_id = str(uuid.uuid4())
        log = logger.bind(batch_id=batch_id)
        started = self._clock()

        log.info("batch_started")
        self._metrics.increment_counter(f"{METRIC_PREFIX}.started")

        try:
            user_ids = await self.get_active_users()
            log.info("batch_users_found", count=len(user_ids))

            result = ProcessingResult()
            for chunk in partition(user_ids, self._config.batch_size):
                result.merge(await self._process_chunk(chunk, batch_id))

            result.duration_ms = int((self._clock() - started) * 1000)
            log.info(
                "batch_completed",
                processed=result.processed_count,
                alerts=result.alerts_generated,
                errors=len(result.errors),
                duration_ms=result.duration_ms,
            )

            self._metrics.increment_counter(f"{METRIC_PREFIX}.completed")
            self._metrics.record_histogram(f"{METRIC_PREFIX}.duration", result.duration_ms)
            self._metrics.record_histogram(f"{METRIC_PREFIX}.processed", result.processed_count)
            self._metrics.record_histogram(f"{METRIC_PREFIX}.alerts", result.alerts_generated)
            return Ok(result)
        except Exception as exc:  # noqa: BLE001
            log.error("batch_failed", error=str(exc), exc_info=True)
            self._error_tracker.capture_error(exc, batch_id=batch_id)
            self._metrics.increment_counter(f"{METRIC_PREFIX}.failed")
            return Err(AppError.service_error("Batch processing failed"))
        finally:
            self._running = False

    async def get_active_users(self) -> list[str]:
        """User ids owning at least one saved search, de-duplicated and sorted."""
        keys = await self._store.keys(f"{SAVED_SEARCH_LIST_PREFIX}*")
        user_ids = {
            key.removeprefix(SAVED_SEARCH_LIST_PREFIX)
            for key in keys
            if key.startswith(SAVED_SEARCH_LIST_PREFIX)
        }
        user_ids.discard("")
        return sorted(user_ids)

    async def _process_chunk(self, user_ids: list[str], batch_id: str) -> ProcessingResult:
        result = ProcessingResult()

        for group in partition(user_ids, self._config.max_concurrent):
            outcomes = await asyncio.gather(
                *(self._user_processor.process(user_id, batch_id) for user_id in group),
                return_exceptions=True,
            )

            for user_id, outcome in zip(group, outcomes):
                if isinstance(outcome, Ok) and isinstance(outcome.value, UserProcessingResult):
                    result.add_user_result(outcome.value)
                elif isinstance(outcome, Err):
                    result.add_error(user_id, outcome.error.message)
                elif isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error(
                        "user_processing_raised",
                        batch_id=batch_id,
                        user_id=user_id,
                        error=str(outcome),
                    )
                    result.add_error(user_id, str(outcome) or type(outcome).__name__)
                else:
                    result.add_error(user_id, "Unknown error")

        return result
