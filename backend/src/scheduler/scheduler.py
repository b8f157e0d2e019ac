from __future__ import annotations

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from backend.src.contracts.errors import AppError
from backend.src.contracts.models import ProcessingResult, ProcessorStatus
from backend.src.contracts.result import Err, Result
from backend.src.monitor.orchestrator import BatchOrchestrator

logger = structlog.get_logger(__name__)

DEFAULT_CRON = "0 */6 * * *"

_BATCH_JOB_ID = "price_monitor_batch"
_INITIAL_JOB_ID = "price_monitor_initial_run"


class PriceMonitorScheduler:
    """Owns the recurring cron trigger for price-monitoring sweeps.

    Scheduled runs, the catch-up run fired on ``start`` and ``process_now``
    all go through ``BatchOrchestrator.run_batch``, so at most one sweep is
    ever in flight. ``stop`` only cancels future runs.
    """

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        timezone: str = "UTC",
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._timezone = timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self._cron_expression: str | None = None

    @property
    def is_scheduled(self) -> bool:
        return self._scheduler.get_job(_BATCH_JOB_ID) is not None

    def start(self, cron_expression: str = DEFAULT_CRON) -> bool:
        """Register the cron trigger and fire one immediate run.

        Returns ``False`` without changing anything when already scheduled.
        Raises ``ValueError`` for an invalid cron expression.
        """
        if self.is_scheduled:
            logger.warning("price_monitor_already_scheduled", cron=self._cron_expression)
            return False

        trigger = CronTrigger.from_crontab(cron_expression, timezone=self._timezone)

        if not self._scheduler.running:
            self._scheduler.start()

        self._scheduler.add_job(
            self._run_scheduled,
            trigger=trigger,
            id=_BATCH_JOB_ID,
            name="Check saved searches for price changes",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        # No trigger: runs once, as soon as possible
        self._scheduler.add_job(
            self._run_initial,
            id=_INITIAL_JOB_ID,
            name="Initial price check on start",
            replace_existing=True,
        )
        self._cron_expression = cron_expression

        logger.info(
            "price_monitor_scheduled",
            cron=cron_expression,
            timezone=self._timezone,
            config=self._orchestrator.config.model_dump(),
        )
        return True

    def stop(self) -> bool:
        if not self.is_scheduled:
            return False

        self._scheduler.remove_job(_BATCH_JOB_ID)
        if self._scheduler.get_job(_INITIAL_JOB_ID) is not None:
            self._scheduler.remove_job(_INITIAL_JOB_ID)
        self._cron_expression = None
        logger.info("price_monitor_stopped")
        return True

    def shutdown(self) -> None:
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("scheduler_shutdown")

    async def process_now(self) -> Result[ProcessingResult, AppError]:
        """Run a sweep immediately (admin endpoints, tests)."""
        logger.info("manual_batch_triggered")
        return await self._orchestrator.run_batch()

    def get_status(self) -> ProcessorStatus:
        job = self._scheduler.get_job(_BATCH_JOB_ID)
        return ProcessorStatus(
            is_running=job is not None,
            is_processing=self._orchestrator.is_running,
            next_run=getattr(job, "next_run_time", None) if job is not None else None,
            config=self._orchestrator.config,
        )

    async def _run_scheduled(self) -> None:
        result = await self._orchestrator.run_batch()
        if isinstance(result, Err):
            logger.error(
                "scheduled_batch_failed",
                code=result.error.code.value,
                error=result.error.message,
            )

    async def _run_initial(self) -> None:
        try:
            result = await self._orchestrator.run_batch()
        except Exception:
            logger.error("initial_batch_failed", exc_info=True)
            return
        if isinstance(result, Err):
            logger.error(
                "initial_batch_failed",
                code=result.error.code.value,
                error=result.error.message,
            )
