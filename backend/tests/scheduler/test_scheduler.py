from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from backend.src.contracts.errors import AppError
from backend.src.contracts.models import BatchConfig, ProcessingResult
from backend.src.contracts.result import Err, Ok
from backend.src.scheduler.scheduler import PriceMonitorScheduler


def _make_orchestrator(result=None) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.config = BatchConfig(batch_size=10, max_concurrent=2)
    orchestrator.is_running = False
    orchestrator.run_batch = AsyncMock(return_value=result or Ok(ProcessingResult()))
    return orchestrator


@pytest.fixture()
def orchestrator() -> MagicMock:
    return _make_orchestrator()


@pytest_asyncio.fixture
async def scheduler(orchestrator: MagicMock) -> AsyncGenerator[PriceMonitorScheduler, None]:
    monitor = PriceMonitorScheduler(orchestrator, timezone="UTC")
    yield monitor
    monitor.shutdown()


# ── start / stop ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_start_schedules_the_cron_job(scheduler: PriceMonitorScheduler) -> None:
    assert scheduler.start("0 */6 * * *") is True

    status = scheduler.get_status()
    assert status.is_running is True
    assert status.is_processing is False
    assert status.next_run is not None
    assert status.next_run.minute == 0
    assert status.next_run.hour % 6 == 0
    assert status.config.batch_size == 10


@pytest.mark.asyncio
async def test_start_is_idempotent(scheduler: PriceMonitorScheduler) -> None:
    assert scheduler.start("0 * * * *") is True
    first_next_run = scheduler.get_status().next_run

    assert scheduler.start("*/5 * * * *") is False
    assert scheduler.get_status().next_run == first_next_run


@pytest.mark.asyncio
async def test_start_fires_one_immediate_run(
    scheduler: PriceMonitorScheduler, orchestrator: MagicMock
) -> None:
    scheduler.start("0 0 1 1 *")

    await asyncio.sleep(0.2)

    orchestrator.run_batch.assert_awaited_once()


@pytest.mark.asyncio
async def test_invalid_cron_raises_and_schedules_nothing(
    scheduler: PriceMonitorScheduler,
) -> None:
    with pytest.raises(ValueError):
        scheduler.start("every tuesday")

    assert scheduler.is_scheduled is False


@pytest.mark.asyncio
async def test_stop_clears_next_run(scheduler: PriceMonitorScheduler) -> None:
    scheduler.start("0 * * * *")

    assert scheduler.stop() is True

    status = scheduler.get_status()
    assert status.is_running is False
    assert status.next_run is None


@pytest.mark.asyncio
async def test_stop_when_not_started(scheduler: PriceMonitorScheduler) -> None:
    assert scheduler.stop() is False


@pytest.mark.asyncio
async def test_restart_after_stop(scheduler: PriceMonitorScheduler) -> None:
    scheduler.start("0 * * * *")
    scheduler.stop()

    assert scheduler.start("30 * * * *") is True
    assert scheduler.get_status().next_run.minute == 30


# ── process_now / status ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_process_now_returns_the_batch_result(
    scheduler: PriceMonitorScheduler, orchestrator: MagicMock
) -> None:
    orchestrator.run_batch.return_value = Ok(ProcessingResult(processed_count=3))

    result = await scheduler.process_now()

    assert result == Ok(ProcessingResult(processed_count=3))


@pytest.mark.asyncio
async def test_process_now_passes_conflict_through(
    scheduler: PriceMonitorScheduler, orchestrator: MagicMock
) -> None:
    orchestrator.run_batch.return_value = Err(AppError.conflict("Batch already in progress"))

    result = await scheduler.process_now()

    assert isinstance(result, Err)
    assert result.error.status_code == 409


@pytest.mark.asyncio
async def test_status_reports_a_sweep_in_flight(
    scheduler: PriceMonitorScheduler, orchestrator: MagicMock
) -> None:
    orchestrator.is_running = True

    status = scheduler.get_status()

    assert status.is_running is False
    assert status.is_processing is True


@pytest.mark.asyncio
async def test_failed_initial_run_is_contained(orchestrator: MagicMock) -> None:
    orchestrator.run_batch.side_effect = RuntimeError("redis down")
    monitor = PriceMonitorScheduler(orchestrator)

    await monitor._run_initial()

    orchestrator.run_batch.assert_awaited_once()
