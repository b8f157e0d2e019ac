import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

from backend.src.config import settings
from backend.src.contracts.models import ProcessingResult, ProcessorStatus
from backend.src.contracts.result import Err
from backend.src.monitoring.error_tracker import CapturedError, ErrorTracker
from backend.src.monitoring.metrics import MetricsService
from backend.src.scheduler.scheduler import PriceMonitorScheduler
from backend.src.store.redis_store import RedisStore

limiter = Limiter(key_func=get_remote_address)

router = APIRouter()


# ── Request / Response schemas ────────────────────────────────────────────────


class StartRequest(BaseModel):
    cron: str | None = None


class ActionResponse(BaseModel):
    message: str
    status: ProcessorStatus


class HealthResponse(BaseModel):
    status: str
    redis: str
    scheduler: str


# ── Dependencies ──────────────────────────────────────────────────────────────


def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    if x_admin_token is None or not secrets.compare_digest(
        x_admin_token, settings.admin_api_token
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )


def get_scheduler(request: Request) -> PriceMonitorScheduler:
    return request.app.state.price_monitor


def get_metrics(request: Request) -> MetricsService:
    return request.app.state.metrics


def get_error_tracker(request: Request) -> ErrorTracker:
    return request.app.state.error_tracker


# ── Price monitor admin routes ────────────────────────────────────────────────


@router.get("/admin/price-monitor/status", dependencies=[Depends(require_admin)])
async def get_price_monitor_status(
    scheduler: PriceMonitorScheduler = Depends(get_scheduler),
) -> ProcessorStatus:
    return scheduler.get_status()


@router.post("/admin/price-monitor/start", dependencies=[Depends(require_admin)])
async def start_price_monitor(
    body: StartRequest | None = None,
    scheduler: PriceMonitorScheduler = Depends(get_scheduler),
) -> ActionResponse:
    cron = body.cron if body is not None and body.cron else settings.price_monitor_cron
    try:
        started = scheduler.start(cron)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid cron expression: {exc}",
        ) from exc

    message = "Price monitor started" if started else "Price monitor already running"
    return ActionResponse(message=message, status=scheduler.get_status())


@router.post("/admin/price-monitor/stop", dependencies=[Depends(require_admin)])
async def stop_price_monitor(
    scheduler: PriceMonitorScheduler = Depends(get_scheduler),
) -> ActionResponse:
    stopped = scheduler.stop()
    message = "Price monitor stopped" if stopped else "Price monitor was not running"
    return ActionResponse(message=message, status=scheduler.get_status())


@router.post("/admin/price-monitor/run-now", dependencies=[Depends(require_admin)])
@limiter.limit("5/minute")
async def run_price_monitor_now(
    request: Request,
    scheduler: PriceMonitorScheduler = Depends(get_scheduler),
) -> ProcessingResult:
    result = await scheduler.process_now()
    if isinstance(result, Err):
        raise HTTPException(
            status_code=result.error.status_code,
            detail={"code": result.error.code.value, "message": result.error.message},
        )
    return result.value


@router.get(
    "/admin/price-monitor/metrics",
    dependencies=[Depends(require_admin)],
    response_class=PlainTextResponse,
)
async def get_price_monitor_metrics(
    metrics: MetricsService = Depends(get_metrics),
) -> str:
    return metrics.export_prometheus()


@router.get("/admin/price-monitor/errors", dependencies=[Depends(require_admin)])
async def get_recent_errors(
    tracker: ErrorTracker = Depends(get_error_tracker),
) -> list[CapturedError]:
    return tracker.recent_errors()


# ── Health ────────────────────────────────────────────────────────────────────


@router.get("/health")
async def health_check(request: Request) -> HealthResponse:
    redis_status = "ok"
    store: RedisStore = request.app.state.store
    try:
        await store.ping()
    except Exception:
        redis_status = "error"

    scheduler: PriceMonitorScheduler = request.app.state.price_monitor
    scheduler_status = "scheduled" if scheduler.is_scheduled else "stopped"

    return HealthResponse(
        status="ok" if redis_status == "ok" else "degraded",
        redis=redis_status,
        scheduler=scheduler_status,
    )
