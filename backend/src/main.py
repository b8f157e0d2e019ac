from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
from dataclasses import dataclass

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from backend.src.api.routes import limiter, router
from backend.src.config import Settings, settings
from backend.src.contracts.interfaces import IKeyValueStore
from backend.src.contracts.models import BatchConfig
from backend.src.monitor.alerts import AlertGenerator
from backend.src.monitor.cooldown import CooldownGate
from backend.src.monitor.orchestrator import BatchOrchestrator
from backend.src.monitor.user_processor import UserProcessor
from backend.src.monitoring.error_tracker import ErrorTracker
from backend.src.monitoring.metrics import MetricsService
from backend.src.notifier.dispatcher import AlertDispatcher
from backend.src.notifier.email_notifier import EmailNotifier
from backend.src.preferences.service import UserPreferencesService
from backend.src.scheduler.scheduler import PriceMonitorScheduler
from backend.src.searches.flight_provider import HttpFlightProvider
from backend.src.searches.price_checker import PriceCheckService
from backend.src.searches.repository import SavedSearchRepository
from backend.src.store.redis_store import RedisStore
from backend.src.users.repository import UserRepository

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        structlog.get_config().get("min_level", 0),
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


@dataclass
class PriceMonitor:
    scheduler: PriceMonitorScheduler
    orchestrator: BatchOrchestrator
    metrics: MetricsService
    error_tracker: ErrorTracker
    flight_provider: HttpFlightProvider


def build_price_monitor(app_settings: Settings, store: IKeyValueStore) -> PriceMonitor:
    """Wire the price-monitoring components once per process."""
    config = BatchConfig.from_settings(app_settings)
    metrics = MetricsService()
    error_tracker = ErrorTracker()

    repository = SavedSearchRepository(store)
    flight_provider = HttpFlightProvider(app_settings)
    price_checker = PriceCheckService(repository, flight_provider)
    preferences = UserPreferencesService(store)

    dispatcher = AlertDispatcher(
        transport=EmailNotifier(app_settings),
        users=UserRepository(store, app_settings),
        frontend_url=app_settings.frontend_url,
    )
    user_processor = UserProcessor(
        searches=price_checker,
        preferences=preferences,
        cooldown_gate=CooldownGate(store, config.alert_cooldown_hours),
        alert_generator=AlertGenerator(
            dispatcher,
            metrics,
            email_notifications_enabled=app_settings.feature_email_notifications,
        ),
        config=config,
    )
    orchestrator = BatchOrchestrator(
        store=store,
        user_processor=user_processor,
        metrics=metrics,
        error_tracker=error_tracker,
        config=config,
    )
    scheduler = PriceMonitorScheduler(orchestrator, timezone=app_settings.price_monitor_timezone)

    return PriceMonitor(
        scheduler=scheduler,
        orchestrator=orchestrator,
        metrics=metrics,
        error_tracker=error_tracker,
        flight_provider=flight_provider,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    logger.info("starting_up", cors_origins=settings.cors_origin_list)

    store = RedisStore.from_url(settings.redis_url)
    monitor = build_price_monitor(settings, store)

    app.state.store = store
    app.state.price_monitor = monitor.scheduler
    app.state.metrics = monitor.metrics
    app.state.error_tracker = monitor.error_tracker

    if settings.price_monitor_autostart:
        monitor.scheduler.start(settings.price_monitor_cron)
        logger.info("scheduler_started")

    yield

    # Shutdown
    monitor.scheduler.shutdown()
    logger.info("scheduler_stopped")

    await monitor.flight_provider.close()
    await store.close()
    logger.info("shutdown_complete")


app = FastAPI(
    title="Flight Price Monitor API",
    description="Saved-search price monitoring and alert dispatch",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
