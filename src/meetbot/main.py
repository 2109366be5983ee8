"""FastAPI application factory.

Creates the app with logging and metrics middleware, Sentry, the lifespan
that wires the meeting services onto ``app.state``, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.meetbot.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.meetbot.api.v1.router import router as v1_router
from src.meetbot.config import get_settings
from src.meetbot.core.database import close_db, get_session, init_db
from src.meetbot.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.meetbot.core.redis import close_redis, get_redis_pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire meeting services on startup, drain them on shutdown."""
    from src.meetbot.meetings.catchup import CatchUpService
    from src.meetbot.meetings.configuration import MeetingConfigService, default_configuration
    from src.meetbot.meetings.lifecycle import MeetingLifecycleController
    from src.meetbot.meetings.platform.client import PlatformClient
    from src.meetbot.meetings.repository import ConfigurationRepository
    from src.meetbot.meetings.summaries.access import SummaryAccessPolicy
    from src.meetbot.meetings.summaries.generator import SummaryGenerator
    from src.meetbot.meetings.summaries.orchestrator import SummarizationOrchestrator
    from src.meetbot.meetings.summaries.redis_backend import RedisSummaryBackend
    from src.meetbot.meetings.summaries.store import SummaryStore
    from src.meetbot.meetings.transcription.buffer import TranscriptBuffer
    from src.meetbot.meetings.transcription.factory import TranscriptionStrategyFactory
    from src.meetbot.meetings.transcription.polling import PollingTranscriptionStrategy
    from src.meetbot.meetings.transcription.webhook import WebhookTranscriptionStrategy
    from src.meetbot.services.llm import get_llm_service

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # Configuration persistence is optional: without the database every
    # meeting runs on the defaults from Settings.
    config_repository = None
    try:
        await init_db()
        config_repository = ConfigurationRepository(session_factory=get_session)
        log.info("startup.config_repository_initialized")
    except Exception:
        log.warning("startup.config_repository_unavailable", exc_info=True)

    app.state.config_service = MeetingConfigService(
        repository=config_repository,
        defaults=default_configuration(settings),
    )

    platform_client = PlatformClient(
        base_url=settings.PLATFORM_API_BASE_URL,
        access_token=settings.PLATFORM_ACCESS_TOKEN,
    )
    buffer = TranscriptBuffer()

    summary_store = SummaryStore(
        backend=RedisSummaryBackend(get_redis_pool()),
        access_policy=SummaryAccessPolicy(platform_client),
        default_retention_days=settings.DEFAULT_RETENTION_DAYS,
    )
    app.state.summary_store = summary_store

    strategies = [PollingTranscriptionStrategy(platform_client, buffer)]
    app.state.webhook_strategy = None
    if settings.WEBHOOK_BASE_URL:
        webhook_strategy = WebhookTranscriptionStrategy(
            platform_client,
            buffer,
            notification_base_url=settings.WEBHOOK_BASE_URL,
            client_state=settings.WEBHOOK_CLIENT_STATE,
        )
        strategies.append(webhook_strategy)
        app.state.webhook_strategy = webhook_strategy
    else:
        log.warning("startup.webhook_disabled", hint="WEBHOOK_BASE_URL not configured")

    orchestrator = SummarizationOrchestrator(
        buffer=buffer,
        generator=SummaryGenerator(get_llm_service()),
        store=summary_store,
        platform_client=platform_client,
    )

    app.state.lifecycle_controller = MeetingLifecycleController(
        buffer=buffer,
        strategy_factory=TranscriptionStrategyFactory(strategies),
        orchestrator=orchestrator,
        catch_up=CatchUpService(summary_store, platform_client),
        config_service=app.state.config_service,
        platform_client=platform_client,
    )
    log.info("startup.meeting_services_initialized", strategies=[s.method.value for s in strategies])

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    controller = getattr(app.state, "lifecycle_controller", None)
    if controller is not None:
        try:
            await controller.shutdown()
        except Exception:
            log.warning("shutdown.meeting_teardown_failed", exc_info=True)

    await summary_store.flush_overflow()
    if summary_store.overflow_size:
        log.error("shutdown.unflushed_summaries", count=summary_store.overflow_size)

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Meeting Recap Bot",
        version="0.1.0",
        description="Live meeting transcript capture, periodic summaries and late-joiner catch-up",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
