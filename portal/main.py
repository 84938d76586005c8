import logging
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI

from portal.api.routes import concerns, health
from portal.concerns.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    WebhookNotificationDispatcher,
)
from portal.concerns.repository import ConcernRepository
from portal.concerns.service import ConcernService
from portal.core.config import Settings, get_settings
from portal.core.logging import configure_logging, init_tracer, shutdown_tracer
from portal.services.postgres import PostgresPool


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    if settings.notification_relay_url:
        return WebhookNotificationDispatcher(
            settings.notification_relay_url,
            sender=settings.notification_sender,
            timeout=settings.notification_timeout,
            token=settings.notification_relay_token,
        )
    return LoggingNotificationDispatcher()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    postgres = PostgresPool(
        dsn=settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    app.state.logger = logger
    app.state.postgres = postgres
    app.state.concern_service = None
    try:
        repository = ConcernRepository(await postgres.get_pool())
        await repository.ensure_schema()
        app.state.concern_service = ConcernService(repository, dispatcher=build_dispatcher(settings))
    except (OSError, asyncpg.PostgresError) as exc:
        logger.error("Concern service unavailable, database connection failed: %s", exc)
    try:
        yield
    finally:
        await postgres.close()
        shutdown_tracer(tracer_provider)
        logging.getLogger(__name__).info("Shut down %s", settings.app_name)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(health.router)
    app.include_router(concerns.router)
    return app


app = create_app()
