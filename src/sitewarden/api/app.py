"""FastAPI app: target management and run control."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sitewarden.api.routes import router
from sitewarden.engine.orchestrator import Orchestrator
from sitewarden.engine.scheduler import Scheduler
from sitewarden.monitoring.event_bus import EventBus, LoggingSink
from sitewarden.settings import Settings, get_settings
from sitewarden.store import build_automation_store
from sitewarden.store.automation_store import AutomationStore

logger = logging.getLogger(__name__)

try:
    from importlib.metadata import version

    VERSION = version("sitewarden")
except Exception:
    VERSION = "0.0.0"


def create_app(
    *,
    settings: Settings | None = None,
    store: AutomationStore | None = None,
    scheduler: Scheduler | None = None,
    start_scheduler: bool | None = None,
) -> FastAPI:
    """Build and return the FastAPI application.

    Collaborators not passed in are built during startup from *settings*.
    The scheduler starts with the app when ``scheduler.enabled`` is set
    (or *start_scheduler* says so), and on shutdown it is stopped and the
    shared browser closed.
    """
    settings = settings or get_settings()
    autostart = settings.scheduler.enabled if start_scheduler is None else start_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app_store = store or build_automation_store(settings.storage.sqlite_path)
        app_scheduler = scheduler
        if app_scheduler is None:
            events = EventBus()
            events.add_sink(LoggingSink())
            orchestrator = Orchestrator.from_settings(app_store, settings, events=events)
            app_scheduler = Scheduler(app_store, orchestrator, settings=settings.scheduler, events=events)

        app.state.settings = settings
        app.state.store = app_store
        app.state.scheduler = app_scheduler

        if autostart:
            await app_scheduler.start()
        logger.info("SiteWarden API ready (scheduler %s)", "on" if autostart else "off")
        try:
            yield
        finally:
            await app_scheduler.stop()
            await app_scheduler.orchestrator.browser.close()
            logger.info("SiteWarden API shut down")

    application = FastAPI(
        title="SiteWarden",
        description="Scheduled browser automation, crawling and change monitoring.",
        version=VERSION,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application
