"""HealthSync Collector — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from src.collector.base import (
    MeasurementSource,
    SessionProvider,
    SourceNotAuthorized,
    SourceNotAvailable,
)
from src.collector.config_loader import CollectionConfig, get_collection_config
from src.collector.cycle import CollectionCycle
from src.collector.lease import LoopLeaseProvider
from src.collector.scheduler import CollectionScheduler
from src.collector.session import JsonFileSessionProvider, StaticSessionProvider
from src.collector.sources import AppleHealthExportSource, SensorDaemonSource, get_source
from src.collector.transmit import HttpTransmitter
from src.config import Settings, get_settings
from src.routers import health, lifecycle

# ---------- Logging ----------

logging.basicConfig(
    level="DEBUG" if get_settings().debug else get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("healthsync")


# ---------- Wiring ----------

def build_source(settings: Settings) -> MeasurementSource:
    source_cls = get_source(settings.measurement_source)
    if source_cls is AppleHealthExportSource:
        return AppleHealthExportSource(settings.apple_export_path)
    if source_cls is SensorDaemonSource:
        return SensorDaemonSource(
            base_url=settings.sensor_daemon_url,
            token=settings.sensor_daemon_token or None,
        )
    return source_cls()


def build_session_provider(settings: Settings) -> SessionProvider:
    if settings.session_file:
        return JsonFileSessionProvider(settings.session_file)
    return StaticSessionProvider(settings.session_identity, settings.session_context_id)


def build_scheduler(
    settings: Settings,
    config: CollectionConfig,
    source: MeasurementSource,
) -> CollectionScheduler:
    """Assemble a scheduler whose every trigger runs a fresh CollectionCycle."""
    transmitter = HttpTransmitter(
        base_url=settings.collection_endpoint_url,
        path=settings.transmit_path,
        api_key=settings.collection_api_key,
        timeout=settings.transmit_timeout_seconds,
    )
    sessions = build_session_provider(settings)
    leases = LoopLeaseProvider(budget_seconds=config.lease.budget_seconds)
    metrics = config.metric_sources()

    def cycle_factory() -> CollectionCycle:
        return CollectionCycle(
            source=source,
            transmitter=transmitter,
            sessions=sessions,
            leases=leases,
            metrics=metrics,
            source_kind=settings.source_kind,
        )

    return CollectionScheduler(
        cycle_factory=cycle_factory,
        initial_delay=config.schedule.initial_delay_seconds,
        interval=config.schedule.interval_seconds,
    )


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting HealthSync Collector v%s [%s]",
        settings.app_version,
        settings.environment,
    )

    if getattr(app.state, "scheduler", None) is None:
        config = get_collection_config()
        source = build_source(settings)
        app.state.scheduler = build_scheduler(settings, config, source)

        try:
            await source.authorize(config.scopes())
        except (SourceNotAvailable, SourceNotAuthorized) as exc:
            logger.error("Authorization failed, collection will not start: %s", exc)
        else:
            logger.info("%s authorized for %d metrics", source.DISPLAY_NAME, len(config.scopes()))
            if settings.autostart_scheduler:
                app.state.scheduler.start()

    yield

    app.state.scheduler.stop()
    await app.state.scheduler.wait_for_cycle()
    logger.info("HealthSync Collector shut down")


# ---------- App factory ----------

def create_app(scheduler: CollectionScheduler | None = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        scheduler: Pre-built scheduler (for testing).  When omitted the
                   lifespan builds one from settings and the collection config.
    """
    settings = get_settings()

    app = FastAPI(
        title="HealthSync Collector",
        description=(
            "Background health-measurement collector — periodic, lock-aware "
            "collection of the latest measurements and delivery to a remote endpoint."
        ),
        version=settings.app_version,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.scheduler = scheduler

    # ---------- Health check ----------
    app.include_router(health.router)

    # ---------- Host lifecycle + scheduler control ----------
    app.include_router(lifecycle.router)

    return app


app = create_app()
