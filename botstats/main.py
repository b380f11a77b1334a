"""botstats collector: main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, storage, and API layers.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from botstats.api.events import router as events_router
from botstats.api.monitoring import router as monitoring_router
from botstats.config import AppConfig, load_config
from botstats.core.classifier import HOUR_MS, LivenessWindows
from botstats.core.processor import EventProcessor
from botstats.core.stats import ProcessStats
from botstats.storage.diagnostics import FileDiagnosticLog
from botstats.storage.file_storage import FileDatasetStore
from botstats.storage.registry import FileIdentityRegistry

log = structlog.get_logger()

# Module-level singletons (set during startup)
_processor: EventProcessor | None = None
_process_stats: ProcessStats | None = None
_diagnostics: FileDiagnosticLog | None = None
_config: AppConfig | None = None


def get_processor() -> EventProcessor:
    assert _processor is not None, "Server not initialized"
    return _processor


def get_process_stats() -> ProcessStats:
    assert _process_stats is not None, "Server not initialized"
    return _process_stats


def get_diagnostics() -> FileDiagnosticLog:
    assert _diagnostics is not None, "Server not initialized"
    return _diagnostics


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not config.logging.file))

    logger_factory = structlog.PrintLoggerFactory()
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger_factory = structlog.WriteLoggerFactory(file=log_path.open("a", encoding="utf-8"))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
        logger_factory=logger_factory,
    )


def build_processor(config: AppConfig, stats: ProcessStats,
                    diagnostics: FileDiagnosticLog) -> EventProcessor:
    """Create the processor and its file-backed collaborators from config."""
    windows = LivenessWindows.from_config(
        concurrent_minutes=config.timeouts.concurrent_minutes,
        heartbeat_minutes=config.timeouts.heartbeat_minutes,
        disconnected_hours=config.timeouts.disconnected_hours,
    )
    store = FileDatasetStore(config.storage.db_path, config.storage.backup_dir)
    registry = FileIdentityRegistry(config.storage.registry_path)
    return EventProcessor(
        store=store,
        registry=registry,
        diagnostics=diagnostics,
        stats=stats,
        windows=windows,
        event_limit=config.storage.max_connection_events,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _processor, _process_stats, _diagnostics, _config

    _config = load_config()
    _setup_logging(_config)

    log.info("server_starting",
             env=_config.server.env,
             db_path=str(_config.storage.db_path),
             concurrent_minutes=_config.timeouts.concurrent_minutes)

    # Create components
    _process_stats = ProcessStats()
    _diagnostics = FileDiagnosticLog(_config.logging.diagnostics_file,
                                     enabled=_config.logging.diagnostics_enabled)
    _processor = build_processor(_config, _process_stats, _diagnostics)

    # Start background maintenance sweep
    maintenance_task = None
    if _config.maintenance.enabled:
        maintenance_task = asyncio.create_task(_processor.run_maintenance_loop(
            interval_seconds=_config.maintenance.interval_minutes * 60,
            stale_threshold_ms=int(_config.maintenance.stale_instance_hours * HOUR_MS),
            retention_days=_config.maintenance.backup_retention_days,
        ))

    log.info("server_started",
             host=_config.server.host,
             port=_config.server.port)

    yield

    # Shutdown
    if maintenance_task is not None:
        maintenance_task.cancel()
        try:
            await maintenance_task
        except asyncio.CancelledError:
            pass
    log.info("server_stopped")


app = FastAPI(
    title="botstats",
    description="Analytics collector for chat-bot instances",
    version="1.3.0",
    lifespan=lifespan,
)

# The dashboard polls from other origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(events_router)
app.include_router(monitoring_router)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    config = load_config()
    uvicorn.run("botstats.main:app", host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    run()
