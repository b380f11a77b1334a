"""Shared test fixtures."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

import botstats.main as main_module
from botstats.config import AppConfig
from botstats.core.classifier import LivenessWindows
from botstats.core.stats import ProcessStats
from botstats.storage.diagnostics import FileDiagnosticLog
from botstats.storage.file_storage import FileDatasetStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Callable epoch-ms clock that only moves when told to."""

    def __init__(self, start_ms: int = START_MS) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, *, seconds: float = 0, minutes: float = 0, hours: float = 0) -> int:
        self.now_ms += int((seconds + minutes * 60 + hours * 3600) * 1000)
        return self.now_ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def windows():
    return LivenessWindows()


@pytest.fixture
def config(tmp_path):
    config = AppConfig()
    config.storage.data_dir = str(tmp_path / "data")
    config.storage.backup_dir = str(tmp_path / "data" / "backups")
    config.logging.level = "warning"
    config.logging.diagnostics_file = str(tmp_path / "logs" / "errors.log")
    config.maintenance.enabled = False
    return config


@pytest.fixture(autouse=True)
def _init_server(config, clock):
    """Initialize server singletons for every test, using a temp directory."""
    stats = ProcessStats()
    diagnostics = FileDiagnosticLog(config.logging.diagnostics_file,
                                    enabled=config.logging.diagnostics_enabled)
    processor = main_module.build_processor(config, stats, diagnostics)
    processor.clock = clock

    # Patch module-level singletons
    main_module._config = config
    main_module._process_stats = stats
    main_module._diagnostics = diagnostics
    main_module._processor = processor

    yield

    # Cleanup
    main_module._config = None
    main_module._process_stats = None
    main_module._diagnostics = None
    main_module._processor = None


@pytest.fixture
def processor():
    return main_module.get_processor()


@pytest.fixture
def store(config):
    """A second handle on the same dataset file the processor uses."""
    return FileDatasetStore(config.storage.db_path, config.storage.backup_dir)


@pytest.fixture
async def client():
    from botstats.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
