"""Collector configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: BOTSTATS_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class StorageConfig:
    data_dir: str = "data"
    db_file: str = "db.json"
    registry_file: str = "instance_ids.json"
    backup_dir: str = "data/backups"
    max_connection_events: int = 500

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_file

    @property
    def registry_path(self) -> Path:
        return Path(self.data_dir) / self.registry_file


@dataclass
class TimeoutsConfig:
    concurrent_minutes: float = 30.0
    heartbeat_minutes: float = 0.0  # 0 disables the heartbeat-aware check
    disconnected_hours: float = 12.0


@dataclass
class MaintenanceConfig:
    enabled: bool = True
    interval_minutes: float = 60.0
    stale_instance_hours: float = 24.0
    backup_retention_days: int = 7


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"
    file: str = ""
    diagnostics_enabled: bool = True
    diagnostics_file: str = "logs/errors.log"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "BOTSTATS_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "BOTSTATS_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "BOTSTATS_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "BOTSTATS_STORAGE_DATA_DIR": lambda v: setattr(config.storage, "data_dir", v),
        "BOTSTATS_STORAGE_DB_FILE": lambda v: setattr(config.storage, "db_file", v),
        "BOTSTATS_STORAGE_REGISTRY_FILE": lambda v: setattr(config.storage, "registry_file", v),
        "BOTSTATS_STORAGE_BACKUP_DIR": lambda v: setattr(config.storage, "backup_dir", v),
        "BOTSTATS_STORAGE_MAX_CONNECTION_EVENTS": lambda v: setattr(config.storage, "max_connection_events", int(v)),
        "BOTSTATS_TIMEOUTS_CONCURRENT_MINUTES": lambda v: setattr(config.timeouts, "concurrent_minutes", float(v)),
        "BOTSTATS_TIMEOUTS_HEARTBEAT_MINUTES": lambda v: setattr(config.timeouts, "heartbeat_minutes", float(v)),
        "BOTSTATS_TIMEOUTS_DISCONNECTED_HOURS": lambda v: setattr(config.timeouts, "disconnected_hours", float(v)),
        "BOTSTATS_MAINTENANCE_ENABLED": lambda v: setattr(config.maintenance, "enabled", _parse_bool(v)),
        "BOTSTATS_MAINTENANCE_INTERVAL_MINUTES": lambda v: setattr(config.maintenance, "interval_minutes", float(v)),
        "BOTSTATS_MAINTENANCE_STALE_INSTANCE_HOURS": lambda v: setattr(config.maintenance, "stale_instance_hours", float(v)),
        "BOTSTATS_MAINTENANCE_BACKUP_RETENTION_DAYS": lambda v: setattr(config.maintenance, "backup_retention_days", int(v)),
        "BOTSTATS_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "BOTSTATS_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
        "BOTSTATS_LOG_FILE": lambda v: setattr(config.logging, "file", v),
        "BOTSTATS_LOG_DIAGNOSTICS_ENABLED": lambda v: setattr(config.logging, "diagnostics_enabled", _parse_bool(v)),
        "BOTSTATS_LOG_DIAGNOSTICS_FILE": lambda v: setattr(config.logging, "diagnostics_file", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("BOTSTATS_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section in ("server", "storage", "timeouts", "maintenance", "logging"):
            target = getattr(config, section)
            for k, v in (raw.get(section) or {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
