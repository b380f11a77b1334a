"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

from botstats.config import load_config


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config.server.port == 3000
    assert config.timeouts.concurrent_minutes == 30.0
    assert config.timeouts.disconnected_hours == 12.0
    assert config.storage.db_path == Path("data") / "db.json"


def test_yaml_sections_are_applied(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "server:\n"
        "  port: 8080\n"
        "timeouts:\n"
        "  concurrent_minutes: 5\n"
        "  heartbeat_minutes: 2\n"
        "maintenance:\n"
        "  enabled: false\n"
        "  unknown_key: ignored\n"
    )
    config = load_config(path)
    assert config.server.port == 8080
    assert config.timeouts.concurrent_minutes == 5
    assert config.timeouts.heartbeat_minutes == 2
    assert config.maintenance.enabled is False


def test_environment_overrides_win(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("storage:\n  data_dir: from-yaml\n")
    monkeypatch.setenv("BOTSTATS_STORAGE_DATA_DIR", "from-env")
    monkeypatch.setenv("BOTSTATS_MAINTENANCE_ENABLED", "no")
    monkeypatch.setenv("BOTSTATS_TIMEOUTS_CONCURRENT_MINUTES", "12.5")

    config = load_config(path)
    assert config.storage.data_dir == "from-env"
    assert config.maintenance.enabled is False
    assert config.timeouts.concurrent_minutes == 12.5
