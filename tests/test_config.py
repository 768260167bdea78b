"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from maldiquant_desktop.config import Config
from maldiquant_desktop.exceptions import ConfigError


def test_defaults():
    config = Config()
    assert config.server.host == "127.0.0.1"
    assert config.server.port == 3838
    assert config.server.url == "http://127.0.0.1:3838/"
    assert config.readiness.marker == "Listening on"
    assert "shiny" in config.server.required_packages
    assert config.locator.path_commands == ["Rscript", "R"]


def test_load_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "server:\n  port: 4000\nreadiness:\n  max_attempts: 10\n  poll_interval_seconds: 0.5\n",
        encoding="utf-8",
    )
    config = Config.load(str(path))

    assert config.server.port == 4000
    assert config.readiness.max_attempts == 10
    assert config.readiness.poll_interval_seconds == 0.5


def test_missing_file_uses_defaults(tmp_path):
    config = Config.load(str(tmp_path / "absent.yaml"))
    assert config.server.port == 3838


def test_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("MALDIQUANT_DESKTOP_SERVER__PORT", "4100")
    config = Config.load(str(tmp_path / "absent.yaml"))
    assert config.server.port == 4100


def test_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        Config.load(str(path))


def test_non_mapping_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        Config.load(str(path))


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        Config(readiness={"max_attempts": 0})
    with pytest.raises(ValidationError):
        Config(server={"port": 70000})


def test_relative_app_dir_resolves_against_resources():
    config = Config()
    assert config.app.resolved_app_dir().name == "R-app"
    assert config.app.resolved_app_dir().is_absolute()
