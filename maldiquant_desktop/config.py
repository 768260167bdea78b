"""Configuration management for MALDIquant Desktop."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from maldiquant_desktop.exceptions import ConfigError


def resource_path(relative: str) -> Path:
    """Resolve a resource path for both frozen and dev modes."""
    base = Path(getattr(sys, "_MEIPASS", Path(__file__).resolve().parents[1]))
    return base / relative


class AppConfig(BaseModel):
    name: str = "MALDIquant Analyzer"
    # Shiny application bundle; relative paths resolve against the resources dir.
    app_dir: str = "R-app"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def resolved_app_dir(self) -> Path:
        path = Path(self.app_dir)
        if not path.is_absolute():
            path = resource_path(self.app_dir)
        return path.resolve()


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=3838, ge=1, le=65535)
    required_packages: list[str] = Field(
        default_factory=lambda: ["shiny", "MALDIquant", "MALDIquantForeign"]
    )

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"


class LocatorConfig(BaseModel):
    bundled_dir: str = "R-portable"
    extra_roots: list[str] = Field(default_factory=list)
    path_commands: list[str] = Field(default_factory=lambda: ["Rscript", "R"])
    verify_timeout_seconds: float = Field(default=10.0, gt=0)
    use_registry: bool = True


class ReadinessConfig(BaseModel):
    marker: str = "Listening on"
    # Shiny reports "Listening on" through message(), i.e. on stderr.
    scan_stderr: bool = True
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    max_attempts: int = Field(default=30, ge=1)
    request_timeout_seconds: float = Field(default=2.0, gt=0)
    initial_delay_seconds: float = Field(default=1.0, ge=0)


class ProcessConfig(BaseModel):
    buffer_limit_chars: int = Field(default=64 * 1024, ge=1024)
    terminate_grace_seconds: float = Field(default=5.0, ge=0)


class WindowConfig(BaseModel):
    title: str = "MALDIquant Analyzer"
    width: int = 1400
    height: int = 900


class Config(BaseSettings):
    """Application configuration loaded from env vars and config file."""

    app: AppConfig = Field(default_factory=AppConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    locator: LocatorConfig = Field(default_factory=LocatorConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    process: ProcessConfig = Field(default_factory=ProcessConfig)
    window: WindowConfig = Field(default_factory=WindowConfig)

    model_config = {
        "env_prefix": "MALDIQUANT_DESKTOP_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> Config:
        """Load configuration from YAML file and environment variables."""
        config_path = config_path or os.getenv(
            "MALDIQUANT_DESKTOP_CONFIG", "./config.yaml"
        )

        file_config = {}
        config_file = Path(config_path)
        if config_file.exists():
            try:
                with open(config_file) as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid config file {config_file}: {exc}") from exc
            if not isinstance(file_config, dict):
                raise ConfigError(f"Config file {config_file} must contain a mapping")

        return cls(**file_config)
