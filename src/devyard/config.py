"""Centralized configuration - Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in devyard.toml. Environment variables override it
using ``__`` as the nested delimiter (e.g. ``SUPERVISOR__GRACE_DELAY=1.0``).

Priority (highest wins): init args > env vars > .env > devyard.toml

Usage::

    from devyard.config import get_settings

    s = get_settings()
    print(s.remote.exec_timeout)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in devyard.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models - reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class SupervisorConfig(_StrictModel):
    grace_delay: float = 0.5  # seconds before the port-holder fallback kill
    bridge_kill_timeout: float = 5.0  # seconds for the in-bridge kill-by-port
    min_port: int = 1024
    max_port: int = 65535
    notifications: bool = True
    container_log_tail: int = 200
    teardown_timeout: float = 30.0  # compose down / container stop during shutdown

    @model_validator(mode="after")
    def check_port_range(self) -> SupervisorConfig:
        if not 0 < self.min_port <= self.max_port <= 65535:
            msg = f"Invalid port range [{self.min_port}, {self.max_port}]"
            raise ValueError(msg)
        return self


class RemoteConfig(_StrictModel):
    connect_timeout: float = 15.0
    exec_timeout: float = 30.0
    probe_timeout: float = 15.0
    sudo_probe_timeout: float = 10.0
    project_scan_timeout: float = 20.0
    project_scan_roots: list[str] = ["/var/www", "/home", "/srv", "/opt"]
    project_scan_depth: int = 3
    known_hosts: str | None = None  # path to a known_hosts file; None = host keys not verified

    @field_validator("project_scan_depth")
    @classmethod
    def clamp_depth(cls, v: int) -> int:
        return max(1, v)


class SecretsConfig(_StrictModel):
    keyring_service: str = "devyard"


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="devyard.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    supervisor: SupervisorConfig = SupervisorConfig()
    remote: RemoteConfig = RemoteConfig()
    secrets: SecretsConfig = SecretsConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > devyard.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def config_dir(self) -> Path:
        return Path.home() / ".config" / "devyard"

    @cached_property
    def settings_path(self) -> Path:
        """JSON file backing the default settings store (host records etc.)."""
        return self.config_dir / "settings.json"


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
