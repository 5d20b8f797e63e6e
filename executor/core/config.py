from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

# Environment variable -> settings field.
ENV_KEYS: dict[str, str] = {
    "EXECUTOR_REGISTRY_BASE_URL": "registry_base_url",
    "EXECUTOR_PROVIDER_BASE_URL": "provider_base_url",
    "EXECUTOR_PROVIDER_TOKEN": "provider_token",
    "EXECUTOR_HTTP_TIMEOUT": "http_timeout",
    "EXECUTOR_NEW_SESSION_INTERVAL": "new_session_interval",
    "EXECUTOR_ACTIVE_SESSION_INTERVAL": "active_session_interval",
    "EXECUTOR_INACTIVE_SESSION_INTERVAL": "inactive_session_interval",
    "EXECUTOR_TOKEN_REFRESH_INTERVAL": "token_refresh_interval",
    "EXECUTOR_CIRCUIT_FAILURE_THRESHOLD": "circuit_failure_threshold",
    "EXECUTOR_CIRCUIT_RESET_TIMEOUT": "circuit_reset_timeout",
    "EXECUTOR_MAX_BACKOFF": "max_backoff",
    "EXECUTOR_TEMPLATE_KEYWORD": "template_keyword",
    "EXECUTOR_MIRROR_WORKSPACE_RECORDS": "mirror_workspace_records",
    "EXECUTOR_SCHEDULER_ENABLED": "scheduler_enabled",
    "EXECUTOR_SCHEDULER_WORKERS": "scheduler_workers",
    "EXECUTOR_LOG_LEVEL": "log_level",
    "EXECUTOR_CORS_ORIGINS": "cors_origins",
}


class Settings(BaseModel):
    """Runtime configuration for the session executor."""

    registry_base_url: str = "http://localhost:8080"
    provider_base_url: str = "http://localhost:3000"
    provider_token: str | None = None
    http_timeout: float = Field(default=30.0, gt=0)

    new_session_interval: float = Field(default=30.0, gt=0)
    active_session_interval: float = Field(default=60.0, gt=0)
    inactive_session_interval: float = Field(default=90.0, gt=0)
    token_refresh_interval: float = Field(default=86400.0, gt=0)

    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_reset_timeout: float = Field(default=60.0, gt=0)
    max_backoff: float = Field(default=30.0, gt=0)

    template_keyword: str = "keruta"
    mirror_workspace_records: bool = True

    scheduler_enabled: bool = True
    scheduler_workers: int = Field(default=4, ge=1)
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=list)

    @field_validator("registry_base_url", "provider_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("base url must include scheme and host")
        return value.rstrip("/")

    @field_validator("provider_token")
    @classmethod
    def _blank_token_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


def _read_config_file(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping")
    section = data.get("executor", data)
    if not isinstance(section, dict):
        raise ValueError(f"{path}: 'executor' must be a mapping")
    return dict(section)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from an optional YAML file overlaid with environment variables."""

    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}

    config_file = env.get("EXECUTOR_CONFIG_FILE")
    if config_file:
        values.update(_read_config_file(Path(config_file).expanduser()))

    for env_key, field_name in ENV_KEYS.items():
        raw = env.get(env_key)
        if raw is not None and raw != "":
            values[field_name] = raw

    try:
        return Settings(**values)
    except ValidationError as exc:
        raise ValueError(f"invalid executor configuration: {exc}") from exc


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""

    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (used in tests)."""

    global _settings
    _settings = None
