from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from core.exceptions import ConfigurationError

# Load .env file from project root
_env_path = Path(__file__).parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


class StorageSettings(BaseModel):
    data_dir: Path = Path("data/pastes")


class StateSettings(BaseModel):
    path: Path = Path("data/state.json")
    # Dump the registry after every mutating request
    persist_on_write: bool = True


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(3000, ge=1, le=65535)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_format: bool = False
    file: Path | None = None

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> str:
        if value is None:
            return "INFO"
        return str(value).strip().upper()


class Settings(BaseModel):
    storage: StorageSettings = Field(default_factory=StorageSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        """Load settings from YAML configuration file.

        Args:
            path: Optional path to configuration file. If not provided, uses
                PASTEBOX_CONFIG environment variable or defaults to config/default.yaml.

        Returns:
            Settings instance with loaded configuration and environment overrides applied.

        Raises:
            ConfigurationError: If the file does not exist or its contents are invalid.
        """
        config_path = path or Path(os.getenv("PASTEBOX_CONFIG", "config/default.yaml"))
        if not config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_path}",
                {"path": str(config_path)},
            )
        try:
            with config_path.open("r", encoding="utf-8") as fp:
                payload = yaml.safe_load(fp) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}", {"path": str(config_path)}) from exc
        if not isinstance(payload, dict):
            raise ConfigurationError("Configuration root must be a mapping", {"path": str(config_path)})
        _apply_env_overrides(payload)
        try:
            return cls(**payload)
        except Exception as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}", {"path": str(config_path)}) from exc

    @classmethod
    def from_env(cls) -> "Settings":
        """Built-in defaults plus environment overrides, for running without a config file."""
        payload: dict[str, Any] = {}
        _apply_env_overrides(payload)
        try:
            return cls(**payload)
        except Exception as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc


_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "PASTEBOX_DATA_DIR": ("storage", "data_dir"),
    "PASTEBOX_STATE": ("state", "path"),
    "PASTEBOX_HOST": ("server", "host"),
    "PASTEBOX_PORT": ("server", "port"),
    "LOG_LEVEL": ("logging", "level"),
    "JSON_LOGGING": ("logging", "json_format"),
    "LOG_FILE": ("logging", "file"),
}


def _apply_env_overrides(payload: dict[str, Any]) -> None:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        if env_name == "JSON_LOGGING":
            value = value.lower() in {"true", "1", "yes"}
        target = payload.setdefault(section, {})
        if not isinstance(target, dict):
            raise ConfigurationError(f"Configuration section '{section}' must be a mapping")
        target[key] = value


@lru_cache(maxsize=1)
def get_settings(path: str | None = None) -> Settings:
    return Settings.load(Path(path) if path else None)


__all__ = [
    "Settings",
    "StorageSettings",
    "StateSettings",
    "ServerSettings",
    "LoggingSettings",
    "get_settings",
]
