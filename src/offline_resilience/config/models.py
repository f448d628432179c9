from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "svg", "ico")


class AppSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Base URL of the backend every intercepted path is forwarded to.
    origin: str
    # Generation tag of this deployment; bumping it starts a new cache generation.
    version: str = Field(pattern=r"^[A-Za-z0-9._]+$")


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    rotation: FileRotationSettings


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str
    file: FileLoggingSettings
    # One line per proxied request from aiohttp's access logger.
    access_log: bool = False
    # Per-logger level overrides, e.g. {"offline_resilience.strategies": "DEBUG"}.
    loggers: Mapping[str, str] = Field(default_factory=dict)


class NetworkSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # None leaves timeouts to the transport defaults.
    timeout_seconds: Optional[float] = None


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    root_dir: str
    manifest: Sequence[str]
    api_prefix: str = "/api/"
    api_cache_patterns: Sequence[str] = ()
    image_extensions: Sequence[str] = DEFAULT_IMAGE_EXTENSIONS
    image_fallback_path: str = ""
    skip_waiting_on_install: bool = False

    @field_validator("api_cache_patterns")
    @classmethod
    def _check_patterns(cls, value: Sequence[str]) -> Sequence[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid API cache pattern {pattern!r}: {e}") from e
        return tuple(value)

    @field_validator("manifest")
    @classmethod
    def _check_manifest(cls, value: Sequence[str]) -> Sequence[str]:
        for path in value:
            if not path.startswith("/"):
                raise ValueError(f"Manifest paths must be absolute: {path!r}")
        return tuple(value)


class QueueSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    tag: str = "mutation"


class ServerSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "127.0.0.1"
    port: int = 8080
    start_online: bool = True


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    app: AppSettings
    logging: LoggingSettings
    network: NetworkSettings = NetworkSettings()
    cache: CacheSettings
    queue: QueueSettings
    server: ServerSettings = ServerSettings()


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "APP__"
    dotenv_path: Optional[str] = "data/.env"
