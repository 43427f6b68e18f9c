"""Configuration management using pydantic-settings."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from liveuploader.error_codes import ErrorCode
from liveuploader.exceptions import ConfigurationError

_ENV_FILES = (".env", "../.env", "../../.env")

DEFAULT_CONFIG_FILE = "/etc/liveuploader/liveuploader.conf"


def parse_comma_map(raw: str) -> list[tuple[str, str]]:
    """Parse ``k1=v1,k2=v2`` into ordered pairs.

    Order is preserved since failover resolution picks the first matching prefix.
    """
    out: list[tuple[str, str]] = []
    text = str(raw or "").strip()
    if not text:
        return out
    for pair in text.split(","):
        kv = pair.split("=")
        if len(kv) != 2:
            raise ConfigurationError(
                f"failed to parse keypairs, -option=k1=v1,k2=v2 format required, got {raw}",
                error_code=ErrorCode.INVALID_CONFIG,
            )
        out.append((kv[0], kv[1]))
    return out


def _as_pairs(value: Any) -> list[tuple[str, str]]:
    if value is None:
        return []
    if isinstance(value, str):
        return parse_comma_map(value)
    if isinstance(value, Mapping):
        return [(str(k), str(v)) for k, v in value.items()]
    return [(str(k), str(v)) for k, v in value]


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


class UploadConfig(BaseSettings):
    """Upload behaviour for segments and manifests."""

    model_config = SettingsConfigDict(
        env_prefix="UPLOADER_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    wait_between_writes_s: float = Field(default=5.0, ge=0)
    write_timeout_s: float = Field(default=30.0, gt=0)
    segment_timeout_s: float = Field(default=300.0, gt=0)
    # Ordered primary-prefix -> backup-prefix pairs.
    storage_fallback_urls: list[tuple[str, str]] | str = Field(default_factory=list)
    # URI substring -> Object-Expires metadata value (e.g. "+168h").
    object_expiry_rules: list[tuple[str, str]] | str = Field(default_factory=list)
    payload_spool_bytes: int = Field(default=1024 * 1024, ge=0)

    @field_validator("storage_fallback_urls", "object_expiry_rules", mode="before")
    @classmethod
    def _parse_pairs(cls, value: Any) -> list[tuple[str, str]]:
        return _as_pairs(value)


class RetryConfig(BaseSettings):
    """Backoff profiles used by storage writes."""

    model_config = SettingsConfigDict(
        env_prefix="RETRY_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    persistent_initial_s: float = Field(default=30.0, ge=0)
    persistent_max_s: float = Field(default=120.0, ge=0)
    persistent_attempts: int = Field(default=5, ge=1)
    # Overall bound across attempts; 0 disables it.
    persistent_max_elapsed_s: float = Field(default=600.0, ge=0)

    short_initial_s: float = Field(default=5.0, ge=0)
    short_max_s: float = Field(default=120.0, ge=0)
    short_attempts: int = Field(default=3, ge=1)

    # Coalescing writer per-attempt timeout growth.
    overwrite_initial_timeout_s: float = Field(default=10.0, gt=0)
    overwrite_max_timeout_s: float = Field(default=60.0, gt=0)
    overwrite_max_retries: int = Field(default=3, ge=1)
    overwrite_queue_size: int = Field(default=32, ge=1)


class ThumbnailConfig(BaseSettings):
    """Thumbnail extraction and fan-out."""

    model_config = SettingsConfigDict(
        env_prefix="THUMBS_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True
    ffmpeg_bin: str = "ffmpeg"
    timeout_s: float = Field(default=5.0, gt=0)
    upload_timeout_s: float = Field(default=10.0, gt=0)
    # Bound on the whole extract-and-upload step, added to segment latency.
    total_timeout_s: float = Field(default=30.0, gt=0)
    scale: str = "scale=640:360:force_original_aspect_ratio=decrease"
    cache_control: str = "max-age=5"
    # Relative object names written next to the segment.
    targets: list[str] | str = Field(default_factory=lambda: ["../latest.jpg", "../../../latest.jpg"])
    # Stream identifiers whose segments never get thumbnails.
    disable_list: list[str] | str = Field(default_factory=list)
    url_rewrite_rules: list[tuple[str, str]] | str = Field(default_factory=list)

    @field_validator("targets", "disable_list", mode="before")
    @classmethod
    def _parse_list(cls, value: Any) -> list[str]:
        return _as_list(value)

    @field_validator("url_rewrite_rules", mode="before")
    @classmethod
    def _parse_rules(cls, value: Any) -> list[tuple[str, str]]:
        return _as_pairs(value)


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt: str = "%Y-%m-%d %H:%M:%S"
    console: bool = True
    file: str | None = None
    max_bytes: int = Field(default=100 * 1024 * 1024, ge=0)
    backup_count: int = Field(default=5, ge=0)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILES, env_file_encoding="utf-8", extra="ignore"
    )

    log_dir: str = "./logs"
    # Enables the memory:// driver; only meant for tests.
    testing: bool = False

    upload: UploadConfig = Field(default_factory=UploadConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    thumbnails: ThumbnailConfig = Field(default_factory=ThumbnailConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _validate_retry(self) -> "Settings":
        if self.retry.overwrite_max_timeout_s < self.retry.overwrite_initial_timeout_s:
            raise ConfigurationError(
                "RETRY_OVERWRITE_MAX_TIMEOUT_S must be >= RETRY_OVERWRITE_INITIAL_TIMEOUT_S"
            )
        return self


def load_config_file(path: str | Path | None) -> dict[str, str]:
    """Read a plain ``key value`` config file.

    Blank lines and ``#`` comments are skipped. Keys may use dashes as on the
    command line (``segment-timeout 2m``).
    """
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"config file not found: {p}")
    values: dict[str, str] = {}
    for line in p.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition(" ")
        values[key.strip().lstrip("-")] = value.strip()
    return values
