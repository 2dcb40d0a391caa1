"""Lenor configuration management.

Loads configuration from .env files and YAML config files, merges them,
and provides validated settings via pydantic models.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class TypingUnit(str, Enum):
    """Granularity of the typing animation."""
    CHAR = "char"
    WORD = "word"


class StoreConfig(BaseModel):
    """Configuration for the conversation store."""

    page_size: int = 10
    default_conversation_id: str = "default"
    max_pending_retries: int | None = None

    @field_validator("page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """Ensure page_size is positive."""
        if v <= 0:
            raise ValueError("page_size must be positive")
        return v

    @field_validator("max_pending_retries")
    @classmethod
    def validate_max_pending_retries(cls, v: int | None) -> int | None:
        """Ensure max_pending_retries is positive when set."""
        if v is not None and v <= 0:
            raise ValueError("max_pending_retries must be positive")
        return v


class CacheConfig(BaseModel):
    """Configuration for the durable local cache."""

    db_path: str = "data/cache.db"


class RemoteMemoryConfig(BaseModel):
    """Configuration for the remote long-term memory service."""

    enabled: bool = True
    base_url: str = "https://api.getzep.com"
    api_key: str = ""
    timeout: float = 10.0

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Ensure timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @model_validator(mode="after")
    def strip_base_url(self) -> "RemoteMemoryConfig":
        """Drop trailing slashes so paths can be appended."""
        self.base_url = self.base_url.rstrip("/")
        return self


class ConnectivityConfig(BaseModel):
    """Configuration for network reachability monitoring."""

    probe_url: str | None = None
    poll_interval: float = 15.0
    probe_timeout: float = 5.0

    @field_validator("poll_interval", "probe_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Ensure intervals are positive."""
        if v <= 0:
            raise ValueError("poll_interval and probe_timeout must be positive")
        return v


class TypingConfig(BaseModel):
    """Configuration for the assistant typing animation."""

    interval: float = 0.03
    step: int = 3
    unit: TypingUnit = TypingUnit.CHAR

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Ensure interval is not negative."""
        if v < 0:
            raise ValueError("interval must not be negative")
        return v

    @field_validator("step")
    @classmethod
    def validate_step(cls, v: int) -> int:
        """Ensure step is positive."""
        if v <= 0:
            raise ValueError("step must be positive")
        return v


class LenorConfig(BaseSettings):
    """
    Lenor's main configuration.

    Loads from:
    1. .env file (via pydantic-settings)
    2. YAML config files (via load() classmethod)
    3. Environment variables with LENOR_ prefix

    Environment variables override YAML values.
    """

    model_config = SettingsConfigDict(
        env_prefix="LENOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    data_dir: str = "~/.lenor/data"
    log_level: str = "INFO"
    name: str = "Lenor"

    store: StoreConfig = Field(default_factory=StoreConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    remote_memory: RemoteMemoryConfig = Field(default_factory=RemoteMemoryConfig)
    connectivity: ConnectivityConfig = Field(default_factory=ConnectivityConfig)
    typewriter: TypingConfig = Field(default_factory=TypingConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log_level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def expand_data_dir(self) -> "LenorConfig":
        """Expand user home directory in data_dir."""
        self.data_dir = str(Path(self.data_dir).expanduser())
        return self

    @property
    def cache_path(self) -> Path:
        """Resolve the cache database path, relative paths living under data_dir."""
        path = Path(self.cache.db_path).expanduser()
        if self.cache.db_path == ":memory:" or path.is_absolute():
            return path
        return Path(self.data_dir) / path

    @classmethod
    def load(
        cls,
        yaml_path: Path | str | None = None,
        env_file: str | None = ".env",
    ) -> "LenorConfig":
        """
        Load configuration from YAML and environment.

        Args:
            yaml_path: Path to YAML config file. If None, searches default locations.
            env_file: Path to .env file.

        Returns:
            Validated LenorConfig instance.
        """
        yaml_file = cls._find_yaml_config(yaml_path)

        yaml_data: dict[str, Any] = {}
        if yaml_file and yaml_file.exists():
            yaml_data = cls._load_yaml_file(yaml_file)
            logger.debug(f"Loaded config from {yaml_file}")

        # A top-level 'lenor' section holds the scalar settings
        if "lenor" in yaml_data:
            merged_data = dict(yaml_data["lenor"] or {})
            merged_data.update({k: v for k, v in yaml_data.items() if k != "lenor"})
            yaml_data = merged_data

        init_data = cls._drop_env_overrides(yaml_data)

        if env_file and Path(env_file).exists():
            config = cls(_env_file=env_file, **init_data)
        else:
            config = cls(_env_file=None, **init_data)

        Path(config.data_dir).mkdir(parents=True, exist_ok=True)

        return config

    @classmethod
    def _find_yaml_config(cls, yaml_path: Path | str | None) -> Path | None:
        """Pick the YAML file: the argument, then LENOR_CONFIG, then the per-user file."""
        if yaml_path:
            return Path(yaml_path)

        env_path = os.environ.get("LENOR_CONFIG")
        if env_path:
            return Path(env_path).expanduser()

        for candidate in (Path("lenor.yaml"), Path.home() / ".lenor" / "config.yaml"):
            if candidate.exists():
                return candidate

        return None

    @classmethod
    def _load_yaml_file(cls, path: Path) -> dict[str, Any]:
        """Parse a YAML config file. Unreadable or non-mapping files count as empty."""
        try:
            data = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring config file {path}: {e}")
            return {}

        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {path}: top level is not a mapping")
            return {}
        return data

    @classmethod
    def _drop_env_overrides(cls, data: dict[str, Any]) -> dict[str, Any]:
        """
        Remove YAML values that an environment variable also sets.

        Init kwargs outrank the environment in pydantic-settings, so YAML
        values are passed through only where no LENOR_ variable exists.

        Example:
            LENOR_STORE__PAGE_SIZE=20 with {"store": {"page_size": 5}}
            -> {"store": {}}
        """
        result: dict[str, Any] = {}
        for key, value in data.items():
            env_key = f"LENOR_{key}".upper()
            if env_key in os.environ:
                continue
            if isinstance(value, dict):
                result[key] = {
                    sub_key: sub_value
                    for sub_key, sub_value in value.items()
                    if f"{env_key}__{sub_key}".upper() not in os.environ
                }
            else:
                result[key] = value
        return result

    def get_log_config(self) -> dict[str, Any]:
        """dictConfig for the CLI: one stderr handler, HTTP client chatter kept at WARNING."""
        http_level = "DEBUG" if self.log_level == "DEBUG" else "WARNING"
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": self.log_level,
                    "formatter": "standard",
                    "stream": "ext://sys.stderr",
                },
            },
            "loggers": {
                "httpx": {"level": http_level},
                "httpcore": {"level": http_level},
            },
            "root": {
                "level": self.log_level,
                "handlers": ["console"],
            },
        }
