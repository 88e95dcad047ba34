#!/usr/bin/env python3
"""
MDBList Ratings Configuration Models and Validation

This module contains the Pydantic configuration models and the configuration loading
logic for the ratings service. Configuration comes from a JSON or YAML file, may be
overridden through environment variables, and is validated once at startup so a bad
value fails fast with a clear message instead of surfacing halfway through a batch.

**Rating Source Mapping:**
Which MDBList source feeds which Jellyfin field is configurable globally, and can be
overridden per library. An override only needs to name the fields it changes; blank
fields inherit the global value.

Classes:
    Configuration Models:
        MdbListConfig: API key and request behaviour
        CacheConfig: Cache refresh interval
        StorageConfig: Locations of the cache directory and rate-limit state file
        SourceMapping: Primary/fallback sources for the three rating channels
        LibraryRatingOverride: Per-library partial SourceMapping
        ServerConfig: Lookup API server and logging settings
        AppConfig: Top-level application configuration

    Validation:
        ConfigurationValidator: Configuration loading, env overrides and validation

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ConfigDict, ValidationError, field_validator

from .utils import get_logger


MAPPING_FIELDS = (
    "movie_community_source",
    "movie_community_fallback_source",
    "movie_critic_source",
    "movie_critic_fallback_source",
    "show_community_source",
    "show_community_fallback_source",
)


# ==================== MDBLIST CONFIGURATION ====================

class MdbListConfig(BaseModel):
    """
    MDBList API access settings.

    Attributes:
        api_key (str): MDBList API key; empty disables all updates
        base_url (str): API root URL
        request_delay_ms (int): Fixed pause before every network request
        request_timeout_seconds (float): Total timeout per request
    """
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    api_key: str = Field(default="", description="MDBList API key")
    base_url: str = Field(default="https://api.mdblist.com")
    request_delay_ms: int = Field(default=0, ge=0, le=60000)
    request_timeout_seconds: float = Field(default=15.0, ge=1, le=120)

    # noinspection PyDecorator
    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"MDBList base URL must use http or https: {v}")
        return v.rstrip('/')


# ==================== CACHE CONFIGURATION ====================

class CacheConfig(BaseModel):
    """
    Cache refresh interval.

    `interval` is the preferred setting. Older configuration files only carry
    `cache_hours`; when the interval is "unset" the TTL is derived from the hours.

    Attributes:
        interval (str): One of unset, day, week, month
        cache_hours (int): Legacy TTL in hours
    """
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    interval: str = Field(default="unset")
    cache_hours: int = Field(default=24)

    # noinspection PyDecorator
    @field_validator('interval')
    @classmethod
    def validate_interval(cls, v: str) -> str:
        valid_intervals = ['unset', 'day', 'week', 'month']
        if v.lower() not in valid_intervals:
            raise ValueError(f"Cache interval must be one of: {valid_intervals}")
        return v.lower()


# ==================== STORAGE CONFIGURATION ====================

class StorageConfig(BaseModel):
    """
    Locations of durable state.

    Attributes:
        data_dir (str): Base data directory
        cache_dir (Optional[str]): Cache directory, defaults to `<data_dir>/cache`
        state_file (Optional[str]): Rate-limit state, defaults to `<data_dir>/ratelimit.json`
    """
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    data_dir: str = Field(default="/app/data")
    cache_dir: Optional[str] = None
    state_file: Optional[str] = None

    @property
    def resolved_cache_dir(self) -> Path:
        return Path(self.cache_dir) if self.cache_dir else Path(self.data_dir) / "cache"

    @property
    def resolved_state_file(self) -> Path:
        return Path(self.state_file) if self.state_file else Path(self.data_dir) / "ratelimit.json"


# ==================== SOURCE MAPPING ====================

class SourceMapping(BaseModel):
    """
    Which MDBList rating source feeds which Jellyfin field.

    Source names are MDBList keys such as imdb, tmdb, trakt, tomatoes, popcorn,
    letterboxd, metacritic or rogerebert. A fallback of "none" (or empty) disables
    the fallback.

    Example:
        ```python
        mapping = SourceMapping(movie_community_source="trakt",
                                movie_community_fallback_source="imdb")
        ```
    """
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    movie_community_source: str = Field(default="imdb")
    movie_community_fallback_source: str = Field(default="none")
    movie_critic_source: str = Field(default="metacritic")
    movie_critic_fallback_source: str = Field(default="none")
    show_community_source: str = Field(default="tmdb")
    show_community_fallback_source: str = Field(default="none")

    def merged_with(self, override: Optional["LibraryRatingOverride"]) -> "SourceMapping":
        """
        Apply a per-library override field by field.

        Args:
            override (Optional[LibraryRatingOverride]): Matching override, or None

        Returns:
            SourceMapping: Effective mapping; blank override fields keep the global value
        """
        if override is None:
            return self

        merged: Dict[str, str] = {}
        for name in MAPPING_FIELDS:
            value = getattr(override, name)
            merged[name] = getattr(self, name) if not value or not value.strip() else value
        return SourceMapping(**merged)


class LibraryRatingOverride(BaseModel):
    """
    Per-library mapping override.

    `library_id` is the match key: a library (collection folder) GUID, with or
    without dashes, or a library name. When it is blank `library_name` is used as
    the key instead. Mapping fields left empty inherit the global setting.
    """
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    library_id: str = Field(default="")
    library_name: str = Field(default="")
    enabled: bool = Field(default=True)

    movie_community_source: str = Field(default="")
    movie_community_fallback_source: str = Field(default="")
    movie_critic_source: str = Field(default="")
    movie_critic_fallback_source: str = Field(default="")
    show_community_source: str = Field(default="")
    show_community_fallback_source: str = Field(default="")

    @property
    def match_key(self) -> str:
        return (self.library_id or "").strip() or (self.library_name or "").strip()


# ==================== SERVER CONFIGURATION ====================

class ServerConfig(BaseModel):
    """
    Lookup API server and logging configuration.

    Attributes:
        host (str): Bind address
        port (int): Bind port
        log_level (str): Logging level name
        log_dir (Optional[str]): Log directory, None for console-only logging
    """
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=1986, ge=1, le=65535)
    log_level: str = Field(default="INFO")
    log_dir: Optional[str] = Field(default="/app/logs")

    # noinspection PyDecorator
    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


# ==================== APPLICATION CONFIGURATION ====================

class AppConfig(BaseModel):
    """
    Top-level application configuration.

    Every section has defaults, so an empty configuration file is valid; the
    service then simply skips every item until an API key is provided.

    Example:
        ```python
        config = AppConfig(
            mdblist=MdbListConfig(api_key="your-key", request_delay_ms=250),
            cache=CacheConfig(interval="week"),
            library_overrides=[
                LibraryRatingOverride(library_name="Anime", show_community_source="myanimelist")
            ]
        )
        ```
    """
    model_config = ConfigDict(extra='ignore')

    mdblist: MdbListConfig = Field(default_factory=MdbListConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    mapping: SourceMapping = Field(default_factory=SourceMapping)
    library_overrides: List[LibraryRatingOverride] = Field(default_factory=list)
    update_only_when_empty: bool = Field(default=True)
    server: ServerConfig = Field(default_factory=ServerConfig)


# ==================== CONFIGURATION VALIDATION ====================

class ConfigurationValidator:
    """
    Configuration loader with environment variable support.

    **The Loading Process:**
        1. Load base configuration from a JSON or YAML file (missing file = defaults)
        2. Apply environment variable overrides
        3. Build the Pydantic models (type conversion and validation)
        4. Report warnings and errors

    Errors are collected and reported together before startup is aborted with
    SystemExit, so every problem can be fixed in one pass.

    Attributes:
        logger (logging.Logger): Logger for reporting validation progress
        errors (List[str]): Validation errors that prevent startup
        warnings (List[str]): Validation warnings that don't prevent startup
    """

    ENV_OVERRIDES = {
        'MDBLIST_API_KEY': ('mdblist', 'api_key'),
        'MDBLIST_REQUEST_DELAY_MS': ('mdblist', 'request_delay_ms'),
        'MDBLIST_CACHE_INTERVAL': ('cache', 'interval'),
        'MDBLIST_DATA_DIR': ('storage', 'data_dir'),
        'LOG_LEVEL': ('server', 'log_level'),
    }

    def __init__(self):
        self.logger = get_logger("mdblist_ratings.config")
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def load_and_validate_config(self, config_path: str = "/app/config/config.json") -> AppConfig:
        """
        Load configuration from file and environment, then validate.

        Args:
            config_path (str): Path to JSON or YAML configuration file

        Returns:
            AppConfig: Fully validated application configuration

        Raises:
            SystemExit: If validation fails with errors
        """
        try:
            self.logger.info(f"Loading configuration from {config_path}")

            config_data = self._load_config_file(config_path)
            self._apply_env_overrides(config_data)
            config = AppConfig(**config_data)

            self._validate_app_config(config)
            self._report_validation_results()

            self.logger.info("Configuration loaded and validated successfully")
            return config

        except ValidationError as e:
            self.logger.error("Configuration model validation failed:")
            for error in e.errors():
                field_path = " -> ".join(str(x) for x in error['loc'])
                self.logger.error(f"  {field_path}: {error['msg']}")
            raise SystemExit(1)
        except SystemExit:
            raise
        except Exception as e:
            self.logger.error(f"Configuration validation failed: {e}")
            raise SystemExit(1)

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """
        Load configuration data from a JSON or YAML file, chosen by extension.

        Returns:
            Dict[str, Any]: Configuration data, empty when the file does not exist
        """
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if config_path.endswith('.yaml') or config_path.endswith('.yml'):
                    data = yaml.safe_load(f) or {}
                else:
                    data = json.load(f) or {}
        except FileNotFoundError:
            self.logger.warning(f"Configuration file not found: {config_path}, using defaults")
            return {}
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            self.errors.append(f"Invalid configuration file format: {e}")
            raise

        if not isinstance(data, dict):
            self.errors.append("Configuration file must contain a mapping at the top level")
            raise ValueError("Configuration file must contain a mapping at the top level")
        return data

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> None:
        """
        Apply environment variable overrides to configuration data.

        Environment variables win over the file so containers can inject secrets
        such as the API key without editing the configuration file.
        """
        for env_var, (section, key) in self.ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value is None or value == "":
                continue
            config_data.setdefault(section, {})
            config_data[section][key] = value
            if env_var == 'MDBLIST_API_KEY':
                self.logger.debug(f"Applied environment override: {env_var}=***")
            else:
                self.logger.debug(f"Applied environment override: {env_var}={value}")

        only_empty = os.getenv('MDBLIST_UPDATE_ONLY_EMPTY')
        if only_empty:
            config_data['update_only_when_empty'] = only_empty.lower() in ('1', 'true', 'yes', 'on')

    def _validate_app_config(self, config: AppConfig) -> None:
        """Checks that span several sections."""
        if not config.mdblist.api_key:
            self.warnings.append("MDBList API key is empty; rating updates will be skipped")

        seen_keys = set()
        for index, override in enumerate(config.library_overrides):
            key = override.match_key.lower()
            if not key:
                self.warnings.append(f"Library override #{index + 1} has neither library_id nor library_name")
            elif key in seen_keys:
                self.warnings.append(f"Library override for '{override.match_key}' is defined more than once")
            seen_keys.add(key)

    def _report_validation_results(self) -> None:
        for warning in self.warnings:
            self.logger.warning(f"Config warning: {warning}")

        if self.errors:
            for error in self.errors:
                self.logger.error(f"Config error: {error}")
            raise SystemExit(1)
