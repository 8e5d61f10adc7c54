"""Configuration loader and settings helpers for Catalog Intake."""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic import (
    ValidationError as PydanticValidationError,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If file not found or invalid YAML
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
            return config if config else {}
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")


class DatabasePoolSettings(BaseModel):
    """Connection pooling configuration for the SQLAlchemy engine."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class ScoringConfig(BaseModel):
    """Confidence penalties and priority thresholds for the validation queue."""

    model_config = ConfigDict(extra="forbid")

    unreported_base: float = Field(default=60.0, ge=0, le=100)
    missing_required_penalty: float = Field(default=15.0, ge=0)
    malformed_numeric_penalty: float = Field(default=10.0, ge=0)
    unknown_category_penalty: float = Field(default=10.0, ge=0)
    field_error_penalty: float = Field(default=5.0, ge=0)
    required_fields: list[str] = Field(default_factory=lambda: ["name", "price", "category"])
    numeric_fields: list[str] = Field(default_factory=lambda: ["price", "quantity"])
    category_field: str = "category"
    known_categories: list[str] = Field(
        default_factory=lambda: [
            "electronics",
            "computers",
            "phones",
            "accessories",
            "clothing",
            "home",
            "automotive",
            "general",
        ]
    )
    low_priority_min_confidence: float = Field(default=80.0, ge=0, le=100)
    medium_priority_min_confidence: float = Field(default=50.0, ge=0, le=100)
    review_suggestion_below: float = Field(default=70.0, ge=0, le=100)
    stale_after_hours: float = Field(default=24.0, gt=0)
    clean_supplier_min_decisions: int = Field(default=5, ge=1)
    clean_supplier_max_defect_rate: float = Field(default=0.1, ge=0, le=1)

    @field_validator("known_categories")
    @classmethod
    def _normalize_categories(cls, value: list[str]) -> list[str]:
        return [item.strip().lower() for item in value if item.strip()]

    @model_validator(mode="after")
    def _check_threshold_order(self) -> "ScoringConfig":
        if self.medium_priority_min_confidence > self.low_priority_min_confidence:
            raise ValueError(
                "medium_priority_min_confidence must not exceed low_priority_min_confidence"
            )
        return self


class AnalysisThresholds(BaseModel):
    """Thresholds driving template health and improvement proposals."""

    model_config = ConfigDict(extra="forbid")

    min_error_rate: float = Field(default=0.2, gt=0, le=1)
    high_priority_error_rate: float = Field(default=0.3, gt=0, le=1)
    min_sample_size: int = Field(default=10, ge=1)
    validation_failure_rate: float = Field(default=0.3, gt=0, le=1)
    rare_field_usage_rate: float = Field(default=0.1, ge=0, le=1)
    sample_error_limit: int = Field(default=3, ge=1)


class AutoApprovalConfig(BaseModel):
    """Criteria for approving trusted supplier submissions without review."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    min_history: int = Field(default=10, ge=1)
    min_approval_rate: float = Field(default=0.9, ge=0, le=1)
    min_confidence: float = Field(default=90.0, ge=0, le=100)


class ServiceConfiguration(BaseModel):
    """Validated runtime configuration merged from base and profile templates."""

    version: int = Field(default=1, ge=1)
    environment: str = "development"
    required_env: list[str] = Field(default_factory=list)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    analysis: AnalysisThresholds = Field(default_factory=AnalysisThresholds)
    auto_approval: AutoApprovalConfig = Field(default_factory=AutoApprovalConfig)

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.lower()


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INTAKE_",
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    config_profile: str | None = None
    log_level: str = "INFO"
    redis_url: str | None = None
    database_url: str | None = None
    database: DatabasePoolSettings = DatabasePoolSettings()
    config_dir: Path = Path("config")
    extractor_path: str | None = None
    inventory_path: str | None = None
    extractor_url: str | None = None
    inventory_url: str | None = None
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    extraction_timeout_seconds: float = Field(default=60.0, gt=0)
    extraction_workers: int = Field(default=4, ge=1)
    extraction_queue_timeout_seconds: float = Field(default=30.0, gt=0)
    stale_processing_minutes: int = Field(default=60, ge=1)
    sqlite_busy_timeout_seconds: float = Field(default=60.0, gt=0)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=30.0, gt=0)
    retry_max_backoff_seconds: float = Field(default=300.0, gt=0)
    pending_batch_size: int = Field(default=10, ge=1)
    queue_scan_limit: int = Field(default=1000, ge=1)
    grouping_window_seconds: int = Field(default=0, ge=0)
    analysis_window_days: int = Field(default=30, ge=1)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("config_dir", mode="before")
    @classmethod
    def _expand_paths(cls, value: Any) -> Any:
        """Allow string paths and expand user markers."""

        if isinstance(value, Path):
            return value
        if isinstance(value, str):
            return Path(value).expanduser()
        return value

    @field_validator("config_profile", mode="before")
    @classmethod
    def _normalize_config_profile(cls, value: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("config_profile must be a non-empty string if provided")
        return value.strip().lower()

    @model_validator(mode="after")
    def _check_backoff(self) -> "GlobalSettings":
        if self.retry_max_backoff_seconds < self.retry_backoff_seconds:
            raise ValueError("retry_max_backoff_seconds must be >= retry_backoff_seconds")
        return self

    @model_validator(mode="after")
    def _check_sqlite_lock_budget(self) -> "GlobalSettings":
        # Approvals hold the SQLite write lock across the inventory call.
        database_url = self.database_url or "sqlite"
        if database_url.startswith("sqlite") and (
            self.http_timeout_seconds >= self.sqlite_busy_timeout_seconds
        ):
            raise ValueError(
                "http_timeout_seconds must be below sqlite_busy_timeout_seconds "
                "when running on SQLite"
            )
        return self


def _deep_merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries without mutating the inputs."""

    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


@lru_cache(maxsize=8)
def _load_service_configuration_cached(config_dir: str, profile: str) -> ServiceConfiguration:
    """Load and cache the service configuration for a given profile."""

    directory = Path(config_dir)
    base_path = directory / "settings.base.yaml"
    if not base_path.exists():
        raise ConfigurationError(
            f"Missing base configuration template at '{base_path}'. "
            "Create this file to define shared defaults."
        )

    base_config = load_yaml_config(base_path)

    profile_path = directory / f"settings.{profile}.yaml"
    profile_config: dict[str, Any] = {}
    if profile_path.exists():
        profile_config = load_yaml_config(profile_path)
    else:
        logger.debug("No configuration override found for profile '%s'", profile)

    merged = _deep_merge_dicts(base_config, profile_config)
    merged.setdefault("environment", profile)

    try:
        return ServiceConfiguration.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigurationError(
            "Invalid configuration template for profile "
            f"'{profile}': {exc}"
        ) from exc


def get_service_configuration(
    settings: GlobalSettings | None = None,
    *,
    reload: bool = False,
) -> ServiceConfiguration:
    """Return the merged service configuration for the active profile."""

    if settings is None:
        settings = get_settings()

    profile = settings.config_profile or settings.environment

    if reload:
        _load_service_configuration_cached.cache_clear()

    return _load_service_configuration_cached(str(settings.config_dir), profile.lower())


def ensure_runtime_configuration(settings: GlobalSettings | None = None) -> GlobalSettings:
    """Validate configuration templates and ensure required env vars are present."""

    settings = settings or get_settings()

    service_config = get_service_configuration(settings=settings, reload=True)

    required_env: set[str] = set(service_config.required_env)
    required_env.add("INTAKE_DATABASE_URL")

    missing = sorted(var for var in required_env if not os.environ.get(var))

    if missing:
        joined = ", ".join(missing)
        raise ConfigurationError(
            "Missing required environment variables: "
            f"{joined}. Configure them via configuration templates or .env files."
        )

    return settings


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    return GlobalSettings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()
