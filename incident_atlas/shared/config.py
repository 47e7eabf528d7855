"""
Incident Atlas - Configuration Loader

Pydantic-based configuration management with:
- Environment-based configuration (dev/prod)
- YAML file loading with inheritance
- Per-city YAML files (boundaries, cutover year, upstream datasets)
- Environment variable overrides for secrets
- Type validation via Pydantic

Usage:
    from incident_atlas.shared.config import get_city_config, get_config

    config = get_config()  # Uses IA_ENVIRONMENT env var
    config = get_config("dev")  # Explicit environment

    # Access config values
    resolution = config.spatial.h3_resolution
    ttl = config.cache.ttl_seconds

    nyc = get_city_config("nyc")
    cutover = nyc.cutover_year
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# Configuration Models
# =============================================================================


class ProjectConfig(BaseModel):
    """Project metadata configuration."""

    name: str = "incident-atlas"
    version: str = "0.1.0"
    description: str = "Region resolution and deduplicated incident statistics"


class SpatialConfig(BaseModel):
    """Spatial index configuration."""

    h3_resolution: int = Field(default=9, ge=0, le=15)
    cities: list[str] = Field(default_factory=lambda: ["nyc", "sf"])
    bytes_per_cell_estimate: int = 50


class BreakdownLimitsConfig(BaseModel):
    """Top-N caps applied to breakdown lists."""

    offense: int = 20
    law_class: int = 15
    premise: int = 20
    borough: int = 20
    demographic: int = 10
    race_pairs: int = 15
    sex_pairs: int = 15
    race_sex_pairs: int = 10
    offense_options: int = 200


class AggregationConfig(BaseModel):
    """Aggregation engine configuration."""

    fetch_timeout_seconds: float = 25.0
    max_monthly_points: int = 60
    dedup_precision: int = 5
    limits: BreakdownLimitsConfig = Field(default_factory=BreakdownLimitsConfig)


class CacheConfig(BaseModel):
    """Result cache configuration."""

    enabled: bool = True
    ttl_seconds: int = 300
    max_entries: int = Field(default=100, ge=1)
    quantize_step_degrees: float = Field(default=0.001, gt=0)


class BinningConfig(BaseModel):
    """Percentile binning configuration."""

    extreme_fraction: float = Field(default=0.10, gt=0, lt=0.5)


class SocrataConfig(BaseModel):
    """Socrata (SODA) upstream API configuration."""

    timeout_seconds: int = 60
    page_size: int = 50000
    max_rows: int = 150000
    page_delay_seconds: float = 0.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "text"] = "text"
    include_timestamp: bool = True


# =============================================================================
# City Configuration Models
# =============================================================================


class BoundariesConfig(BaseModel):
    """Region boundary file configuration for a city."""

    path: str
    region_id_field: str = "name"
    region_name_field: str = "name"


class DatasetConfig(BaseModel):
    """One upstream dataset of a city."""

    name: str
    url: str
    schema_name: str = Field(alias="schema")
    era: Literal["legacy", "modern", "all"] = "all"
    min_year: int | None = None
    max_year: int | None = None
    id_scope: Literal["point", "global"] = "point"
    timestamp_field: str
    point_field: str | None = None

    model_config = {"populate_by_name": True}


class CityConfig(BaseModel):
    """Per-city configuration loaded from configs/cities/<city>.yaml."""

    id: str
    display_name: str
    center: tuple[float, float] = (0.0, 0.0)
    has_demographics: bool = False
    has_law_class: bool = False
    cutover_year: int | None = None
    min_year: int = 2006
    boundaries: BoundariesConfig
    datasets: list[DatasetConfig] = Field(default_factory=list)

    def get_dataset(self, name: str) -> DatasetConfig:
        """Get a dataset by name."""
        for dataset in self.datasets:
            if dataset.name == name:
                return dataset
        raise KeyError(f"Unknown dataset '{name}' for city '{self.id}'")


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """
    Main configuration class for Incident Atlas.

    Loads configuration from:
    1. YAML files in configs/environments/
    2. Environment variables (for secrets)

    Environment variables take precedence over YAML values.
    """

    model_config = SettingsConfigDict(
        env_prefix="IA_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "prod"] = "dev"

    # Configuration sections
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    spatial: SpatialConfig = Field(default_factory=SpatialConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    binning: BinningConfig = Field(default_factory=BinningConfig)
    socrata: SocrataConfig = Field(default_factory=SocrataConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Secrets (from environment variables only)
    nyc_app_token: str | None = Field(default=None, alias="NYC_OPENDATA_APP_TOKEN")
    sf_app_token: str | None = Field(default=None, alias="SF_OPENDATA_APP_TOKEN")

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"dev", "prod"}
        if v not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of: {valid_envs}")
        return v

    def app_token_for_host(self, host: str) -> str | None:
        """Return the Socrata app token for an upstream host, if configured."""
        host = host.lower()
        if "cityofnewyork.us" in host:
            return self.nyc_app_token
        if "sfgov.org" in host:
            return self.sf_app_token
        return None


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _get_config_dir() -> Path:
    """Get the configuration directory path."""
    # Try relative path from the repository root
    config_dir = Path(__file__).parent.parent.parent / "configs"
    if config_dir.exists():
        return config_dir

    # Try from current working directory
    config_dir = Path.cwd() / "configs"
    if config_dir.exists():
        return config_dir

    raise FileNotFoundError(
        "Could not find configs directory. Ensure you're running from the project root."
    )


def get_project_root() -> Path:
    """Get the directory that holds configs/ (relative paths resolve against it)."""
    return _get_config_dir().parent


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_config_for_environment(environment: str) -> dict[str, Any]:
    """Load and merge configuration for a specific environment."""
    config_dir = _get_config_dir()
    env_dir = config_dir / "environments"

    # Load base config
    base_config = _load_yaml_file(env_dir / "base.yaml")

    # Load environment-specific config
    env_config = _load_yaml_file(env_dir / f"{environment}.yaml")

    # Remove inheritance marker if present
    env_config.pop("_inherit", None)

    # Merge configs
    merged = _deep_merge(base_config, env_config)
    merged["environment"] = environment

    return merged


@lru_cache(maxsize=4)
def get_config(environment: str | None = None) -> Settings:
    """
    Get configuration for the specified environment.

    Args:
        environment: Environment name (dev, prod).
                    If None, uses IA_ENVIRONMENT env var, defaulting to "dev".

    Returns:
        Settings: Validated configuration object.

    Example:
        config = get_config()  # Uses IA_ENVIRONMENT or defaults to dev
        config = get_config("prod")  # Explicit production config

        # Access values
        resolution = config.spatial.h3_resolution
    """
    if environment is None:
        environment = os.getenv("IA_ENVIRONMENT", "dev")

    # Load YAML configuration
    yaml_config = _load_config_for_environment(environment)

    # Create Settings object (also loads env vars)
    return Settings(**yaml_config)


def reload_config(environment: str | None = None) -> Settings:
    """
    Reload configuration, clearing the cache.

    Useful for testing or when config files have changed.
    """
    get_config.cache_clear()
    get_city_config.cache_clear()
    return get_config(environment)


@lru_cache(maxsize=16)
def get_city_config(city: str) -> CityConfig:
    """
    Get the configuration of a city from configs/cities/<city>.yaml.

    Raises:
        KeyError: If no configuration file exists for the city
    """
    path = _get_config_dir() / "cities" / f"{city}.yaml"
    if not path.exists():
        raise KeyError(f"No city configuration found for '{city}'")
    return CityConfig(**_load_yaml_file(path))


# =============================================================================
# Convenience Functions
# =============================================================================


def resolve_path(path: str | Path) -> Path:
    """Resolve a configured path against the project root unless absolute."""
    path = Path(path)
    if path.is_absolute():
        return path
    return get_project_root() / path


def is_production() -> bool:
    """Check if running in production environment."""
    config = get_config()
    return config.environment == "prod"


def is_development() -> bool:
    """Check if running in development environment."""
    config = get_config()
    return config.environment == "dev"
