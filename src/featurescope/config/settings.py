# src/featurescope/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/featurescope/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `FEATURESCOPE_LOG_LEVEL`, `FEATURESCOPE_MAX_WORKERS`)
- an external YAML file via `FEATURESCOPE_CONFIG_PATH`

Design rule:
- Tuning knobs (batch sizes, pacing, timeouts) live in YAML, not hard-coded in the resolver.
- Physical constants (Earth radius, meters per mile) are NOT settings; see `featurescope.core.geo`.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from featurescope.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `featurescope.config`."""
    text = resources.files("featurescope.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "featurescope"
    http_timeout_seconds: float = Field(20, gt=0)
    log_level: str = "INFO"
    user_agent: str = "featurescope/0.1.0 (+https://local)"


class CatalogSettings(BaseModel):
    path: str = "data/catalogs/sources.yaml"


class ResolverSettings(BaseModel):
    max_workers: int = Field(8, ge=1, le=64)
    source_timeout_seconds: float = Field(30, gt=0)
    deadline_seconds: float | None = Field(default=None, gt=0)


class RetrySettings(BaseModel):
    max_attempts: int = Field(2, ge=0)
    base_delay_seconds: float = Field(1.0, ge=0)
    max_delay_seconds: float = Field(8.0, ge=0)


class ArcGisSettings(BaseModel):
    batch_size: int = Field(2000, ge=1)
    page_delay_seconds: float = Field(0.1, ge=0)
    max_batches: int = Field(50, ge=1)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class SodaSettings(BaseModel):
    page_size: int = Field(50_000, ge=1)
    max_pages: int = Field(10, ge=1)
    page_delay_seconds: float = Field(0.1, ge=0)


class RateLimitSettings(BaseModel):
    max_requests_per_minute: float | None = Field(default=None, gt=0)
    burst: float | None = Field(default=None, gt=0)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    arcgis: ArcGisSettings = Field(default_factory=ArcGisSettings)
    soda: SodaSettings = Field(default_factory=SodaSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("FEATURESCOPE_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    catalog_path = os.getenv("FEATURESCOPE_CATALOG_PATH")
    if catalog_path:
        data.setdefault("catalog", {})["path"] = catalog_path

    max_workers = os.getenv("FEATURESCOPE_MAX_WORKERS")
    if max_workers:
        data.setdefault("resolver", {})["max_workers"] = int(max_workers)

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("FEATURESCOPE_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load the packaged logging configuration."""
    return _read_package_yaml("logging.yaml")
