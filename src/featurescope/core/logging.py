"""
Logging configuration.

The packaged YAML (`src/featurescope/config/logging.yaml`) sets formatters and handlers.
At startup the root and handler levels are replaced by one effective level: an explicit
override (CLI `--log-level`) first, else `app.log_level` (`FEATURESCOPE_LOG_LEVEL`).
"""

from __future__ import annotations

import copy
import logging.config
from typing import Any

from featurescope.config.settings import get_logging_config, get_settings


def _level_name(level: str) -> str:
    name = str(level).strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        raise ValueError(f"unknown log level: {level!r}")
    return name


def build_logging_config(level: str | None = None) -> dict[str, Any]:
    """Return a dictConfig mapping with the effective level applied; the loaded YAML is not mutated."""
    config = copy.deepcopy(get_logging_config())
    name = _level_name(level or get_settings().app.log_level)

    config.setdefault("root", {})["level"] = name
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = name
    return config


def configure_logging(level: str | None = None) -> None:
    """Configure the Python logging system based on packaged YAML config + settings."""
    logging.config.dictConfig(build_logging_config(level))
