"""
Process-wide logging setup for the API and the CLI.

`config/logging.yaml` ships the handlers and formatters; `app.log_level` (set it
with `STUDIOPASS_LOG_LEVEL`) decides how chatty the root logger, its handlers and
the `studiopass` package logger are. Third-party loggers named in the YAML keep
their own levels.
"""

from __future__ import annotations

import copy
import logging.config
from typing import Any

from studiopass.config.settings import get_logging_config, get_settings

PACKAGE_LOGGER = "studiopass"


def build_logging_config(level: str) -> dict[str, Any]:
    # The YAML dict is cached; work on a deep copy.
    config = copy.deepcopy(get_logging_config())
    level = level.upper()
    config.setdefault("root", {})["level"] = level
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = level
    config.setdefault("loggers", {}).setdefault(PACKAGE_LOGGER, {})["level"] = level
    return config


def configure_logging(level: str | None = None) -> None:
    """Apply the packaged config at `level`, or at `app.log_level` when omitted."""
    logging.config.dictConfig(build_logging_config(level or get_settings().app.log_level))
