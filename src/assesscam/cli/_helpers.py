"""Shared utilities for CLI entrypoints."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from assesscam.config.loader import Config, ConfigError, default_config, load_config

DEFAULT_CONFIG_PATH = "config/example.yaml"
LOCAL_CONFIG_PATH = "config/local.yaml"

LOGGER = logging.getLogger(__name__)


def add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help=(
            "Path to YAML config file (default: "
            f"{LOCAL_CONFIG_PATH} if present, else {DEFAULT_CONFIG_PATH}, else built-in defaults)"
        ),
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging for troubleshooting",
    )


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def resolve_config_path(config_path: Optional[str]) -> Optional[Path]:
    if config_path:
        return Path(config_path)
    for candidate in (LOCAL_CONFIG_PATH, DEFAULT_CONFIG_PATH):
        path = Path(candidate)
        if path.exists():
            return path
    return None


def load_cli_config(config_path: Optional[str]) -> Config:
    resolved = resolve_config_path(config_path)
    if resolved is None:
        LOGGER.debug("No config file found; using built-in defaults")
        return default_config()
    try:
        return load_config(resolved)
    except ConfigError as exc:
        raise SystemExit(f"Config validation failed: {exc}") from exc
