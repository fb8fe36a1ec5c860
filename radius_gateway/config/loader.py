"""
Configuration loading for the RADIUS gateway.

Load order: defaults → config file → environment variables.
"""

from __future__ import annotations

import configparser
import os

from radius_gateway.exceptions import ConfigurationError
from radius_gateway.utils.logger import get_logger

from .defaults import DEFAULTS, ENV_PREFIX, ENV_SHARED_SECRET, SECTION_RADIUS

logger = get_logger(__name__)


def new_parser() -> configparser.ConfigParser:
    """ConfigParser that keeps key case and allows ':' inside keys (IPv6 networks)."""
    parser = configparser.ConfigParser(interpolation=None, delimiters=("=",))
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    return parser


def populate_defaults(config: configparser.ConfigParser) -> None:
    for section, values in DEFAULTS.items():
        if not config.has_section(section):
            config.add_section(section)
        for key, value in values.items():
            if not config.has_option(section, key):
                config.set(section, key, value)


def load_config(path: str | None) -> configparser.ConfigParser:
    """Read ``path`` (when it exists), fill defaults and apply env overrides."""
    config = new_parser()
    if path and os.path.exists(path):
        try:
            with open(path, encoding="utf-8") as fh:
                config.read_file(fh, source=path)
        except (OSError, configparser.Error) as exc:
            raise ConfigurationError(
                f"Failed to read configuration file {path}: {exc}", {"path": path}
            ) from exc
        logger.debug(
            "Loaded configuration file",
            event="config.loader.file_loaded",
            path=path,
        )
    elif path:
        logger.info(
            "Configuration file not found; using defaults and environment",
            event="config.loader.file_missing",
            path=path,
        )
    populate_defaults(config)
    apply_all_env_overrides(config)
    return config


def apply_env_overrides(
    config: configparser.ConfigParser,
    section: str,
    key: str,
    env_var: str | None = None,
) -> bool:
    """Apply environment variable override to config value.

    Args:
        config: ConfigParser instance
        section: Section name
        key: Key name
        env_var: Optional custom environment variable name.
                If None, derives from RADIUS_GATEWAY_SECTION_KEY pattern.

    Returns:
        True when the environment supplied a value.
    """
    if env_var is None:
        env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"

    value = os.environ.get(env_var)
    if value is None:
        return False
    if not config.has_section(section):
        config.add_section(section)
    config.set(section, key, value)
    logger.debug(
        "Applied environment override for config key",
        event="config.loader.env_override_applied",
        section=section,
        key=key,
        env_var=env_var,
    )
    return True


def apply_all_env_overrides(config: configparser.ConfigParser) -> None:
    """Apply environment variable overrides following standard naming.

    Environment variables follow the pattern RADIUS_GATEWAY_SECTION_KEY,
    for example RADIUS_GATEWAY_RADIUS_PORT. The shared secret may also be
    given as RADIUS_SECRET; the prefixed variable wins when both are set.
    """
    for section, values in DEFAULTS.items():
        for key in values:
            apply_env_overrides(config, section, key)

    if not os.environ.get(f"{ENV_PREFIX}_{SECTION_RADIUS.upper()}_SECRET"):
        apply_env_overrides(config, SECTION_RADIUS, "secret", ENV_SHARED_SECRET)
