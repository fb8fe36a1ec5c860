"""
Configuration Management for the RADIUS gateway.

Thin orchestration layer over the loader and the pydantic schema. The
object is constructed once at startup and handed to whatever needs it.
"""

from __future__ import annotations

import configparser
import os
from typing import Any

from pydantic import ValidationError

from radius_gateway.auth.base import AuthBackend
from radius_gateway.auth.local import LocalAuthBackend
from radius_gateway.auth.okta_auth import OktaAuthBackend
from radius_gateway.exceptions import ConfigurationError
from radius_gateway.radius.client import ClientRegistry
from radius_gateway.utils.logger import get_logger

from .defaults import (
    DEFAULT_CONFIG_PATH,
    ENV_CONFIG_PATH,
    LOCAL_DISABLED_KEY,
    SECTION_AUTH,
    SECTION_CLIENTS,
    SECTION_LOCAL,
    SECTION_LOGGING,
    SECTION_METRICS,
    SECTION_OKTA,
    SECTION_RADIUS,
)
from .loader import load_config
from .schema import GatewayConfigSchema

logger = get_logger(__name__)


def _section(config: configparser.ConfigParser, name: str) -> dict[str, str]:
    if not config.has_section(name):
        return {}
    return {key: config.get(name, key) for key in config.options(name)}


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


class GatewayConfig:
    """RADIUS gateway configuration manager."""

    def __init__(self, config_file: str | None = None):
        """Load and validate configuration.

        Args:
            config_file: Path to the INI file; falls back to the
                RADIUS_GATEWAY_CONFIG environment variable, then the default path.
        """
        self.config_file = (
            config_file or os.environ.get(ENV_CONFIG_PATH) or DEFAULT_CONFIG_PATH
        )
        self.config = load_config(self.config_file)
        self.settings = self._validate()

    def _raw_payload(self) -> dict[str, Any]:
        local = _section(self.config, SECTION_LOCAL)
        disabled = local.pop(LOCAL_DISABLED_KEY, "")
        return {
            "radius": _section(self.config, SECTION_RADIUS),
            "clients": _section(self.config, SECTION_CLIENTS),
            "auth": _section(self.config, SECTION_AUTH),
            "okta": _section(self.config, SECTION_OKTA),
            "local": {
                "users": local,
                "disabled_users": [u.strip() for u in disabled.split(",") if u.strip()],
            },
            "logging": _section(self.config, SECTION_LOGGING),
            "metrics": _section(self.config, SECTION_METRICS),
        }

    def _validate(self) -> GatewayConfigSchema:
        try:
            return GatewayConfigSchema.model_validate(self._raw_payload())
        except ValidationError as exc:
            message = _format_validation_error(exc)
            logger.error(
                "Configuration validation failed",
                event="config.validation_failed",
                path=self.config_file,
                error=message,
            )
            raise ConfigurationError(
                f"Invalid configuration: {message}", {"path": self.config_file}
            ) from exc

    # ---- getters ----

    def get_radius_config(self) -> dict[str, Any]:
        return self.settings.radius.model_dump()

    def get_auth_backend_name(self) -> str:
        return self.settings.auth.backend

    def get_okta_config(self) -> dict[str, Any]:
        return self.settings.okta.model_dump()

    def get_logging_config(self) -> dict[str, Any]:
        return self.settings.logging.model_dump()

    def get_metrics_config(self) -> dict[str, Any]:
        return self.settings.metrics.model_dump()

    def get_clients(self) -> dict[str, str]:
        return dict(self.settings.clients)

    # ---- factories ----

    def create_client_registry(self) -> ClientRegistry:
        return ClientRegistry(self.settings.radius.secret, self.settings.clients)

    def create_auth_backend(self) -> AuthBackend:
        backend = self.settings.auth.backend
        if backend == "local":
            return LocalAuthBackend(
                self.settings.local.users, self.settings.local.disabled_users
            )
        return OktaAuthBackend(self.get_okta_config())

    def get_config_summary(self) -> dict[str, Any]:
        """Configuration overview safe to log (no secrets or hashes)."""
        radius = self.get_radius_config()
        radius.pop("secret", None)
        return {
            "config_file": self.config_file,
            "radius": radius,
            "clients": sorted(self.settings.clients),
            "auth_backend": self.settings.auth.backend,
            "local_users": len(self.settings.local.users),
            "metrics": self.get_metrics_config(),
        }
