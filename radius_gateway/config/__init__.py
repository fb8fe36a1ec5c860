"""RADIUS gateway configuration package.

INI file loading with environment overrides, validated by pydantic.
"""

from .config import GatewayConfig
from .schema import GatewayConfigSchema

__all__ = ["GatewayConfig", "GatewayConfigSchema"]
