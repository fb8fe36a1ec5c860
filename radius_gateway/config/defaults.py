"""Centralized default configuration values for the RADIUS gateway."""

from __future__ import annotations

from typing import Any

SECTION_RADIUS = "radius"
SECTION_CLIENTS = "clients"
SECTION_AUTH = "auth"
SECTION_OKTA = "okta"
SECTION_LOCAL = "local"
SECTION_LOGGING = "logging"
SECTION_METRICS = "metrics"

ENV_PREFIX = "RADIUS_GATEWAY"
ENV_CONFIG_PATH = "RADIUS_GATEWAY_CONFIG"
ENV_SHARED_SECRET = "RADIUS_SECRET"
DEFAULT_CONFIG_PATH = "config/radius-gateway.conf"

# RADIUS listener
DEFAULT_RADIUS_HOST = "0.0.0.0"  # bind all interfaces
DEFAULT_RADIUS_PORT = 1812  # IANA radius auth port
DEFAULT_WORKERS = 32  # backend thread pool size and concurrent call bound
DEFAULT_BACKEND_TIMEOUT = 10.0  # seconds before a backend call becomes a reject
DEFAULT_SHUTDOWN_TIMEOUT = 5.0  # seconds in-flight requests get at shutdown

# Okta
DEFAULT_OKTA_CONNECT_TIMEOUT = 2.0
DEFAULT_OKTA_READ_TIMEOUT = 3.0
DEFAULT_OKTA_MAX_RETRIES = 1  # (2 + 3) * 2 attempts fits the 10s backend timeout
DEFAULT_OKTA_CACHE_TTL = 60  # seconds an accepted result is reused
DEFAULT_OKTA_CIRCUIT_FAILURES = 5
DEFAULT_OKTA_CIRCUIT_COOLDOWN = 30

# Observability
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_METRICS_HOST = "127.0.0.1"
DEFAULT_METRICS_PORT = 9812

# Keys of fixed sections; [clients] and [local] user entries are free-form
DEFAULTS: dict[str, dict[str, Any]] = {
    SECTION_RADIUS: {
        "host": DEFAULT_RADIUS_HOST,
        "port": str(DEFAULT_RADIUS_PORT),
        "secret": "",
        "workers": str(DEFAULT_WORKERS),
        "backend_timeout": str(DEFAULT_BACKEND_TIMEOUT),
        "shutdown_timeout": str(DEFAULT_SHUTDOWN_TIMEOUT),
        "require_message_authenticator": "false",
        "reject_reply_message": "",
    },
    SECTION_AUTH: {"backend": "okta"},
    SECTION_OKTA: {
        "org_url": "",
        "verify_tls": "true",
        "connect_timeout": str(DEFAULT_OKTA_CONNECT_TIMEOUT),
        "read_timeout": str(DEFAULT_OKTA_READ_TIMEOUT),
        "max_retries": str(DEFAULT_OKTA_MAX_RETRIES),
        "cache_ttl": str(DEFAULT_OKTA_CACHE_TTL),
        "circuit_failures": str(DEFAULT_OKTA_CIRCUIT_FAILURES),
        "circuit_cooldown": str(DEFAULT_OKTA_CIRCUIT_COOLDOWN),
    },
    SECTION_LOGGING: {"level": DEFAULT_LOG_LEVEL},
    SECTION_METRICS: {
        "enabled": "false",
        "host": DEFAULT_METRICS_HOST,
        "port": str(DEFAULT_METRICS_PORT),
    },
}

# Reserved key inside [local]; every other key is a username
LOCAL_DISABLED_KEY = "disabled_users"
