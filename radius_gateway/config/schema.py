"""Pydantic schema for RADIUS gateway configuration validation."""

from __future__ import annotations

import ipaddress
import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from radius_gateway.radius.constants import MAX_ATTRIBUTE_VALUE_LENGTH


class RadiusSectionSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    host: str = Field(..., description="UDP bind host")
    port: int = Field(..., ge=0, le=65535, description="UDP port (0 picks a free one)")
    secret: str = Field(..., min_length=1, description="Default shared secret")
    workers: int = Field(default=32, ge=1, le=1024)
    backend_timeout: float = Field(default=10.0, gt=0, le=300.0)
    shutdown_timeout: float = Field(default=5.0, ge=0, le=300.0)
    require_message_authenticator: bool = Field(default=False)
    reject_reply_message: str = Field(default="")

    @field_validator("reject_reply_message")
    @classmethod
    def _validate_reply_message(cls, v: str) -> str:
        # Reply-Message is a single attribute, limited in bytes once encoded
        if len(v.encode("utf-8")) > MAX_ATTRIBUTE_VALUE_LENGTH:
            raise ValueError("reject_reply_message must be at most 253 bytes in UTF-8")
        return v


class AuthSectionSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    backend: Literal["okta", "local"] = Field(default="okta")

    @field_validator("backend", mode="before")
    @classmethod
    def _normalize_backend(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v


class OktaSectionSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    org_url: str = Field(default="")
    verify_tls: bool = Field(default=True)
    connect_timeout: float = Field(default=2.0, gt=0, le=60.0)
    read_timeout: float = Field(default=3.0, gt=0, le=120.0)
    max_retries: int = Field(default=1, ge=0, le=10)
    cache_ttl: int = Field(default=60, ge=0, le=3600)
    circuit_failures: int = Field(default=5, ge=1)
    circuit_cooldown: int = Field(default=30, ge=1)

    def worst_case_seconds(self) -> float:
        """Longest one AuthN call can block: every attempt hits both timeouts."""
        return (self.connect_timeout + self.read_timeout) * (self.max_retries + 1)

    @field_validator("org_url")
    @classmethod
    def _validate_org_url(cls, v: str) -> str:
        v = v.strip()
        if v and not v.startswith(("https://", "http://")):
            raise ValueError("org_url must start with https:// or http://")
        return v.rstrip("/")


class LocalSectionSchema(BaseModel):
    users: dict[str, str] = Field(default_factory=dict)
    disabled_users: list[str] = Field(default_factory=list)

    @field_validator("users")
    @classmethod
    def _validate_hashes(cls, v: dict[str, str]) -> dict[str, str]:
        for name, hashed in v.items():
            if not hashed.startswith(("$2a$", "$2b$", "$2y$")):
                raise ValueError(f"user {name!r} must have a bcrypt hash")
        return v


class LoggingSectionSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    level: str = Field(default="INFO")

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level


class MetricsSectionSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")
    enabled: bool = Field(default=False)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=9812, ge=0, le=65535)


class GatewayConfigSchema(BaseModel):
    radius: RadiusSectionSchema
    clients: dict[str, str] = Field(default_factory=dict)
    auth: AuthSectionSchema
    okta: OktaSectionSchema
    local: LocalSectionSchema
    logging: LoggingSectionSchema
    metrics: MetricsSectionSchema

    @field_validator("clients")
    @classmethod
    def _validate_clients(cls, v: dict[str, str]) -> dict[str, str]:
        for network, secret in v.items():
            try:
                ipaddress.ip_network(network, strict=False)
            except ValueError as exc:
                raise ValueError(f"invalid client network {network!r}") from exc
            if not secret:
                raise ValueError(f"client {network!r} has an empty secret")
        return v

    @model_validator(mode="after")
    def _backend_requirements(self) -> GatewayConfigSchema:
        if self.auth.backend == "okta" and not self.okta.org_url:
            raise ValueError("[okta] org_url is required when [auth] backend = okta")
        if self.auth.backend == "okta" and (
            self.okta.worst_case_seconds() > self.radius.backend_timeout
        ):
            raise ValueError(
                "[okta] (connect_timeout + read_timeout) * (max_retries + 1) = "
                f"{self.okta.worst_case_seconds():g}s exceeds [radius] backend_timeout "
                f"{self.radius.backend_timeout:g}s"
            )
        if self.auth.backend == "local" and not self.local.users:
            raise ValueError("[local] must define at least one user when backend = local")
        return self
