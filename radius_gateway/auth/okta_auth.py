"""
Okta authentication backend with in-memory result caching.

Uses the Okta Authentication API (AuthN): ``POST {org_url}/api/v1/authn``
verifies the supplied password, and the returned principal must match the
requested username case-insensitively before a request is accepted.
"""

import hmac
import os
import secrets
import threading
import time
from hashlib import sha256
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from radius_gateway.exceptions import (
    BackendError,
    BackendUnavailable,
    ConfigurationError,
)
from radius_gateway.utils.logger import get_logger
from radius_gateway.utils.metrics import (
    okta_authn_latency,
    okta_authn_requests,
    okta_cache_hits,
    okta_circuit_open,
)
from radius_gateway.utils.simple_cache import TTLCache

from .base import AuthBackend, AuthResult

logger = get_logger(__name__, component="okta")

# AuthN transaction states that end in a rejection, with the logged reason
_REJECT_STATUSES = {
    "LOCKED_OUT": "locked out",
    "PASSWORD_EXPIRED": "password expired",
    "MFA_REQUIRED": "mfa required",
    "MFA_ENROLL": "mfa enrollment required",
}


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "off")
    return bool(value)


class OktaAuthBackend(AuthBackend):
    """Authenticate RADIUS users against an Okta org.

    Config keys (all optional except ``org_url``):
      org_url            - https://<org>.okta.com
      verify_tls         - bool (default True)
      connect_timeout    - seconds (default 2)
      read_timeout       - seconds (default 3)
      max_retries        - urllib3 retries for connect/read/429/5xx (default 1)
      cache_ttl          - seconds an accepted result is reused (default 60)
      fail_ttl           - seconds a rejection is reused (default 5)
      circuit_failures   - consecutive transport failures before opening (default 5)
      circuit_cooldown   - seconds the circuit stays open (default 30)
      pool_maxsize       - HTTP connection pool size (default 32)
    """

    def __init__(self, cfg: dict[str, Any], session: requests.Session | None = None):
        super().__init__("okta")
        self.org_url = str(cfg.get("org_url") or "").rstrip("/")
        if not self.org_url:
            raise ConfigurationError("Okta org_url must be provided in config (org_url)")
        self._authn_endpoint = self.org_url + "/api/v1/authn"
        self.verify_tls = _as_bool(cfg.get("verify_tls"), True)

        # Timeouts: (connect, read)
        connect_timeout = float(cfg.get("connect_timeout", 2))
        read_timeout = float(cfg.get("read_timeout", 3))
        self._timeout = (max(0.1, connect_timeout), max(0.1, read_timeout))

        self._cache_ttl = float(cfg.get("cache_ttl", 60))
        self._fail_ttl = float(cfg.get("fail_ttl", 5))
        self._cache = TTLCache[str, AuthResult](
            ttl_seconds=self._cache_ttl,
            maxsize=int(cfg.get("cache_maxsize", 10000)),
        )
        # HMAC key for cache keys; allow override via env, else generate per-process
        self._hmac_key = (
            os.getenv("AUTH_CACHE_HMAC_KEY") or secrets.token_hex(32)
        ).encode("utf-8")

        # HTTP session with connection pooling and retries
        if session is None:
            max_retries = int(cfg.get("max_retries", 1))
            pool_maxsize = int(cfg.get("pool_maxsize", 32))
            session = requests.Session()
            adapter = HTTPAdapter(
                pool_connections=pool_maxsize,
                pool_maxsize=pool_maxsize,
                max_retries=Retry(
                    total=max_retries,
                    connect=max_retries,
                    read=max_retries,
                    backoff_factor=float(cfg.get("backoff_factor", 0.3)),
                    status_forcelist=(429, 500, 502, 503, 504),
                    allowed_methods=frozenset({"POST"}),
                    raise_on_status=False,
                ),
            )
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self._session = session

        # Circuit breaker settings; only transport-level failures count
        self._cb_fail_threshold = max(1, int(cfg.get("circuit_failures", 5)))
        self._cb_cooldown = float(cfg.get("circuit_cooldown", 30))
        self._cb_consecutive_failures = 0
        self._cb_open_until = 0.0
        self._cb_lock = threading.Lock()

    def _cache_key(self, username: str, password: str) -> str:
        msg = f"{username}\0{password}".encode()
        return hmac.new(self._hmac_key, msg, sha256).hexdigest()

    # ---- circuit breaker ----

    def _circuit_is_open(self) -> bool:
        with self._cb_lock:
            if not self._cb_open_until:
                return False
            if time.monotonic() >= self._cb_open_until:
                self._cb_open_until = 0.0
                self._cb_consecutive_failures = 0
                okta_circuit_open.set(0)
                logger.info("Okta circuit breaker closed", event="okta.circuit.closed")
                return False
            return True

    def _record_transport_failure(self) -> None:
        with self._cb_lock:
            self._cb_consecutive_failures += 1
            if (
                not self._cb_open_until
                and self._cb_consecutive_failures >= self._cb_fail_threshold
            ):
                self._cb_open_until = time.monotonic() + self._cb_cooldown
                okta_circuit_open.set(1)
                logger.warning(
                    "Okta circuit breaker opening",
                    event="okta.circuit.opened",
                    failures=self._cb_consecutive_failures,
                    cooldown=self._cb_cooldown,
                )

    def _record_success(self) -> None:
        with self._cb_lock:
            self._cb_consecutive_failures = 0

    # ---- AuthN ----

    def _call_authn_endpoint(self, username: str, password: str) -> dict[str, Any]:
        """POST credentials to AuthN and return the decoded transaction.

        Raises BackendUnavailable for transport errors, 429 and 5xx, and
        BackendError for any other unexpected reply. 401 and 403 come back
        as a synthetic ``{"status": ...}`` transaction.
        """
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        body = {"username": username, "password": password}
        okta_authn_requests.inc()
        start = time.monotonic()
        try:
            resp = self._session.post(
                self._authn_endpoint,
                headers=headers,
                json=body,
                verify=self.verify_tls,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise BackendUnavailable(
                "Okta AuthN request failed", {"error": exc.__class__.__name__}
            ) from exc
        finally:
            okta_authn_latency.observe(max(0.0, time.monotonic() - start))

        status = resp.status_code
        if status == 401:
            return {"status": "AUTHENTICATION_FAILED"}
        if status == 403:
            return {"status": "ACCOUNT_DISABLED"}
        if status == 429 or status >= 500:
            raise BackendUnavailable(
                f"Okta AuthN unavailable: HTTP {status}", {"status": status}
            )
        if status not in (200, 201):
            raise BackendError(
                f"Okta AuthN unexpected HTTP status {status}", {"status": status}
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise BackendError("Okta AuthN returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise BackendError("Okta AuthN returned a non-object body")
        return data

    def _evaluate(self, username: str, data: dict[str, Any]) -> AuthResult:
        status = str(data.get("status", "")).upper()
        if status == "AUTHENTICATION_FAILED":
            return AuthResult.reject("invalid credentials")
        if status == "ACCOUNT_DISABLED":
            return AuthResult.reject("account disabled")
        if status != "SUCCESS":
            reason = _REJECT_STATUSES.get(status, status.lower() or "unknown status")
            return AuthResult.reject(reason)

        embedded = data.get("_embedded")
        user = embedded.get("user") if isinstance(embedded, dict) else None
        profile = user.get("profile") if isinstance(user, dict) else None
        login = profile.get("login") if isinstance(profile, dict) else None
        if not isinstance(login, str) or login.casefold() != username.casefold():
            logger.warning(
                "Okta principal does not match requested username",
                event="okta.authn.principal_mismatch",
                username=username,
            )
            return AuthResult.reject("principal mismatch")
        return AuthResult.accept()

    def authenticate(self, username: str, password: str) -> AuthResult:
        """Authenticate via Okta AuthN.

        Raises BackendUnavailable while the circuit is open or Okta cannot be
        reached; every other outcome is an :class:`AuthResult`.
        """
        if self._circuit_is_open():
            raise BackendUnavailable("Okta circuit breaker open")

        key = self._cache_key(username, password)
        cached = self._cache.get(key)
        if cached is not None:
            okta_cache_hits.inc()
            logger.debug("Okta cache hit", event="okta.cache.hit", username=username)
            return cached

        try:
            data = self._call_authn_endpoint(username, password)
        except BackendUnavailable:
            self._record_transport_failure()
            raise
        self._record_success()

        result = self._evaluate(username, data)
        self._cache.set(key, result, ttl=self._cache_ttl if result else self._fail_ttl)
        if result:
            logger.info("Okta authentication success", event="okta.authn.success", username=username)
        else:
            logger.info(
                "Okta authentication rejected",
                event="okta.authn.rejected",
                username=username,
                reason=result.reason,
            )
        return result

    def is_available(self) -> bool:
        return not self._circuit_is_open()

    def get_stats(self) -> dict[str, Any]:
        with self._cb_lock:
            circuit_open = bool(self._cb_open_until)
            failures = self._cb_consecutive_failures
        return {
            "org_url": self.org_url,
            "circuit_open": circuit_open,
            "consecutive_failures": failures,
            "timeouts": {"connect": self._timeout[0], "read": self._timeout[1]},
            "cache_entries": len(self._cache),
        }

    def close(self) -> None:
        """Release HTTP session resources (sockets)."""
        self._session.close()
