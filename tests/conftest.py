"""
Shared fixtures for the gateway test suite.
"""

from __future__ import annotations

import os

import pytest

_ENV_NAMES = ("RADIUS_SECRET", "AUTH_CACHE_HMAC_KEY")


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Strip gateway variables so the host environment cannot leak into config."""
    for name in list(os.environ):
        if name.startswith("RADIUS_GATEWAY_") or name in _ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
