"""Authentication backends consulted by the RADIUS dispatcher."""

from .base import AuthBackend, AuthResult
from .local import LocalAuthBackend
from .okta_auth import OktaAuthBackend

__all__ = ["AuthBackend", "AuthResult", "LocalAuthBackend", "OktaAuthBackend"]
