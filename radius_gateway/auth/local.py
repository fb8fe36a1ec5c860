"""
Local authentication backend backed by bcrypt password hashes.
"""

from collections.abc import Iterable, Mapping

import bcrypt

from radius_gateway.utils.logger import get_logger

from .base import AuthBackend, AuthResult

logger = get_logger(__name__)

BCRYPT_MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    """Return a bcrypt hash suitable for the ``[local]`` config section."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Check ``password`` against a bcrypt hash.

    Raises ValueError when ``hashed`` is not a bcrypt hash.
    """
    password_bytes = password.encode("utf-8")
    # bcrypt only hashes 72 bytes; longer secrets can never have been stored
    if len(password_bytes) > BCRYPT_MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(password_bytes, hashed.encode("utf-8"))


class LocalAuthBackend(AuthBackend):
    """Users and bcrypt hashes held in memory, loaded from configuration."""

    def __init__(
        self,
        users: Mapping[str, str],
        disabled: Iterable[str] = (),
    ):
        super().__init__("local")
        self._users = dict(users)
        self._disabled = {name.strip() for name in disabled if name.strip()}

    def authenticate(self, username: str, password: str) -> AuthResult:
        hashed = self._users.get(username)
        if hashed is None:
            return AuthResult.reject("user not found")
        if username in self._disabled:
            return AuthResult.reject("disabled")
        try:
            ok = verify_password(password, hashed)
        except ValueError as exc:
            logger.error(
                "Stored password hash is invalid",
                event="auth.local.bad_hash",
                username=username,
                error=str(exc),
            )
            return AuthResult.reject("invalid stored credential")
        if not ok:
            return AuthResult.reject("invalid credentials")
        return AuthResult.accept()

    def is_available(self) -> bool:
        return bool(self._users)

    @property
    def user_count(self) -> int:
        return len(self._users)
