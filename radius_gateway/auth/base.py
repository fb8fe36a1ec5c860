"""
Abstract Authentication Backend Base Class
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an authentication attempt.

    ``reason`` is meant for logs only; it never reaches the RADIUS client.
    """

    accepted: bool
    reason: str = ""

    @classmethod
    def accept(cls, reason: str = "ok") -> "AuthResult":
        return cls(True, reason)

    @classmethod
    def reject(cls, reason: str) -> "AuthResult":
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.accepted


class AuthBackend(ABC):
    """Abstract authentication backend"""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def authenticate(self, username: str, password: str) -> AuthResult:
        """
        Authenticate user credentials

        Implementations are called from a worker thread and may block on
        network I/O. "User not found" and "account disabled" are rejections,
        not exceptions. Transport failures may be raised as
        :class:`~radius_gateway.exceptions.BackendError`; the dispatcher maps
        them to a rejection.

        Args:
            username: Username to authenticate
            password: Password to verify

        Returns:
            AuthResult: accepted flag plus a short reason
        """

    def is_available(self) -> bool:
        """
        Check if backend is available and configured properly

        Returns:
            bool: True if backend is ready to use
        """
        return True

    def close(self) -> None:
        """Release backend resources on shutdown."""

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"
