# radius_gateway/exceptions.py
"""
Exception hierarchy for the RADIUS gateway.

Codec failures derive from :class:`ProtocolError`, which also subclasses
``ValueError`` so low-level callers can catch either.
"""

from typing import Any


class RadiusGatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(RadiusGatewayError):
    """Configuration could not be loaded or failed validation."""


# Protocol / codec errors
class ProtocolError(RadiusGatewayError, ValueError):
    """RADIUS packet parsing or encoding error."""


class MalformedPacket(ProtocolError):
    """Datagram is not a well-formed RADIUS packet."""


class ShortPacket(MalformedPacket):
    """Datagram is shorter than the 20 byte RADIUS header."""


class LengthMismatch(MalformedPacket):
    """Header length disagrees with the datagram size or is out of range."""


class MalformedAttribute(MalformedPacket):
    """Attribute TLV is truncated or declares an impossible length."""


class UnsupportedCode(ProtocolError):
    """Packet code is not an Access-* code handled by this server."""

    def __init__(self, message: str, code: int | None = None, **details: Any):
        super().__init__(message, {"code": code, **details})
        self.code = code


class AttributeTooLarge(ProtocolError):
    """Attribute value does not fit in a single TLV."""


class PacketTooLarge(ProtocolError):
    """Encoded packet would exceed the RADIUS maximum packet size."""


class InvalidAuthenticator(ProtocolError):
    """Message-Authenticator attribute did not verify under the shared secret."""


# Request handling errors
class MissingCredential(RadiusGatewayError):
    """Access-Request did not carry a usable User-Name."""


class BackendError(RadiusGatewayError):
    """Authentication backend failed while answering a request."""


class BackendUnavailable(BackendError):
    """Authentication backend could not be reached or is shedding load."""


class SendFailure(RadiusGatewayError):
    """Response datagram could not be handed to the transport."""
