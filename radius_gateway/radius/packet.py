"""Packet codec: whole RADIUS packets, header plus attributes."""

import hmac
import secrets
import struct
from collections.abc import Iterable

from radius_gateway.exceptions import (
    InvalidAuthenticator,
    LengthMismatch,
    MalformedAttribute,
    PacketTooLarge,
    ProtocolError,
    ShortPacket,
    UnsupportedCode,
)

from .attributes import (
    RADIUSAttribute,
    decode_attributes,
    decode_user_password,
    encode_attributes,
    encode_user_password,
)
from .authenticator import (
    ZERO_AUTHENTICATOR,
    message_authenticator,
    response_authenticator,
    verify_message_authenticator,
)
from .constants import (
    ATTR_MESSAGE_AUTHENTICATOR,
    ATTR_USER_NAME,
    ATTR_USER_PASSWORD,
    AUTHENTICATOR_LENGTH,
    CODE_NAMES,
    HEADER_LENGTH,
    MAX_RADIUS_PACKET_LENGTH,
    MIN_RADIUS_PACKET_LENGTH,
    RADIUS_ACCESS_REQUEST,
    SUPPORTED_CODES,
)

_HEADER = struct.Struct("!BBH16s")


class RADIUSPacket:
    """RADIUS packet structure.

    For Access-Request packets ``authenticator`` is the Request
    Authenticator and User-Password stays obfuscated in ``attributes``;
    use :meth:`user_password` to recover it.
    """

    def __init__(
        self,
        code: int,
        identifier: int,
        authenticator: bytes,
        attributes: list[RADIUSAttribute] | None = None,
    ):
        self.code = code
        self.identifier = identifier
        self.authenticator = authenticator  # 16 bytes
        self.attributes = attributes or []

    @classmethod
    def decode(cls, data: bytes, secret: bytes | None = None) -> "RADIUSPacket":
        """Parse a datagram into a packet.

        With ``secret``, an Access-Request carrying a Message-Authenticator
        is verified and :class:`InvalidAuthenticator` raised on mismatch.
        The Request Authenticator itself is opaque and never rejected.
        """
        if len(data) < HEADER_LENGTH:
            raise ShortPacket(
                f"Packet too short: {len(data)} bytes", {"length": len(data)}
            )

        code, identifier, length, authenticator = _HEADER.unpack_from(data)

        if length != len(data):
            raise LengthMismatch(
                f"Header length {length} does not match datagram size {len(data)}",
                {"declared": length, "actual": len(data)},
            )
        if not MIN_RADIUS_PACKET_LENGTH <= length <= MAX_RADIUS_PACKET_LENGTH:
            raise LengthMismatch(
                f"Packet length out of range: {length} bytes", {"declared": length}
            )
        if code not in SUPPORTED_CODES:
            raise UnsupportedCode(f"Unsupported RADIUS code: {code}", code=code)

        attributes = decode_attributes(data[HEADER_LENGTH:length])
        packet = cls(code, identifier, authenticator, attributes)

        if secret and code == RADIUS_ACCESS_REQUEST and packet.has_message_authenticator:
            ma = packet.get_attribute(ATTR_MESSAGE_AUTHENTICATOR)
            if ma is None or len(ma.value) != AUTHENTICATOR_LENGTH:
                raise MalformedAttribute("Message-Authenticator must be 16 bytes")
            if not verify_message_authenticator(bytes(data), secret):
                raise InvalidAuthenticator("Message-Authenticator mismatch")

        return packet

    def encode(self) -> bytes:
        """Serialize the packet verbatim, using the stored authenticator."""
        _check_identifier(self.identifier)
        if len(self.authenticator) != AUTHENTICATOR_LENGTH:
            raise ProtocolError("Authenticator must be 16 bytes")
        attrs_data = encode_attributes(self.attributes)
        length = _checked_length(attrs_data)
        return _HEADER.pack(self.code, self.identifier, length, self.authenticator) + attrs_data

    @property
    def has_message_authenticator(self) -> bool:
        return self.get_attribute(ATTR_MESSAGE_AUTHENTICATOR) is not None

    @property
    def username(self) -> str | None:
        return self.get_string(ATTR_USER_NAME)

    def user_password(self, secret: bytes) -> bytes | None:
        """Recover the plaintext User-Password, or None when absent."""
        attr = self.get_attribute(ATTR_USER_PASSWORD)
        if attr is None:
            return None
        return decode_user_password(attr.value, secret, self.authenticator)

    def add_attribute(self, attr_type: int, value: bytes):
        """Add attribute to packet"""
        self.attributes.append(RADIUSAttribute(attr_type, value))

    def add_string(self, attr_type: int, value: str):
        """Add string attribute"""
        self.add_attribute(attr_type, value.encode("utf-8"))

    def add_integer(self, attr_type: int, value: int):
        """Add integer attribute"""
        self.add_attribute(attr_type, struct.pack("!I", value))

    def get_attribute(self, attr_type: int) -> RADIUSAttribute | None:
        """Get first attribute of given type"""
        for attr in self.attributes:
            if attr.attr_type == attr_type:
                return attr
        return None

    def get_string(self, attr_type: int) -> str | None:
        """Get string attribute value"""
        attr = self.get_attribute(attr_type)
        return attr.as_string() if attr else None

    def get_integer(self, attr_type: int) -> int | None:
        """Get integer attribute value"""
        attr = self.get_attribute(attr_type)
        try:
            return attr.as_int() if attr else None
        except ValueError:
            return None

    def __str__(self) -> str:
        """String representation for debugging"""
        return (
            f"RADIUSPacket(code={CODE_NAMES.get(self.code, self.code)}, "
            f"id={self.identifier}, attrs={len(self.attributes)})"
        )


def _check_identifier(identifier: int) -> None:
    if not 0 <= identifier <= 255:
        raise ProtocolError(f"Identifier out of range: {identifier}")


def _checked_length(attrs_data: bytes) -> int:
    length = HEADER_LENGTH + len(attrs_data)
    if length > MAX_RADIUS_PACKET_LENGTH:
        raise PacketTooLarge(
            f"Packet too large: {length} bytes", {"length": length}
        )
    return length


def _with_message_authenticator(
    attributes: Iterable[RADIUSAttribute],
) -> list[RADIUSAttribute]:
    # Any caller-supplied value is replaced; the real HMAC is filled in last
    attrs = [a for a in attributes if a.attr_type != ATTR_MESSAGE_AUTHENTICATOR]
    attrs.append(RADIUSAttribute(ATTR_MESSAGE_AUTHENTICATOR, ZERO_AUTHENTICATOR))
    return attrs


def _sign_message_authenticator(
    code: int,
    identifier: int,
    authenticator: bytes,
    attrs_data: bytes,
    secret: bytes,
) -> bytes:
    """Fill the trailing zeroed Message-Authenticator of ``attrs_data``."""
    length = HEADER_LENGTH + len(attrs_data)
    header = _HEADER.pack(code, identifier, length, authenticator)
    mac = message_authenticator(header + attrs_data, secret)
    return attrs_data[:-AUTHENTICATOR_LENGTH] + mac


def encode_response(
    code: int,
    identifier: int,
    request_authenticator: bytes,
    attributes: Iterable[RADIUSAttribute],
    secret: bytes,
    *,
    add_message_authenticator: bool = False,
) -> bytes:
    """Build a signed response to the request identified by ``identifier``.

    Response Authenticator = MD5(Code+ID+Length+RequestAuth+Attributes+Secret).
    With ``add_message_authenticator`` the Message-Authenticator is computed
    first, over the packet carrying the Request Authenticator.
    """
    _check_identifier(identifier)
    if len(request_authenticator) != AUTHENTICATOR_LENGTH:
        raise ProtocolError("Request authenticator must be 16 bytes")

    attrs = list(attributes)
    if add_message_authenticator:
        attrs = _with_message_authenticator(attrs)
    attrs_data = encode_attributes(attrs)
    length = _checked_length(attrs_data)

    if add_message_authenticator:
        attrs_data = _sign_message_authenticator(
            code, identifier, request_authenticator, attrs_data, secret
        )

    auth = response_authenticator(
        code, identifier, length, request_authenticator, attrs_data, secret
    )
    return _HEADER.pack(code, identifier, length, auth) + attrs_data


def encode_request(
    identifier: int,
    attributes: Iterable[RADIUSAttribute],
    secret: bytes,
    *,
    password: bytes | None = None,
    authenticator: bytes | None = None,
    add_message_authenticator: bool = False,
) -> bytes:
    """Build an Access-Request as a RADIUS client would.

    ``password`` is appended as an obfuscated User-Password. A random
    Request Authenticator is generated unless one is supplied.
    """
    _check_identifier(identifier)
    if authenticator is None:
        authenticator = secrets.token_bytes(AUTHENTICATOR_LENGTH)
    elif len(authenticator) != AUTHENTICATOR_LENGTH:
        raise ProtocolError("Request authenticator must be 16 bytes")

    attrs = list(attributes)
    if password is not None:
        attrs.append(
            RADIUSAttribute(
                ATTR_USER_PASSWORD,
                encode_user_password(password, secret, authenticator),
            )
        )
    if add_message_authenticator:
        attrs = _with_message_authenticator(attrs)
    attrs_data = encode_attributes(attrs)
    length = _checked_length(attrs_data)

    if add_message_authenticator:
        attrs_data = _sign_message_authenticator(
            RADIUS_ACCESS_REQUEST, identifier, authenticator, attrs_data, secret
        )
    return _HEADER.pack(RADIUS_ACCESS_REQUEST, identifier, length, authenticator) + attrs_data


def verify_response(raw: bytes, request_authenticator: bytes, secret: bytes) -> bool:
    """Check that ``raw`` is a response to the request holding ``request_authenticator``."""
    try:
        packet = RADIUSPacket.decode(raw)
    except ProtocolError:
        return False
    expected = response_authenticator(
        packet.code,
        packet.identifier,
        len(raw),
        request_authenticator,
        raw[HEADER_LENGTH:],
        secret,
    )
    if not hmac.compare_digest(expected, packet.authenticator):
        return False
    if packet.has_message_authenticator:
        # The Message-Authenticator covers the Request Authenticator, not the response one
        swapped = raw[:4] + request_authenticator + raw[HEADER_LENGTH:]
        return verify_message_authenticator(swapped, secret)
    return True


def decode_packet(data: bytes, secret: bytes | None = None) -> RADIUSPacket:
    """Functional alias for :meth:`RADIUSPacket.decode`."""
    return RADIUSPacket.decode(data, secret)


__all__ = [
    "RADIUSPacket",
    "decode_packet",
    "encode_request",
    "encode_response",
    "verify_response",
]
