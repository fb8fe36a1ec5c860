"""Keyed digests that bind RADIUS packets to the shared secret.

MD5 and HMAC-MD5 are mandated by RFC 2865 and RFC 2869; they are used here
as protocol framing, not for general cryptographic purposes.
"""

import hashlib
import hmac
import struct
import warnings

from .constants import (
    ATTR_MESSAGE_AUTHENTICATOR,
    AUTHENTICATOR_LENGTH,
    HEADER_LENGTH,
)

ZERO_AUTHENTICATOR = b"\x00" * AUTHENTICATOR_LENGTH


def md5_digest(*parts: bytes) -> bytes:
    """MD5 over the concatenation of ``parts``."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        return hashlib.md5(b"".join(parts), usedforsecurity=False).digest()


def response_authenticator(
    code: int,
    identifier: int,
    length: int,
    request_authenticator: bytes,
    attributes: bytes,
    secret: bytes,
) -> bytes:
    """Response Authenticator = MD5(Code+ID+Length+RequestAuth+Attributes+Secret)."""
    header = struct.pack("!BBH", code, identifier, length)
    return md5_digest(header, request_authenticator, attributes, secret)


def message_authenticator(packet: bytes, secret: bytes) -> bytes:
    """HMAC-MD5 over ``packet``, whose Message-Authenticator value must be zeroed."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        return hmac.new(secret, packet, digestmod=hashlib.md5).digest()


def find_message_authenticator(data: bytes) -> int | None:
    """Return the offset of the first Message-Authenticator value in ``data``.

    ``data`` must be a structurally valid packet (header length already
    checked, attributes well formed).
    """
    length = struct.unpack("!H", data[2:4])[0]
    idx = HEADER_LENGTH
    while idx + 2 <= length:
        atype = data[idx]
        alen = data[idx + 1]
        if alen < 2:
            return None
        if atype == ATTR_MESSAGE_AUTHENTICATOR:
            return idx + 2
        idx += alen
    return None


def verify_message_authenticator(data: bytes, secret: bytes) -> bool:
    """Verify the Message-Authenticator (Attr 80) of a received packet.

    Steps (RFC 2869 §5.14):
      - Locate the Message-Authenticator attribute.
      - Set its 16-byte value to zero.
      - Compute HMAC-MD5 over the entire packet keyed by the shared secret.
      - Compare to the received value in constant time.

    Returns True when the packet carries no Message-Authenticator; callers
    that require one check for its presence separately.
    """
    offset = find_message_authenticator(data)
    if offset is None:
        return True
    received = data[offset : offset + AUTHENTICATOR_LENGTH]
    if len(received) != AUTHENTICATOR_LENGTH:
        return False
    mutable = bytearray(data)
    mutable[offset : offset + AUTHENTICATOR_LENGTH] = ZERO_AUTHENTICATOR
    calc = message_authenticator(bytes(mutable), secret)
    return hmac.compare_digest(calc, received)


__all__ = [
    "ZERO_AUTHENTICATOR",
    "md5_digest",
    "response_authenticator",
    "message_authenticator",
    "find_message_authenticator",
    "verify_message_authenticator",
]
