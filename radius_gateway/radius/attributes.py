"""Attribute codec: RADIUS type-length-value lists and User-Password hiding."""

import struct
from collections.abc import Iterable
from dataclasses import dataclass

from radius_gateway.exceptions import (
    AttributeTooLarge,
    MalformedAttribute,
    ProtocolError,
)

from .authenticator import md5_digest
from .constants import (
    AUTHENTICATOR_LENGTH,
    MAX_ATTRIBUTE_VALUE_LENGTH,
    MAX_PASSWORD_LENGTH,
    PASSWORD_BLOCK_SIZE,
)


@dataclass(frozen=True)
class RADIUSAttribute:
    """RADIUS attribute.

    Unknown types are carried as opaque bytes and re-encoded unchanged.
    """

    attr_type: int
    value: bytes

    def pack(self) -> bytes:
        """Pack attribute into bytes"""
        if not 0 <= self.attr_type <= 255:
            raise ProtocolError(f"Invalid attribute type: {self.attr_type}")
        if len(self.value) > MAX_ATTRIBUTE_VALUE_LENGTH:
            raise AttributeTooLarge(
                f"Attribute {self.attr_type} too long: {len(self.value)} bytes",
                {"attr_type": self.attr_type, "length": len(self.value)},
            )
        return struct.pack("BB", self.attr_type, len(self.value) + 2) + self.value

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> tuple["RADIUSAttribute", int]:
        """Unpack one attribute at ``offset``; returns it and the bytes consumed."""
        remaining = len(data) - offset
        if remaining < 2:
            raise MalformedAttribute(
                f"Incomplete attribute header at offset {offset}",
                {"offset": offset},
            )
        attr_type, length = data[offset], data[offset + 1]
        if length < 2 or length > remaining:
            raise MalformedAttribute(
                f"Invalid attribute length {length} at offset {offset}",
                {"offset": offset, "attr_type": attr_type, "length": length},
            )
        return cls(attr_type, bytes(data[offset + 2 : offset + length])), length

    def as_string(self) -> str:
        """Get value as string"""
        return self.value.decode("utf-8", errors="replace")

    def as_int(self) -> int:
        """Get value as integer"""
        if len(self.value) == 4:
            return int(struct.unpack("!I", self.value)[0])
        raise ValueError("Attribute is not an integer")

    def __repr__(self) -> str:
        # Values may hold obfuscated credentials; keep them out of reprs
        return f"RADIUSAttribute(type={self.attr_type}, len={len(self.value)})"


def decode_attributes(data: bytes) -> list[RADIUSAttribute]:
    """Decode a buffer of concatenated TLVs, preserving order and duplicates."""
    attributes: list[RADIUSAttribute] = []
    offset = 0
    while offset < len(data):
        attr, consumed = RADIUSAttribute.unpack(data, offset)
        attributes.append(attr)
        offset += consumed
    return attributes


def encode_attributes(attributes: Iterable[RADIUSAttribute]) -> bytes:
    """Concatenate TLVs in the given order."""
    return b"".join(attr.pack() for attr in attributes)


def _check_authenticator(authenticator: bytes) -> None:
    if len(authenticator) != AUTHENTICATOR_LENGTH:
        raise ProtocolError(
            f"Request authenticator must be {AUTHENTICATOR_LENGTH} bytes, "
            f"got {len(authenticator)}"
        )


def encode_user_password(
    password: bytes, secret: bytes, authenticator: bytes
) -> bytes:
    """Hide User-Password per RFC 2865 §5.2.

    The password is NUL padded to a multiple of 16 bytes, then each block is
    XORed with MD5(secret + previous), where previous is the request
    authenticator for the first block and the prior ciphertext block after.
    """
    _check_authenticator(authenticator)
    if len(password) > MAX_PASSWORD_LENGTH:
        raise AttributeTooLarge(
            f"User-Password too long: {len(password)} bytes (max {MAX_PASSWORD_LENGTH})"
        )
    pad_len = -len(password) % PASSWORD_BLOCK_SIZE
    if not password:
        pad_len = PASSWORD_BLOCK_SIZE
    padded = password + b"\x00" * pad_len

    encrypted = bytearray()
    prev = authenticator
    for i in range(0, len(padded), PASSWORD_BLOCK_SIZE):
        key = md5_digest(secret, prev)
        block = bytes(a ^ b for a, b in zip(padded[i : i + PASSWORD_BLOCK_SIZE], key))
        encrypted += block
        prev = block
    return bytes(encrypted)


def decode_user_password(
    obfuscated: bytes, secret: bytes, authenticator: bytes
) -> bytes:
    """Reverse :func:`encode_user_password`.

    Only NUL padding inside the final block is removed; NULs in earlier
    blocks belong to the password.
    """
    _check_authenticator(authenticator)
    if (
        not obfuscated
        or len(obfuscated) % PASSWORD_BLOCK_SIZE
        or len(obfuscated) > MAX_PASSWORD_LENGTH
    ):
        raise MalformedAttribute(
            f"Invalid encrypted password length: {len(obfuscated)}",
            {"length": len(obfuscated)},
        )

    decrypted = bytearray()
    prev = authenticator
    for i in range(0, len(obfuscated), PASSWORD_BLOCK_SIZE):
        chunk = obfuscated[i : i + PASSWORD_BLOCK_SIZE]
        key = md5_digest(secret, prev)
        decrypted += bytes(a ^ b for a, b in zip(chunk, key))
        prev = chunk

    head = bytes(decrypted[:-PASSWORD_BLOCK_SIZE])
    tail = bytes(decrypted[-PASSWORD_BLOCK_SIZE:]).rstrip(b"\x00")
    return head + tail


__all__ = [
    "RADIUSAttribute",
    "decode_attributes",
    "encode_attributes",
    "encode_user_password",
    "decode_user_password",
]
