"""RADIUS protocol engine: codecs, client registry and request dispatcher."""

from .attributes import (
    RADIUSAttribute,
    decode_attributes,
    decode_user_password,
    encode_attributes,
    encode_user_password,
)
from .client import ClientRegistry, RadiusClient
from .dispatcher import RequestDispatcher
from .packet import (
    RADIUSPacket,
    decode_packet,
    encode_request,
    encode_response,
    verify_response,
)

__all__ = [
    "RADIUSAttribute",
    "RADIUSPacket",
    "ClientRegistry",
    "RadiusClient",
    "RequestDispatcher",
    "decode_attributes",
    "decode_packet",
    "decode_user_password",
    "encode_attributes",
    "encode_request",
    "encode_response",
    "encode_user_password",
    "verify_response",
]
