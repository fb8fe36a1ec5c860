"""Property tests for codec invariants."""

import struct

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from radius_gateway.exceptions import LengthMismatch, ProtocolError, ShortPacket
from radius_gateway.radius.attributes import (
    RADIUSAttribute,
    decode_user_password,
    encode_user_password,
)
from radius_gateway.radius.constants import (
    ATTR_MESSAGE_AUTHENTICATOR,
    ATTR_USER_PASSWORD,
    RADIUS_ACCESS_ACCEPT,
    RADIUS_ACCESS_REQUEST,
)
from radius_gateway.radius.packet import RADIUSPacket, encode_request, encode_response

pytestmark = pytest.mark.property

attribute_st = st.builds(
    RADIUSAttribute,
    attr_type=st.integers(0, 255).filter(
        lambda t: t not in (ATTR_USER_PASSWORD, ATTR_MESSAGE_AUTHENTICATOR)
    ),
    value=st.binary(max_size=40),
)
secret_st = st.binary(min_size=1, max_size=32)
auth_st = st.binary(min_size=16, max_size=16)


@settings(max_examples=100, deadline=None)
@given(
    identifier=st.integers(0, 255),
    attributes=st.lists(attribute_st, max_size=12),
    secret=secret_st,
    authenticator=auth_st,
)
def test_access_request_round_trip(identifier, attributes, secret, authenticator):
    raw = encode_request(identifier, attributes, secret, authenticator=authenticator)
    pkt = RADIUSPacket.decode(raw, secret)
    assert pkt.code == RADIUS_ACCESS_REQUEST
    assert pkt.identifier == identifier
    assert pkt.attributes == attributes


@settings(max_examples=100, deadline=None)
@given(data=st.binary(max_size=19))
def test_short_datagrams_always_raise_short_packet(data):
    with pytest.raises(ShortPacket):
        RADIUSPacket.decode(data)


@settings(max_examples=100, deadline=None)
@given(
    attributes=st.lists(attribute_st, max_size=5),
    delta=st.integers(-19, 200).filter(lambda d: d != 0),
)
def test_length_field_disagreeing_with_size(attributes, delta):
    raw = bytearray(encode_request(1, attributes, b"s", authenticator=bytes(16)))
    struct.pack_into("!H", raw, 2, len(raw) + delta)
    with pytest.raises(LengthMismatch):
        RADIUSPacket.decode(bytes(raw))


@settings(max_examples=100, deadline=None)
@given(data=st.binary(max_size=512))
def test_decode_never_raises_outside_protocol_errors(data):
    try:
        RADIUSPacket.decode(data, b"secret")
    except ProtocolError:
        pass


@settings(max_examples=50, deadline=None)
@given(
    secret=secret_st,
    position=st.integers(0, 31),
    flip=st.integers(1, 255),
    identifier=st.integers(0, 255),
    authenticator=auth_st,
)
def test_any_secret_change_changes_response_authenticator(
    secret, position, flip, identifier, authenticator
):
    position %= len(secret)
    other = bytearray(secret)
    other[position] ^= flip
    a = encode_response(RADIUS_ACCESS_ACCEPT, identifier, authenticator, [], secret)
    b = encode_response(RADIUS_ACCESS_ACCEPT, identifier, authenticator, [], bytes(other))
    assert a[4:20] != b[4:20]


@settings(max_examples=100, deadline=None)
@given(
    password=st.binary(max_size=128).filter(lambda p: not p.endswith(b"\x00")),
    secret=secret_st,
    authenticator=auth_st,
)
def test_user_password_hiding_is_reversible(password, secret, authenticator):
    hidden = encode_user_password(password, secret, authenticator)
    assert len(hidden) % 16 == 0
    assert decode_user_password(hidden, secret, authenticator) == password
