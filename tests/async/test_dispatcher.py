"""Dispatcher behaviour over real loopback UDP sockets."""

from __future__ import annotations

import asyncio
import json
import logging
import struct
import time

import pytest

from radius_gateway.exceptions import BackendUnavailable, ConfigurationError
from radius_gateway.radius.attributes import RADIUSAttribute
from radius_gateway.radius.client import ClientRegistry
from radius_gateway.radius.constants import (
    ATTR_REPLY_MESSAGE,
    RADIUS_ACCESS_ACCEPT,
    RADIUS_ACCESS_REJECT,
    RADIUS_ACCOUNTING_REQUEST,
)
from radius_gateway.radius.dispatcher import RequestDispatcher
from radius_gateway.radius.packet import RADIUSPacket, verify_response
from radius_gateway.utils.logging_config import StructuredJSONFormatter
from tests.stubs import SECRET, FakeBackend, UdpClient, access_request


def _dispatcher(backend: FakeBackend, **kwargs) -> RequestDispatcher:
    kwargs.setdefault("host", "127.0.0.1")
    kwargs.setdefault("port", 0)
    kwargs.setdefault("workers", 4)
    kwargs.setdefault("backend_timeout", 2.0)
    kwargs.setdefault("shutdown_timeout", 1.0)
    clients = kwargs.pop("clients", None) or ClientRegistry(SECRET)
    return RequestDispatcher(backend, clients, **kwargs)


@pytest.mark.asyncio
async def test_accept_reply_is_signed_for_the_request():
    backend = FakeBackend({"alice": "wonderland"})
    async with _dispatcher(backend) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            raw, req_auth = access_request("alice", "wonderland", identifier=42)
            client.send(raw)
            reply = await client.receive()
        finally:
            client.close()

    assert reply is not None
    pkt = RADIUSPacket.decode(reply)
    assert pkt.code == RADIUS_ACCESS_ACCEPT
    assert pkt.identifier == 42
    assert verify_response(reply, req_auth, SECRET)
    assert backend.calls == [("alice", "wonderland")]
    assert dispatcher.get_stats()["accepts"] == 1


@pytest.mark.asyncio
async def test_reject_never_logs_the_password(caplog):
    secret_pw = "Sup3r-Secret-Pw!"
    backend = FakeBackend({"bob": secret_pw}, rejections={"bob": "disabled"})
    with caplog.at_level(logging.DEBUG):
        async with _dispatcher(backend) as dispatcher:
            client = await UdpClient.connect(dispatcher.address)
            try:
                raw, req_auth = access_request("bob", secret_pw, identifier=7)
                client.send(raw)
                reply = await client.receive()
            finally:
                client.close()

    assert reply is not None
    pkt = RADIUSPacket.decode(reply)
    assert pkt.code == RADIUS_ACCESS_REJECT
    assert pkt.identifier == 7
    assert verify_response(reply, req_auth, SECRET)
    assert pkt.get_attribute(ATTR_REPLY_MESSAGE) is None

    formatter = StructuredJSONFormatter()
    rendered = [formatter.format(record) for record in caplog.records]
    assert any(json.loads(line).get("event") == "radius.auth.reject" for line in rendered)
    for line in rendered:
        assert secret_pw not in line
        assert SECRET.decode() not in line
    assert secret_pw not in caplog.text


@pytest.mark.asyncio
async def test_slow_backend_does_not_block_other_clients():
    backend = FakeBackend(
        {"slowpoke": "pw", "alice": "pw"},
        delays={"slowpoke": 1.0, "alice": 0.01},
    )
    async with _dispatcher(backend) as dispatcher:
        slow = await UdpClient.connect(dispatcher.address)
        fast = await UdpClient.connect(dispatcher.address)
        try:
            slow.send(access_request("slowpoke", "pw", identifier=1)[0])
            await asyncio.sleep(0.05)
            started = time.monotonic()
            fast.send(access_request("alice", "pw", identifier=2)[0])

            fast_reply = await fast.receive(timeout=0.8)
            fast_elapsed = time.monotonic() - started
            assert fast_reply is not None
            assert fast_elapsed < 0.8
            assert slow.protocol.replies.empty()

            slow_reply = await slow.receive(timeout=3.0)
            assert slow_reply is not None
        finally:
            slow.close()
            fast.close()

    assert RADIUSPacket.decode(fast_reply).identifier == 2
    assert RADIUSPacket.decode(slow_reply).identifier == 1


@pytest.mark.asyncio
async def test_accounting_request_gets_no_reply():
    backend = FakeBackend({"alice": "pw"})
    async with _dispatcher(backend) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            raw, _ = access_request("alice", "pw")
            accounting = bytes([RADIUS_ACCOUNTING_REQUEST]) + raw[1:]
            client.send(accounting)
            assert await client.receive(timeout=0.3) is None
        finally:
            client.close()

    assert backend.calls == []
    assert dispatcher.get_stats()["dropped"]["unsupported_code"] == 1


@pytest.mark.asyncio
async def test_malformed_datagrams_are_dropped_and_server_keeps_serving():
    backend = FakeBackend({"alice": "pw"})
    async with _dispatcher(backend) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            client.send(b"\x01\x02")
            good, _ = access_request("alice", "pw", identifier=9)
            bad_length = bytearray(good)
            struct.pack_into("!H", bad_length, 2, len(good) + 10)
            client.send(bytes(bad_length))
            assert await client.receive(timeout=0.3) is None

            client.send(good)
            reply = await client.receive()
        finally:
            client.close()

    assert reply is not None
    assert RADIUSPacket.decode(reply).identifier == 9
    assert dispatcher.get_stats()["dropped"]["malformed"] == 2


@pytest.mark.asyncio
async def test_backend_failures_become_rejects():
    backend = FakeBackend(error=BackendUnavailable("okta down"))
    async with _dispatcher(backend) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            raw, req_auth = access_request("alice", "pw", identifier=3)
            client.send(raw)
            reply = await client.receive()
        finally:
            client.close()

    assert reply is not None
    assert RADIUSPacket.decode(reply).code == RADIUS_ACCESS_REJECT
    assert verify_response(reply, req_auth, SECRET)
    assert dispatcher.get_stats()["backend_errors"] == 1


@pytest.mark.asyncio
async def test_backend_timeout_becomes_reject():
    backend = FakeBackend({"alice": "pw"}, delays={"alice": 0.5})
    async with _dispatcher(backend, backend_timeout=0.1) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            client.send(access_request("alice", "pw")[0])
            reply = await client.receive()
        finally:
            client.close()

    assert reply is not None
    assert RADIUSPacket.decode(reply).code == RADIUS_ACCESS_REJECT
    assert dispatcher.get_stats()["backend_timeouts"] == 1


@pytest.mark.asyncio
async def test_unknown_client_is_dropped():
    backend = FakeBackend({"alice": "pw"})
    clients = ClientRegistry(SECRET, {"10.0.0.0/8": SECRET.decode()})
    async with _dispatcher(backend, clients=clients) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            client.send(access_request("alice", "pw")[0])
            assert await client.receive(timeout=0.3) is None
        finally:
            client.close()

    assert backend.calls == []
    assert dispatcher.get_stats()["dropped"]["unknown_client"] == 1


@pytest.mark.asyncio
async def test_per_client_secret_is_used_for_signing():
    backend = FakeBackend({"alice": "pw"})
    clients = ClientRegistry(None, {"127.0.0.0/8": "loopback-secret"})
    async with _dispatcher(backend, clients=clients) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            raw, req_auth = access_request("alice", "pw", secret=b"loopback-secret")
            client.send(raw)
            reply = await client.receive()
        finally:
            client.close()

    assert reply is not None
    assert verify_response(reply, req_auth, b"loopback-secret")
    assert RADIUSPacket.decode(reply).code == RADIUS_ACCESS_ACCEPT


@pytest.mark.asyncio
async def test_message_authenticator_round_trip():
    backend = FakeBackend({"alice": "pw"})
    async with _dispatcher(backend, require_message_authenticator=True) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            client.send(access_request("alice", "pw", identifier=1)[0])
            assert await client.receive(timeout=0.3) is None

            raw, req_auth = access_request(
                "alice", "pw", identifier=2, add_message_authenticator=True
            )
            client.send(raw)
            reply = await client.receive()
        finally:
            client.close()

    assert reply is not None
    pkt = RADIUSPacket.decode(reply)
    assert pkt.code == RADIUS_ACCESS_ACCEPT
    assert pkt.has_message_authenticator
    assert verify_response(reply, req_auth, SECRET)
    assert dispatcher.get_stats()["dropped"]["bad_authenticator"] == 1


@pytest.mark.asyncio
async def test_invalid_message_authenticator_is_dropped():
    backend = FakeBackend({"alice": "pw"})
    async with _dispatcher(backend) as dispatcher:
        client = await UdpClient.connect(dispatcher.address)
        try:
            raw, _ = access_request(
                "alice", "pw", secret=b"not-the-secret", add_message_authenticator=True
            )
            client.send(raw)
            assert await client.receive(timeout=0.3) is None
        finally:
            client.close()

    assert backend.calls == []


@pytest.mark.asyncio
async def test_shutdown_drains_in_flight_requests():
    backend = FakeBackend({"alice": "pw"}, delays={"alice": 0.3})
    dispatcher = _dispatcher(backend, shutdown_timeout=2.0)
    addr = await dispatcher.start()
    client = await UdpClient.connect(addr)
    try:
        client.send(access_request("alice", "pw", identifier=11)[0])
        await asyncio.sleep(0.1)
        await dispatcher.stop()
        reply = await client.receive(timeout=0.5)
    finally:
        client.close()

    assert reply is not None
    assert RADIUSPacket.decode(reply).identifier == 11
    assert dispatcher.address is None


@pytest.mark.asyncio
async def test_shutdown_cancels_after_timeout():
    backend = FakeBackend({"alice": "pw"}, delays={"alice": 1.0})
    dispatcher = _dispatcher(backend, shutdown_timeout=0.1)
    addr = await dispatcher.start()
    client = await UdpClient.connect(addr)
    try:
        client.send(access_request("alice", "pw")[0])
        await asyncio.sleep(0.1)
        started = time.monotonic()
        await dispatcher.stop()
        assert time.monotonic() - started < 0.9
        assert await client.receive(timeout=0.2) is None
    finally:
        client.close()

    assert dispatcher.get_stats()["inflight"] == 0


@pytest.mark.asyncio
async def test_process_request_without_username_is_dropped():
    backend = FakeBackend({"alice": "pw"})
    dispatcher = _dispatcher(backend)
    raw, _ = access_request(None, "pw")
    assert await dispatcher.process_request(raw, ("127.0.0.1", 5000)) is None
    raw, _ = access_request("", "pw")
    assert await dispatcher.process_request(raw, ("127.0.0.1", 5000)) is None
    assert backend.calls == []
    assert dispatcher.get_stats()["dropped"]["missing_username"] == 2


@pytest.mark.asyncio
async def test_process_request_without_password_rejects_without_backend_call():
    backend = FakeBackend({"alice": "pw"})
    dispatcher = _dispatcher(backend, reject_reply_message="Access denied")
    raw, req_auth = access_request("alice", None, identifier=4)
    reply = await dispatcher.process_request(raw, ("127.0.0.1", 5000))
    assert reply is not None
    pkt = RADIUSPacket.decode(reply)
    assert pkt.code == RADIUS_ACCESS_REJECT
    assert pkt.get_string(ATTR_REPLY_MESSAGE) == "Access denied"
    assert verify_response(reply, req_auth, SECRET)
    assert backend.calls == []


@pytest.mark.asyncio
async def test_process_request_keeps_unknown_attributes_out_of_the_way():
    backend = FakeBackend({"alice": "pw"})
    dispatcher = _dispatcher(backend)
    raw, _ = access_request(
        "alice", "pw", extra=[RADIUSAttribute(240, b"\x00\x01"), RADIUSAttribute(26, b"")]
    )
    reply = await dispatcher.process_request(raw, ("127.0.0.1", 5000))
    assert reply is not None
    assert RADIUSPacket.decode(reply).code == RADIUS_ACCESS_ACCEPT


def test_reply_message_is_limited_in_encoded_bytes():
    backend = FakeBackend({"alice": "pw"})
    # 127 two-byte characters: 254 bytes, one more than an attribute holds
    with pytest.raises(ConfigurationError):
        _dispatcher(backend, reject_reply_message="é" * 127)


@pytest.mark.asyncio
async def test_multibyte_reply_message_is_sent_on_reject():
    message = "é" * 126
    dispatcher = _dispatcher(FakeBackend({"alice": "pw"}), reject_reply_message=message)
    raw, req_auth = access_request("alice", "wrong", identifier=5)
    reply = await dispatcher.process_request(raw, ("127.0.0.1", 5000))

    assert reply is not None
    pkt = RADIUSPacket.decode(reply)
    assert pkt.code == RADIUS_ACCESS_REJECT
    assert pkt.get_string(ATTR_REPLY_MESSAGE) == message
    assert verify_response(reply, req_auth, SECRET)


@pytest.mark.asyncio
async def test_timed_out_call_keeps_its_worker_until_it_returns():
    backend = FakeBackend(
        {"slowpoke": "pw", "alice": "pw"},
        delays={"slowpoke": 1.0, "alice": 0.01},
    )
    dispatcher = _dispatcher(backend, workers=1, backend_timeout=0.3)
    addr = ("127.0.0.1", 5000)

    slow = asyncio.create_task(
        dispatcher.process_request(access_request("slowpoke", "pw", identifier=1)[0], addr)
    )
    await asyncio.sleep(0.05)
    fast = asyncio.create_task(
        dispatcher.process_request(access_request("alice", "pw", identifier=2)[0], addr)
    )
    slow_reply, fast_reply = await asyncio.wait_for(asyncio.gather(slow, fast), 5)

    assert RADIUSPacket.decode(slow_reply).code == RADIUS_ACCESS_REJECT
    assert RADIUSPacket.decode(fast_reply).code == RADIUS_ACCESS_ACCEPT
    assert dispatcher.get_stats()["backend_timeouts"] == 1
    assert backend.peak == 1


@pytest.mark.asyncio
async def test_wait_backend_idle_covers_abandoned_calls():
    backend = FakeBackend({"slowpoke": "pw"}, delays={"slowpoke": 0.5})
    dispatcher = _dispatcher(backend, backend_timeout=0.1)
    assert await dispatcher.wait_backend_idle(0.1) == 0

    raw, _ = access_request("slowpoke", "pw")
    reply = await dispatcher.process_request(raw, ("127.0.0.1", 5000))
    assert RADIUSPacket.decode(reply).code == RADIUS_ACCESS_REJECT
    assert backend.completed == 0

    assert await dispatcher.wait_backend_idle(0.01) == 1
    assert await dispatcher.wait_backend_idle(3.0) == 0
    assert backend.completed == 1
