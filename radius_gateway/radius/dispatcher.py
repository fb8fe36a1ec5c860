"""
RADIUS request dispatcher.

Owns the UDP endpoint and runs one asyncio task per received datagram:
decode, classify, extract credentials, authenticate, encode, send. The
blocking backend call runs in a thread pool so a slow identity provider
for one client never stalls datagrams from another.
"""

from __future__ import annotations

import asyncio
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from time import perf_counter
from typing import Any

from radius_gateway.auth.base import AuthBackend, AuthResult
from radius_gateway.exceptions import (
    ConfigurationError,
    InvalidAuthenticator,
    MissingCredential,
    ProtocolError,
    SendFailure,
    UnsupportedCode,
)
from radius_gateway.utils import metrics as _metrics
from radius_gateway.utils.logger import bind_context, clear_context, get_logger

from .attributes import RADIUSAttribute
from .client import ClientRegistry
from .constants import (
    ATTR_REPLY_MESSAGE,
    ATTR_USER_NAME,
    CODE_NAMES,
    MAX_ATTRIBUTE_VALUE_LENGTH,
    MAX_RADIUS_PACKET_LENGTH,
    RADIUS_ACCESS_ACCEPT,
    RADIUS_ACCESS_REJECT,
    RADIUS_ACCESS_REQUEST,
)
from .packet import RADIUSPacket, encode_response

logger = get_logger("radius_gateway.radius.dispatcher", component="radius")

Address = tuple[str, int]


class _RadiusProtocol(asyncio.DatagramProtocol):
    """Hands every datagram to the dispatcher; never blocks the read loop."""

    def __init__(self, dispatcher: RequestDispatcher):
        self.dispatcher = dispatcher

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self.dispatcher._on_datagram(data, (addr[0], addr[1]))

    def error_received(self, exc: Exception) -> None:
        logger.warning(
            "RADIUS socket error", event="radius.socket.error", error=str(exc)
        )


class RequestDispatcher:
    """Serve Access-Requests on a UDP socket using ``backend``.

    Usage::

        async with RequestDispatcher(backend, ClientRegistry(b"secret")) as d:
            ...

    Every well-formed Access-Request from a known client is answered with
    Access-Accept or Access-Reject. Malformed datagrams, other packet codes
    and requests without a User-Name are dropped without a reply.
    """

    def __init__(
        self,
        backend: AuthBackend,
        clients: ClientRegistry,
        *,
        host: str = "0.0.0.0",
        port: int = 1812,
        workers: int = 32,
        backend_timeout: float = 10.0,
        shutdown_timeout: float = 5.0,
        require_message_authenticator: bool = False,
        reject_reply_message: str = "",
        executor: ThreadPoolExecutor | None = None,
    ):
        self.backend = backend
        self.clients = clients
        self.host = host
        self.port = port
        self.workers = max(1, int(workers))
        self.backend_timeout = backend_timeout
        self.shutdown_timeout = shutdown_timeout
        self.require_message_authenticator = require_message_authenticator
        self.reject_reply_message = reject_reply_message
        self._reject_reply = reject_reply_message.encode("utf-8")
        if len(self._reject_reply) > MAX_ATTRIBUTE_VALUE_LENGTH:
            raise ConfigurationError(
                "reject_reply_message exceeds 253 bytes in UTF-8",
                {"length": len(self._reject_reply)},
            )

        self._owns_executor = executor is None
        self._executor = executor
        self._transport: asyncio.DatagramTransport | None = None
        self._tasks: set[asyncio.Task] = set()
        # A slot is held until the worker thread returns, not until the caller
        # stops waiting, so at most `workers` backend calls ever run at once
        self._backend_slots = asyncio.Semaphore(self.workers)
        self._backend_calls: set[Future] = set()
        self._accepting = False
        self._start_monotonic = 0.0

        # Counters are only touched from the event loop thread
        self.stats: dict[str, Any] = {
            "requests": 0,
            "accepts": 0,
            "rejects": 0,
            "dropped": {
                "oversized": 0,
                "malformed": 0,
                "unsupported_code": 0,
                "unknown_client": 0,
                "bad_authenticator": 0,
                "missing_username": 0,
            },
            "backend_errors": 0,
            "backend_timeouts": 0,
            "send_errors": 0,
        }

    # ---------- lifecycle ----------

    async def start(self) -> Address:
        """Bind the UDP socket and start serving; returns the bound address."""
        if self._transport is not None:
            raise RuntimeError("dispatcher already started")
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _RadiusProtocol(self),
            local_addr=(self.host, self.port),
        )
        self._transport = transport
        self._accepting = True
        self._start_monotonic = perf_counter()
        sockname = transport.get_extra_info("sockname")
        bound = (sockname[0], sockname[1])
        self.port = bound[1]
        logger.info(
            "RADIUS listening",
            event="service.start",
            host=bound[0],
            port=bound[1],
            backend=self.backend.name,
        )
        return bound

    async def stop(self) -> None:
        """Stop reading, drain in-flight requests within the shutdown timeout, close."""
        self._accepting = False
        pending = [t for t in self._tasks if not t.done()]
        if pending:
            _done, still_pending = await asyncio.wait(
                pending, timeout=self.shutdown_timeout
            )
            for task in still_pending:
                task.cancel()
            if still_pending:
                logger.warning(
                    "Cancelled in-flight RADIUS requests at shutdown",
                    event="radius.shutdown.cancelled",
                    count=len(still_pending),
                )
                await asyncio.gather(*still_pending, return_exceptions=True)
        self._tasks.clear()

        if self._transport is not None:
            self._transport.close()
            self._transport = None
        if self._executor is not None and self._owns_executor:
            # Worker threads still blocked in a backend call finish on their own
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.info("RADIUS stopped", event="service.stop")

    async def __aenter__(self) -> RequestDispatcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def address(self) -> Address | None:
        if self._transport is None:
            return None
        sockname = self._transport.get_extra_info("sockname")
        return (sockname[0], sockname[1])

    def get_stats(self) -> dict[str, Any]:
        """Return a snapshot of the dispatcher counters."""
        snapshot = dict(self.stats)
        snapshot["dropped"] = dict(self.stats["dropped"])
        snapshot["inflight"] = sum(1 for t in self._tasks if not t.done())
        snapshot["uptime_seconds"] = (
            int(perf_counter() - self._start_monotonic) if self._start_monotonic else 0
        )
        return snapshot

    # ---------- per-datagram pipeline ----------

    def _drop(self, reason: str) -> None:
        self.stats["dropped"][reason] += 1
        _metrics.radius_requests_total.labels(outcome=f"dropped_{reason}").inc()

    def _on_datagram(self, data: bytes, addr: Address) -> None:
        if not self._accepting:
            return
        if len(data) > MAX_RADIUS_PACKET_LENGTH:
            self._drop("oversized")
            logger.warning(
                "Oversized RADIUS datagram dropped",
                event="radius.packet.oversized",
                client_ip=addr[0],
                size=len(data),
            )
            return
        task = asyncio.create_task(self.handle_datagram(data, addr))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_datagram(self, data: bytes, addr: Address) -> bytes | None:
        """Process one datagram end to end and send the reply, if any."""
        token = bind_context(
            correlation_id=str(uuid.uuid4()),
            client_ip=addr[0],
            client_port=addr[1],
            service="radius",
        )
        _metrics.radius_inflight_requests.inc()
        try:
            reply = await self.process_request(data, addr)
            if reply is not None:
                try:
                    self._send(reply, addr)
                except SendFailure as exc:
                    self.stats["send_errors"] += 1
                    logger.warning(
                        "Failed to send RADIUS response",
                        event="radius.response.send_error",
                        error=exc.message,
                    )
                    return None
            return reply
        except asyncio.CancelledError:
            logger.info(
                "RADIUS request cancelled", event="radius.request.cancelled"
            )
            raise
        except Exception:
            # Nothing may escape into the event loop and affect other exchanges
            logger.exception(
                "Unhandled error processing RADIUS datagram",
                event="radius.request.error",
            )
            return None
        finally:
            _metrics.radius_inflight_requests.dec()
            clear_context(token)

    async def process_request(self, data: bytes, addr: Address) -> bytes | None:
        """Decode, authenticate and encode; returns the reply or None to drop."""
        secret = self.clients.secret_for(addr[0])
        if secret is None:
            self._drop("unknown_client")
            logger.warning(
                "RADIUS request from unknown client",
                event="radius.client.unknown",
            )
            return None

        try:
            request = RADIUSPacket.decode(data, secret)
        except UnsupportedCode as exc:
            self._drop("unsupported_code")
            logger.info(
                "Unsupported RADIUS packet code dropped",
                event="radius.auth.unexpected_code",
                code=exc.code,
            )
            return None
        except InvalidAuthenticator:
            self._drop("bad_authenticator")
            logger.warning(
                "Access-Request with invalid Message-Authenticator dropped",
                event="radius.auth.bad_message_authenticator",
            )
            return None
        except ProtocolError as exc:
            self._drop("malformed")
            logger.warning(
                "Invalid RADIUS packet dropped",
                event="radius.packet.invalid",
                error=exc.message,
                error_type=exc.__class__.__name__,
            )
            return None

        if request.code != RADIUS_ACCESS_REQUEST:
            self._drop("unsupported_code")
            logger.info(
                "Non Access-Request packet dropped",
                event="radius.auth.unexpected_code",
                code=CODE_NAMES.get(request.code, request.code),
            )
            return None

        if self.require_message_authenticator and not request.has_message_authenticator:
            self._drop("bad_authenticator")
            logger.warning(
                "Access-Request without required Message-Authenticator",
                event="radius.auth.bad_message_authenticator",
                identifier=request.identifier,
            )
            return None

        self.stats["requests"] += 1
        try:
            username, password = self._extract_credentials(request, secret)
        except MissingCredential as exc:
            self._drop("missing_username")
            logger.warning(
                "Access-Request without User-Name dropped",
                event="radius.auth.missing_username",
                identifier=request.identifier,
                error=exc.message,
            )
            return None

        if password is None:
            result = AuthResult.reject("missing or undecodable password")
        else:
            result = await self._authenticate(username, password)

        return self._build_reply(request, result, username, secret)

    def _extract_credentials(
        self, request: RADIUSPacket, secret: bytes
    ) -> tuple[str, str | None]:
        attr = request.get_attribute(ATTR_USER_NAME)
        if attr is None or not attr.value:
            raise MissingCredential("User-Name attribute missing or empty")
        username = attr.as_string()

        try:
            raw = request.user_password(secret)
        except ProtocolError as exc:
            logger.warning(
                "Undecodable User-Password",
                event="radius.auth.bad_password_attribute",
                username=username,
                error=exc.message,
            )
            return username, None
        if raw is None:
            return username, None
        try:
            return username, raw.decode("utf-8")
        except UnicodeDecodeError:
            # Wrong shared secret on the client shows up here
            logger.warning(
                "User-Password is not valid UTF-8",
                event="radius.auth.bad_password_attribute",
                username=username,
            )
            return username, None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="RADIUS"
            )
        return self._executor

    def _submit_backend_call(self, username: str, password: str) -> Future:
        """Run ``backend.authenticate`` on a worker; the caller holds a slot."""
        loop = asyncio.get_running_loop()
        try:
            future = self._get_executor().submit(
                self.backend.authenticate, username, password
            )
        except BaseException:
            self._backend_slots.release()
            raise
        self._backend_calls.add(future)

        def _finished(done: Future) -> None:
            # Runs in the worker thread once the call has really returned
            try:
                loop.call_soon_threadsafe(self._release_backend_slot, done)
            except RuntimeError:
                # Loop already closed: nothing is left waiting for the slot
                pass

        future.add_done_callback(_finished)
        return future

    def _release_backend_slot(self, future: Future) -> None:
        self._backend_calls.discard(future)
        self._backend_slots.release()

    async def wait_backend_idle(self, timeout: float) -> int:
        """Wait for backend calls still running on worker threads.

        Calls abandoned after ``backend_timeout`` keep running until the
        backend returns. Returns how many were still running at ``timeout``.
        """
        running = [f for f in self._backend_calls if not f.done()]
        if not running:
            return 0
        loop = asyncio.get_running_loop()
        _done, not_done = await loop.run_in_executor(
            None, wait_futures, running, timeout
        )
        return len(not_done)

    async def _authenticate(self, username: str, password: str) -> AuthResult:
        # Waiting for a free slot is not part of the backend timeout
        await self._backend_slots.acquire()
        start = perf_counter()
        try:
            future = self._submit_backend_call(username, password)
            return await asyncio.wait_for(
                asyncio.wrap_future(future), timeout=self.backend_timeout
            )
        except TimeoutError:
            self.stats["backend_timeouts"] += 1
            logger.warning(
                "Authentication backend timed out",
                event="radius.backend.timeout",
                username=username,
                backend=self.backend.name,
                timeout=self.backend_timeout,
            )
            return AuthResult.reject("backend timeout")
        except Exception as exc:
            self.stats["backend_errors"] += 1
            logger.warning(
                "Authentication backend error",
                event="radius.backend.error",
                username=username,
                backend=self.backend.name,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return AuthResult.reject("backend error")
        finally:
            _metrics.radius_auth_latency_seconds.observe(
                max(0.0, perf_counter() - start)
            )

    def _build_reply(
        self,
        request: RADIUSPacket,
        result: AuthResult,
        username: str,
        secret: bytes,
    ) -> bytes:
        attributes: list[RADIUSAttribute] = []
        if result.accepted:
            code = RADIUS_ACCESS_ACCEPT
            self.stats["accepts"] += 1
            _metrics.radius_requests_total.labels(outcome="accept").inc()
            logger.info(
                "RADIUS authentication accepted",
                event="radius.auth.accept",
                username=username,
                identifier=request.identifier,
            )
        else:
            code = RADIUS_ACCESS_REJECT
            self.stats["rejects"] += 1
            _metrics.radius_requests_total.labels(outcome="reject").inc()
            logger.info(
                "RADIUS authentication rejected",
                event="radius.auth.reject",
                username=username,
                identifier=request.identifier,
                reason=result.reason,
            )
            if self._reject_reply:
                attributes.append(RADIUSAttribute(ATTR_REPLY_MESSAGE, self._reject_reply))

        return encode_response(
            code,
            request.identifier,
            request.authenticator,
            attributes,
            secret,
            add_message_authenticator=request.has_message_authenticator,
        )

    def _send(self, reply: bytes, addr: Address) -> None:
        transport = self._transport
        if transport is None or transport.is_closing():
            raise SendFailure("transport closed", {"client_ip": addr[0]})
        try:
            transport.sendto(reply, addr)
        except OSError as exc:
            raise SendFailure(str(exc), {"client_ip": addr[0]}) from exc
