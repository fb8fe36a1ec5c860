"""RADIUS clients (NAS devices) and the shared secret each one uses."""

import ipaddress
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from radius_gateway.utils.logger import get_logger

logger = get_logger("radius_gateway.radius.client", component="radius")


@dataclass(frozen=True)
class RadiusClient:
    """Resolved RADIUS client configuration (single host or network)."""

    network: ipaddress.IPv4Network | ipaddress.IPv6Network
    secret: str
    name: str

    def contains(self, ip: str) -> bool:
        try:
            ip_obj = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return ip_obj in self.network

    @property
    def secret_bytes(self) -> bytes:
        return self.secret.encode("utf-8")

    def __repr__(self) -> str:
        return f"RadiusClient(name={self.name!r}, network={str(self.network)!r})"


def _sort_clients(clients: Iterable[RadiusClient]) -> list[RadiusClient]:
    return sorted(clients, key=lambda entry: entry.network.prefixlen, reverse=True)


class ClientRegistry:
    """Maps datagram source addresses to shared secrets.

    With no clients registered every source is served with the default
    secret. Once any client is registered, sources outside every client
    network resolve to None and their datagrams are dropped.
    """

    def __init__(
        self,
        default_secret: str | bytes | None = None,
        clients: Mapping[str, str] | None = None,
    ) -> None:
        if isinstance(default_secret, str):
            default_secret = default_secret.encode("utf-8")
        self._default_secret = default_secret or None
        self._clients: list[RadiusClient] = []
        self._lock = threading.RLock()
        for network, secret in (clients or {}).items():
            self.add(network, secret)

    def add(self, network: str, secret: str, name: str | None = None) -> bool:
        """Add a RADIUS client by IP or network."""
        try:
            net = ipaddress.ip_network(network, strict=False)
        except ValueError:
            logger.error(
                "Invalid RADIUS client network",
                event="radius.client.invalid_network",
                network=network,
            )
            return False

        client = RadiusClient(network=net, secret=secret, name=name or str(net))
        with self._lock:
            self._clients.append(client)
            self._clients[:] = _sort_clients(self._clients)
        logger.debug(
            "Added RADIUS client",
            event="radius.client.added",
            client_name=client.name,
            network=str(client.network),
        )
        return True

    def load(self, clients: Iterable[RadiusClient]) -> None:
        """Replace current clients with pre-built entries."""
        new_clients = list(clients)
        with self._lock:
            self._clients[:] = _sort_clients(new_clients)
        logger.debug(
            "Loaded RADIUS client definitions",
            event="radius.client.loaded",
            count=len(new_clients),
        )

    @property
    def clients(self) -> list[RadiusClient]:
        with self._lock:
            return list(self._clients)

    def lookup(self, ip: str) -> RadiusClient | None:
        """Find a matching client for the given IP (most specific network first)."""
        try:
            ip_obj = ipaddress.ip_address(ip)
        except ValueError:
            logger.warning(
                "Received RADIUS packet from invalid IP",
                event="radius.packet.invalid_ip",
                client_ip=ip,
            )
            return None
        with self._lock:
            for client in self._clients:
                if ip_obj in client.network:
                    return client
        return None

    def secret_for(self, ip: str) -> bytes | None:
        """Shared secret to use for datagrams from ``ip``, or None to drop them."""
        with self._lock:
            restricted = bool(self._clients)
        if not restricted:
            return self._default_secret
        client = self.lookup(ip)
        return client.secret_bytes if client else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)


__all__ = ["RadiusClient", "ClientRegistry"]
