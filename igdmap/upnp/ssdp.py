"""SSDP (Simple Service Discovery Protocol) discovery engine.

One UDP socket is bound per local IPv4 interface address. Once every socket
has either started listening or failed, the engine becomes ready and
M-SEARCH queries can be multicast from all of them. Responses and NOTIFY
announcements carrying an ``ST`` header are emitted to device callbacks,
one per datagram, without deduplication.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import socket
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from igdmap.exceptions import NotReadyError
from igdmap.upnp.interfaces import NetworkInterface, list_ipv4_interfaces

logger = logging.getLogger(__name__)

# SSDP constants
SSDP_MULTICAST_IP = "239.255.255.250"
SSDP_MULTICAST_PORT = 1900
SSDP_MX = 1
SSDP_MULTICAST_TTL = 2

_ACCEPTED_START = re.compile(r"^(HTTP|NOTIFY)")

ReadyCallback = Callable[[], Any]
DeviceCallback = Callable[["SsdpMessage"], Any]
ListeningCallback = Callable[[NetworkInterface, asyncio.DatagramTransport], Any]
ErrorCallback = Callable[[NetworkInterface, Exception], Any]


class DiscoveryState(Enum):
    """Lifecycle of an SsdpDiscovery engine."""

    IDLE = "idle"
    BINDING = "binding"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class SsdpMessage:
    """A discovery response or announcement received on one interface."""

    headers: dict[str, str]
    interface: NetworkInterface
    transport: asyncio.DatagramTransport | None = None
    address: tuple[str, int] | None = None

    @property
    def location(self) -> str | None:
        """Device description URL, if announced."""
        return self.headers.get("location")

    @property
    def st(self) -> str | None:
        """Search target the message answers."""
        return self.headers.get("st")


def build_msearch_request(
    search_target: str,
    multicast: str = SSDP_MULTICAST_IP,
    port: int = SSDP_MULTICAST_PORT,
) -> bytes:
    """Build an SSDP M-SEARCH query.

    Args:
        search_target: ST (Search Target) header value
        multicast: Multicast group written to the HOST header
        port: Multicast port written to the HOST header

    Returns:
        M-SEARCH request bytes

    """
    msg = (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {multicast}:{port}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {SSDP_MX}\r\n"
        f"ST: {search_target}\r\n"
        "\r\n"
    )
    return msg.encode("utf-8")


def parse_ssdp_headers(message: str) -> dict[str, str]:
    """Parse the MIME-style header block of an SSDP message.

    Every line holding a colon is split at the first colon; names are
    lower-cased and both sides stripped. Lines without a colon (the start
    line, the terminating blank line) are ignored.
    """
    headers: dict[str, str] = {}
    for line in message.split("\r\n"):
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()
    return headers


def is_discovery_message(message: str) -> bool:
    """Return True if the start line is an HTTP response or a NOTIFY request."""
    return _ACCEPTED_START.match(message) is not None


class SsdpProtocol(asyncio.DatagramProtocol):
    """UDP protocol handler bound to one interface."""

    def __init__(self, discovery: SsdpDiscovery, interface: NetworkInterface):
        """Initialize protocol handler."""
        self.discovery = discovery
        self.interface = interface
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        """Remember the transport this protocol is attached to."""
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        """Handle incoming UDP datagram."""
        self.discovery.handle_datagram(data, addr, self.interface, self.transport)

    def error_received(self, exc: Exception) -> None:
        """Handle UDP error."""
        logger.debug("SSDP socket error on %s: %s", self.interface.address, exc)


class SsdpDiscovery:
    """Multicast discovery over every local IPv4 interface."""

    def __init__(
        self,
        multicast: str = SSDP_MULTICAST_IP,
        port: int = SSDP_MULTICAST_PORT,
        interfaces: list[NetworkInterface] | None = None,
        multicast_ttl: int = SSDP_MULTICAST_TTL,
    ):
        """Initialize discovery engine.

        Args:
            multicast: Default multicast group for searches
            port: Default multicast port for searches
            interfaces: Interfaces to bind (None to enumerate all IPv4 interfaces on start)
            multicast_ttl: IP multicast TTL set on every socket

        """
        self.multicast = multicast
        self.port = port
        self.multicast_ttl = multicast_ttl
        self.interfaces = interfaces
        self.state = DiscoveryState.IDLE
        self.transports: list[asyncio.DatagramTransport] = []
        self.logger = logging.getLogger(__name__)

        self._remaining = 0
        self._bind_tasks: list[asyncio.Task] = []
        self._ready: asyncio.Future[None] | None = None
        self._callback_tasks: set[asyncio.Future] = set()

        self.ready_callbacks: list[ReadyCallback] = []
        self.device_callbacks: list[DeviceCallback] = []
        self.listening_callbacks: list[ListeningCallback] = []
        self.error_callbacks: list[ErrorCallback] = []

    @property
    def ready(self) -> bool:
        """Whether searches may be issued."""
        return self.state is DiscoveryState.READY

    def add_ready_callback(self, callback: ReadyCallback) -> None:
        """Register a callback fired once when every socket finished binding."""
        self.ready_callbacks.append(callback)

    def add_device_callback(self, callback: DeviceCallback) -> None:
        """Register a callback fired for every accepted discovery message."""
        self.device_callbacks.append(callback)

    def add_listening_callback(self, callback: ListeningCallback) -> None:
        """Register a callback fired for every socket that starts listening."""
        self.listening_callbacks.append(callback)

    def add_error_callback(self, callback: ErrorCallback) -> None:
        """Register a callback fired for every socket that fails to bind."""
        self.error_callbacks.append(callback)

    async def start(self) -> None:
        """Bind one socket per interface and wait until the engine is ready."""
        if self.state is not DiscoveryState.IDLE:
            msg = f"Discovery cannot be started in state {self.state.value}"
            raise NotReadyError(msg)

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self.state = DiscoveryState.BINDING

        interfaces = self.interfaces
        if interfaces is None:
            interfaces = list_ipv4_interfaces()
        self.interfaces = interfaces
        self._remaining = len(interfaces)

        if not interfaces:
            self.logger.warning("No IPv4 interfaces available for SSDP discovery")
            self._mark_ready()
        else:
            self._bind_tasks = [
                asyncio.create_task(self._bind(interface)) for interface in interfaces
            ]

        await self.wait_ready()

    async def wait_ready(self) -> None:
        """Wait until every socket reached a bind outcome."""
        if self._ready is None:
            msg = "Discovery has not been started"
            raise NotReadyError(msg)
        try:
            await asyncio.shield(self._ready)
        except asyncio.CancelledError:
            if self._ready.cancelled():
                msg = "SSDP discovery was closed before it became ready"
                raise NotReadyError(msg) from None
            raise

    async def _bind(self, interface: NetworkInterface) -> None:
        loop = asyncio.get_running_loop()
        try:
            transport, _protocol = await loop.create_datagram_endpoint(
                lambda: SsdpProtocol(self, interface),
                local_addr=(interface.address, 0),
            )
        except OSError as e:
            self._on_bind_error(interface, e)
        else:
            self._on_listening(interface, transport)

    def _on_listening(
        self,
        interface: NetworkInterface,
        transport: asyncio.DatagramTransport,
    ) -> None:
        if self.state is DiscoveryState.CLOSED:
            transport.close()
            return

        self._configure_multicast(interface, transport)
        self.transports.append(transport)
        self.logger.debug(
            "SSDP socket listening on %s (%s)",
            interface.address,
            interface.name,
        )
        self._notify(self.listening_callbacks, interface, transport)
        self._on_bind_outcome()

    def _on_bind_error(self, interface: NetworkInterface, error: Exception) -> None:
        self.logger.warning(
            "Failed to bind SSDP socket on %s (%s): %s",
            interface.address,
            interface.name,
            error,
        )
        self._notify(self.error_callbacks, interface, error)
        self._on_bind_outcome()

    def _configure_multicast(
        self,
        interface: NetworkInterface,
        transport: asyncio.DatagramTransport,
    ) -> None:
        sock = transport.get_extra_info("socket")
        if sock is None:
            return
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.multicast_ttl)
            sock.setsockopt(
                socket.IPPROTO_IP,
                socket.IP_MULTICAST_IF,
                socket.inet_aton(interface.address),
            )
        except OSError as e:
            self.logger.debug(
                "Failed to configure multicast on %s: %s", interface.address, e
            )

    def _on_bind_outcome(self) -> None:
        if self.state is not DiscoveryState.BINDING:
            return
        self._remaining -= 1
        if self._remaining == 0:
            self._mark_ready()

    def _mark_ready(self) -> None:
        self.state = DiscoveryState.READY
        self.logger.info(
            "SSDP discovery ready on %d of %d interface address(es)",
            len(self.transports),
            len(self.interfaces or []),
        )
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)
        self._notify(self.ready_callbacks)

    def search(
        self,
        search_target: str,
        multicast: str | None = None,
        port: int | None = None,
    ) -> None:
        """Multicast one M-SEARCH query from every bound socket.

        Raises:
            NotReadyError: if the engine is not ready

        """
        if self.state is not DiscoveryState.READY:
            msg = "SSDP discovery is not ready"
            raise NotReadyError(msg, {"state": self.state.value})

        multicast = multicast or self.multicast
        port = port or self.port
        query = build_msearch_request(search_target, multicast, port)

        for transport in self.transports:
            transport.sendto(query, (multicast, port))

        self.logger.debug(
            "Sent M-SEARCH for %s to %s:%d from %d socket(s)",
            search_target,
            multicast,
            port,
            len(self.transports),
        )

    def handle_datagram(
        self,
        data: bytes,
        addr: tuple[str, int] | None,
        interface: NetworkInterface,
        transport: asyncio.DatagramTransport | None = None,
    ) -> SsdpMessage | None:
        """Parse a received datagram and emit it if it is a discovery message."""
        message = data.decode("utf-8", errors="ignore")
        if not is_discovery_message(message):
            return None

        headers = parse_ssdp_headers(message)
        if "st" not in headers:
            return None

        ssdp_message = SsdpMessage(
            headers=headers,
            interface=interface,
            transport=transport,
            address=addr,
        )
        self.logger.debug(
            "SSDP message from %s on %s: ST=%s, LOCATION=%s",
            addr[0] if addr else "unknown",
            interface.address,
            headers.get("st"),
            headers.get("location", "(none)"),
        )
        self._notify(self.device_callbacks, ssdp_message)
        return ssdp_message

    def close(self) -> None:
        """Close every bound socket; the engine cannot be restarted."""
        for task in self._bind_tasks:
            if not task.done():
                task.cancel()
        self._bind_tasks = []

        for transport in self.transports:
            transport.close()
        self.transports = []

        if self._ready is not None and not self._ready.done():
            self._ready.cancel()

        self.state = DiscoveryState.CLOSED
        self.logger.debug("SSDP discovery closed")

    def _notify(self, callbacks: list[Callable[..., Any]], *args: Any) -> None:
        for callback in list(callbacks):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._callback_tasks.add(task)
                    task.add_done_callback(self._callback_tasks.discard)
                    task.add_done_callback(
                        lambda t, cb=callback: self._log_callback_result(cb, t)
                    )
            except Exception:
                self.logger.exception("SSDP callback %r failed", callback)

    def _log_callback_result(self, callback: Callable[..., Any], task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("SSDP callback %r failed", callback, exc_info=exc)
