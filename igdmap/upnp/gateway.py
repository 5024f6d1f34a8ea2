"""Gateway handle: a discovered device resolved to a controllable service."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from igdmap.exceptions import DeviceUnavailableError, NotReadyError
from igdmap.models import DEFAULT_ACCEPTED_SERVICES, AddMappingOptions, MappingOptions
from igdmap.upnp.description import GatewayInfo, resolve_gateway_info
from igdmap.upnp.http import HttpClient
from igdmap.upnp.interfaces import NetworkInterface, local_address_for
from igdmap.upnp.mapping import MappingManager, PortMappingEntry
from igdmap.upnp.soap import ActionInvoker

logger = logging.getLogger(__name__)

GatewayCallback = Callable[["Gateway"], Any]
UnavailableCallback = Callable[["Gateway", DeviceUnavailableError], Any]


class GatewayState(Enum):
    """Resolution state of a gateway; READY and UNAVAILABLE are terminal."""

    PENDING = "pending"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class Gateway:
    """A gateway device reachable from one local interface."""

    def __init__(
        self,
        url: str,
        interface: NetworkInterface,
        services: Iterable[str] | None = None,
        http: HttpClient | None = None,
    ):
        """Initialize gateway handle.

        Args:
            url: Device description URL
            interface: Local interface the device was discovered on
            services: Accepted service types (None for WANIPConnection:1 and
                WANPPPConnection:1)
            http: Shared HTTP client (a private one is created and owned if None)

        """
        self.url = url
        self.interface = interface
        self.services = tuple(services) if services is not None else DEFAULT_ACCEPTED_SERVICES
        self.state = GatewayState.PENDING
        self.info: GatewayInfo | None = None
        self.error: DeviceUnavailableError | None = None

        self.http = http or HttpClient()
        self.owns_http = http is None
        self._mappings: MappingManager | None = None
        self._task: asyncio.Task | None = None

        self.ready_callbacks: list[GatewayCallback] = []
        self.unavailable_callbacks: list[UnavailableCallback] = []

    def __repr__(self) -> str:
        return f"Gateway(url={self.url!r}, interface={self.interface.address!r}, state={self.state.value})"

    @classmethod
    async def connect(
        cls,
        url: str,
        interface: NetworkInterface | None = None,
        services: Iterable[str] | None = None,
        http: HttpClient | None = None,
    ) -> Gateway:
        """Create a gateway for a known description URL and wait until it is ready.

        Args:
            url: Device description URL
            interface: Local interface (None to use the address routed to the URL host)
            services: Accepted service types
            http: Shared HTTP client

        Raises:
            DeviceUnavailableError: the description is unusable, or no local
                route to the URL host exists

        """
        if interface is None:
            host = urlparse(url).hostname or ""
            try:
                address = await asyncio.to_thread(local_address_for, host)
            except OSError as e:
                msg = f"No local route to gateway host {host!r}: {e}"
                raise DeviceUnavailableError(msg, {"url": url}) from e
            interface = NetworkInterface(name="", address=address)
        gateway = cls(url, interface, services=services, http=http)
        try:
            return await gateway.wait_ready()
        except DeviceUnavailableError:
            await gateway.close()
            raise

    @property
    def ready(self) -> bool:
        """Whether mapping operations may be issued."""
        return self.state is GatewayState.READY

    def add_ready_callback(self, callback: GatewayCallback) -> None:
        """Register a callback fired once the gateway resolved a usable service."""
        self.ready_callbacks.append(callback)

    def add_unavailable_callback(self, callback: UnavailableCallback) -> None:
        """Register a callback fired if the gateway cannot be used."""
        self.unavailable_callbacks.append(callback)

    def start(self) -> asyncio.Task:
        """Schedule description resolution (idempotent)."""
        if self._task is None:
            self._task = asyncio.create_task(self._resolve())
        return self._task

    async def wait_ready(self) -> Gateway:
        """Wait for resolution to finish.

        Returns:
            This gateway, once ready

        Raises:
            DeviceUnavailableError: the description could not be fetched or
                holds no usable service

        """
        await asyncio.shield(self.start())
        if self.error is not None:
            raise self.error
        return self

    async def _resolve(self) -> None:
        try:
            info = await resolve_gateway_info(self.http, self.url, self.services)
        except DeviceUnavailableError as e:
            self.state = GatewayState.UNAVAILABLE
            self.error = e
            logger.warning("Gateway %s unavailable: %s", self.url, e)
            await self._notify(self.unavailable_callbacks, self, e)
            return

        self.info = info
        self._mappings = MappingManager(ActionInvoker(self.http, info), self.interface)
        self.state = GatewayState.READY
        logger.info(
            "Gateway %s ready on %s (%s)",
            self.url,
            self.interface.address,
            info.service_type,
        )
        await self._notify(self.ready_callbacks, self)

    async def _notify(self, callbacks: list[Callable[..., Any]], *args: Any) -> None:
        for callback in list(callbacks):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Gateway callback %r failed", callback)

    def _require_ready(self) -> MappingManager:
        if self._mappings is None:
            msg = f"Gateway {self.url} is not ready"
            raise NotReadyError(msg, {"state": self.state.value})
        return self._mappings

    @property
    def mappings(self) -> MappingManager:
        """Mapping manager of a ready gateway.

        Raises:
            NotReadyError: the gateway is not ready

        """
        return self._require_ready()

    def iter_mappings(self) -> AsyncIterator[PortMappingEntry]:
        """Iterate the gateway's mapping table lazily."""
        return self._require_ready().iter_mappings()

    async def get_mappings(self) -> list[PortMappingEntry]:
        """Return the gateway's mapping table."""
        return await self._require_ready().get_mappings()

    async def add_mapping(
        self,
        internal_port: int,
        remote_port: int,
        options: AddMappingOptions | None = None,
    ) -> dict[str, Any]:
        """Create a port mapping (see MappingManager.add_mapping)."""
        return await self._require_ready().add_mapping(internal_port, remote_port, options)

    async def delete_mapping(
        self,
        internal_port: int,
        remote_port: int,
        options: MappingOptions | None = None,
    ) -> dict[str, Any]:
        """Delete a port mapping (see MappingManager.delete_mapping)."""
        return await self._require_ready().delete_mapping(internal_port, remote_port, options)

    async def get_external_ip(self) -> str | None:
        """Return the gateway's external IP address."""
        return await self._require_ready().get_external_ip()

    async def close(self) -> None:
        """Release the HTTP client if this gateway created it."""
        if self.owns_http:
            await self.http.close()
