"""Discovery sessions tying SSDP discovery to gateway resolution."""

from __future__ import annotations

import asyncio
import logging

from igdmap.config.config import get_config
from igdmap.logging_config import log_exception
from igdmap.models import Config
from igdmap.upnp.gateway import Gateway, GatewayCallback
from igdmap.upnp.http import HttpClient
from igdmap.upnp.interfaces import list_ipv4_interfaces
from igdmap.upnp.ssdp import SsdpDiscovery, SsdpMessage

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 3.0


class DiscoverySession:
    """Searches for gateways and resolves every device that answers.

    Each response or announcement carrying a ``LOCATION`` header yields a
    :class:`Gateway`; gateways that resolve a usable service are appended to
    :attr:`gateways` and passed to the ``on_gateway`` callbacks.
    """

    def __init__(
        self,
        config: Config | None = None,
        on_gateway: GatewayCallback | None = None,
        http: HttpClient | None = None,
    ):
        """Initialize discovery session.

        Args:
            config: Configuration (None for the global configuration)
            on_gateway: Callback receiving every ready gateway (plain or coroutine function)
            http: HTTP client shared by all gateways (created and owned if None)

        """
        self.config = config or get_config()
        discovery = self.config.discovery

        self.gateways: list[Gateway] = []
        self.gateway_callbacks: list[GatewayCallback] = []
        if on_gateway is not None:
            self.gateway_callbacks.append(on_gateway)

        self.http = http or HttpClient(timeout=self.config.http.request_timeout)
        self._owns_http = http is None

        self.discovery = SsdpDiscovery(
            multicast=discovery.multicast_address,
            port=discovery.multicast_port,
            multicast_ttl=discovery.multicast_ttl,
        )
        self.discovery.add_ready_callback(self._on_ready)
        self.discovery.add_device_callback(self._on_device)

        self._seen_locations: set[str] = set()
        self._pending: set[asyncio.Task] = set()
        self._timeout_handle: asyncio.TimerHandle | None = None

    async def __aenter__(self) -> DiscoverySession:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def add_gateway_callback(self, callback: GatewayCallback) -> None:
        """Register a callback receiving every ready gateway."""
        self.gateway_callbacks.append(callback)

    async def start(self) -> None:
        """Bind discovery sockets and issue the initial search.

        Raises:
            NotReadyError: the session was closed before discovery became ready

        """
        discovery = self.config.discovery
        if discovery.interfaces is not None:
            self.discovery.interfaces = list_ipv4_interfaces(discovery.interfaces)

        if discovery.timeout is not None:
            loop = asyncio.get_running_loop()
            self._timeout_handle = loop.call_later(discovery.timeout, self.close)

        await self.discovery.start()

    def search(self, search_target: str | None = None) -> None:
        """Multicast a search; answers are resolved as they arrive."""
        self.discovery.search(search_target or self.config.discovery.search_target)

    def _on_ready(self) -> None:
        self.search()

    def _on_device(self, message: SsdpMessage) -> None:
        location = message.location
        if not location:
            return
        if self.config.discovery.unique_locations:
            if location in self._seen_locations:
                return
            self._seen_locations.add(location)

        gateway = Gateway(
            location,
            message.interface,
            services=self.config.discovery.accepted_services,
            http=self.http,
        )
        gateway.add_ready_callback(self.gateways.append)
        for callback in self.gateway_callbacks:
            gateway.add_ready_callback(callback)

        task = gateway.start()
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def close(self) -> None:
        """Stop discovery; resolutions already in flight keep running."""
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        self.discovery.close()

    async def aclose(self) -> None:
        """Stop discovery, wait for pending resolutions and release the HTTP client."""
        self.close()
        if self._pending:
            results = await asyncio.gather(*self._pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    log_exception(logger, result, "Gateway resolution failed")
        if self._owns_http:
            await self.http.close()


async def discover_gateways(
    config: Config | None = None,
    timeout: float | None = None,
    http: HttpClient | None = None,
) -> list[Gateway]:
    """Run a discovery session for ``timeout`` seconds and return the ready gateways.

    Args:
        config: Configuration (None for the global configuration)
        timeout: Search duration (None for ``discovery.timeout`` or 3 seconds)
        http: HTTP client the returned gateways keep using (closed by the
            caller). If None, a client is created and each returned gateway
            owns it: ``Gateway.close()`` releases it, and it reopens lazily
            for gateways still in use

    Returns:
        Gateways that resolved a usable service, in resolution order

    """
    config = config or get_config()
    if timeout is None:
        timeout = config.discovery.timeout or DEFAULT_DISCOVERY_TIMEOUT

    session_config = config.model_copy(
        update={"discovery": config.discovery.model_copy(update={"timeout": None})}
    )
    client = http or HttpClient(timeout=config.http.request_timeout)
    try:
        async with DiscoverySession(session_config, http=client) as session:
            await asyncio.sleep(timeout)
            session.close()
    except BaseException:
        if http is None:
            await client.close()
        raise

    gateways = list(session.gateways)
    if http is None:
        if gateways:
            for gateway in gateways:
                gateway.owns_http = True
        else:
            await client.close()

    logger.info("Discovered %d gateway(s)", len(gateways))
    return gateways
