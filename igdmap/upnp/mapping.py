"""Port mapping operations on a gateway's WAN connection service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from igdmap.exceptions import ActionError, ActionFaultError, PreflightUnreachableError
from igdmap.models import AddMappingOptions, MappingOptions
from igdmap.upnp.interfaces import NetworkInterface
from igdmap.upnp.reachability import is_port_reachable
from igdmap.upnp.soap import ActionInvoker

logger = logging.getLogger(__name__)

# ArrayIndexInvalid / NoSuchEntryInArray: the normal end of the mapping table
END_OF_LIST_CODES = frozenset({"713", "714"})


@dataclass(frozen=True)
class Endpoint:
    """Host and port of one side of a mapping."""

    host: str
    port: int


@dataclass(frozen=True)
class PortMappingEntry:
    """A normalized entry of the gateway's port mapping table."""

    public: Endpoint
    private: Endpoint
    protocol: str
    enabled: bool
    description: str
    ttl: int


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_mapping_entry(fields: dict[str, Any]) -> PortMappingEntry:
    """Convert raw GetGenericPortMappingEntry output into a PortMappingEntry."""
    return PortMappingEntry(
        public=Endpoint(
            host=fields.get("NewRemoteHost") or "",
            port=_to_int(fields.get("NewExternalPort")),
        ),
        private=Endpoint(
            host=fields.get("NewInternalClient") or "",
            port=_to_int(fields.get("NewInternalPort")),
        ),
        protocol=(fields.get("NewProtocol") or "").lower(),
        enabled=fields.get("NewEnabled") == "1",
        description=fields.get("NewPortMappingDescription") or "",
        ttl=_to_int(fields.get("NewLeaseDuration")),
    )


class MappingManager:
    """Lists, creates and deletes port mappings through an ActionInvoker."""

    def __init__(self, invoker: ActionInvoker, interface: NetworkInterface):
        """Initialize mapping manager.

        Args:
            invoker: Action invoker bound to the gateway's control URL
            interface: Local interface the gateway was discovered on; its
                address is the default internal host of new mappings

        """
        self.invoker = invoker
        self.interface = interface

    async def iter_mappings(self) -> AsyncIterator[PortMappingEntry]:
        """Yield mapping entries by index until the gateway reports an error.

        Failures end the enumeration and are not raised: the end-of-table
        codes are logged at debug level, anything else as a warning.
        """
        index = 0
        while True:
            try:
                fields = await self.invoker.call(
                    "GetGenericPortMappingEntry",
                    [("NewPortMappingIndex", index)],
                )
            except ActionFaultError as e:
                if e.error_code in END_OF_LIST_CODES:
                    logger.debug("End of mapping table at index %d (%s)", index, e.error_code)
                else:
                    logger.warning(
                        "Mapping enumeration stopped at index %d: %s", index, e
                    )
                return
            except ActionError as e:
                logger.warning("Mapping enumeration stopped at index %d: %s", index, e)
                return

            yield normalize_mapping_entry(fields)
            index += 1

    async def get_mappings(self) -> list[PortMappingEntry]:
        """Return every mapping entry in index order."""
        return [entry async for entry in self.iter_mappings()]

    async def add_mapping(
        self,
        internal_port: int,
        remote_port: int,
        options: AddMappingOptions | None = None,
    ) -> dict[str, Any]:
        """Create a port mapping.

        Args:
            internal_port: Port on the internal host receiving traffic
            remote_port: External port opened on the gateway
            options: Mapping options (defaults from AddMappingOptions)

        Returns:
            Fields of the AddPortMapping response

        Raises:
            PreflightUnreachableError: port scan enabled and the internal
                target did not accept a TCP connection
            ActionFaultError: the gateway rejected the mapping
            ActionHttpError: HTTP-level failure

        """
        options = options or AddMappingOptions()
        internal_host = options.internal_host or self.interface.address

        if options.port_scan and not await is_port_reachable(
            internal_host, internal_port, options.port_scan_timeout
        ):
            msg = f"{internal_host}:{internal_port} is not accepting connections"
            raise PreflightUnreachableError(
                msg, {"host": internal_host, "port": internal_port}
            )

        result = await self.invoker.call(
            "AddPortMapping",
            [
                ("NewInternalPort", internal_port),
                ("NewInternalClient", internal_host),
                ("NewExternalPort", remote_port),
                ("NewRemoteHost", options.remote_host),
                ("NewProtocol", options.protocol.value),
                ("NewEnabled", 1),
                ("NewPortMappingDescription", options.description),
                ("NewLeaseDuration", options.ttl),
            ],
        )
        logger.info(
            "Mapped %s %d -> %s:%d (%s, ttl %ds)",
            options.protocol.value,
            remote_port,
            internal_host,
            internal_port,
            options.description,
            options.ttl,
        )
        return result

    async def delete_mapping(
        self,
        internal_port: int,
        remote_port: int,
        options: MappingOptions | None = None,
    ) -> dict[str, Any]:
        """Delete a port mapping.

        Raises:
            ActionFaultError: the gateway rejected the deletion
            ActionHttpError: HTTP-level failure

        """
        options = options or MappingOptions()
        internal_host = options.internal_host or self.interface.address

        result = await self.invoker.call(
            "DeletePortMapping",
            [
                ("NewInternalPort", internal_port),
                ("NewInternalClient", internal_host),
                ("NewExternalPort", remote_port),
                ("NewRemoteHost", options.remote_host),
                ("NewProtocol", options.protocol.value),
            ],
        )
        logger.info("Removed %s mapping of port %d", options.protocol.value, remote_port)
        return result

    async def get_external_ip(self) -> str | None:
        """Return the gateway's external IP address, if it reports one."""
        result = await self.invoker.call("GetExternalIPAddress")
        return result.get("NewExternalIPAddress") or None
