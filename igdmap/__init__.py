"""igdmap - UPnP Internet Gateway Device discovery and port mapping."""

from __future__ import annotations

__version__ = "0.1.0"

from igdmap.exceptions import (
    ActionError,
    ActionFaultError,
    ActionHttpError,
    ConfigurationError,
    DeviceUnavailableError,
    IGDError,
    NotReadyError,
    PreflightUnreachableError,
)
from igdmap.models import AddMappingOptions, Config, MappingOptions, MappingProtocol
from igdmap.upnp import (
    DiscoverySession,
    Gateway,
    PortMappingEntry,
    SsdpDiscovery,
    discover_gateways,
)

__all__ = [
    "ActionError",
    "ActionFaultError",
    "ActionHttpError",
    "AddMappingOptions",
    "Config",
    "ConfigurationError",
    "DeviceUnavailableError",
    "DiscoverySession",
    "Gateway",
    "IGDError",
    "MappingOptions",
    "MappingProtocol",
    "NotReadyError",
    "PortMappingEntry",
    "PreflightUnreachableError",
    "SsdpDiscovery",
    "__version__",
    "discover_gateways",
]
