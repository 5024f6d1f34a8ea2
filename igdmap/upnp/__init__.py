"""UPnP Internet Gateway Device discovery and control.

Provides SSDP discovery over every local IPv4 interface, device description
resolution, SOAP action invocation and port mapping management.
"""

from __future__ import annotations

from igdmap.upnp.description import (
    Device,
    DeviceDescription,
    GatewayInfo,
    Service,
    fetch_description,
    select_service,
)
from igdmap.upnp.gateway import Gateway, GatewayState
from igdmap.upnp.http import HttpClient, HttpResponse
from igdmap.upnp.interfaces import NetworkInterface, list_ipv4_interfaces
from igdmap.upnp.mapping import Endpoint, MappingManager, PortMappingEntry
from igdmap.upnp.session import DiscoverySession, discover_gateways
from igdmap.upnp.soap import ActionInvoker
from igdmap.upnp.ssdp import DiscoveryState, SsdpDiscovery, SsdpMessage

__all__ = [
    "ActionInvoker",
    "Device",
    "DeviceDescription",
    "DiscoverySession",
    "DiscoveryState",
    "Endpoint",
    "Gateway",
    "GatewayInfo",
    "GatewayState",
    "HttpClient",
    "HttpResponse",
    "MappingManager",
    "NetworkInterface",
    "PortMappingEntry",
    "Service",
    "SsdpDiscovery",
    "SsdpMessage",
    "discover_gateways",
    "fetch_description",
    "list_ipv4_interfaces",
    "select_service",
]
