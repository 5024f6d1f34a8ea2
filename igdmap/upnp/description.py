"""UPnP device description fetching, flattening and service selection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

import aiohttp

from igdmap.exceptions import DeviceUnavailableError
from igdmap.models import DEFAULT_ACCEPTED_SERVICES
from igdmap.upnp.http import HttpClient
from igdmap.upnp.xmltree import XML_ERRORS, Node, parse_xml, unwrap_fields

logger = logging.getLogger(__name__)


def _text(fields: Mapping[str, Any], name: str) -> str | None:
    """Return a text field, or None when it is absent or holds child elements."""
    value = fields.get(name)
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class Service:
    """A service entry of a device description."""

    fields: Mapping[str, Any] = field(default_factory=dict)

    @property
    def service_type(self) -> str | None:
        return _text(self.fields, "serviceType")

    @property
    def service_id(self) -> str | None:
        return _text(self.fields, "serviceId")

    @property
    def control_url(self) -> str | None:
        return _text(self.fields, "controlURL")

    @property
    def scpd_url(self) -> str | None:
        return _text(self.fields, "SCPDURL")

    @property
    def event_sub_url(self) -> str | None:
        return _text(self.fields, "eventSubURL")

    @property
    def base_url(self) -> str | None:
        return _text(self.fields, "baseURL")


@dataclass(frozen=True)
class Device:
    """A device node; ``devices`` and ``services`` hold direct children only."""

    fields: Mapping[str, Any] = field(default_factory=dict)
    devices: tuple[Device, ...] = ()
    services: tuple[Service, ...] = ()

    @property
    def device_type(self) -> str | None:
        return _text(self.fields, "deviceType")

    @property
    def friendly_name(self) -> str | None:
        return _text(self.fields, "friendlyName")


@dataclass(frozen=True)
class DeviceDescription:
    """Parsed description with flat views of the device tree.

    ``services`` holds every service of every device at every depth and
    ``devices`` every device below the root, both in traversal order.
    """

    root_devices: tuple[Device, ...]
    devices: tuple[Device, ...]
    services: tuple[Service, ...]


def _children(node: Mapping[str, Any], list_name: str, item_name: str) -> list[Node]:
    items: list[Node] = []
    for container in node.get(list_name, []):
        if isinstance(container, dict):
            items.extend(container.get(item_name, []))
    return items


def _scalar_fields(node: Mapping[str, Any], skip: Iterable[str] = ()) -> dict[str, Any]:
    skipped = set(skip)
    return {
        name: value
        for name, value in unwrap_fields(dict(node)).items()
        if name not in skipped
    }


def build_service(node: Node) -> Service:
    """Build a Service from its nested mapping node."""
    if not isinstance(node, dict):
        return Service()
    return Service(fields=_scalar_fields(node))


def build_device(node: Node) -> Device:
    """Build an immutable Device subtree from its nested mapping node."""
    if not isinstance(node, dict):
        return Device()
    return Device(
        fields=_scalar_fields(node, skip=("deviceList", "serviceList")),
        devices=tuple(build_device(child) for child in _children(node, "deviceList", "device")),
        services=tuple(
            build_service(child) for child in _children(node, "serviceList", "service")
        ),
    )


def flatten_devices(roots: Iterable[Device]) -> tuple[tuple[Device, ...], tuple[Service, ...]]:
    """Collect every non-root device and every service, depth first."""
    devices: list[Device] = []
    services: list[Service] = []

    def visit(device: Device) -> None:
        services.extend(device.services)
        devices.extend(device.devices)
        for child in device.devices:
            visit(child)

    for root in roots:
        visit(root)
    return tuple(devices), tuple(services)


def parse_description(root: Mapping[str, Any]) -> DeviceDescription:
    """Build a DeviceDescription from the ``root`` node of a description document."""
    roots = tuple(build_device(node) for node in root.get("device", []))
    devices, services = flatten_devices(roots)
    return DeviceDescription(root_devices=roots, devices=devices, services=services)


def parse_description_xml(text: str) -> DeviceDescription:
    """Parse description XML text.

    Raises:
        DeviceUnavailableError: malformed XML, no ``root`` element or an
            unusable device tree

    """
    try:
        document = parse_xml(text)
    except XML_ERRORS as e:
        msg = f"Failed to parse device description XML: {e}"
        raise DeviceUnavailableError(msg) from e

    root = document.get("root")
    if not isinstance(root, dict):
        msg = "Device description has no root element"
        raise DeviceUnavailableError(msg)
    try:
        return parse_description(root)
    except (TypeError, AttributeError, ValueError) as e:
        msg = f"Malformed device description: {e}"
        raise DeviceUnavailableError(msg) from e


def select_service(
    description: DeviceDescription,
    accepted_services: Iterable[str] = DEFAULT_ACCEPTED_SERVICES,
) -> Service:
    """Select the first service whose type is accepted.

    Raises:
        DeviceUnavailableError: no accepted service, or it lacks a control or SCPD URL

    """
    accepted = set(accepted_services)
    service = next(
        (s for s in description.services if s.service_type in accepted),
        None,
    )
    if service is None:
        msg = "No accepted WAN connection service in device description"
        raise DeviceUnavailableError(msg, {"accepted": sorted(accepted)})
    if not service.control_url or not service.scpd_url:
        msg = f"Service {service.service_type} has no control or SCPD URL"
        raise DeviceUnavailableError(msg)
    return service


def resolve_service_urls(service: Service, description_url: str) -> tuple[str, str]:
    """Return absolute (controlURL, SCPDURL) for a selected service."""
    base = service.base_url or description_url
    return (
        urljoin(base, service.control_url or ""),
        urljoin(base, service.scpd_url or ""),
    )


async def fetch_description(http: HttpClient, url: str) -> DeviceDescription:
    """Fetch and parse a device description.

    Raises:
        DeviceUnavailableError: transport failure, non-200 status or parse failure

    """
    try:
        response = await http.get(url)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        msg = f"Network error fetching device description: {e}"
        raise DeviceUnavailableError(msg, {"url": url}) from e

    if response.status != 200:
        msg = f"Failed to fetch device description: HTTP {response.status}"
        raise DeviceUnavailableError(msg, {"url": url})

    return parse_description_xml(response.body)


@dataclass(frozen=True)
class GatewayInfo:
    """Control endpoint of the service selected for a gateway."""

    service_type: str
    control_url: str
    scpd_url: str


async def resolve_gateway_info(
    http: HttpClient,
    url: str,
    accepted_services: Iterable[str] = DEFAULT_ACCEPTED_SERVICES,
) -> GatewayInfo:
    """Fetch a description and resolve the control endpoint of its accepted service.

    Args:
        http: HTTP client used for the GET
        url: Device description URL (the SSDP ``LOCATION``)
        accepted_services: Service types the gateway may be controlled through

    Returns:
        GatewayInfo with absolute control and SCPD URLs

    Raises:
        DeviceUnavailableError: the description is unusable

    """
    description = await fetch_description(http, url)
    service = select_service(description, accepted_services)
    control_url, scpd_url = resolve_service_urls(service, url)
    logger.debug(
        "Selected %s at %s (description %s)",
        service.service_type,
        control_url,
        url,
    )
    return GatewayInfo(
        service_type=service.service_type or "",
        control_url=control_url,
        scpd_url=scpd_url,
    )
