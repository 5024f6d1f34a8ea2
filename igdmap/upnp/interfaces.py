"""Local IPv4 network interface enumeration."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkInterface:
    """An IPv4 address assigned to a local network interface."""

    name: str
    address: str


def list_ipv4_interfaces(names: list[str] | None = None) -> list[NetworkInterface]:
    """List every IPv4 address of every local interface.

    Args:
        names: Optional allow-list of interface names

    Returns:
        One NetworkInterface per IPv4 address, loopback included

    """
    interfaces: list[NetworkInterface] = []
    for name, addrs in psutil.net_if_addrs().items():
        if names is not None and name not in names:
            continue
        interfaces.extend(
            NetworkInterface(name=name, address=addr.address)
            for addr in addrs
            if addr.family == socket.AF_INET
        )

    logger.debug(
        "Found %d IPv4 interface address(es): %s",
        len(interfaces),
        ", ".join(f"{i.name}={i.address}" for i in interfaces),
    )
    return interfaces


def local_address_for(host: str, port: int = 1900) -> str:
    """Return the local IPv4 address the OS routes traffic to ``host`` from.

    No packet is sent: connecting a UDP socket only selects a route.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect((host, port))
        return sock.getsockname()[0]
    finally:
        sock.close()
