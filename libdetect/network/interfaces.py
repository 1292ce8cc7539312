"""
Local interface enumeration.

Lists every IPv4 and IPv6 address bound to this host's network
interfaces. The IPv4 ones seed the subnet scan.
"""

import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional

import psutil

from ..errors import InterfaceEnumerationError

logger = logging.getLogger(__name__)


@dataclass
class NetworkInterface:
    """An address bound to one of the host's interfaces."""
    name: str
    ip: str
    family: int  # 4 or 6
    netmask: Optional[str] = None

    @property
    def is_ipv4(self) -> bool:
        return self.family == 4

    @property
    def is_loopback(self) -> bool:
        try:
            return ipaddress.ip_address(self.ip).is_loopback
        except ValueError:
            return False

    @property
    def is_private(self) -> bool:
        return is_private_ip(self.ip)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "ip": self.ip,
            "family": self.family,
            "netmask": self.netmask,
            "private": self.is_private,
        }


PRIVATE_IPV4_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
]


def is_private_ip(ip: str) -> bool:
    """True for RFC 1918 IPv4 addresses; loopback and IPv6 are not private here."""
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    if addr.version != 4:
        return False
    return any(addr in network for network in PRIVATE_IPV4_NETWORKS)


def get_local_addresses() -> List[NetworkInterface]:
    """
    Get every address on every local interface (eth, wifi, loopback, ...).

    Raises:
        InterfaceEnumerationError: if the OS refuses to list interfaces
    """
    try:
        if_addrs = psutil.net_if_addrs()
    except (OSError, RuntimeError) as e:
        raise InterfaceEnumerationError(f"Cannot list network interfaces: {e}") from e

    interfaces = []
    for name, addrs in if_addrs.items():
        for addr in addrs:
            if addr.family == socket.AF_INET:
                family = 4
            elif addr.family == socket.AF_INET6:
                family = 6
            else:
                continue
            # Link-local IPv6 carries a scope suffix, e.g. fe80::1%eth0
            ip = addr.address.split('%')[0]
            interfaces.append(NetworkInterface(
                name=name,
                ip=ip,
                family=family,
                netmask=addr.netmask,
            ))

    logger.debug(f"Found {len(interfaces)} local addresses")
    return interfaces


def get_local_ipv4_addresses() -> List[str]:
    """Get the IPv4 addresses of all local interfaces, in interface order."""
    addresses = []
    for iface in get_local_addresses():
        if iface.is_ipv4 and iface.ip not in addresses:
            addresses.append(iface.ip)
    return addresses
