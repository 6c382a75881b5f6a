"""Local network helpers for subnet discovery"""

import ipaddress
import logging
import socket
from typing import List, Optional

import psutil

logger = logging.getLogger(__name__)


def get_local_ipv4() -> Optional[str]:
    """Get the first non-loopback IPv4 address of this host.

    Returns:
        Dotted IPv4 string, or None if the host has no usable interface
    """
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as e:
        logger.warning(f"Could not list network interfaces: {e}")
        return None

    for name, addrs in interfaces.items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            if ip.is_loopback or ip.is_link_local:
                continue
            logger.debug(f"Using {ip} on {name} for subnet detection")
            return str(ip)

    return None


def subnet_hosts(address: str) -> List[str]:
    """All host addresses of the /24 containing `address`.

    Accepts a plain address ("192.168.1.17") or a network
    ("192.168.1.0/24"); anything wider than /24 is narrowed to the /24
    of its first address.

    Raises:
        ValueError: If `address` is not IPv4
    """
    if '/' in address:
        network = ipaddress.IPv4Network(address, strict=False)
        if network.prefixlen < 24:
            network = ipaddress.IPv4Network(f"{network.network_address}/24")
    else:
        network = ipaddress.IPv4Network(f"{address}/24", strict=False)
    return [str(host) for host in network.hosts()]


def is_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
        return True
    except ValueError:
        return False
