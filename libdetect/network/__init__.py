"""
Network helpers for subnet discovery.

This module provides:
- Local interface enumeration
- /24 candidate address expansion
"""

from .interfaces import (
    NetworkInterface,
    get_local_addresses,
    get_local_ipv4_addresses,
    is_private_ip,
)
from .subnet import (
    expand,
    expand_all,
    is_ipv4,
)

__all__ = [
    "NetworkInterface",
    "get_local_addresses",
    "get_local_ipv4_addresses",
    "is_private_ip",
    "expand",
    "expand_all",
    "is_ipv4",
]
