"""
Candidate address generation for /24 subnets.

Given one of our local IPv4 addresses, produce every other host address
in the same /24 that we should try to dial.
"""

import ipaddress
from typing import Iterable, Iterator, Set

FIRST_HOST = 1
LAST_HOST = 254
LOOPBACK_PREFIX = "127"


def is_ipv4(address: str) -> bool:
    """Check if a string is a well-formed dotted-quad IPv4 address."""
    if not isinstance(address, str):
        return False
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True


def expand(local_address: str, skip_self: bool = True) -> Iterator[str]:
    """
    Yield the candidate addresses in the /24 of ``local_address``.

    For ``a.b.c.d`` this is ``a.b.c.1`` through ``a.b.c.254`` in ascending
    order. ``a.b.c.d`` itself is left out when ``skip_self`` is set, and
    anything starting with ``127`` is always left out.

    IPv6 or malformed input yields nothing.

    Usage:
        for candidate in expand("192.168.1.45"):
            print(candidate)
    """
    if not is_ipv4(local_address):
        return

    prefix = local_address[:local_address.rfind(".") + 1]
    for host in range(FIRST_HOST, LAST_HOST + 1):
        candidate = f"{prefix}{host}"
        if skip_self and candidate == local_address:
            continue
        if candidate.startswith(LOOPBACK_PREFIX):
            continue
        yield candidate


def expand_all(local_addresses: Iterable[str], skip_self: bool = True) -> Iterator[str]:
    """
    Expand several local addresses, yielding each candidate once.

    Two interfaces on the same /24 would otherwise dial every host twice.
    Our own addresses are never yielded when ``skip_self`` is set, even if
    they belong to a sibling interface's subnet.
    """
    local_addresses = list(local_addresses)
    seen: Set[str] = set(local_addresses) if skip_self else set()
    for local_address in local_addresses:
        for candidate in expand(local_address, skip_self):
            if candidate in seen:
                continue
            seen.add(candidate)
            yield candidate
