"""
libdetect - Local subnet peer discovery

Finds other instances of this service on the same /24 subnets by
brute-force TCP dialing, and reports when they become reachable or
unreachable.

Example:
    >>> from libdetect import CallbackListener, start
    >>> handle = await start(11460, CallbackListener(on_reachable=print))
    >>> await handle.stop()
"""

__version__ = "1.0.0"

from .config import DetectSettings, get_settings
from .discovery import (
    CallbackListener,
    DiscoveryService,
    PeerReachable,
    PeerUnreachable,
    start,
)
from .errors import InterfaceEnumerationError, LibDetectError, ListenerError

__all__ = [
    "__version__",
    "DetectSettings",
    "get_settings",
    "CallbackListener",
    "DiscoveryService",
    "PeerReachable",
    "PeerUnreachable",
    "start",
    "LibDetectError",
    "InterfaceEnumerationError",
    "ListenerError",
]
