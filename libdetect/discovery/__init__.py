"""
Subnet peer discovery.

Finds other instances on the same port by dialing every address in our
/24 subnets, accepts their inbound connections, and reports each
connection's reachability:
- PeerReachable when a connection is established
- PeerUnreachable when it breaks
"""

from .events import (
    CallbackListener,
    DialResult,
    Direction,
    DiscoveryListener,
    PeerConnection,
    PeerReachable,
    PeerState,
    PeerUnreachable,
)
from .listener import InboundListener
from .liveness import PeerLivenessTracker
from .prober import Prober
from .service import DiscoveryService, start

__all__ = [
    "CallbackListener",
    "DialResult",
    "Direction",
    "DiscoveryListener",
    "PeerConnection",
    "PeerReachable",
    "PeerState",
    "PeerUnreachable",
    "InboundListener",
    "PeerLivenessTracker",
    "Prober",
    "DiscoveryService",
    "start",
]
