"""Real-time delivery: room registry, connection lifecycle and fan-out.

Components:
    - RoomRegistry: identity -> live connections, lock-guarded.
    - ConnectionLifecycle: join/leave/disconnect state machine.
    - DeliveryEngine: persist-then-broadcast message delivery.
    - ChatHub: wires the above and dispatches WebSocket events.
"""

from .delivery import DeliveryEngine
from .hub import ChatHub, get_hub, set_hub
from .lifecycle import Connection, ConnectionLifecycle, ConnectionState
from .registry import RoomRegistry

__all__ = [
    "ChatHub",
    "Connection",
    "ConnectionLifecycle",
    "ConnectionState",
    "DeliveryEngine",
    "RoomRegistry",
    "get_hub",
    "set_hub",
]
