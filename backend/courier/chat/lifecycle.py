"""Connection lifecycle: join/leave/disconnect handling.

Each connection moves through a small state machine:

    UNJOINED --join--> JOINED --disconnect--> CLOSED
        ^                 |
        +------leave------+   (when its last identity is left)

A join while already JOINED adds another identity; earlier memberships are
kept, so one connection can listen for several identities. Liveness is left
to the transport (uvicorn answers WebSocket pings and reports closes); there
is no timeout-driven eviction here.
"""
import logging
import uuid
from enum import Enum
from typing import Any, FrozenSet, Optional

from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle state of a live connection."""
    UNJOINED = "unjoined"
    JOINED = "joined"
    CLOSED = "closed"


class Connection:
    """One live client session bound to a single transport channel.

    Hashing and equality are by object identity, so a connection can be
    used directly as a registry member.

    Attributes:
        id: Server-assigned connection identifier (for logs).
        transport: Object exposing ``async send_json(payload)``; in
            production a ``fastapi.WebSocket``.
        state: Current lifecycle state.
    """

    def __init__(self, transport: Any, connection_id: Optional[str] = None) -> None:
        self.id = connection_id or str(uuid.uuid4())
        self.transport = transport
        self.state = ConnectionState.UNJOINED

    @property
    def closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    async def send_json(self, payload: dict) -> None:
        await self.transport.send_json(payload)

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, state={self.state.value})"


class ConnectionLifecycle:
    """Applies join/leave/disconnect events to the room registry."""

    def __init__(self, registry: RoomRegistry) -> None:
        self._registry = registry

    async def open(self, websocket: Any) -> Connection:
        """Accept a transport and wrap it in an UNJOINED connection."""
        await websocket.accept()
        connection = Connection(websocket)
        logger.info("[Lifecycle] Connection %s opened", connection.id)
        return connection

    def join(self, connection: Connection, identity: str) -> bool:
        """Register the connection under an identity.

        Returns:
            False if the connection is already closed (the event is ignored).
        """
        if connection.closed:
            logger.debug("[Lifecycle] Ignoring join on closed connection %s", connection.id)
            return False
        self._registry.register(identity, connection)
        connection.state = ConnectionState.JOINED
        logger.info("[Lifecycle] Connection %s joined as %s", connection.id, identity)
        return True

    def leave(self, connection: Connection, identity: str) -> bool:
        """Remove the connection from one identity's room.

        Returns:
            True if the connection was registered under that identity.
        """
        if connection.closed:
            return False
        removed = self._registry.unregister_identity(identity, connection)
        if removed and not self._registry.identities_of(connection):
            connection.state = ConnectionState.UNJOINED
        logger.info(
            "[Lifecycle] Connection %s left %s (was member: %s)",
            connection.id, identity, removed,
        )
        return removed

    def disconnect(self, connection: Connection) -> FrozenSet[str]:
        """Tear the connection down; safe to call more than once.

        Returns:
            The identities the connection was registered under.
        """
        identities = self._registry.unregister(connection)
        if not connection.closed:
            connection.state = ConnectionState.CLOSED
            logger.info(
                "[Lifecycle] Connection %s closed (identities: %s)",
                connection.id, sorted(identities),
            )
        return identities

    def identities(self, connection: Connection) -> FrozenSet[str]:
        """Identities the connection is currently registered under."""
        return self._registry.identities_of(connection)
