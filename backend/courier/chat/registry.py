"""Room registry: live mapping from identity to connections.

A "room" is the set of connections currently registered under one
identity. A connection may sit in several rooms at once (one per joined
identity) and an identity may have several connections (multi-device).

The registry is process-local and rebuilt from scratch on restart, when
clients re-join. Every read and write runs under the injected lock, so the
same instance can be shared by the asyncio loop and worker threads.
"""
import logging
import threading
from typing import Dict, FrozenSet, Generic, Hashable, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=Hashable)


class RoomRegistry(Generic[C]):
    """Identity -> set of connections, guarded by a lock.

    Args:
        lock: Concurrency guard. Defaults to a fresh ``threading.Lock``.
    """

    def __init__(self, lock: Optional[threading.Lock] = None) -> None:
        self._lock = lock or threading.Lock()
        # identity -> connections registered under it
        self._rooms: Dict[str, Set[C]] = {}
        # connection -> identities it is registered under (reverse index)
        self._memberships: Dict[C, Set[str]] = {}

    def register(self, identity: str, connection: C) -> None:
        """Add a connection to an identity's room (idempotent)."""
        with self._lock:
            self._rooms.setdefault(identity, set()).add(connection)
            self._memberships.setdefault(connection, set()).add(identity)
        logger.debug("[Registry] Registered connection under %s", identity)

    def unregister(self, connection: C) -> FrozenSet[str]:
        """Remove a connection from every room holding it.

        Returns:
            The identities the connection was removed from (empty if it was
            not registered).
        """
        with self._lock:
            identities = self._memberships.pop(connection, set())
            for identity in identities:
                self._discard(identity, connection)
        return frozenset(identities)

    def unregister_identity(self, identity: str, connection: C) -> bool:
        """Remove a connection from a single identity's room.

        Returns:
            True if the connection was a member of that room.
        """
        with self._lock:
            identities = self._memberships.get(connection)
            if not identities or identity not in identities:
                return False
            identities.discard(identity)
            if not identities:
                del self._memberships[connection]
            self._discard(identity, connection)
        return True

    def _discard(self, identity: str, connection: C) -> None:
        room = self._rooms.get(identity)
        if room is None:
            return
        room.discard(connection)
        if not room:
            del self._rooms[identity]

    def lookup(self, identity: str) -> FrozenSet[C]:
        """Snapshot of the connections registered under an identity.

        An empty set means the identity is offline, which is a normal state.
        """
        with self._lock:
            return frozenset(self._rooms.get(identity, ()))

    def identities_of(self, connection: C) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._memberships.get(connection, ()))

    def connection_count(self, identity: str) -> int:
        with self._lock:
            return len(self._rooms.get(identity, ()))

    def online_identities(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._rooms)
