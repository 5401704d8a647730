"""Delivery engine: persist a message, then fan it out.

``send`` is the single entry point for real-time transmission. The append
to the store always completes before any receiver sees the message; if the
append fails nothing is emitted and ``PersistenceError`` reaches the caller.

Fan-out uses ``asyncio.gather`` so every connection in the receiver's room
is written to concurrently. A connection that fails to accept the frame is
logged and skipped; it never affects the others or the sender. An empty
room is the normal "recipient offline" case: the message stays in the store
for the next history query.
"""
import asyncio
import logging
from typing import Iterable, List

from courier.messages.schemas import Message
from courier.messages.store import MessageStore

from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class DeliveryEngine:
    """Persist-then-broadcast delivery between identities.

    Args:
        store: Persistence backend for messages.
        registry: Room registry used to find the receiver's connections.
    """

    def __init__(self, store: MessageStore, registry: RoomRegistry) -> None:
        self._store = store
        self._registry = registry

    @property
    def store(self) -> MessageStore:
        return self._store

    async def send(self, sender: str, receiver: str, content: str) -> Message:
        """Persist a message and emit it to every connection of the receiver.

        Raises:
            PersistenceError: If the store rejected the message. Nothing is
                emitted in that case.
        """
        message = Message(sender=sender, receiver=receiver, content=content)
        # DuckDB calls block; keep them off the event loop.
        stored = await asyncio.to_thread(self._store.append, message)

        connections = self._registry.lookup(receiver)
        if not connections:
            logger.info(
                "[Delivery] %s is offline; message %s stored for later",
                receiver, stored.id,
            )
            return stored

        delivered = await self._fan_out(stored, connections)
        logger.info(
            "[Delivery] Message %s from %s delivered to %d/%d connection(s) of %s",
            stored.id, sender, delivered, len(connections), receiver,
        )
        return stored

    def save(self, sender: str, receiver: str, content: str) -> Message:
        """Persist a message without any fan-out (non-realtime write)."""
        message = Message(sender=sender, receiver=receiver, content=content)
        stored = self._store.append(message)
        logger.info("[Delivery] Saved message %s from %s to %s", stored.id, sender, receiver)
        return stored

    def history(self, identity_a: str, identity_b: str) -> List[Message]:
        """All messages between two identities, oldest first."""
        return self._store.query(identity_a, identity_b)

    async def _fan_out(self, message: Message, connections: Iterable) -> int:
        payload = message.to_event()
        results = await asyncio.gather(
            *[self._safe_send(conn, payload) for conn in connections],
            return_exceptions=True
        )
        return sum(1 for result in results if result is True)

    async def _safe_send(self, connection, payload: dict) -> bool:
        """Send a frame to one connection, reporting failure as False."""
        try:
            await connection.send_json(payload)
            return True
        except Exception as e:
            logger.warning(f"[Delivery] Failed to send to {connection!r}: {e}")
            return False
