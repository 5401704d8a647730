"""ChatHub: wires the registry, lifecycle manager and delivery engine.

The hub owns the event handlers and is the per-event failure boundary:
whatever goes wrong while handling one frame is logged and reported to the
acting connection as an ``error`` frame, and the connection keeps running.
Other connections are never touched by another connection's failure.

A module-level hub is created lazily from config; ``set_hub`` replaces it
(the application lifespan and tests use this).
"""
import logging
from typing import Callable, Optional, Union

from courier.auth.service import UserService
from courier.config import get_config
from courier.errors import CourierError, InvalidCredentials, SenderMismatch
from courier.messages.store import DuckDBMessageStore, MessageStore

from .delivery import DeliveryEngine
from .events import (
    EventDispatcher,
    JoinEvent,
    LeaveEvent,
    PingEvent,
    SendMessageEvent,
    parse_event,
)
from .lifecycle import Connection, ConnectionLifecycle
from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class ChatHub:
    """Real-time chat core for one process.

    Args:
        store: Message persistence backend.
        registry: Room registry; a new lock-guarded one by default.
        enforce_sender_identity: Reject sends whose ``sender`` the
            connection has not joined as.
        max_content_length: Optional cap on message content length.
        token_verifier: When set, ``join`` must carry a token; the verifier
            returns its claims (or raises ``InvalidCredentials``) and the
            claimed ``id`` must equal the identity being joined.
    """

    def __init__(
        self,
        store: MessageStore,
        registry: Optional[RoomRegistry] = None,
        *,
        enforce_sender_identity: bool = True,
        max_content_length: Optional[int] = None,
        token_verifier: Optional[Callable[[str], dict]] = None,
    ) -> None:
        self.registry = registry if registry is not None else RoomRegistry()
        self.lifecycle = ConnectionLifecycle(self.registry)
        self.engine = DeliveryEngine(store, self.registry)
        self.enforce_sender_identity = enforce_sender_identity
        self.max_content_length = max_content_length
        self.token_verifier = token_verifier

        self.dispatcher = EventDispatcher()
        self.dispatcher.register("join", self._on_join)
        self.dispatcher.register("leave", self._on_leave)
        self.dispatcher.register("send-message", self._on_send_message)
        self.dispatcher.register("ping", self._on_ping)

    async def handle_frame(self, connection: Connection, raw: Union[str, bytes]) -> None:
        """Parse and dispatch one inbound frame.

        Never raises: failures become ``error`` frames on ``connection``.
        """
        if connection.closed:
            return

        event_type = None
        try:
            event = parse_event(raw, self.max_content_length)
            event_type = event.type
            await self.dispatcher.dispatch(connection, event)
        except CourierError as exc:
            event_type = event_type or getattr(exc, "event_type", None)
            logger.warning(
                "[Hub] %s on connection %s (event=%s): %s",
                type(exc).__name__, connection.id, event_type, exc,
            )
            await self._report(connection, exc.code, str(exc), event_type)
        except Exception:
            logger.exception(
                "[Hub] Unexpected failure handling %s on connection %s",
                event_type, connection.id,
            )
            await self._report(connection, CourierError.code, "Internal server error", event_type)

    async def _report(
        self,
        connection: Connection,
        code: str,
        detail: str,
        event_type: Optional[str],
    ) -> None:
        try:
            await connection.send_json({
                "type": "error",
                "event": event_type,
                "error": code,
                "detail": detail,
            })
        except Exception as exc:
            logger.debug(f"[Hub] Could not report error to {connection!r}: {exc}")

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _on_join(self, connection: Connection, event: JoinEvent) -> None:
        if self.token_verifier is not None:
            if not event.token:
                raise InvalidCredentials("A token is required to join")
            claims = self.token_verifier(event.token)
            if claims.get("id") != event.identity:
                raise InvalidCredentials(
                    f"Token does not grant identity {event.identity!r}"
                )
        self.lifecycle.join(connection, event.identity)

    async def _on_leave(self, connection: Connection, event: LeaveEvent) -> None:
        self.lifecycle.leave(connection, event.identity)

    async def _on_send_message(self, connection: Connection, event: SendMessageEvent) -> None:
        if self.enforce_sender_identity:
            if event.sender not in self.lifecycle.identities(connection):
                raise SenderMismatch(
                    f"Connection has not joined as {event.sender!r}"
                )
        await self.engine.send(event.sender, event.receiver, event.content)

    async def _on_ping(self, connection: Connection, event: PingEvent) -> None:
        await connection.send_json({"type": "pong"})


# =============================================================================
# Process-wide hub
# =============================================================================

_hub: Optional[ChatHub] = None


def build_hub() -> ChatHub:
    """Create a hub from the current configuration."""
    config = get_config()
    store = DuckDBMessageStore.get_instance(config.storage.messages_db_path)
    token_verifier = None
    if config.chat.require_join_token:
        token_verifier = UserService.get_instance().verify_token
    return ChatHub(
        store,
        enforce_sender_identity=config.chat.enforce_sender_identity,
        max_content_length=config.chat.max_content_length,
        token_verifier=token_verifier,
    )


def get_hub() -> ChatHub:
    """Return the global ChatHub, building it on first use."""
    global _hub
    if _hub is None:
        _hub = build_hub()
    return _hub


def set_hub(hub: Optional[ChatHub]) -> None:
    """Set (or clear, with None) the global ChatHub instance."""
    global _hub
    _hub = hub
