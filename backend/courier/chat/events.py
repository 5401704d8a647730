"""Typed inbound WebSocket events and their dispatcher.

Protocol Message Types (client -> server):
    - join: ``{"type": "join", "identity": str}``
    - leave: ``{"type": "leave", "identity": str}``
    - send-message: ``{"type": "send-message", "sender", "receiver", "content"}``
    - ping: ``{"type": "ping"}``

Frames are parsed into Pydantic models here, at the boundary; anything
that does not validate raises ``MalformedEvent`` before it reaches the
registry or the delivery engine.
"""
import json
import logging
from typing import Annotated, Any, Awaitable, Callable, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from courier.errors import MalformedEvent
from courier.messages.schemas import Identity

logger = logging.getLogger(__name__)


class JoinEvent(BaseModel):
    """Register the connection under an identity.

    ``token`` is a login token; it is only checked when the hub requires one.
    """
    type: Literal["join"]
    identity: Identity
    token: Optional[str] = None


class LeaveEvent(BaseModel):
    """Remove the connection from one identity's room."""
    type: Literal["leave"]
    identity: Identity


class SendMessageEvent(BaseModel):
    """Persist a message and deliver it to the receiver's connections."""
    type: Literal["send-message"]
    sender: Identity
    receiver: Identity
    content: str = Field(..., min_length=1)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class PingEvent(BaseModel):
    """Round-trip marker; answered with ``{"type": "pong"}``."""
    type: Literal["ping"]


InboundEvent = Annotated[
    Union[JoinEvent, LeaveEvent, SendMessageEvent, PingEvent],
    Field(discriminator="type"),
]

EVENT_TYPES = frozenset({"join", "leave", "send-message", "ping"})

_event_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def _describe(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"][1:]) or "event"
        problems.append(f"{location}: {error['msg']}")
    return "; ".join(problems)


def parse_event(raw: Union[str, bytes], max_content_length: Optional[int] = None) -> Any:
    """Parse one frame into a typed event.

    Args:
        raw: The frame payload; binary frames must be UTF-8.
        max_content_length: Optional upper bound on ``send-message`` content.

    Raises:
        MalformedEvent: Invalid UTF-8 or JSON, unknown type, or missing/invalid fields.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedEvent("Invalid message format: binary frame is not valid UTF-8")

    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise MalformedEvent("Invalid message format: frame is not valid JSON")

    if not isinstance(data, dict):
        raise MalformedEvent("Invalid message format: event must be a JSON object")

    event_type = data.get("type")
    if not isinstance(event_type, str) or event_type not in EVENT_TYPES:
        raise MalformedEvent(
            f"Unknown event type: {event_type!r}",
            event_type if isinstance(event_type, str) else None,
        )

    try:
        event = _event_adapter.validate_python(data)
    except ValidationError as exc:
        raise MalformedEvent(
            f"Invalid {event_type} event: {_describe(exc)}", event_type
        ) from exc

    if (
        max_content_length is not None
        and isinstance(event, SendMessageEvent)
        and len(event.content) > max_content_length
    ):
        raise MalformedEvent(
            f"Invalid send-message event: content exceeds {max_content_length} characters",
            event_type,
        )
    return event


EventHandler = Callable[[Any, Any], Awaitable[None]]


class EventDispatcher:
    """Maps event types to async handlers ``handler(connection, event)``."""

    def __init__(self) -> None:
        self._handlers: Dict[str, EventHandler] = {}

    def register(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._handlers:
            raise ValueError(f"Handler already registered for {event_type!r}")
        self._handlers[event_type] = handler

    def on(self, event_type: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of :meth:`register`."""
        def decorator(handler: EventHandler) -> EventHandler:
            self.register(event_type, handler)
            return handler
        return decorator

    async def dispatch(self, connection: Any, event: Any) -> None:
        handler = self._handlers.get(event.type)
        if handler is None:
            raise MalformedEvent(f"No handler for event type: {event.type!r}", event.type)
        await handler(connection, event)
