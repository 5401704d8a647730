"""Chat router providing the real-time WebSocket endpoint.

WebSocket /ws/chat: join identity rooms, send and receive direct messages.

Protocol Flow:
    1. Client connects -> connection starts UNJOINED
    2. Client sends: {type: "join", identity}
       -> connection is registered under the identity (no reply)
    3. Client sends: {type: "send-message", sender, receiver, content}
       -> message is stored, then every connection joined as `receiver` gets
          {type: "receive-message", id, sender, receiver, content, createdAt}
    4. Client sends: {type: "leave", identity} -> membership removed
    5. Client sends: {type: "ping"} -> {type: "pong"}
    6. On disconnect -> all memberships of the connection are removed

Errors are sent to the acting connection only:
    {type: "error", event, error: <code>, detail}
"""
import logging

from fastapi import APIRouter, WebSocket

from .hub import get_hub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint handling the complete lifecycle of one client.

    Frames from one client are handled strictly in arrival order; a failing
    frame produces an error frame and the loop continues.
    """
    hub = get_hub()
    connection = await hub.lifecycle.open(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            # Binary frames are decoded (strictly) by the event parser.
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""

            logger.debug("[WS] Connection %s received a frame of length %d", connection.id, len(raw))
            await hub.handle_frame(connection, raw)
    finally:
        identities = hub.lifecycle.disconnect(connection)
        logger.info(
            "[WS] Connection %s disconnected (was joined as %s)",
            connection.id, sorted(identities) or "nobody",
        )
