"""Message history router.

Endpoints:
    GET  /api/messages/{sender}/{receiver} - Conversation history, oldest first
    POST /api/messages                     - Store a message without live delivery
"""
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from courier.chat.hub import get_hub
from courier.config import get_config
from courier.errors import PersistenceError

from .schemas import MessageCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.get("/{sender}/{receiver}")
async def get_messages(sender: str, receiver: str) -> JSONResponse:
    """Get every message exchanged between two identities.

    Args:
        sender: One side of the conversation.
        receiver: The other side (order does not matter).

    Returns:
        JSON array of messages sorted by creation time ascending.

    Example:
        GET /api/messages/alice/bob
    """
    try:
        messages = get_hub().engine.history(sender.strip(), receiver.strip())
    except PersistenceError:
        return JSONResponse({"message": "Error fetching messages."}, status_code=500)

    return JSONResponse([msg.model_dump(mode="json") for msg in messages])


@router.post("", status_code=201)
async def save_message(body: MessageCreate) -> JSONResponse:
    """Store a message without pushing it to live connections.

    Args:
        body: sender, receiver and content.

    Returns:
        The stored message (201 Created).
    """
    max_length = get_config().chat.max_content_length
    if len(body.content) > max_length:
        return JSONResponse(
            {"message": f"Content exceeds {max_length} characters."},
            status_code=400,
        )

    try:
        message = get_hub().engine.save(body.sender, body.receiver, body.content)
    except PersistenceError:
        return JSONResponse({"message": "Error saving message."}, status_code=500)

    return JSONResponse(message.model_dump(mode="json"), status_code=201)
