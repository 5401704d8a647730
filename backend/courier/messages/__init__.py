"""Message persistence and history endpoints."""

from .schemas import Identity, Message, MessageCreate
from .store import DuckDBMessageStore, MessageStore

__all__ = [
    "DuckDBMessageStore",
    "Identity",
    "Message",
    "MessageCreate",
    "MessageStore",
]
