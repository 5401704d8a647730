"""Message persistence interface and its DuckDB implementation.

The chat core needs exactly two operations from storage:

    append(message) -> Message        store one message, assign its id
    query(a, b)     -> List[Message]  both directions, oldest first

Database Schema:
    messages table:
        - seq: Auto-incrementing insertion order (tie-breaker for ordering)
        - id: UUID assigned on append
        - sender / receiver: Identities
        - content: Message text
        - created_at: UTC timestamp (stored naive, read back as UTC)

Thread Safety:
    A DuckDB connection is not safe to share between threads, so every
    statement runs under an instance lock.

Usage:
    store = DuckDBMessageStore.get_instance()
    saved = store.append(Message(sender="alice", receiver="bob", content="hi"))
    history = store.query("alice", "bob")
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import timezone
from typing import List, Optional

import duckdb

from courier.errors import PersistenceError

from .schemas import Message, new_message_id

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """Abstract base class for message persistence backends."""

    @abstractmethod
    def append(self, message: Message) -> Message:
        """Durably store a message.

        Returns:
            The stored message with its assigned id.

        Raises:
            PersistenceError: If the record could not be saved.
        """

    @abstractmethod
    def query(self, identity_a: str, identity_b: str) -> List[Message]:
        """Return every message exchanged between two identities.

        Matches either direction and sorts ascending by creation time.

        Raises:
            PersistenceError: If the store could not be read.
        """

    def close(self) -> None:
        """Release any held resources."""


class DuckDBMessageStore(MessageStore):
    """Singleton message store backed by an embedded DuckDB file.

    Attributes:
        _instance: Singleton instance of the store.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["DuckDBMessageStore"] = None
    _db_path: str = "messages.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialize_db()
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "DuckDBMessageStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton (primarily for tests)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the messages table, sequence and index (idempotent)."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                id VARCHAR NOT NULL UNIQUE,
                sender VARCHAR NOT NULL,
                receiver VARCHAR NOT NULL,
                content VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender, receiver)"
        )

    def append(self, message: Message) -> Message:
        stored = message.model_copy(update={"id": message.id or new_message_id()})
        created_at = stored.createdAt.astimezone(timezone.utc).replace(tzinfo=None)
        try:
            with self._lock:
                self._get_connection().execute(
                    """
                    INSERT INTO messages (id, sender, receiver, content, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [stored.id, stored.sender, stored.receiver, stored.content, created_at],
                )
        except duckdb.Error as exc:
            logger.error("[MessageStore] Append failed for %s -> %s: %s",
                         stored.sender, stored.receiver, exc)
            raise PersistenceError(f"Could not save message: {exc}") from exc
        return stored

    def query(self, identity_a: str, identity_b: str) -> List[Message]:
        try:
            with self._lock:
                rows = self._get_connection().execute(
                    """
                    SELECT id, sender, receiver, content, created_at
                    FROM messages
                    WHERE (sender = ? AND receiver = ?)
                       OR (sender = ? AND receiver = ?)
                    ORDER BY created_at ASC, seq ASC
                    """,
                    [identity_a, identity_b, identity_b, identity_a],
                ).fetchall()
        except duckdb.Error as exc:
            logger.error("[MessageStore] Query failed for %s <-> %s: %s",
                         identity_a, identity_b, exc)
            raise PersistenceError(f"Could not load messages: {exc}") from exc

        return [
            Message(
                id=row[0],
                sender=row[1],
                receiver=row[2],
                content=row[3],
                createdAt=row[4].replace(tzinfo=timezone.utc),
            )
            for row in rows
        ]

    def count(self) -> int:
        """Total number of stored messages."""
        with self._lock:
            return self._get_connection().execute(
                "SELECT COUNT(*) FROM messages"
            ).fetchone()[0]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
