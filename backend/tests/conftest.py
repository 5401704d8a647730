"""Shared test fixtures and configuration for backend tests."""
from typing import List

import pytest

from courier.auth.service import UserService
from courier.chat.hub import ChatHub, set_hub
from courier.chat.lifecycle import Connection
from courier.config import AppConfig, AuthSettings, StorageSettings, reset_config, set_config
from courier.errors import PersistenceError
from courier.messages.schemas import Message
from courier.messages.store import DuckDBMessageStore, MessageStore


class FakeTransport:
    """Stands in for a WebSocket: records frames, optionally fails on send."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[dict] = []
        self.fail = fail
        self.accepted = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(payload)


class FailingStore(MessageStore):
    """Message store whose appends always fail."""

    def __init__(self) -> None:
        self.append_calls = 0

    def append(self, message: Message) -> Message:
        self.append_calls += 1
        raise PersistenceError("disk full")

    def query(self, identity_a: str, identity_b: str) -> List[Message]:
        raise PersistenceError("store offline")


@pytest.fixture
def make_connection():
    """Factory for connections over a FakeTransport."""
    def _make(fail: bool = False) -> Connection:
        return Connection(FakeTransport(fail=fail))
    return _make


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture(autouse=True)
def test_config():
    """In-memory databases and cheap bcrypt for every test."""
    config = AppConfig(
        storage=StorageSettings(messages_db_path=":memory:", users_db_path=":memory:"),
        auth=AuthSettings(bcrypt_rounds=4),
    )
    set_config(config)
    yield config
    reset_config()


@pytest.fixture
def store():
    """A fresh in-memory DuckDB message store."""
    message_store = DuckDBMessageStore(db_path=":memory:")
    yield message_store
    message_store.close()


@pytest.fixture
def hub(store):
    """Install a hub over the in-memory store as the process-wide hub."""
    chat_hub = ChatHub(store, max_content_length=10_000)
    set_hub(chat_hub)
    yield chat_hub
    set_hub(None)


@pytest.fixture
def user_service():
    """Install an in-memory UserService singleton."""
    UserService.reset_instance()
    service = UserService.get_instance(db_path=":memory:")
    yield service
    UserService.reset_instance()

