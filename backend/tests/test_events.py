"""Tests for inbound event parsing and ChatHub dispatch."""
import json

import pytest

from courier.chat.events import (
    EventDispatcher,
    JoinEvent,
    LeaveEvent,
    PingEvent,
    SendMessageEvent,
    parse_event,
)
from courier.chat.hub import ChatHub, build_hub
from courier.chat.lifecycle import ConnectionState
from courier.errors import MalformedEvent
from courier.messages.store import DuckDBMessageStore


def frame(**fields) -> str:
    return json.dumps(fields)


# =============================================================================
# parse_event
# =============================================================================


class TestParseEvent:

    def test_join(self):
        event = parse_event(frame(type="join", identity="alice"))
        assert isinstance(event, JoinEvent)
        assert event.identity == "alice"

    def test_identity_is_stripped(self):
        event = parse_event(frame(type="join", identity="  alice \n"))
        assert event.identity == "alice"

    def test_leave(self):
        assert isinstance(parse_event(frame(type="leave", identity="a")), LeaveEvent)

    def test_ping(self):
        assert isinstance(parse_event(frame(type="ping")), PingEvent)

    def test_send_message_keeps_content_verbatim(self):
        event = parse_event(frame(
            type="send-message", sender="bob", receiver="alice", content="  hi  "
        ))
        assert isinstance(event, SendMessageEvent)
        assert event.content == "  hi  "

    @pytest.mark.parametrize("raw", ["not json", "{", ""])
    def test_invalid_json(self, raw):
        with pytest.raises(MalformedEvent):
            parse_event(raw)

    @pytest.mark.parametrize("raw", ["[]", "42", '"join"', "null"])
    def test_non_object(self, raw):
        with pytest.raises(MalformedEvent):
            parse_event(raw)

    def test_unknown_type(self):
        with pytest.raises(MalformedEvent) as exc_info:
            parse_event(frame(type="typing"))
        assert exc_info.value.event_type == "typing"

    @pytest.mark.parametrize("bad_type", [["join"], {"a": 1}, 7])
    def test_non_string_type(self, bad_type):
        with pytest.raises(MalformedEvent) as exc_info:
            parse_event(frame(type=bad_type))
        assert exc_info.value.event_type is None

    def test_missing_type(self):
        with pytest.raises(MalformedEvent) as exc_info:
            parse_event(frame(identity="alice"))
        assert exc_info.value.event_type is None

    @pytest.mark.parametrize("payload", [
        {"type": "join"},
        {"type": "join", "identity": ""},
        {"type": "join", "identity": "   "},
        {"type": "join", "identity": 42},
        {"type": "join", "identity": "x" * 257},
        {"type": "send-message", "receiver": "alice", "content": "hi"},
        {"type": "send-message", "sender": "bob", "content": "hi"},
        {"type": "send-message", "sender": "bob", "receiver": "alice"},
        {"type": "send-message", "sender": "bob", "receiver": "alice", "content": ""},
        {"type": "send-message", "sender": "bob", "receiver": "alice", "content": "  "},
    ])
    def test_missing_or_invalid_fields(self, payload):
        with pytest.raises(MalformedEvent) as exc_info:
            parse_event(json.dumps(payload))
        assert exc_info.value.event_type == payload["type"]

    def test_content_length_limit(self):
        raw = frame(type="send-message", sender="b", receiver="a", content="x" * 11)
        with pytest.raises(MalformedEvent):
            parse_event(raw, max_content_length=10)
        assert parse_event(raw, max_content_length=11).content == "x" * 11

    def test_utf8_bytes_frame(self):
        raw = frame(type="send-message", sender="b", receiver="a", content="caf\u00e9").encode("utf-8")
        assert parse_event(raw).content == "caf\u00e9"

    def test_invalid_utf8_bytes_rejected(self):
        raw = b'{"type":"send-message","sender":"b","receiver":"a","content":"caf\xe9"}'
        with pytest.raises(MalformedEvent) as exc_info:
            parse_event(raw)
        assert "UTF-8" in str(exc_info.value)

    def test_join_token_optional(self):
        assert parse_event(frame(type="join", identity="alice")).token is None
        assert parse_event(frame(type="join", identity="alice", token="t")).token == "t"


class TestEventDispatcher:

    @pytest.mark.asyncio
    async def test_dispatch_routes_by_type(self):
        dispatcher = EventDispatcher()
        calls = []

        @dispatcher.on("ping")
        async def on_ping(connection, event):
            calls.append((connection, event.type))

        await dispatcher.dispatch("conn", PingEvent(type="ping"))
        assert calls == [("conn", "ping")]

    @pytest.mark.asyncio
    async def test_unhandled_type_is_malformed(self):
        dispatcher = EventDispatcher()
        with pytest.raises(MalformedEvent):
            await dispatcher.dispatch("conn", PingEvent(type="ping"))

    def test_duplicate_registration_rejected(self):
        dispatcher = EventDispatcher()

        async def handler(connection, event):
            pass

        dispatcher.register("ping", handler)
        with pytest.raises(ValueError):
            dispatcher.register("ping", handler)


# =============================================================================
# ChatHub.handle_frame
# =============================================================================


def errors(conn):
    return [f for f in conn.transport.sent if f["type"] == "error"]


def deliveries(conn):
    return [f for f in conn.transport.sent if f["type"] == "receive-message"]


class TestHubHandleFrame:

    @pytest.mark.asyncio
    async def test_alice_bob_scenario(self, hub, make_connection):
        x, y = make_connection(), make_connection()
        await hub.handle_frame(x, frame(type="join", identity="alice"))
        await hub.handle_frame(y, frame(type="join", identity="bob"))

        await hub.handle_frame(y, frame(
            type="send-message", sender="bob", receiver="alice", content="hi"
        ))

        [delivered] = deliveries(x)
        assert delivered["sender"] == "bob"
        assert delivered["content"] == "hi"
        assert "createdAt" in delivered
        assert y.transport.sent == []

        history = hub.engine.history("alice", "bob")
        assert len(history) == 1
        assert history[0].content == "hi"

    @pytest.mark.asyncio
    async def test_join_sends_no_reply(self, hub, make_connection):
        conn = make_connection()
        await hub.handle_frame(conn, frame(type="join", identity="alice"))
        assert conn.transport.sent == []
        assert conn.state == ConnectionState.JOINED

    @pytest.mark.asyncio
    async def test_ping_pong(self, hub, make_connection):
        conn = make_connection()
        await hub.handle_frame(conn, frame(type="ping"))
        assert conn.transport.sent == [{"type": "pong"}]

    @pytest.mark.asyncio
    async def test_leave_stops_delivery(self, hub, make_connection):
        x, y = make_connection(), make_connection()
        await hub.handle_frame(x, frame(type="join", identity="alice"))
        await hub.handle_frame(y, frame(type="join", identity="bob"))
        await hub.handle_frame(x, frame(type="leave", identity="alice"))

        await hub.handle_frame(y, frame(
            type="send-message", sender="bob", receiver="alice", content="hi"
        ))
        assert deliveries(x) == []
        assert len(hub.engine.history("alice", "bob")) == 1

    @pytest.mark.asyncio
    async def test_multi_join_receives_for_each_identity(self, hub, make_connection):
        x, y = make_connection(), make_connection()
        await hub.handle_frame(x, frame(type="join", identity="alice"))
        await hub.handle_frame(x, frame(type="join", identity="team"))
        await hub.handle_frame(y, frame(type="join", identity="bob"))

        for receiver in ("alice", "team"):
            await hub.handle_frame(y, frame(
                type="send-message", sender="bob", receiver=receiver, content=receiver
            ))

        assert [d["receiver"] for d in deliveries(x)] == ["alice", "team"]

    @pytest.mark.asyncio
    async def test_malformed_event_reported_connection_kept(self, hub, make_connection):
        conn = make_connection()
        await hub.handle_frame(conn, "garbage")
        await hub.handle_frame(conn, frame(type="join"))

        errs = errors(conn)
        assert len(errs) == 2
        assert all(e["error"] == "malformed_event" for e in errs)
        assert errs[0]["event"] is None
        assert errs[1]["event"] == "join"
        assert conn.state == ConnectionState.UNJOINED

        # connection still usable
        await hub.handle_frame(conn, frame(type="join", identity="alice"))
        assert conn.state == ConnectionState.JOINED

    @pytest.mark.asyncio
    async def test_malformed_send_is_not_persisted(self, hub, make_connection):
        conn = make_connection()
        await hub.handle_frame(conn, frame(type="join", identity="bob"))
        await hub.handle_frame(conn, frame(type="send-message", sender="bob", receiver="alice"))
        assert errors(conn)[0]["event"] == "send-message"
        assert hub.engine.history("alice", "bob") == []

    @pytest.mark.asyncio
    async def test_sender_mismatch_rejected(self, hub, make_connection):
        mallory, alice = make_connection(), make_connection()
        await hub.handle_frame(alice, frame(type="join", identity="alice"))
        await hub.handle_frame(mallory, frame(type="join", identity="mallory"))

        await hub.handle_frame(mallory, frame(
            type="send-message", sender="bob", receiver="alice", content="it's bob"
        ))

        [err] = errors(mallory)
        assert err["error"] == "sender_mismatch"
        assert err["event"] == "send-message"
        assert deliveries(alice) == []
        assert hub.engine.history("alice", "bob") == []

    @pytest.mark.asyncio
    async def test_unjoined_send_rejected_when_enforced(self, hub, make_connection):
        conn = make_connection()
        await hub.handle_frame(conn, frame(
            type="send-message", sender="bob", receiver="alice", content="hi"
        ))
        assert errors(conn)[0]["error"] == "sender_mismatch"

    @pytest.mark.asyncio
    async def test_permissive_mode_allows_any_sender(self, store, make_connection):
        hub = ChatHub(store, enforce_sender_identity=False)
        x, y = make_connection(), make_connection()
        await hub.handle_frame(x, frame(type="join", identity="alice"))

        await hub.handle_frame(y, frame(
            type="send-message", sender="bob", receiver="alice", content="hi"
        ))

        assert len(deliveries(x)) == 1
        assert y.transport.sent == []

    @pytest.mark.asyncio
    async def test_persistence_failure_surfaced_no_emission(
        self, failing_store, make_connection
    ):
        hub = ChatHub(failing_store)
        x, y = make_connection(), make_connection()
        await hub.handle_frame(x, frame(type="join", identity="alice"))
        await hub.handle_frame(y, frame(type="join", identity="bob"))

        await hub.handle_frame(y, frame(
            type="send-message", sender="bob", receiver="alice", content="hi"
        ))

        assert x.transport.sent == []
        [err] = errors(y)
        assert err["error"] == "persistence_error"
        assert err["event"] == "send-message"
        assert y.state == ConnectionState.JOINED

    @pytest.mark.asyncio
    async def test_unexpected_handler_error_is_contained(self, hub, make_connection):
        conn = make_connection()

        async def explode(connection, event):
            raise RuntimeError("boom")

        hub.dispatcher._handlers["ping"] = explode
        await hub.handle_frame(conn, frame(type="ping"))

        [err] = errors(conn)
        assert err["error"] == "internal_error"
        assert err["event"] == "ping"
        assert "boom" not in err["detail"]

    @pytest.mark.asyncio
    async def test_error_report_to_dead_connection_does_not_raise(self, hub, make_connection):
        conn = make_connection(fail=True)
        await hub.handle_frame(conn, "garbage")

    @pytest.mark.asyncio
    async def test_frames_on_closed_connection_ignored(self, hub, make_connection):
        conn = make_connection()
        hub.lifecycle.disconnect(conn)
        await hub.handle_frame(conn, frame(type="ping"))
        await hub.handle_frame(conn, frame(type="join", identity="alice"))
        assert conn.transport.sent == []
        assert hub.registry.lookup("alice") == frozenset()


class TestJoinToken:

    @pytest.fixture
    def token_hub(self, store, user_service):
        return ChatHub(store, token_verifier=user_service.verify_token)

    @pytest.mark.asyncio
    async def test_valid_token_joins(self, token_hub, user_service, make_connection):
        user = user_service.signup("alice@example.com", "pw")
        token, _ = user_service.login("alice@example.com", "pw")
        conn = make_connection()

        await token_hub.handle_frame(conn, frame(type="join", identity=user.id, token=token))

        assert conn.transport.sent == []
        assert token_hub.registry.lookup(user.id) == {conn}

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, token_hub, make_connection):
        conn = make_connection()
        await token_hub.handle_frame(conn, frame(type="join", identity="alice"))

        [err] = errors(conn)
        assert err["error"] == "invalid_credentials"
        assert err["event"] == "join"
        assert conn.state == ConnectionState.UNJOINED

    @pytest.mark.asyncio
    async def test_token_for_other_identity_rejected(self, token_hub, user_service, make_connection):
        user_service.signup("mallory@example.com", "pw")
        token, _ = user_service.login("mallory@example.com", "pw")
        conn = make_connection()

        await token_hub.handle_frame(conn, frame(type="join", identity="alice", token=token))

        [err] = errors(conn)
        assert err["error"] == "invalid_credentials"
        assert token_hub.registry.lookup("alice") == frozenset()

    @pytest.mark.asyncio
    async def test_forged_token_rejected(self, token_hub, make_connection):
        conn = make_connection()
        await token_hub.handle_frame(conn, frame(type="join", identity="alice", token="not.a.jwt"))

        [err] = errors(conn)
        assert err["error"] == "invalid_credentials"

    def test_build_hub_wires_verifier_from_config(self, test_config, user_service):
        test_config.chat.require_join_token = True
        try:
            hub = build_hub()
            assert hub.token_verifier == user_service.verify_token
        finally:
            DuckDBMessageStore.reset_instance()

    def test_tokens_not_required_by_default(self, test_config):
        try:
            assert build_hub().token_verifier is None
        finally:
            DuckDBMessageStore.reset_instance()
