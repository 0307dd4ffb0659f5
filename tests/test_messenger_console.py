# tests/test_messenger_console.py
import requests

from messenger import (
    RECONNECT_DELAY_SEC,
    MessageStreamClient,
    MessengerState,
    TypingIndicator,
    iter_sse_events,
    preview_text,
)


def test_iter_sse_events_skips_noise():
    lines = [
        'data: {"type": "connected", "message": "Connected to message stream"}',
        "",
        ": keepalive",
        "data: {not json",
        'data: {"type": "message_deleted", "data": {"messageId": 3}}',
    ]

    events = list(iter_sse_events(lines))

    assert [e["type"] for e in events] == ["connected", "message_deleted"]


def test_unread_and_preview_only_for_others_while_closed():
    state = MessengerState(current_user_id=1)
    long_body = "Smoke reported near the east stairwell, please respond"

    state.handle_event({"type": "new_message", "data": {"id": 1, "user_id": 1, "username": "me", "message": "hi"}})
    state.handle_event({"type": "new_message", "data": {"id": 2, "user_id": 2, "username": "bob", "message": long_body}})

    assert state.unread_count == 1
    assert state.preview == f"bob: {long_body[:30]}..."

    state.open()
    state.handle_event({"type": "new_message", "data": {"id": 3, "user_id": 2, "username": "bob", "message": "ok"}})
    assert state.unread_count == 0
    assert [m["id"] for m in state.messages] == [1, 2, 3]


def test_preview_text_short_message_has_no_ellipsis():
    assert preview_text({"username": "bob", "message": "ok"}) == "bob: ok"


def test_typing_and_deletion_events():
    state = MessengerState(current_user_id=1)
    state.handle_event({"type": "typing", "data": {"userId": 2, "username": "bob", "isTyping": True}})
    state.handle_event({"type": "typing", "data": {"userId": 3, "username": "cy", "isTyping": True}})
    state.handle_event({"type": "typing", "data": {"userId": 3, "username": "cy", "isTyping": False}})
    assert state.typing_names() == {"bob"}

    state.handle_event({"type": "new_message", "data": {"id": 9, "user_id": 2, "username": "bob", "message": "x"}})
    assert state.typing_names() == set()

    state.handle_event({"type": "message_deleted", "data": {"messageId": 9}})
    assert state.messages == []


def test_typing_indicator_debounces():
    sent = []
    indicator = TypingIndicator(sent.append, idle_sec=60)

    indicator.touch()
    indicator.touch()
    indicator.touch()
    indicator.stop()
    indicator.stop()

    assert sent == [True, False]


class FakeResponse:
    def __init__(self, lines):
        self.lines = lines
        self.closed = False

    def raise_for_status(self):
        pass

    def iter_lines(self, decode_unicode=False):
        return iter(self.lines)

    def close(self):
        self.closed = True


class FlakySession:
    """Fails, then serves one short stream, then fails forever."""

    def __init__(self):
        self.calls = 0

    def get(self, url, **kwargs):
        self.calls += 1
        if self.calls == 2:
            return FakeResponse(['data: {"type": "connected", "message": "Connected to message stream"}'])
        raise requests.exceptions.ConnectionError("refused")


def test_run_reconnects_with_fixed_delay_until_stopped():
    session = FlakySession()
    delays = []
    seen = []

    def fake_sleep(seconds):
        delays.append(seconds)
        if len(delays) == 4:
            client.stop()

    client = MessageStreamClient(
        "http://backend", user_id=5, stream_session=session, api_session=requests.Session(), sleep=fake_sleep,
    )
    client.listeners.append(seen.append)

    client.run()

    assert delays == [RECONNECT_DELAY_SEC] * 4
    assert session.calls == 4
    assert client.attempts == 4
    assert [e["type"] for e in seen] == ["connected"]
    assert client.state.connected is False


def test_iter_sse_events_skips_non_object_payloads():
    lines = ["data: null", "data: [1, 2]", 'data: "text"', 'data: {"type": "connected"}']

    assert [e["type"] for e in iter_sse_events(lines)] == ["connected"]


class SteadySession:
    def __init__(self, lines):
        self.lines = lines
        self.calls = 0

    def get(self, url, **kwargs):
        self.calls += 1
        return FakeResponse(self.lines)


def test_run_keeps_reconnecting_after_handler_failure():
    session = SteadySession(['data: {"type": "connected", "message": "Connected to message stream"}'])
    delays = []

    def fake_sleep(seconds):
        delays.append(seconds)
        if len(delays) == 3:
            client.stop()

    def broken_listener(event):
        raise RuntimeError("render failed")

    client = MessageStreamClient(
        "http://backend", user_id=5, stream_session=session, api_session=requests.Session(), sleep=fake_sleep,
    )
    client.listeners.append(broken_listener)

    client.run()

    assert session.calls == 3
    assert delays == [RECONNECT_DELAY_SEC] * 3
