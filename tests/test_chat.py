# tests/test_chat.py
import pytest
from sqlalchemy.exc import OperationalError

from firealarm import chat
from firealarm.errors import ForbiddenError, NotFoundError, StorageError, ValidationError
from firealarm.models import Message


def drain(connection):
    events = []
    while not connection.queue.empty():
        events.append(connection.queue.get_nowait())
    return [e for e in events if e["type"] != "connected"]


def test_exactly_max_length_is_accepted(db, hub, users):
    record = chat.send_message(db, hub, users["alice"], "x" * 1000)

    assert len(record["message"]) == 1000


def test_over_max_length_is_rejected(db, hub, users):
    with pytest.raises(ValidationError):
        chat.send_message(db, hub, users["alice"], "x" * 1001)
    assert db.query(Message).count() == 0


@pytest.mark.parametrize("body", ["", "   ", "\n\t", None])
def test_empty_bodies_are_rejected(db, hub, users, body):
    with pytest.raises(ValidationError):
        chat.send_message(db, hub, users["alice"], body)


def test_unknown_message_type_is_rejected(db, hub, users):
    with pytest.raises(ValidationError):
        chat.send_message(db, hub, users["alice"], "hello", message_type="image")


def test_body_is_stored_trimmed(db, hub, users):
    record = chat.send_message(db, hub, users["alice"], "  fire on 3rd floor  ")

    assert record["message"] == "fire on 3rd floor"
    assert record["username"] == "alice"
    assert record["role"] == "user"
    assert record["is_own_message"] is True


def test_send_pushes_same_message_to_sender_and_others(db, hub, users):
    a_stream = hub.connect(users["alice"].id, "alice")
    b_stream = hub.connect(users["bob"].id, "bob")

    record = chat.send_message(db, hub, users["alice"], "hi")

    [to_alice] = drain(a_stream)
    [to_bob] = drain(b_stream)
    assert to_alice["type"] == to_bob["type"] == "new_message"
    assert to_alice["data"]["id"] == to_bob["data"]["id"] == record["id"]
    assert to_alice["data"]["is_own_message"] is True
    assert to_bob["data"]["is_own_message"] is False


def test_history_is_oldest_first_with_viewer_flag(db, hub, users):
    for text in ("one", "two", "three"):
        chat.send_message(db, hub, users["alice"], text)
    chat.send_message(db, hub, users["bob"], "four")

    history = chat.list_messages(db, users["bob"], page=1, limit=3)

    assert [m["message"] for m in history] == ["two", "three", "four"]
    assert [m["is_own_message"] for m in history] == [False, False, True]

    older = chat.list_messages(db, users["bob"], page=2, limit=3)
    assert [m["message"] for m in older] == ["one"]


def test_author_can_delete_and_one_event_is_sent(db, hub, users):
    record = chat.send_message(db, hub, users["alice"], "oops")
    watcher = hub.connect(users["bob"].id, "bob")

    chat.delete_message(db, hub, record["id"], users["alice"])

    assert db.get(Message, record["id"]) is None
    assert drain(watcher) == [{"type": "message_deleted", "data": {"messageId": record["id"]}}]


def test_admin_can_delete_any_message(db, hub, users):
    record = chat.send_message(db, hub, users["alice"], "spam")
    watcher = hub.connect(users["bob"].id, "bob")

    chat.delete_message(db, hub, record["id"], users["admin"])

    assert db.query(Message).count() == 0
    assert len(drain(watcher)) == 1


def test_other_user_cannot_delete(db, hub, users):
    record = chat.send_message(db, hub, users["alice"], "mine")
    watcher = hub.connect(users["alice"].id, "alice")

    with pytest.raises(ForbiddenError):
        chat.delete_message(db, hub, record["id"], users["bob"])

    assert db.get(Message, record["id"]) is not None
    assert drain(watcher) == []


def test_delete_missing_message(db, hub, users):
    with pytest.raises(NotFoundError):
        chat.delete_message(db, hub, 12345, users["admin"])


def test_relay_typing_excludes_typist(db, hub, users):
    own = hub.connect(users["alice"].id, "alice")
    other = hub.connect(users["bob"].id, "bob")

    assert chat.relay_typing(hub, users["alice"], True) == 1
    assert drain(own) == []
    assert drain(other)[0]["data"] == {"userId": users["alice"].id, "username": "alice", "isTyping": True}


def failing_commit():
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def test_send_storage_failure_pushes_nothing(db, hub, users, monkeypatch):
    watcher = hub.connect(users["bob"].id, "bob")
    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(StorageError) as excinfo:
        chat.send_message(db, hub, users["alice"], "hello")

    assert "database is locked" not in str(excinfo.value)
    assert drain(watcher) == []
    monkeypatch.undo()
    assert db.query(Message).count() == 0


def test_delete_storage_failure_keeps_row_and_pushes_nothing(db, hub, users, monkeypatch):
    record = chat.send_message(db, hub, users["alice"], "keep me")
    watcher = hub.connect(users["bob"].id, "bob")
    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(StorageError):
        chat.delete_message(db, hub, record["id"], users["alice"])

    assert drain(watcher) == []
    monkeypatch.undo()
    assert db.get(Message, record["id"]) is not None
