#!/usr/bin/env python3
"""
Terminal chat console for responders.

Connects to the backend's message stream and keeps:
- unread count and a short preview for messages from other users
- the set of users currently typing
- the local message list, minus deleted messages

The stream is reopened after a fixed 5 second delay whenever it drops,
indefinitely, until the console exits.
"""

import argparse
import json
import os
import sys
import threading
import time
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

RECONNECT_DELAY_SEC = 5.0
TYPING_IDLE_SEC = 1.0
PREVIEW_CHARS = 30
IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-User-Id")


def iter_sse_events(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
    """Decode ``data: <json>`` lines into event dicts, skipping anything else."""
    for line in lines:
        if not line or not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        try:
            event = json.loads(payload)
        except json.JSONDecodeError as e:
            print(f"[WARN] Skipping malformed event: {e}")
            continue
        if not isinstance(event, dict):
            print(f"[WARN] Skipping non-object event: {payload}")
            continue
        yield event


def preview_text(message: Dict[str, Any], width: int = PREVIEW_CHARS) -> str:
    body = message.get("message") or ""
    suffix = "..." if len(body) > width else ""
    return f"{message.get('username')}: {body[:width]}{suffix}"


class MessengerState:
    """Client-side view of the chat, updated from stream events."""

    def __init__(self, current_user_id: int):
        self.current_user_id = current_user_id
        self.is_open = False
        self.messages: List[Dict[str, Any]] = []
        self.unread_count = 0
        self.preview: Optional[str] = None
        self.typing_users: Dict[int, str] = {}
        self.connected = False

    def open(self) -> None:
        self.is_open = True
        self.unread_count = 0
        self.preview = None

    def close(self) -> None:
        self.is_open = False

    def handle_event(self, event: Dict[str, Any]) -> None:
        kind = event.get("type")
        data = event.get("data") or {}

        if kind == "connected":
            self.connected = True
        elif kind == "new_message":
            self.messages.append(data)
            self.typing_users.pop(data.get("user_id"), None)
            if not self.is_open and data.get("user_id") != self.current_user_id:
                self.unread_count += 1
                self.preview = preview_text(data)
        elif kind == "typing":
            if data.get("isTyping"):
                self.typing_users[data.get("userId")] = data.get("username")
            else:
                self.typing_users.pop(data.get("userId"), None)
        elif kind == "message_deleted":
            message_id = data.get("messageId")
            self.messages = [m for m in self.messages if m.get("id") != message_id]

    def typing_names(self) -> Set[str]:
        return set(self.typing_users.values())


class TypingIndicator:
    """
    Debounced typing flag: the first keystroke sends ``True``, and ``False``
    follows once no keystroke arrives for ``idle_sec``.
    """

    def __init__(self, send: Callable[[bool], None], idle_sec: float = TYPING_IDLE_SEC):
        self._send = send
        self._idle_sec = idle_sec
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self.is_typing = False

    def touch(self) -> None:
        with self._lock:
            if not self.is_typing:
                self.is_typing = True
                self._send(True)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._idle_sec, self.stop)
            self._timer.daemon = True
            self._timer.start()

    def stop(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self.is_typing:
                self.is_typing = False
                self._send(False)


def create_session_with_retry() -> requests.Session:
    """Create a requests session with retry logic for plain API calls."""
    session = requests.Session()

    retry_strategy = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "POST", "DELETE"],
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    return session


class MessageStreamClient:
    """HTTP side of the console: the long-lived stream plus chat actions."""

    def __init__(
        self,
        backend_url: str,
        user_id: int,
        state: Optional[MessengerState] = None,
        stream_session: Optional[requests.Session] = None,
        api_session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        reconnect_delay: float = RECONNECT_DELAY_SEC,
    ):
        self.backend_url = backend_url.rstrip("/")
        self.user_id = user_id
        self.state = state or MessengerState(user_id)
        # No retry adapter on the stream: reconnects use the fixed delay below
        self.stream_session = stream_session or requests.Session()
        self.api_session = api_session or create_session_with_retry()
        self.sleep = sleep
        self.reconnect_delay = reconnect_delay
        self.listeners: List[Callable[[Dict[str, Any]], None]] = []
        self._stopped = threading.Event()
        self.attempts = 0

    @property
    def headers(self) -> Dict[str, str]:
        return {IDENTITY_HEADER: str(self.user_id)}

    def stop(self) -> None:
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def _dispatch(self, event: Dict[str, Any]) -> None:
        self.state.handle_event(event)
        for listener in self.listeners:
            listener(event)

    def listen_once(self) -> None:
        """Consume one stream connection until it ends or fails."""
        self.attempts += 1
        response = self.stream_session.get(
            f"{self.backend_url}/messages/stream",
            headers=self.headers,
            stream=True,
            timeout=(10, None),
        )
        try:
            response.raise_for_status()
            for event in iter_sse_events(response.iter_lines(decode_unicode=True)):
                self._dispatch(event)
                if self.stopped:
                    break
        finally:
            response.close()

    def run(self) -> None:
        """Keep the stream open, reconnecting after a fixed delay, until stopped."""
        while not self.stopped:
            try:
                self.listen_once()
            except requests.exceptions.RequestException as e:
                print(f"[ERROR] Stream connection error: {e}")
            except Exception as e:
                print(f"[ERROR] Stream handling failed, reconnecting: {e}")
            self.state.connected = False
            if self.stopped:
                break
            self.sleep(self.reconnect_delay)

    def send_message(self, text: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.api_session.post(
                f"{self.backend_url}/messages",
                json={"message": text},
                headers=self.headers,
                timeout=10,
            )
        except requests.exceptions.RequestException as e:
            print(f"[ERROR] Failed to send message: {e}")
            return None
        if not response.ok:
            print(f"[ERROR] {response.json().get('error', 'Failed to send message')}")
            return None
        return response.json()

    def send_typing(self, is_typing: bool) -> None:
        try:
            self.api_session.post(
                f"{self.backend_url}/messages/typing",
                json={"isTyping": is_typing},
                headers=self.headers,
                timeout=5,
            )
        except requests.exceptions.RequestException as e:
            print(f"[ERROR] Failed to send typing indicator: {e}")

    def delete_message(self, message_id: int) -> bool:
        try:
            response = self.api_session.delete(
                f"{self.backend_url}/messages/{message_id}",
                headers=self.headers,
                timeout=10,
            )
        except requests.exceptions.RequestException as e:
            print(f"[ERROR] Failed to delete message: {e}")
            return False
        if not response.ok:
            print(f"[ERROR] {response.json().get('error', 'Failed to delete message')}")
            return False
        return True

    def load_messages(self, limit: int = 50) -> List[Dict[str, Any]]:
        response = self.api_session.get(
            f"{self.backend_url}/messages",
            params={"limit": limit},
            headers=self.headers,
            timeout=10,
        )
        response.raise_for_status()
        return response.json()

    def online(self) -> Dict[str, Any]:
        response = self.api_session.get(f"{self.backend_url}/messages/online", headers=self.headers, timeout=10)
        response.raise_for_status()
        return response.json()


def print_event(client: MessageStreamClient, event: Dict[str, Any]) -> None:
    state = client.state
    kind = event.get("type")
    data = event.get("data") or {}
    if kind == "connected":
        print("[Chat] Connected to message stream")
    elif kind == "new_message":
        if state.is_open:
            who = "you" if data.get("is_own_message") else data.get("username")
            print(f"[{data.get('id')}] {who}: {data.get('message')}")
        elif data.get("user_id") != client.user_id:
            print(f"[Chat] ({state.unread_count} unread) {state.preview}")
    elif kind == "typing" and state.is_open:
        names = ", ".join(sorted(state.typing_names()))
        if names:
            print(f"[Chat] {names} typing...")
    elif kind == "message_deleted" and state.is_open:
        print(f"[Chat] Message {data.get('messageId')} deleted")


def main():
    parser = argparse.ArgumentParser(description="Fire alarm responder chat console")
    parser.add_argument("--user-id", type=int, required=True, help="Authenticated user id")
    args = parser.parse_args()

    backend_url = os.environ.get("BACKEND_URL", "http://localhost:8000").rstrip("/")
    client = MessageStreamClient(backend_url, args.user_id)
    client.listeners.append(lambda event: print_event(client, event))
    typing = TypingIndicator(client.send_typing)

    listener = threading.Thread(target=client.run, daemon=True)
    listener.start()

    print("Commands: /open, /close, /online, /delete <id>, /quit; anything else is sent.")
    try:
        for line in sys.stdin:
            text = line.rstrip("\n")
            if text == "/quit":
                break
            if text == "/open":
                client.state.open()
                for msg in client.load_messages():
                    who = "you" if msg.get("is_own_message") else msg.get("username")
                    print(f"[{msg.get('id')}] {who}: {msg.get('message')}")
            elif text == "/close":
                client.state.close()
            elif text == "/online":
                info = client.online()
                print(f"[Chat] {info['count']} online: {', '.join(u['username'] for u in info['users'])}")
            elif text.startswith("/delete "):
                target = text.split()[1]
                if target.isdigit():
                    client.delete_message(int(target))
                else:
                    print("[Chat] Usage: /delete <message id>")
            elif text.strip():
                typing.touch()
                client.send_message(text)
                typing.stop()
    except KeyboardInterrupt:
        print("\nConsole interrupted by user.")
    finally:
        client.stop()


if __name__ == "__main__":
    main()
