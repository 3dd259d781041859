"""In-memory message storage with commit/rollback sessions."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Message:
    key: int
    owner: str
    header: str
    content: str


class MessageStore:
    """Messages keyed by integer id. Writes go through a StoreSession."""

    def __init__(self, messages: list[Message] | None = None):
        self._messages: dict[int, Message] = {m.key: m for m in messages or []}
        self._keys = itertools.count(max(self._messages, default=0) + 1)
        self._lock = threading.Lock()
        self.commits = 0
        self.rollbacks = 0

    def begin(self) -> StoreSession:
        return StoreSession(self)

    def get(self, key: int) -> Message | None:
        return self._messages.get(key)

    def all(self) -> list[Message]:
        return [self._messages[k] for k in sorted(self._messages)]

    def _next_key(self) -> int:
        return next(self._keys)

    def _apply(self, writes: dict[int, Message]) -> None:
        with self._lock:
            self._messages.update(writes)
            self.commits += 1


class StoreSession:
    """Buffers writes until commit(); rollback() drops them."""

    def __init__(self, store: MessageStore):
        self._store = store
        self._writes: dict[int, Message] = {}
        self.closed = False

    def get_message(self, key: int) -> Message | None:
        return self._writes.get(key) or self._store.get(key)

    def list_messages(self) -> list[Message]:
        merged = {m.key: m for m in self._store.all()}
        merged.update(self._writes)
        return [merged[k] for k in sorted(merged)]

    def put_message(self, owner: str, header: str, content: str) -> Message:
        message = Message(key=self._store._next_key(), owner=owner, header=header, content=content)
        self._writes[message.key] = message
        return message

    def edit_message(self, key: int, header: str, content: str) -> Message:
        current = self.get_message(key)
        if current is None:
            raise KeyError(f"No message {key}")
        updated = replace(current, header=header, content=content)
        self._writes[key] = updated
        return updated

    def commit(self) -> None:
        if self.closed:
            raise RuntimeError("Session is closed")
        self._store._apply(self._writes)
        self._writes = {}

    def rollback(self) -> None:
        self._writes = {}
        self._store.rollbacks += 1

    def close(self) -> None:
        self.closed = True
