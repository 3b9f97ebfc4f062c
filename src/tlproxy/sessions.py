from __future__ import annotations

import hashlib
from collections import deque
from dataclasses import dataclass, field
from threading import Lock


def client_id_for(address: str) -> str:
    """Stable short id for a caller address (first 8 hex chars of its MD5)."""
    return hashlib.md5(str(address).encode("utf-8")).hexdigest()[:8]


@dataclass(frozen=True)
class Turn:
    request: str
    response: str


@dataclass
class Session:
    max_turns: int
    turns: deque[Turn] = field(default_factory=deque)

    def trim(self, max_turns: int) -> None:
        self.max_turns = max(0, int(max_turns))
        while len(self.turns) > self.max_turns:
            self.turns.popleft()


class SessionStore:
    """Bounded per-client conversation memory.

    All sessions share one lock; callers only ever get immutable snapshots of the turns.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._sessions: dict[str, Session] = {}

    def get_or_create(self, client_id: str, max_turns: int) -> tuple[Turn, ...]:
        with self._lock:
            session = self._sessions.get(client_id)
            if session is None:
                session = Session(max_turns=max(0, int(max_turns)))
                self._sessions[client_id] = session
            session.trim(max_turns)
            return tuple(session.turns)

    def append(self, client_id: str, request: str, response: str, max_turns: int) -> None:
        with self._lock:
            session = self._sessions.get(client_id)
            if session is None:
                session = Session(max_turns=max(0, int(max_turns)))
                self._sessions[client_id] = session
            session.turns.append(Turn(request=request, response=response))
            # Depth may have changed since the session was created; trim against the live value.
            session.trim(max_turns)

    def turns(self, client_id: str) -> tuple[Turn, ...]:
        with self._lock:
            session = self._sessions.get(client_id)
            return tuple(session.turns) if session is not None else ()

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
