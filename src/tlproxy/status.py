from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

from .events import EventBus
from .usage import UsageTotals


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProxyStatusState:
    started_at: str
    updated_at: str
    active: int = 0
    finished: int = 0
    succeeded: int = 0
    failed: int = 0


class ProxyStatus:
    """Work counters for the proxy, optionally mirrored to a ``status.json`` file.

    The file is rewritten every `flush_every_n_updates` work events, or on ``write(force=True)``.
    """

    def __init__(
        self,
        *,
        path: Path | None = None,
        usage: UsageTotals | None = None,
        flush_every_n_updates: int = 10,
    ) -> None:
        now = _utc_now_iso()
        self.path = path
        self.usage = usage
        self.state = ProxyStatusState(started_at=now, updated_at=now)
        self._lock = Lock()
        self._start_monotonic = time.monotonic()
        self._updates_since_flush = 0
        self._flush_every = max(1, int(flush_every_n_updates))

    def attach(self, bus: EventBus) -> Callable[[], None]:
        unsubscribers = [
            bus.on_work_started(self.work_started),
            bus.on_work_finished(self.work_finished),
        ]

        def _detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return _detach

    def work_started(self) -> None:
        with self._lock:
            self.state.active += 1
            self.state.updated_at = _utc_now_iso()
            self._updates_since_flush += 1
        self.write()

    def work_finished(self, success: bool) -> None:
        with self._lock:
            self.state.active = max(0, self.state.active - 1)
            self.state.finished += 1
            if success:
                self.state.succeeded += 1
            else:
                self.state.failed += 1
            self.state.updated_at = _utc_now_iso()
            self._updates_since_flush += 1
        self.write()

    def _payload_locked(self) -> dict[str, Any]:
        return {
            "started_at": self.state.started_at,
            "updated_at": self.state.updated_at,
            "uptime_seconds": max(0.0, time.monotonic() - self._start_monotonic),
            "active": self.state.active,
            "finished": self.state.finished,
            "succeeded": self.state.succeeded,
            "failed": self.state.failed,
            "usage": self.usage.snapshot() if self.usage is not None else {},
        }

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return self._payload_locked()

    def write(self, *, force: bool = False) -> None:
        if self.path is None:
            return
        with self._lock:
            if not force and self._updates_since_flush < self._flush_every:
                return
            payload = self._payload_locked()
            self._updates_since_flush = 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
