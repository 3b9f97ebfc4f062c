from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from .events import EventBus


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class UsageRecord:
    prompt_tokens: int
    completion_tokens: int
    ts: str = field(default_factory=_utc_now_iso)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class UsageTotals:
    """Running token totals fed from the event bus token-usage stream."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._requests = 0
        self._prompt_tokens = 0
        self._completion_tokens = 0
        self._last: UsageRecord | None = None

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.on_token_usage(self.add)

    def add(self, prompt_tokens: int, completion_tokens: int) -> None:
        record = UsageRecord(
            prompt_tokens=max(0, int(prompt_tokens)),
            completion_tokens=max(0, int(completion_tokens)),
        )
        with self._lock:
            self._requests += 1
            self._prompt_tokens += record.prompt_tokens
            self._completion_tokens += record.completion_tokens
            self._last = record

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "requests": self._requests,
                "prompt_tokens": self._prompt_tokens,
                "completion_tokens": self._completion_tokens,
                "total_tokens": self._prompt_tokens + self._completion_tokens,
                "last_at": self._last.ts if self._last is not None else None,
            }
