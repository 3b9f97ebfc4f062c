from __future__ import annotations

import logging
from collections.abc import Callable
from threading import Lock
from typing import Any

logger = logging.getLogger("tlproxy")

LOG = "log"
TOKEN_USAGE = "token_usage"
WORK_STARTED = "work_started"
WORK_FINISHED = "work_finished"

EVENT_NAMES = (LOG, TOKEN_USAGE, WORK_STARTED, WORK_FINISHED)


class EventBus:
    """Callback registry the proxy publishes status to (log lines, token usage, work start/finish).

    Callbacks run on the publishing thread. A failing subscriber is logged and skipped so it
    can never break a request.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._subscribers: dict[str, list[Callable[..., None]]] = {name: [] for name in EVENT_NAMES}

    def subscribe(self, event: str, callback: Callable[..., None]) -> Callable[[], None]:
        if event not in self._subscribers:
            raise ValueError(f"Unknown event: {event!r}. Allowed: {', '.join(EVENT_NAMES)}")
        with self._lock:
            self._subscribers[event].append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers[event]:
                    self._subscribers[event].remove(callback)

        return _unsubscribe

    def on_log(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self.subscribe(LOG, callback)

    def on_token_usage(self, callback: Callable[[int, int], None]) -> Callable[[], None]:
        return self.subscribe(TOKEN_USAGE, callback)

    def on_work_started(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self.subscribe(WORK_STARTED, callback)

    def on_work_finished(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return self.subscribe(WORK_FINISHED, callback)

    def _publish(self, event: str, *args: Any) -> None:
        with self._lock:
            callbacks = list(self._subscribers[event])
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Event subscriber failed for {event!r}")

    def log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        self._publish(LOG, message)

    def token_usage(self, prompt_tokens: int, completion_tokens: int) -> None:
        self._publish(TOKEN_USAGE, int(prompt_tokens), int(completion_tokens))

    def work_started(self) -> None:
        self._publish(WORK_STARTED)

    def work_finished(self, success: bool) -> None:
        self._publish(WORK_FINISHED, bool(success))
