from __future__ import annotations

import json
import queue
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .prompts import Message


class CompletionStatus(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class CompletionResult:
    status: CompletionStatus
    body: bytes = b""
    detail: str = ""
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is CompletionStatus.OK


def build_payload(model: str, messages: list[Message], temperature: float) -> dict[str, Any]:
    return {
        "model": model,
        "messages": messages,
        "temperature": temperature,
    }


def chat_completions_url(api_address: str) -> str:
    return f"{api_address.rstrip('/')}/chat/completions"


@dataclass(frozen=True)
class ChatCompletionsClient:
    """OpenAI-style Chat Completions client with a hard deadline and cooperative cancellation.

    The blocking HTTP call runs on a daemon helper thread; the caller polls it every
    `poll_interval_s` and walks away as soon as the stop event is set or the deadline passes.
    An abandoned helper ends on its own no later than the socket timeout.
    """

    timeout_s: float = 45.0
    deadline_s: float = 40.0
    poll_interval_s: float = 0.1
    user_agent: str = "tlproxy/0.1"

    def _post(self, url: str, payload: dict[str, Any], api_key: str) -> bytes:
        req = urllib.request.Request(
            url=url,
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
                "User-Agent": self.user_agent,
            },
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
            return resp.read()

    def _run_call(self, url: str, payload: dict[str, Any], api_key: str, out: queue.Queue) -> None:
        try:
            out.put((CompletionStatus.OK, self._post(url, payload, api_key), ""))
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
            out.put((CompletionStatus.TRANSPORT_ERROR, b"", f"HTTP {e.code}: {body[:300]}".strip()))
        except TimeoutError:
            out.put((CompletionStatus.TIMEOUT, b"", f"no response within {self.timeout_s:g}s"))
        except urllib.error.URLError as e:
            if isinstance(e.reason, TimeoutError):
                out.put((CompletionStatus.TIMEOUT, b"", f"no response within {self.timeout_s:g}s"))
            else:
                out.put((CompletionStatus.TRANSPORT_ERROR, b"", str(e.reason)))
        except Exception as e:
            out.put((CompletionStatus.TRANSPORT_ERROR, b"", f"{type(e).__name__}: {e}"))

    def complete(
        self,
        *,
        api_address: str,
        api_key: str,
        model: str,
        messages: list[Message],
        temperature: float,
        stop_event: threading.Event | None = None,
    ) -> CompletionResult:
        started = time.monotonic()
        if stop_event is not None and stop_event.is_set():
            return CompletionResult(CompletionStatus.CANCELLED, detail="stop requested before send")

        url = chat_completions_url(api_address)
        payload = build_payload(model, messages, temperature)
        out: queue.Queue = queue.Queue(maxsize=1)
        worker = threading.Thread(
            target=self._run_call,
            args=(url, payload, api_key, out),
            name="tlproxy-llm-call",
            daemon=True,
        )
        worker.start()

        deadline = started + self.deadline_s
        while True:
            if stop_event is not None and stop_event.is_set():
                return CompletionResult(
                    CompletionStatus.CANCELLED,
                    detail="stop requested",
                    elapsed_s=time.monotonic() - started,
                )
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return CompletionResult(
                    CompletionStatus.TIMEOUT,
                    detail=f"no response within {self.deadline_s:g}s",
                    elapsed_s=time.monotonic() - started,
                )
            try:
                status, body, detail = out.get(timeout=min(self.poll_interval_s, remaining))
            except queue.Empty:
                continue
            return CompletionResult(status, body=body, detail=detail, elapsed_s=time.monotonic() - started)
