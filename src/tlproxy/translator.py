from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum

from .config import LiveConfig, ProxyConfig
from .credentials import CredentialRotator
from .escapes import EscapeMap, freeze, thaw
from .events import EventBus
from .glossary import GlossaryProvider
from .llm import ChatCompletionsClient, CompletionStatus
from .messages import message
from .parsing import ParseErrorKind, parse_completion_body, process_content
from .prompts import compose_prompt
from .rules import TextRuleEngine
from .sessions import SessionStore, client_id_for

logger = logging.getLogger("tlproxy.translator")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_DELAY_S = 1.0
DEFAULT_DELAY_SLICE_S = 0.1

_FAILURE_MARKERS = ("translation failed", "翻译失败")


class RetryState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    VALIDATING = "validating"
    SUCCESS = "success"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RetryOutcome:
    text: str
    state: RetryState
    attempts: int

    @property
    def ok(self) -> bool:
        return self.state is RetryState.SUCCESS


@dataclass(frozen=True)
class AttemptResult:
    text: str
    user_content: str = ""
    max_turns: int = 0


def is_valid_translation(result: str) -> bool:
    if not result:
        return False
    lowered = result.casefold()
    if lowered.startswith("error"):
        return False
    return not any(marker in lowered for marker in _FAILURE_MARKERS)


class TranslationPipeline:
    """Runs one request through freeze, prompt, upstream call, parse and validation, with retries.

    Every collaborator is injected; the pipeline itself holds no state between requests other
    than what lives in them.
    """

    def __init__(
        self,
        live_config: LiveConfig,
        *,
        rotator: CredentialRotator,
        sessions: SessionStore,
        client: ChatCompletionsClient,
        bus: EventBus,
        glossary: GlossaryProvider | None = None,
        rules: TextRuleEngine | None = None,
        stop_event: threading.Event | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
        delay_slice_s: float = DEFAULT_DELAY_SLICE_S,
    ) -> None:
        self.live_config = live_config
        self.rotator = rotator
        self.sessions = sessions
        self.client = client
        self.bus = bus
        self.glossary = glossary
        self.rules = rules
        self.stop_event = stop_event or threading.Event()
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay_s = max(0.0, float(retry_delay_s))
        self.delay_slice_s = max(0.001, float(delay_slice_s))

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def _log(self, key: str, level: int = logging.INFO, **kwargs) -> None:
        self.bus.log(message(key, self.live_config.get().language, **kwargs), level)

    def _wait_retry_delay(self) -> bool:
        """Sleep the retry delay in slices. Returns False as soon as stop is requested."""
        deadline = time.monotonic() + self.retry_delay_s
        while True:
            if self.stopped:
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return True
            if self.stop_event.wait(min(self.delay_slice_s, remaining)):
                return False

    def _attempt(self, text: str, client_id: str, escapes: EscapeMap) -> AttemptResult:
        cfg: ProxyConfig = self.live_config.get()
        api_key = self.rotator.next_key()
        if not api_key:
            self.bus.log(message("err_key", cfg.language), logging.ERROR)
            return AttemptResult(text="")

        # Freeze the untouched text every attempt; the map is reset so numbering restarts at 0.
        frozen, _ = freeze(text, escapes)
        glossary_on = bool(cfg.enable_glossary)
        processed = self.rules.process_pre(frozen) if glossary_on and self.rules is not None else frozen
        candidate = thaw(processed, escapes)

        history = self.sessions.get_or_create(client_id, cfg.context_num)
        prompt = compose_prompt(
            cfg,
            frozen_text=processed,
            source_text=candidate,
            history=history,
            glossary=self.glossary if glossary_on else None,
        )

        result = self.client.complete(
            api_address=cfg.api_address,
            api_key=api_key,
            model=cfg.model_name,
            messages=prompt.messages,
            temperature=cfg.temperature,
            stop_event=self.stop_event,
        )
        if result.status is CompletionStatus.CANCELLED:
            return AttemptResult(text="")
        if result.status is CompletionStatus.TIMEOUT:
            self.bus.log(message("err_timeout", cfg.language), logging.WARNING)
            return AttemptResult(text="")
        if result.status is CompletionStatus.TRANSPORT_ERROR:
            self.bus.log(message("err_network", cfg.language, detail=result.detail), logging.WARNING)
            return AttemptResult(text="")

        parsed = parse_completion_body(result.body)
        if parsed.prompt_tokens or parsed.completion_tokens:
            self.bus.token_usage(parsed.prompt_tokens, parsed.completion_tokens)
        if parsed.error is ParseErrorKind.PARSE:
            self.bus.log(message("err_json", cfg.language), logging.WARNING)
            return AttemptResult(text="")
        if parsed.error is ParseErrorKind.FORMAT:
            self.bus.log(message("err_format", cfg.language), logging.WARNING)
            return AttemptResult(text="")

        translation = process_content(
            parsed.content,
            escapes,
            candidate_text=candidate,
            extract_terms=prompt.extract_terms,
            glossary=self.glossary if glossary_on else None,
            rules=self.rules,
            glossary_enabled=glossary_on,
        )
        for source, target in translation.terms:
            self.bus.log(message("new_term", cfg.language, source=source, target=target))
        self.bus.log(message("result", cfg.language, text=translation.text))
        return AttemptResult(text=translation.text, user_content=prompt.user_content, max_turns=cfg.context_num)

    def run(self, text: str, client_address: str) -> RetryOutcome:
        client_id = client_id_for(client_address)
        escapes = EscapeMap()
        attempts = 0
        state = RetryState.IDLE

        while attempts < self.max_attempts:
            if self.stopped:
                state = RetryState.ABORTED
                break
            if attempts > 0:
                self._log("retry_attempt", logging.WARNING, attempt=attempts + 1, max_attempts=self.max_attempts)
                if not self._wait_retry_delay():
                    state = RetryState.ABORTED
                    break

            state = RetryState.ATTEMPTING
            attempts += 1
            try:
                attempt = self._attempt(text, client_id, escapes)
            except Exception:
                logger.exception(f"Attempt {attempts} failed unexpectedly")
                attempt = AttemptResult(text="")
            if self.stopped:
                state = RetryState.ABORTED
                break

            state = RetryState.VALIDATING
            if is_valid_translation(attempt.text):
                self.sessions.append(client_id, attempt.user_content, attempt.text, attempt.max_turns)
                if attempts > 1:
                    self._log("retry_success")
                return RetryOutcome(text=attempt.text, state=RetryState.SUCCESS, attempts=attempts)
            state = RetryState.RETRYING

        if state is RetryState.ABORTED:
            self._log("aborted", logging.WARNING)
            return RetryOutcome(text="", state=RetryState.ABORTED, attempts=attempts)

        self._log("retry_failed", logging.ERROR)
        return RetryOutcome(text="", state=RetryState.EXHAUSTED, attempts=attempts)

    def translate(self, text: str, client_address: str) -> str:
        return self.run(text, client_address).text
