from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .escapes import EscapeMap, contains_placeholder, contains_term_code, thaw
from .glossary import GlossaryProvider
from .rules import TextRuleEngine

THINK_RE = re.compile(r"<think>.*?</think>", flags=re.DOTALL | re.IGNORECASE)
TERM_PAIR_RE = re.compile(r"<tm>\s*(.*?)\s*=\s*(.*?)\s*</tm>", flags=re.DOTALL | re.IGNORECASE)
TL_BLOCK_RE = re.compile(r"<tl>(.*?)</tl>", flags=re.DOTALL | re.IGNORECASE)
TL_MARKER_RE = re.compile(r"</?tl>", flags=re.IGNORECASE)


class ParseErrorKind(str, Enum):
    FORMAT = "format"  # JSON is fine but has no usable choices[0].message.content
    PARSE = "parse"  # body is not JSON at all


@dataclass(frozen=True)
class ParsedCompletion:
    content: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    error: ParseErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ParsedTranslation:
    text: str
    terms: list[tuple[str, str]] = field(default_factory=list)


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def parse_completion_body(body: bytes | str) -> ParsedCompletion:
    """Pull content and token usage out of a Chat Completions response body. Never raises."""
    try:
        raw = body.decode("utf-8") if isinstance(body, (bytes, bytearray)) else str(body)
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return ParsedCompletion(error=ParseErrorKind.PARSE, detail=str(e))

    if not isinstance(data, dict):
        return ParsedCompletion(error=ParseErrorKind.FORMAT, detail="response is not a JSON object")

    usage = data.get("usage")
    prompt_tokens = completion_tokens = 0
    if isinstance(usage, dict):
        prompt_tokens = _as_int(usage.get("prompt_tokens", 0))
        completion_tokens = _as_int(usage.get("completion_tokens", 0))

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return ParsedCompletion(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            error=ParseErrorKind.FORMAT,
            detail="missing choices",
        )
    try:
        content = choices[0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if not isinstance(content, str):
        return ParsedCompletion(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            error=ParseErrorKind.FORMAT,
            detail="choices[0].message.content is not a string",
        )
    return ParsedCompletion(content=content, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)


def strip_think(content: str) -> str:
    return THINK_RE.sub("", content)


def is_acceptable_term(source: str, target: str) -> bool:
    if not source or not target:
        return False
    if contains_placeholder(source) or contains_placeholder(target):
        return False
    if contains_term_code(source) or contains_term_code(target):
        return False
    return True


def harvest_terms(content: str, candidate_text: str) -> tuple[str, list[tuple[str, str]]]:
    """Collect ``<tm>src=tgt</tm>`` pairs whose source occurs in the candidate text.

    Accepted spans are replaced by their target; every other ``<tm>`` span is dropped.
    """
    haystack = candidate_text.casefold()
    terms: list[tuple[str, str]] = []

    def _repl(m: re.Match[str]) -> str:
        source = m.group(1).strip()
        target = m.group(2).strip()
        if is_acceptable_term(source, target) and source.casefold() in haystack:
            terms.append((source, target))
            return target
        return ""

    return TERM_PAIR_RE.sub(_repl, content), terms


def extract_translation_block(content: str) -> str:
    m = TL_BLOCK_RE.search(content)
    text = m.group(1).strip() if m else content.strip()
    return TL_MARKER_RE.sub("", text).strip()


def process_content(
    content: str,
    escapes: EscapeMap,
    *,
    candidate_text: str,
    extract_terms: bool,
    glossary: GlossaryProvider | None = None,
    rules: TextRuleEngine | None = None,
    glossary_enabled: bool = False,
) -> ParsedTranslation:
    cleaned = strip_think(content)

    terms: list[tuple[str, str]] = []
    if extract_terms:
        cleaned, terms = harvest_terms(cleaned, candidate_text)
        if glossary is not None:
            for source, target in terms:
                glossary.add_new_term(source, target)

    text = extract_translation_block(cleaned)
    text = thaw(text, escapes)
    if glossary_enabled and rules is not None:
        text = rules.process_post(text)
    return ParsedTranslation(text=text, terms=terms)
