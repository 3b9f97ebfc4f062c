from __future__ import annotations

import re
from dataclasses import dataclass, field

# Order matters: templates, then tags, then literal escapes (long before short), then control chars.
_PROTECTED = r"\{\{.*?\}\}|<[^>]+>|\\r\\n|\\n|\\r|\\t|\r\n|\n|\r|\t"
# Inline whitespace = any whitespace except the CR/LF/TAB characters that are protected themselves.
_INLINE_WS = r"[^\S\r\n\t]*"
PROTECTED_SPAN_RE = re.compile(rf"{_INLINE_WS}(?:{_PROTECTED}){_INLINE_WS}")

PLACEHOLDER_RE = re.compile(r"\[T_\d+\]")
_PLACEHOLDER_WITH_WS_RE = re.compile(r"\s*\[T_(\d+)\]\s*")

# Engine-side term substitution codes, e.g. ZMCZ.
TERM_CODE_RE = re.compile(r"Z[A-Z]{2}Z")


@dataclass
class EscapeMap:
    """Placeholder -> original fragment for one inbound request.

    Keys are bare placeholders like ``[T_0]``; they mean nothing outside the freeze call that produced them.
    """

    mapping: dict[str, str] = field(default_factory=dict)
    counter: int = 0

    def reset(self) -> None:
        self.mapping.clear()
        self.counter = 0

    def __len__(self) -> int:
        return len(self.mapping)


def placeholder(index: int) -> str:
    return f"[T_{index}]"


def freeze(text: str, escapes: EscapeMap | None = None) -> tuple[str, EscapeMap]:
    """Replace protected spans with `` [T_n] `` placeholders, numbered left to right from 0.

    The map is reset first, so the same map can be reused for every retry of a request as long as
    the untouched original text is frozen each time. Inline spaces next to a protected span are
    stored together with it; `thaw` eats whitespace around placeholders and gives them back.
    """
    if escapes is None:
        escapes = EscapeMap()
    escapes.reset()

    out: list[str] = []
    pos = 0
    for m in PROTECTED_SPAN_RE.finditer(text):
        out.append(text[pos : m.start()])
        key = placeholder(escapes.counter)
        escapes.counter += 1
        escapes.mapping[key] = m.group(0)
        # Spaces keep the model from merging the token into a neighbouring word.
        out.append(f" {key} ")
        pos = m.end()
    out.append(text[pos:])
    return "".join(out), escapes


def thaw(text: str, escapes: EscapeMap) -> str:
    """Restore placeholders, swallowing any whitespace around them.

    Unknown placeholders are left as the bare token instead of raising.
    """
    if not text:
        return text

    def _repl(m: re.Match[str]) -> str:
        key = f"[T_{m.group(1)}]"
        return escapes.mapping.get(key, key)

    return _PLACEHOLDER_WITH_WS_RE.sub(_repl, text)


def contains_placeholder(text: str) -> bool:
    return PLACEHOLDER_RE.search(text) is not None


def contains_term_code(text: str) -> bool:
    return TERM_CODE_RE.search(text) is not None
