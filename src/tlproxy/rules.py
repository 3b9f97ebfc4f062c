from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Pattern, Protocol

import yaml


class TextRuleEngine(Protocol):
    def process_pre(self, text: str) -> str: ...

    def process_post(self, text: str) -> str: ...


@dataclass(frozen=True)
class TextRule:
    name: str
    pattern: str
    replacement: str = ""
    flags: str = ""  # e.g. "I" for IGNORECASE
    description: str = ""


@dataclass(frozen=True)
class CompiledRule:
    name: str
    regex: Pattern[str]
    replacement: str


def _compile_rule(rule: TextRule) -> CompiledRule:
    flags = 0
    if "I" in rule.flags.upper():
        flags |= re.IGNORECASE
    if "M" in rule.flags.upper():
        flags |= re.MULTILINE
    if "S" in rule.flags.upper():
        flags |= re.DOTALL
    try:
        regex = re.compile(rule.pattern, flags=flags)
    except re.error as e:
        raise ValueError(f"Invalid regex in rule '{rule.name}': {e}") from e
    # The replacement template is parsed before any matching, so an empty subject is enough to check it.
    try:
        regex.sub(rule.replacement, "")
    except (re.error, IndexError) as e:
        raise ValueError(f"Invalid replacement in rule '{rule.name}': {e}") from e
    return CompiledRule(name=rule.name, regex=regex, replacement=rule.replacement)


class RuleEngine:
    """Ordered regex substitutions run before (pre) and after (post) translation.

    Pre rules see the frozen text, so they cannot touch protected fragments.
    """

    def __init__(self, pre: Iterable[TextRule] = (), post: Iterable[TextRule] = ()) -> None:
        self.pre_rules = tuple(_compile_rule(r) for r in pre)
        self.post_rules = tuple(_compile_rule(r) for r in post)

    @staticmethod
    def _apply(text: str, rules: tuple[CompiledRule, ...]) -> str:
        out = text
        for rule in rules:
            out = rule.regex.sub(rule.replacement, out)
        return out

    def process_pre(self, text: str) -> str:
        return self._apply(text, self.pre_rules)

    def process_post(self, text: str) -> str:
        return self._apply(text, self.post_rules)


def _parse_rules(items: Any, *, stage: str) -> list[TextRule]:
    if not items:
        return []
    if not isinstance(items, list):
        raise ValueError(f"rules.{stage} must be a list")
    rules: list[TextRule] = []
    for i, rd in enumerate(items, start=1):
        if not isinstance(rd, dict) or "pattern" not in rd:
            raise ValueError(f"rules.{stage}[{i}] must be a mapping with a 'pattern'")
        rules.append(
            TextRule(
                name=str(rd.get("name", f"{stage}_{i}")),
                pattern=str(rd["pattern"]),
                replacement=str(rd.get("replacement", "")),
                flags=str(rd.get("flags", "")),
                description=str(rd.get("description", "")),
            )
        )
    return rules


def load_rules(path: str | Path | None) -> RuleEngine:
    if not path:
        return RuleEngine()
    rules_path = Path(path)
    data = yaml.safe_load(rules_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Rules file root must be a mapping: {rules_path}")
    return RuleEngine(
        pre=_parse_rules(data.get("pre"), stage="pre"),
        post=_parse_rules(data.get("post"), stage="post"),
    )
