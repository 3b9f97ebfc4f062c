from __future__ import annotations

import json

from tlproxy.escapes import freeze
from tlproxy.parsing import (
    ParseErrorKind,
    harvest_terms,
    parse_completion_body,
    process_content,
)
from tlproxy.rules import RuleEngine, TextRule


class _RecordingGlossary:
    def __init__(self) -> None:
        self.added: list[tuple[str, str]] = []

    def get_context_prompt(self, text: str) -> str:
        return ""

    def add_new_term(self, source: str, target: str) -> None:
        self.added.append((source, target))

    def set_file_path(self, path: str) -> None:
        return None


def _body(payload: object) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def test_parse_completion_body_reads_content_and_usage():
    parsed = parse_completion_body(
        _body(
            {
                "choices": [{"message": {"role": "assistant", "content": "你好"}}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
            }
        )
    )
    assert parsed.ok
    assert parsed.content == "你好"
    assert (parsed.prompt_tokens, parsed.completion_tokens) == (12, 3)


def test_parse_completion_body_without_usage_reports_zero_tokens():
    parsed = parse_completion_body(_body({"choices": [{"message": {"content": "ok"}}]}))
    assert parsed.ok
    assert (parsed.prompt_tokens, parsed.completion_tokens) == (0, 0)


def test_parse_completion_body_classifies_errors():
    assert parse_completion_body(b"<html>502 Bad Gateway</html>").error is ParseErrorKind.PARSE
    assert parse_completion_body(_body({"choices": []})).error is ParseErrorKind.FORMAT
    assert parse_completion_body(_body({"error": {"message": "bad key"}})).error is ParseErrorKind.FORMAT
    assert parse_completion_body(_body({"choices": [{"message": {}}]})).error is ParseErrorKind.FORMAT
    assert parse_completion_body(_body(["not", "an", "object"])).error is ParseErrorKind.FORMAT


def test_harvest_accepts_present_term_and_replaces_span_with_target():
    glossary = _RecordingGlossary()
    _, escapes = freeze("Hello world")

    result = process_content(
        "<tl>Hello world</tl><tm>world=世界</tm>",
        escapes,
        candidate_text="Hello world",
        extract_terms=True,
        glossary=glossary,
    )

    assert result.text == "Hello world"
    assert result.terms == [("world", "世界")]
    assert glossary.added == [("world", "世界")]


def test_harvest_rejects_absent_placeholder_and_code_terms():
    content = (
        "<TL>译文</TL>"
        "<tm> Ghost = 幽灵 </tm>"
        "<tm>[T_0]=x</tm>"
        "<tm>ZMCZ=名字</tm>"
        "<TM>Sword = 剑</TM>"
        "<tm>=空</tm>"
    )
    cleaned, terms = harvest_terms(content, "Take the SWORD")

    assert terms == [("Sword", "剑")]
    assert "<tm>" not in cleaned.lower()
    assert "幽灵" not in cleaned


def test_process_content_without_extraction_leaves_glossary_alone():
    glossary = _RecordingGlossary()
    _, escapes = freeze("Hello world")

    result = process_content(
        "<tl>你好</tl><tm>world=世界</tm>",
        escapes,
        candidate_text="Hello world",
        extract_terms=False,
        glossary=glossary,
    )

    assert result.text == "你好"
    assert result.terms == []
    assert glossary.added == []


def test_process_content_strips_think_and_thaws_placeholders():
    frozen, escapes = freeze("Hi\n{{name}}")
    assert "[T_1]" in frozen

    result = process_content(
        "<think>The user wants Chinese.\n<tl>fake</tl></think>\n<tl>嗨 [T_0] [T_1]</tl>",
        escapes,
        candidate_text="Hi\n{{name}}",
        extract_terms=False,
    )

    assert result.text == "嗨\n{{name}}"


def test_process_content_uses_whole_reply_when_no_tl_block():
    _, escapes = freeze("x")
    result = process_content("  just text </tl> ", escapes, candidate_text="x", extract_terms=False)
    assert result.text == "just text"


def test_post_rules_only_run_in_glossary_mode():
    _, escapes = freeze("x")
    rules = RuleEngine(post=[TextRule(name="quotes", pattern=r'^"(.*)"$', replacement=r"\1")])

    off = process_content('"你好"', escapes, candidate_text="x", extract_terms=False, rules=rules)
    on = process_content(
        '"你好"',
        escapes,
        candidate_text="x",
        extract_terms=False,
        rules=rules,
        glossary_enabled=True,
    )

    assert off.text == '"你好"'
    assert on.text == "你好"
