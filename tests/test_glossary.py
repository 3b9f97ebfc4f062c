from __future__ import annotations

import sqlite3

from tlproxy.glossary import GlossaryStore, NullGlossary


def test_add_new_term_upserts_on_casefolded_source():
    store = GlossaryStore()
    store.add_new_term("Alice", "爱丽丝")
    store.add_new_term("alice", "艾丽斯")
    store.add_new_term("  ", "ignored")

    terms = store.terms()
    assert [(t.source, t.target) for t in terms] == [("alice", "艾丽斯")]
    store.close()


def test_context_prompt_lists_matching_terms_longest_first():
    store = GlossaryStore()
    store.add_new_term("Sword", "剑")
    store.add_new_term("Holy Sword", "圣剑")
    store.add_new_term("Shield", "盾")

    prompt = store.get_context_prompt("He raised the holy  sword.")
    lines = prompt.splitlines()

    assert lines[0].startswith("【Glossary】")
    assert lines[1:] == ["Holy Sword = 圣剑", "Sword = 剑"]
    assert store.get_context_prompt("nothing here") == ""
    store.close()


def test_context_prompt_respects_max_hint_terms():
    store = GlossaryStore(max_hint_terms=2)
    for word in ("aa", "bbb", "cccc"):
        store.add_new_term(word, word.upper())
    prompt = store.get_context_prompt("aa bbb cccc")
    assert prompt.splitlines()[1:] == ["cccc = CCCC", "bbb = BBB"]
    store.close()


def test_search_matches_source_or_target(tmp_path):
    store = GlossaryStore(tmp_path / "g.sqlite")
    store.add_new_term("Dragon", "龙")
    store.add_new_term("Dragonfly", "蜻蜓")
    store.add_new_term("Cat", "猫")

    assert {t.source for t in store.search("dragon")} == {"Dragon", "Dragonfly"}
    assert [t.source for t in store.search("猫")] == ["Cat"]
    assert len(store.search("dragon", limit=1)) == 1
    store.close()


def test_set_file_path_switches_between_files(tmp_path):
    store = GlossaryStore(tmp_path / "a.sqlite")
    store.add_new_term("one", "一")
    store.set_file_path(str(tmp_path / "b.sqlite"))
    assert store.terms() == []
    store.add_new_term("two", "二")
    store.set_file_path(str(tmp_path / "a.sqlite"))
    assert [t.source for t in store.terms()] == ["one"]
    store.close()


def test_glossary_recovers_from_corrupt_file(tmp_path):
    db_path = tmp_path / "glossary.sqlite"
    db_path.write_bytes(b"this is not sqlite")

    store = GlossaryStore(db_path)
    store.add_new_term("Alice", "爱丽丝")
    terms = store.terms()
    store.close()

    assert [(t.source, t.target) for t in terms] == [("Alice", "爱丽丝")]
    assert list(tmp_path.glob("glossary.sqlite.corrupt-*"))


def test_glossary_recovers_from_runtime_corruption(tmp_path):
    db_path = tmp_path / "glossary.sqlite"
    store = GlossaryStore(db_path)

    class _FlakyConn:
        def __init__(self, inner: sqlite3.Connection) -> None:
            self._inner = inner
            self._raised = False

        def execute(self, *args: object, **kwargs: object):  # noqa: ANN002, ANN003
            if not self._raised:
                self._raised = True
                raise sqlite3.DatabaseError("database disk image is malformed")
            return self._inner.execute(*args, **kwargs)

        def commit(self) -> None:
            self._inner.commit()

        def close(self) -> None:
            self._inner.close()

    store.conn = _FlakyConn(store.conn)  # type: ignore[assignment]
    store.add_new_term("Bob", "鲍勃")

    assert [t.source for t in store.terms()] == ["Bob"]
    store.close()


def test_null_glossary_is_inert():
    glossary = NullGlossary()
    glossary.add_new_term("a", "b")
    glossary.set_file_path("/nowhere")
    assert glossary.get_context_prompt("a") == ""
