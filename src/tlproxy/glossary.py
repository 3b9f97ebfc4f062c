from __future__ import annotations

import datetime as dt
import sqlite3
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Protocol, TypeVar

T = TypeVar("T")

MEMORY_PATH = ":memory:"


class GlossaryProvider(Protocol):
    def get_context_prompt(self, text: str) -> str: ...

    def add_new_term(self, source: str, target: str) -> None: ...

    def set_file_path(self, path: str) -> None: ...


class NullGlossary:
    """Glossary provider that knows nothing and forgets everything."""

    def get_context_prompt(self, text: str) -> str:
        return ""

    def add_new_term(self, source: str, target: str) -> None:
        return None

    def set_file_path(self, path: str) -> None:
        return None


@dataclass(frozen=True)
class GlossaryTerm:
    source: str
    target: str
    updated_at: str


def _norm_key(text: str) -> str:
    return " ".join(text.split()).casefold()


class GlossaryStore:
    """SQLite-backed term store shared by every worker thread.

    An empty path keeps terms in memory. A corrupt file is moved aside as ``*.corrupt-<stamp>``
    and recreated.
    """

    def __init__(self, path: str | Path | None = None, *, max_hint_terms: int = 40) -> None:
        self._lock = RLock()
        self.max_hint_terms = max(1, int(max_hint_terms))
        self.path = self._normalize_path(path)
        self.conn = self._connect_with_recovery()

    @staticmethod
    def _normalize_path(path: str | Path | None) -> str:
        raw = str(path or "").strip()
        return raw or MEMORY_PATH

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def set_file_path(self, path: str) -> None:
        new_path = self._normalize_path(path)
        with self._lock:
            if new_path == self.path:
                return
            with suppress(sqlite3.Error):
                self.conn.close()
            self.path = new_path
            self.conn = self._connect_with_recovery()

    def _connect_sqlite(self) -> sqlite3.Connection:
        if self.path != MEMORY_PATH:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, check_same_thread=False)
        try:
            if self.path != MEMORY_PATH:
                conn.execute("PRAGMA journal_mode=WAL;")
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def _quarantine_corrupt_sqlite(self) -> None:
        if self.path == MEMORY_PATH:
            return
        stamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for suffix in ("", "-wal", "-shm"):
            src = Path(f"{self.path}{suffix}")
            if not src.exists():
                continue
            dst = Path(f"{src}.corrupt-{stamp}")
            try:
                src.replace(dst)
            except OSError:
                continue

    def _connect_with_recovery(self) -> sqlite3.Connection:
        conn: sqlite3.Connection | None = None
        try:
            conn = self._connect_sqlite()
            self.conn = conn
            self._init_db()
            return conn
        except sqlite3.DatabaseError:
            if conn is not None:
                conn.close()
            self._quarantine_corrupt_sqlite()
            conn = self._connect_sqlite()
            self.conn = conn
            self._init_db()
            return conn

    @staticmethod
    def _is_corruption_error(exc: sqlite3.DatabaseError) -> bool:
        message = str(exc).lower()
        return any(marker in message for marker in ("malformed", "not a database"))

    def _run_with_recovery(self, operation: Callable[[], T]) -> T:
        with self._lock:
            try:
                return operation()
            except sqlite3.DatabaseError as exc:
                if not self._is_corruption_error(exc):
                    raise
                with suppress(sqlite3.Error):
                    self.conn.close()
                self._quarantine_corrupt_sqlite()
                self.conn = self._connect_sqlite()
                self._init_db()
                return operation()

    def _init_db(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS glossary (
              source_key TEXT PRIMARY KEY,
              source TEXT NOT NULL,
              target TEXT NOT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    @staticmethod
    def _utc_now_iso() -> str:
        return dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    def add_new_term(self, source: str, target: str) -> None:
        src = source.strip()
        tgt = target.strip()
        if not src or not tgt:
            return

        def _operation() -> None:
            now = self._utc_now_iso()
            self.conn.execute(
                """
                INSERT INTO glossary(source_key, source, target, created_at, updated_at)
                VALUES(?,?,?,?,?)
                ON CONFLICT(source_key) DO UPDATE SET
                  source=excluded.source,
                  target=excluded.target,
                  updated_at=excluded.updated_at
                """,
                (_norm_key(src), src, tgt, now, now),
            )
            self.conn.commit()

        self._run_with_recovery(_operation)

    def terms(self) -> list[GlossaryTerm]:
        def _operation() -> list[GlossaryTerm]:
            cur = self.conn.execute("SELECT source, target, updated_at FROM glossary ORDER BY source_key")
            return [GlossaryTerm(source=row[0], target=row[1], updated_at=row[2]) for row in cur.fetchall()]

        return self._run_with_recovery(_operation)

    def search(self, term: str, *, limit: int = 20) -> list[GlossaryTerm]:
        needle = f"%{term.strip().lower()}%"

        def _operation() -> list[GlossaryTerm]:
            cur = self.conn.execute(
                """
                SELECT source, target, updated_at FROM glossary
                WHERE LOWER(source) LIKE ? OR LOWER(target) LIKE ?
                ORDER BY updated_at DESC
                LIMIT ?
                """,
                (needle, needle, max(1, int(limit))),
            )
            return [GlossaryTerm(source=row[0], target=row[1], updated_at=row[2]) for row in cur.fetchall()]

        return self._run_with_recovery(_operation)

    def matching_terms(self, text: str) -> list[GlossaryTerm]:
        haystack = _norm_key(text)
        if not haystack:
            return []
        hits = [t for t in self.terms() if _norm_key(t.source) in haystack]
        # Longest source first so phrases win over the single words they contain.
        hits.sort(key=lambda t: len(t.source), reverse=True)
        return hits[: self.max_hint_terms]

    def get_context_prompt(self, text: str) -> str:
        hits = self.matching_terms(text)
        if not hits:
            return ""
        lines = ["【Glossary】 Use these translations for the following terms:"]
        lines.extend(f"{t.source} = {t.target}" for t in hits)
        return "\n".join(lines)
