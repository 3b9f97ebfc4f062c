from __future__ import annotations

from threading import Lock


def parse_api_keys(raw: str | None) -> list[str]:
    """Split a comma-separated key field into trimmed, non-empty keys."""
    if not raw:
        return []
    keys: list[str] = []
    for part in str(raw).split(","):
        key = part.strip()
        if key:
            keys.append(key)
    return keys


class CredentialRotator:
    """Round-robin API key pool. An empty pool yields ``""`` instead of raising."""

    def __init__(self, raw: str | None = None) -> None:
        self._lock = Lock()
        self._keys: list[str] = parse_api_keys(raw)
        self._cursor = 0

    def reload(self, raw: str | None) -> None:
        with self._lock:
            self._keys = parse_api_keys(raw)
            self._cursor = 0

    def next_key(self) -> str:
        with self._lock:
            if not self._keys:
                return ""
            key = self._keys[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._keys)
            return key

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
