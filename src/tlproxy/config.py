from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from pathlib import Path
from threading import Lock
from typing import Any

import yaml

DEFAULT_SYSTEM_PROMPT = """You are a game text translator.
Translate every input line into fluent Simplified Chinese.
- Keep the meaning, tone and speaker voice of the original.
- Keep punctuation count and order.
- Keep HTML/ruby tags and placeholders exactly as they are; translate only readable text inside tags.
- Output only the translation, without explanations, notes or prefixes.
"""

DEFAULT_PRE_PROMPT = "将下面的文本翻译成简体中文："

LANGUAGE_EN = 0
LANGUAGE_ZH = 1


@dataclass(frozen=True)
class ProxyConfig:
    api_address: str = "https://api.openai.com/v1"
    # Comma-separated; every key is used in turn.
    api_key: str = ""
    model_name: str = "gpt-3.5-turbo"
    port: int = 6800
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    pre_prompt: str = DEFAULT_PRE_PROMPT
    # Conversation turns remembered per client.
    context_num: int = 5
    temperature: float = 1.0
    max_threads: int = 8
    language: int = LANGUAGE_ZH  # 0: English, 1: Chinese (log lines)
    enable_glossary: bool = False
    glossary_path: str = ""
    glossary_history: tuple[str, ...] = ()
    # Pre/post regex rules for the text rule engine (YAML).
    rules_path: str | None = None
    log_path: str | None = None

    def with_overrides(self, **changes: Any) -> ProxyConfig:
        return replace(self, **changes)


class LiveConfig:
    """Thread-safe holder; readers take one full snapshot per attempt."""

    def __init__(self, value: ProxyConfig | None = None) -> None:
        self._lock = Lock()
        self._value = value or ProxyConfig()

    def get(self) -> ProxyConfig:
        with self._lock:
            return self._value

    def set(self, value: ProxyConfig) -> None:
        with self._lock:
            self._value = value


def _resolve_optional_path(base_dir: Path, value: Any) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    path = Path(raw)
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return str(path)


def _int_in_range(value: Any, *, field_name: str, default: int, minimum: int, maximum: int | None = None) -> int:
    raw = default if value is None else value
    try:
        out = int(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {field_name}: {raw!r}. Expected an integer.") from e
    if out < minimum or (maximum is not None and out > maximum):
        bounds = f">= {minimum}" if maximum is None else f"in {minimum}..{maximum}"
        raise ValueError(f"Invalid value for {field_name}: {out}. Expected {bounds}.")
    return out


def config_from_dict(data: dict[str, Any], *, base_dir: Path | None = None) -> ProxyConfig:
    base = base_dir or Path.cwd()
    defaults = ProxyConfig()

    history_raw = data.get("glossary_history") or []
    if isinstance(history_raw, str):
        history_raw = [history_raw]
    glossary_history = tuple(str(item) for item in history_raw if str(item).strip())

    return ProxyConfig(
        api_address=str(data.get("api_address", defaults.api_address)).strip().rstrip("/"),
        api_key=str(data.get("api_key", defaults.api_key) or ""),
        model_name=str(data.get("model_name", defaults.model_name)),
        port=_int_in_range(data.get("port"), field_name="port", default=defaults.port, minimum=1, maximum=65535),
        system_prompt=str(data.get("system_prompt", defaults.system_prompt) or ""),
        pre_prompt=str(data.get("pre_prompt", defaults.pre_prompt) or ""),
        context_num=_int_in_range(
            data.get("context_num"), field_name="context_num", default=defaults.context_num, minimum=0
        ),
        temperature=float(data.get("temperature", defaults.temperature)),
        max_threads=_int_in_range(
            data.get("max_threads"), field_name="max_threads", default=defaults.max_threads, minimum=0
        ),
        language=_int_in_range(
            data.get("language"), field_name="language", default=defaults.language, minimum=0, maximum=1
        ),
        enable_glossary=bool(data.get("enable_glossary", defaults.enable_glossary)),
        glossary_path=_resolve_optional_path(base, data.get("glossary_path")) or "",
        glossary_history=glossary_history,
        rules_path=_resolve_optional_path(base, data.get("rules_path")),
        log_path=_resolve_optional_path(base, data.get("log_path")),
    )


def load_config(path: str | Path) -> ProxyConfig:
    cfg_path = Path(path)
    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping: {cfg_path}")
    return config_from_dict(data, base_dir=cfg_path.parent.resolve())


def save_config(cfg: ProxyConfig, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    payload = asdict(cfg)
    payload["glossary_history"] = list(cfg.glossary_history)
    out.write_text(
        yaml.safe_dump(payload, allow_unicode=True, sort_keys=False, default_flow_style=False),
        encoding="utf-8",
    )
    return out
