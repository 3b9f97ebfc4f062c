from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict
from pathlib import Path

from .config import ProxyConfig, load_config, save_config
from .events import EventBus
from .glossary import GlossaryStore
from .logging_utils import setup_logging
from .rules import RuleEngine, load_rules
from .server import TranslationServer
from .status import ProxyStatus
from .usage import UsageTotals


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tlproxy", description="Local LLM translation proxy for game text hooks.")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("serve", help="Run the translation proxy until interrupted.")
    s.add_argument("--config", "-c", required=True, help="Path to YAML config")
    s.add_argument("--port", type=int, default=None, help="Override listen port from config.")
    s.add_argument("--threads", type=int, default=None, help="Override worker thread count from config.")
    s.add_argument("--host", default="0.0.0.0", help="Listen address (default: all interfaces).")
    s.add_argument("--log", default=None, help="Override log path.")
    s.add_argument("--status", default=None, help="Write proxy status JSON to this path.")

    i = sub.add_parser("init-config", help="Write a config file with default values.")
    i.add_argument("--output", "-o", required=True, help="Where to write the YAML config")
    i.add_argument("--force", action="store_true", help="Overwrite an existing file.")

    g = sub.add_parser("glossary", help="Search a glossary database.")
    g.add_argument("--path", required=True, help="Path to glossary SQLite file")
    g.add_argument("--term", required=True, help="Substring to look for in source or target")
    g.add_argument("--limit", type=int, default=20, help="Max rows to print.")
    g.add_argument("--json", action="store_true", help="Print JSON instead of plain lines.")
    return p


def run_proxy(
    cfg: ProxyConfig,
    *,
    rules: RuleEngine | None = None,
    host: str = "0.0.0.0",
    status_path: Path | None = None,
) -> None:
    logger = logging.getLogger("tlproxy")
    bus = EventBus()
    usage = UsageTotals()
    usage.attach(bus)
    status = ProxyStatus(path=status_path, usage=usage)
    status.attach(bus)

    glossary = GlossaryStore(cfg.glossary_path if cfg.enable_glossary else None)
    server = TranslationServer(cfg, glossary=glossary, rules=rules, bus=bus, host=host)
    server.start()
    try:
        while server.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        server.stop()
        status.write(force=True)
        glossary.close()
        totals = usage.snapshot()
        logger.info(
            f"Usage: requests={totals['requests']} prompt_tokens={totals['prompt_tokens']} "
            f"completion_tokens={totals['completion_tokens']} total_tokens={totals['total_tokens']}"
        )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.cmd == "serve":
        try:
            cfg = load_config(args.config)
            overrides: dict[str, object] = {}
            if args.port is not None:
                overrides["port"] = int(args.port)
            if args.threads is not None:
                overrides["max_threads"] = int(args.threads)
            if args.log is not None:
                overrides["log_path"] = str(args.log)
            if overrides:
                cfg = cfg.with_overrides(**overrides)
            rules = load_rules(cfg.rules_path)
        except (OSError, ValueError) as e:
            print(f"Config error: {e}", file=sys.stderr)
            return 2

        setup_logging(Path(cfg.log_path) if cfg.log_path else None)
        run_proxy(
            cfg,
            rules=rules,
            host=str(args.host),
            status_path=(Path(args.status) if args.status else None),
        )
        return 0

    if args.cmd == "init-config":
        out = Path(args.output)
        if out.exists() and not args.force:
            print(f"Refusing to overwrite existing file: {out} (use --force)", file=sys.stderr)
            return 1
        save_config(ProxyConfig(), out)
        print(f"Config written: {out}")
        return 0

    if args.cmd == "glossary":
        db_path = Path(args.path)
        if not db_path.exists():
            print(f"Glossary DB not found: {db_path}", file=sys.stderr)
            return 2
        store = GlossaryStore(db_path)
        try:
            rows = store.search(str(args.term), limit=int(args.limit))
        finally:
            store.close()
        if args.json:
            print(json.dumps([asdict(row) for row in rows], ensure_ascii=False, indent=2))
        else:
            for row in rows:
                print(f"{row.source} = {row.target}")
            print(f"Matches: {len(rows)}")
        return 0

    print(f"Unknown command: {args.cmd}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
