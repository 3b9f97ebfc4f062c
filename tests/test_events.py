from __future__ import annotations

import logging

import pytest

from tlproxy.events import EventBus
from tlproxy.messages import MESSAGES, message, one_line


def test_subscribers_receive_every_stream():
    bus = EventBus()
    got: list[tuple] = []
    bus.on_log(lambda msg: got.append(("log", msg)))
    bus.on_token_usage(lambda p, c: got.append(("usage", p, c)))
    bus.on_work_started(lambda: got.append(("started",)))
    bus.on_work_finished(lambda ok: got.append(("finished", ok)))

    bus.log("hello")
    bus.token_usage(3, 4)
    bus.work_started()
    bus.work_finished(True)

    assert got == [("log", "hello"), ("usage", 3, 4), ("started",), ("finished", True)]


def test_failing_subscriber_is_logged_and_others_still_run(caplog):
    bus = EventBus()
    got: list[str] = []

    def _broken(msg: str) -> None:
        raise RuntimeError("boom")

    bus.on_log(_broken)
    bus.on_log(got.append)

    with caplog.at_level(logging.ERROR, logger="tlproxy"):
        bus.log("still delivered")

    assert got == ["still delivered"]
    assert any("Event subscriber failed" in r.getMessage() for r in caplog.records)


def test_unsubscribe_and_unknown_event():
    bus = EventBus()
    got: list[str] = []
    unsubscribe = bus.on_log(got.append)
    bus.log("one")
    unsubscribe()
    bus.log("two")

    assert got == ["one"]
    with pytest.raises(ValueError, match="Unknown event"):
        bus.subscribe("nope", got.append)


def test_log_lines_also_reach_python_logging(caplog):
    bus = EventBus()
    with caplog.at_level(logging.INFO, logger="tlproxy"):
        bus.log("headless line", logging.WARNING)
    assert [(r.levelno, r.getMessage()) for r in caplog.records] == [(logging.WARNING, "headless line")]


def test_messages_are_localized_by_language_index():
    assert message("server_started", 0, port=6800, threads=8) == "Server started. Port: 6800, Threads: 8"
    assert message("err_timeout", 1) == "请求超时"
    assert all(len(pair) == 2 for pair in MESSAGES.values())


def test_one_line_marks_line_breaks():
    assert one_line("a\nb\r\nc") == "a[LF]b[LF]c"
