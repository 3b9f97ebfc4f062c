from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from .config import LiveConfig, ProxyConfig
from .credentials import CredentialRotator
from .events import EventBus
from .glossary import GlossaryProvider, GlossaryStore
from .llm import ChatCompletionsClient
from .messages import message, one_line
from .rules import TextRuleEngine
from .sessions import SessionStore
from .translator import TranslationPipeline

logger = logging.getLogger("tlproxy.server")

FAILURE_BODY = "Translation Failed"


class PooledHTTPServer(HTTPServer):
    """HTTPServer that hands each accepted connection to a fixed-size worker pool."""

    def __init__(self, server_address: tuple[str, int], handler_cls: type, *, max_workers: int, app: Any) -> None:
        self.app = app
        self.pool = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="tlproxy-worker")
        try:
            super().__init__(server_address, handler_cls)
        except Exception:
            self.pool.shutdown(wait=False)
            raise

    def _process_request_worker(self, request: Any, client_address: Any) -> None:
        try:
            self.finish_request(request, client_address)
        except Exception:
            self.handle_error(request, client_address)
        finally:
            self.shutdown_request(request)

    def process_request(self, request: Any, client_address: Any) -> None:
        self.pool.submit(self._process_request_worker, request, client_address)

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.exception(f"Error while handling request from {client_address}")


class TranslationRequestHandler(BaseHTTPRequestHandler):
    server: PooledHTTPServer
    server_version = "tlproxy/0.1"

    def _write_text(self, status_code: int, body: str, content_type: str = "text/plain; charset=utf-8") -> None:
        data = body.encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path != "/":
            self._write_text(HTTPStatus.NOT_FOUND, "Not found")
            return
        params = parse_qs(parsed.query, keep_blank_values=True)
        text = (params.get("text") or [""])[0].strip()
        if not text:
            self._write_text(HTTPStatus.OK, "")
            return

        result = self.server.app.handle_translation(text, self.client_address[0])
        if not result:
            self._write_text(HTTPStatus.INTERNAL_SERVER_ERROR, FAILURE_BODY, content_type="text/plain")
            return
        self._write_text(HTTPStatus.OK, result)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug(f"{self.address_string()} {format % args}")


class TranslationServer:
    """Owns the listener, the worker pool and every shared collaborator of the proxy."""

    def __init__(
        self,
        config: ProxyConfig,
        *,
        glossary: GlossaryProvider | None = None,
        rules: TextRuleEngine | None = None,
        bus: EventBus | None = None,
        client: ChatCompletionsClient | None = None,
        host: str = "0.0.0.0",
    ) -> None:
        self.host = host
        self.bus = bus or EventBus()
        self.live_config = LiveConfig(config)
        self.rotator = CredentialRotator(config.api_key)
        self.sessions = SessionStore()
        # In-memory until glossary mode points it at a file, so the mode can be switched on at runtime.
        self.glossary = glossary if glossary is not None else GlossaryStore()
        self.rules = rules
        self.stop_event = threading.Event()
        self.pipeline = TranslationPipeline(
            self.live_config,
            rotator=self.rotator,
            sessions=self.sessions,
            client=client or ChatCompletionsClient(),
            bus=self.bus,
            glossary=self.glossary,
            rules=rules,
            stop_event=self.stop_event,
        )
        self._httpd: PooledHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()
        if config.enable_glossary:
            self.glossary.set_file_path(config.glossary_path)

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._httpd is not None

    @property
    def server_address(self) -> tuple[str, int]:
        with self._state_lock:
            if self._httpd is None:
                raise RuntimeError("Server is not running")
            host, port = self._httpd.server_address[:2]
            return str(host), int(port)

    def get_config(self) -> ProxyConfig:
        return self.live_config.get()

    def update_config(self, config: ProxyConfig) -> None:
        self.live_config.set(config)
        self.rotator.reload(config.api_key)
        if config.enable_glossary:
            self.glossary.set_file_path(config.glossary_path)

    def clear_all_contexts(self) -> None:
        self.sessions.clear_all()
        self.bus.log(message("contexts_cleared", self.live_config.get().language))

    def handle_translation(self, text: str, client_address: str) -> str:
        cfg = self.live_config.get()
        self.bus.log(message("request_received", cfg.language, text=one_line(text)))
        self.bus.work_started()
        success = False
        try:
            outcome = self.pipeline.run(text, client_address)
            success = outcome.ok and not self.stop_event.is_set()
            return outcome.text
        except Exception:
            logger.exception("Translation pipeline failed")
            return ""
        finally:
            self.bus.work_finished(success)

    def start(self) -> None:
        with self._state_lock:
            if self._httpd is not None:
                return
            cfg = self.live_config.get()
            self.stop_event.clear()
            httpd = PooledHTTPServer(
                (self.host, int(cfg.port)),
                TranslationRequestHandler,
                max_workers=cfg.max_threads,
                app=self,
            )
            thread = threading.Thread(
                target=httpd.serve_forever,
                kwargs={"poll_interval": 0.1},
                name="tlproxy-listener",
                daemon=True,
            )
            self._httpd = httpd
            self._thread = thread
            thread.start()
            port = httpd.server_address[1]
        self.bus.log(message("server_started", cfg.language, port=port, threads=max(1, int(cfg.max_threads))))

    def stop(self) -> None:
        with self._state_lock:
            httpd, thread = self._httpd, self._thread
            self._httpd = None
            self._thread = None
        if httpd is None:
            return
        self.stop_event.set()
        httpd.shutdown()
        if thread is not None:
            thread.join()
        httpd.server_close()
        httpd.pool.shutdown(wait=True)
        self.bus.log(message("server_stopped", self.live_config.get().language))

    def __enter__(self) -> TranslationServer:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()
