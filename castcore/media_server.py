"""Local HTTP server that exposes the selected video to renderers on the LAN.

Renderers fetch the video themselves, usually with byte ranges so they can
seek and buffer, and often probe with HEAD first.
"""

import json
import logging
import re
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from typing import Optional, Tuple
from urllib.parse import urlparse

from castcore.errors import ServerBindError
from castcore.models import MediaSource
from castcore.net import get_local_ip

LOG = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_RANGE_RE = re.compile(r"^bytes=(\d+)-(\d+)?$")


def _parse_range_header(range_value: str, total_length: int) -> Optional[Tuple[int, int]]:
    """Parse `bytes=start-[end]` into an inclusive (start, end) pair.

    Returns None when the header is missing or malformed. The end is clamped
    to the last byte; a start past the end is returned as-is for the caller
    to reject.
    """
    if not range_value:
        return None
    m = _RANGE_RE.match(range_value.strip())
    if not m:
        return None
    start = int(m.group(1))
    end_s = m.group(2)
    last = total_length - 1
    if end_s is None or end_s == "":
        return (start, last)
    end = int(end_s)
    if end < start:
        return None
    return (start, min(end, last))


class _ThreadingHTTPServer(ThreadingMixIn, HTTPServer):
    daemon_threads = True
    allow_reuse_address = False
    request_queue_size = 256


class MediaServer:
    def __init__(self, host: str = "", port: int = 8080, port_attempts: int = 2):
        self._host = host
        self._preferred_port = int(port)
        self._port_attempts = max(1, int(port_attempts))
        self._lock = threading.Lock()
        self._server: Optional[_ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._port: Optional[int] = None
        self._source: Optional[MediaSource] = None

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def source(self) -> Optional[MediaSource]:
        return self._source

    def is_running(self) -> bool:
        return self._server is not None and self._thread is not None and self._thread.is_alive()

    def set_source(self, source: Optional[MediaSource]) -> None:
        with self._lock:
            self._source = source
        if source is not None:
            LOG.info("Serving %s (%s, %s)", source.name, source.mime_type, source.formatted_size)

    def clear_source(self) -> None:
        self.set_source(None)

    def get_video_url(self) -> Optional[str]:
        if not self.is_running() or self._source is None:
            return None
        return f"http://{get_local_ip()}:{self._port}/video"

    def _bind(self, port: int) -> _ThreadingHTTPServer:
        try:
            return _ThreadingHTTPServer((self._host, port), self._make_handler())
        except OSError as e:
            raise ServerBindError(port, str(e)) from e

    def start(self) -> bool:
        """Bind and serve in a daemon thread. Returns False if no port could be bound."""
        with self._lock:
            if self.is_running():
                return True

            server = None
            for attempt in range(self._port_attempts):
                port = self._preferred_port + attempt if self._preferred_port else 0
                try:
                    server = self._bind(port)
                    break
                except ServerBindError as e:
                    LOG.warning("%s", e)
            if server is None:
                LOG.error("Media server unavailable after %d attempt(s)", self._port_attempts)
                return False

            self._server = server
            self._port = server.server_address[1]

            def run() -> None:
                try:
                    server.serve_forever(poll_interval=0.25)
                except Exception as e:
                    LOG.warning("Media server error: %s", e)

            self._thread = threading.Thread(target=run, name="MediaServer", daemon=True)
            self._thread.start()

        LOG.info("Media server listening on port %s", self._port)
        return True

    def stop(self) -> None:
        with self._lock:
            server = self._server
            self._server = None
            self._thread = None
            self._port = None
            self._source = None
        if server is None:
            return
        try:
            server.shutdown()
        except Exception as e:
            LOG.debug("Media server shutdown error: %s", e)
        server.server_close()

    def _make_handler(self):
        media_server = self

        class Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def log_message(self, fmt: str, *args) -> None:
                LOG.debug("MediaServer: " + fmt, *args)

            def _send_body(self, status: int, content_type: str, body: bytes) -> None:
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(body)

            def _send_status(self) -> None:
                body = json.dumps({
                    "status": "running",
                    "port": media_server.port,
                    "hasVideo": media_server.source is not None,
                }).encode("utf-8")
                self._send_body(200, "application/json", body)

            def _send_video(self, source: MediaSource, with_body: bool) -> None:
                content = source.content
                size = content.size
                byte_range = _parse_range_header(self.headers.get("Range", ""), size)

                if byte_range is not None and byte_range[0] >= size:
                    self.send_response(416)
                    self.send_header("Content-Range", f"bytes */{size}")
                    self.send_header("Content-Length", "0")
                    self.end_headers()
                    return

                if byte_range is None:
                    start, end = 0, size - 1
                    self.send_response(200)
                else:
                    start, end = byte_range
                    self.send_response(206)
                    self.send_header("Content-Range", f"bytes {start}-{end}/{size}")
                length = max(0, end - start + 1)
                self.send_header("Content-Type", source.mime_type)
                self.send_header("Accept-Ranges", "bytes")
                self.send_header("Content-Length", str(length))
                self.end_headers()
                if not with_body or length == 0:
                    return

                remaining = length
                with content.open(start) as f:
                    while remaining > 0:
                        chunk = f.read(min(CHUNK_SIZE, remaining))
                        if not chunk:
                            LOG.debug("Content ended %d bytes early", remaining)
                            self.close_connection = True
                            break
                        self.wfile.write(chunk)
                        remaining -= len(chunk)

            def _dispatch(self, with_body: bool) -> None:
                path = urlparse(self.path).path
                try:
                    if path == "/status":
                        self._send_status()
                        return
                    if path.startswith("/video"):
                        source = media_server.source
                        if source is None:
                            self.send_error(404, "No video")
                            return
                        self._send_video(source, with_body)
                        return
                    self.send_error(404, "Not Found")
                except (BrokenPipeError, ConnectionResetError):
                    LOG.debug("Client disconnected from %s", path)

            def do_HEAD(self) -> None:
                self._dispatch(with_body=False)

            def do_GET(self) -> None:
                self._dispatch(with_body=True)

        return Handler
