from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Optional, Protocol
from urllib.parse import urlparse

from loguru import logger

from planetradio.errors import PlanetRadioError


STREAM_PATH = "/stream"
HLS_SUFFIX = ".m3u8"


class StreamKind(Enum):
    DIRECT = "direct"
    HLS = "hls"


class RelayState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    STOPPED = "stopped"


def classify_stream(url: str) -> StreamKind:
    if HLS_SUFFIX in urlparse(url).path:
        return StreamKind.HLS
    return StreamKind.DIRECT


@dataclass(frozen=True)
class StreamDescriptor:
    base_url: str
    kind: StreamKind

    @classmethod
    def from_url(cls, url: str) -> "StreamDescriptor":
        return cls(base_url=url, kind=classify_stream(url))


class StreamResponse:
    """Client-facing side of ``/stream``: an ``audio/aac`` chunked body."""

    def __init__(self, handler: BaseHTTPRequestHandler) -> None:
        self._handler = handler
        self.headers_sent = False
        self.closed = False

    def send_headers(self) -> None:
        if self.headers_sent:
            return
        h = self._handler
        h.send_response(200)
        h.send_header("Content-Type", "audio/aac")
        h.send_header("Transfer-Encoding", "chunked")
        h.send_header("Cache-Control", "no-cache")
        h.send_header("Connection", "close")
        h.end_headers()
        self.headers_sent = True

    def write(self, data: bytes) -> None:
        """Write one chunk; raises ``OSError`` once the client has gone away."""
        if not data or self.closed:
            return
        self.send_headers()
        wfile = self._handler.wfile
        wfile.write(b"%x\r\n" % len(data))
        wfile.write(data)
        wfile.write(b"\r\n")
        wfile.flush()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if not self.headers_sent:
            return
        try:
            self._handler.wfile.write(b"0\r\n\r\n")
            self._handler.wfile.flush()
        except OSError:
            pass

    def send_error(self, status: int = 500) -> bool:
        """Send an error status if nothing has been written yet."""
        if self.headers_sent or self.closed:
            return False
        h = self._handler
        h.send_response(status)
        h.send_header("Content-Length", "0")
        h.send_header("Connection", "close")
        h.end_headers()
        self.headers_sent = True
        self.closed = True
        return True


class StreamRelay(Protocol):
    state: RelayState

    @property
    def local_url(self) -> Optional[str]: ...

    def start(self) -> str: ...

    def stop(self) -> None: ...

    def handle_stream(self, response: StreamResponse) -> None: ...


class RelayServer:
    """Local HTTP listener exposing a single ``GET /stream`` route."""

    def __init__(self, on_stream: Callable[[StreamResponse], None], *, host: str = "127.0.0.1") -> None:
        self._on_stream = on_stream
        self.host = host
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def port(self) -> Optional[int]:
        server = self._server
        return server.server_address[1] if server is not None else None

    @property
    def url(self) -> Optional[str]:
        port = self.port
        return f"http://{self.host}:{port}{STREAM_PATH}" if port else None

    def start(self) -> str:
        relay_server = self

        class Handler(BaseHTTPRequestHandler):
            # HTTP/1.1 is needed for a chunked body.
            protocol_version = "HTTP/1.1"

            def log_message(self, format: str, *args) -> None:  # noqa: A002
                logger.debug(f"relay {self.address_string()} - {format % args}")

            def do_GET(self):  # noqa: N802
                self.close_connection = True
                path = urlparse(self.path).path
                if path != STREAM_PATH:
                    logger.warning(f"Unknown route requested: {self.path}")
                    body = b"Not Found"
                    self.send_response(404)
                    self.send_header("Content-Type", "text/plain")
                    self.send_header("Content-Length", str(len(body)))
                    self.send_header("Connection", "close")
                    self.end_headers()
                    self.wfile.write(body)
                    return

                response = StreamResponse(self)
                try:
                    relay_server._on_stream(response)
                except PlanetRadioError as exc:
                    logger.error(f"Stream request failed: {exc}")
                    response.send_error(500)
                except OSError as exc:
                    logger.info(f"Stream client went away: {exc}")
                except Exception:
                    logger.exception("Unexpected relay error")
                    response.send_error(500)
                finally:
                    response.close()

        with self._lock:
            if self._server is not None:
                raise RuntimeError("relay server already started")
            server = ThreadingHTTPServer((self.host, 0), Handler)
            server.daemon_threads = True
            thread = threading.Thread(target=server.serve_forever, name="planetradio-relay", daemon=True)
            thread.start()
            self._server = server
            self._thread = thread
        logger.info(f"Relay listening on port {self.port}")
        return self.url  # type: ignore[return-value]

    def stop(self) -> None:
        with self._lock:
            server, thread = self._server, self._thread
            self._server = None
            self._thread = None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=5)
        logger.debug("Relay listener closed")
