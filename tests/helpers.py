"""Test helpers: JWT builder, canned responses and a local upstream server."""

import base64
import json
import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import parse_qs, urlparse

import requests
from requests.cookies import RequestsCookieJar
from requests.structures import CaseInsensitiveDict


def make_jwt(claims: Dict[str, Any]) -> str:
    def b64(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")

    header = b64(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    payload = b64(json.dumps(claims).encode())
    return f"{header}.{payload}.signature"


def make_response(
    status: int = 200,
    *,
    json_body: Any = None,
    text: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    cookies: Optional[Dict[str, str]] = None,
    url: str = "https://example.test/",
) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.reason = "OK" if status < 400 else "Error"
    resp.headers = CaseInsensitiveDict(headers or {})
    if json_body is not None:
        resp._content = json.dumps(json_body).encode("utf-8")
        resp.headers.setdefault("Content-Type", "application/json")
    else:
        resp._content = (text or "").encode("utf-8")
    resp.encoding = "utf-8"
    jar = RequestsCookieJar()
    for name, value in (cookies or {}).items():
        jar.set(name, value)
    resp.cookies = jar
    return resp


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def read_at_least(resp: requests.Response, size: int) -> bytes:
    """Read from a streamed response until ``size`` bytes arrived or it ended."""
    buf = b""
    for chunk in resp.iter_content(chunk_size=4):
        buf += chunk
        if len(buf) >= size:
            break
    return buf


# A callable body may also return (status, body).
Body = Union[bytes, Callable[[], Any]]


@dataclass
class Route:
    status: int = 200
    body: Body = b""
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class SeenRequest:
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]


class Upstream:
    """Tiny HTTP server standing in for the stream hosts and APIs."""

    def __init__(self) -> None:
        self.routes: Dict[str, Route] = {}
        self.seen: List[SeenRequest] = []
        self._lock = threading.Lock()
        upstream = self

        class Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.0"

            def log_message(self, format, *args):  # noqa: A002
                return

            def do_GET(self):  # noqa: N802
                parsed = urlparse(self.path)
                with upstream._lock:
                    upstream.seen.append(
                        SeenRequest(parsed.path, parse_qs(parsed.query), {k: v for k, v in self.headers.items()})
                    )
                    route = upstream.routes.get(parsed.path)
                if route is None:
                    self.send_response(404)
                    self.send_header("Content-Length", "0")
                    self.end_headers()
                    return
                status, body = route.status, route.body
                if callable(body):
                    body = body()
                    if isinstance(body, tuple):
                        status, body = body
                self.send_response(status)
                for k, v in route.headers.items():
                    self.send_header(k, v)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.server.daemon_threads = True
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()

    @property
    def base(self) -> str:
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}"

    def url(self, path: str) -> str:
        return f"{self.base}{path}"

    def route(self, path: str, body: Body = b"", *, status: int = 200, headers: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self.routes[path] = Route(status=status, body=body, headers=dict(headers or {}))

    def requests_for(self, path: str) -> List[SeenRequest]:
        with self._lock:
            return [r for r in self.seen if r.path == path]

    def close(self) -> None:
        self.server.shutdown()
        self.server.server_close()
