from __future__ import annotations

import re
import threading
from typing import Optional

import requests
from loguru import logger

from planetradio.api.client import ListenApiClient
from planetradio.errors import RelayStartError
from planetradio.metadata import MetadataFetcher, MetadataPublisher
from planetradio.relay.events import METADATA_EVENTS_URL, MetadataEventChannel
from planetradio.relay.lifecycle import RelayLifecycle
from planetradio.relay.server import RelayServer, RelayState, StreamResponse


SESSION_COOKIE_NAME = "AISSessionId"
CHUNK_SIZE = 16 * 1024

_SESSION_COOKIE_RE = re.compile(SESSION_COOKIE_NAME + r"=([^;,\s]+)")


def session_cookie_from_response(resp: requests.Response) -> Optional[str]:
    """Return ``AISSessionId=<value>`` from the upstream response, if set."""
    value = resp.cookies.get(SESSION_COOKIE_NAME)
    if not value:
        m = _SESSION_COOKIE_RE.search(resp.headers.get("Set-Cookie", ""))
        value = m.group(1) if m else None
    return f"{SESSION_COOKIE_NAME}={value}" if value else None


class DirectRelay:
    """Pipes one continuous AAC response through the local ``/stream`` route.

    Now-playing data arrives on a separate server-push channel opened with
    the session cookie the stream host sets.
    """

    def __init__(
        self,
        client: ListenApiClient,
        stream_url: str,
        fetcher: MetadataFetcher,
        publisher: MetadataPublisher,
        *,
        events_url: str = METADATA_EVENTS_URL,
        reconnect_delay: float = 1.0,
    ) -> None:
        self.client = client
        self.stream_url = stream_url
        self.fetcher = fetcher
        self.publisher = publisher
        self.events_url = events_url
        self.reconnect_delay = reconnect_delay
        self.lifecycle = RelayLifecycle()
        self._server = RelayServer(self.handle_stream)
        self._events: Optional[MetadataEventChannel] = None
        self._events_lock = threading.Lock()

    @property
    def state(self) -> RelayState:
        return self.lifecycle.state

    @property
    def local_url(self) -> Optional[str]:
        return self._server.url

    @property
    def local_port(self) -> Optional[int]:
        return self._server.port

    def start(self) -> str:
        if not self.lifecycle.transition(RelayState.STARTING):
            raise RelayStartError("relay has been stopped")
        try:
            url = self._server.start()
        except OSError as exc:
            self.stop()
            raise RelayStartError(f"Could not bind relay port: {exc}") from exc
        logger.info(f"Direct relay ready at {url} for {self.stream_url}")
        return url

    def stop(self) -> None:
        if not self.lifecycle.stop():
            return
        logger.info("Stopping direct relay")
        self.publisher.close()
        self._server.stop()

    def handle_stream(self, response: StreamResponse) -> None:
        if not self.lifecycle.alive:
            response.send_error(503)
            return

        logger.info(f"Proxying stream request to {self.stream_url}")
        try:
            upstream = self.client.open_stream(self.stream_url)
        except requests.RequestException as exc:
            response.send_error(500)
            raise RelayStartError(f"Direct stream request failed: {exc}") from exc
        if not self.lifecycle.track(upstream):
            response.send_error(503)
            return

        try:
            cookie = session_cookie_from_response(upstream)
            if cookie:
                logger.info(f"Captured {SESSION_COOKIE_NAME} session cookie")
                self._open_events(cookie)

            response.send_headers()
            self.lifecycle.transition(RelayState.STREAMING)
            try:
                for chunk in upstream.iter_content(chunk_size=CHUNK_SIZE):
                    if not self.lifecycle.alive:
                        return
                    response.write(chunk)
            except requests.RequestException as exc:
                if self.lifecycle.alive:
                    logger.error(f"Direct stream error: {exc}")
                return
            logger.info("Direct stream ended")
        finally:
            self.lifecycle.release(upstream)

    def _open_events(self, cookie: str) -> None:
        with self._events_lock:
            if self._events is not None:
                return
            self._events = MetadataEventChannel(
                self.client,
                cookie,
                self._on_metadata_url,
                self.lifecycle,
                url=self.events_url,
                reconnect_delay=self.reconnect_delay,
            )
            self._events.start()

    def _on_metadata_url(self, url: str) -> None:
        metadata = self.fetcher.fetch(url)
        if metadata is not None and self.lifecycle.alive:
            self.publisher.publish(metadata)
