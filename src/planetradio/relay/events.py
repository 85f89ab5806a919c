from __future__ import annotations

import json
import threading
from typing import Callable, Iterator, List, Optional

import requests
from loguru import logger

from planetradio.api.client import ListenApiClient
from planetradio.metadata import parse_metadata_string
from planetradio.relay.lifecycle import RelayLifecycle


METADATA_EVENTS_URL = "https://stream-mz.hellorayo.co.uk/metadata?type=json"
RECONNECT_DELAY = 1.0
# A silent channel is dropped and reopened after this long.
EVENTS_READ_TIMEOUT = 60.0


def iter_sse_data(lines: Iterator[str]) -> Iterator[str]:
    """Yield the ``data`` payload of each server-sent event."""
    buf: List[str] = []
    for line in lines:
        if line == "":
            if buf:
                yield "\n".join(buf)
                buf = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            buf.append(value[1:] if value.startswith(" ") else value)
    if buf:
        yield "\n".join(buf)


def metadata_url_from_event(data: str) -> Optional[str]:
    message = json.loads(data)
    items = message.get("metadata-list") if isinstance(message, dict) else None
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        return None
    raw = items[0].get("metadata")
    if not raw:
        return None
    return parse_metadata_string(str(raw)).get("url")


class MetadataEventChannel:
    """Supervised server-push metadata connection for direct AAC streams.

    Runs on its own daemon thread; on disconnect it waits ``reconnect_delay``
    and reconnects until the owning relay stops.
    """

    def __init__(
        self,
        client: ListenApiClient,
        session_cookie: str,
        on_url: Callable[[str], None],
        lifecycle: RelayLifecycle,
        *,
        url: str = METADATA_EVENTS_URL,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self.client = client
        self.session_cookie = session_cookie
        self.on_url = on_url
        self.lifecycle = lifecycle
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="planetradio-metadata-events", daemon=True)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while self.lifecycle.alive:
            try:
                self._listen_once()
                if self.lifecycle.alive:
                    logger.info(f"Metadata channel closed, reconnecting in {self.reconnect_delay:g}s")
            except (requests.RequestException, OSError) as exc:
                if not self.lifecycle.alive:
                    break
                logger.warning(f"Metadata channel error: {exc}; reconnecting in {self.reconnect_delay:g}s")
            except Exception:
                if not self.lifecycle.alive:
                    break
                logger.exception(f"Unexpected metadata channel failure; reconnecting in {self.reconnect_delay:g}s")
            if not self.lifecycle.wait(self.reconnect_delay):
                break
        logger.debug("Metadata channel stopped")

    def _listen_once(self) -> None:
        logger.info(f"Connecting to metadata events at {self.url}")
        resp = self.client.open_stream(
            self.url,
            headers={"Cookie": self.session_cookie, "Accept": "text/event-stream"},
            timeout=(self.client.timeout, EVENTS_READ_TIMEOUT),
        )
        if not self.lifecycle.track(resp):
            return
        try:
            resp.encoding = resp.encoding or "utf-8"
            lines = resp.iter_lines(decode_unicode=True)
            for data in iter_sse_data(line or "" for line in lines):
                if not self.lifecycle.alive:
                    return
                try:
                    url = metadata_url_from_event(data)
                except ValueError as exc:
                    logger.warning(f"Failed to parse metadata event {data!r}: {exc}")
                    continue
                if url:
                    self.on_url(url)
        finally:
            self.lifecycle.release(resp)
