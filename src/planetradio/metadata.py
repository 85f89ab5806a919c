from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests
from loguru import logger

from planetradio.api.client import ListenApiClient


NO_TRACK_DATA_SUFFIX = "/eventdata/-1"
FALLBACK_TITLE = "Non stop music"
DEFAULT_BRAND = "Planet Rock"

_PAIR_RE = re.compile(r'\s*([\w.-]+)\s*=\s*(?:"([^"]*)"|([^,]*))\s*(?:,|$)')


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value)
    return s if s != "" else None


@dataclass(frozen=True)
class NowPlayingMetadata:
    title: Optional[str]
    artist: Optional[str]
    album: Optional[str] = None
    artwork_url: Optional[str] = None

    @classmethod
    def create(cls, title: Any, artist: Any, album: Any = None, artwork_url: Any = None) -> "NowPlayingMetadata":
        return cls(
            title=_blank_to_none(title),
            artist=_blank_to_none(artist),
            album=_blank_to_none(album),
            artwork_url=_blank_to_none(artwork_url),
        )


def parse_metadata_string(text: str) -> Dict[str, str]:
    """Parse a push message like ``title="x",url="https://..."`` into a dict."""
    out: Dict[str, str] = {}
    for m in _PAIR_RE.finditer(text or ""):
        key = m.group(1)
        value = m.group(2) if m.group(2) is not None else (m.group(3) or "").strip()
        if key and value:
            out[key] = value
    return out


class MetadataFetcher:
    """Turns a metadata URL into ``NowPlayingMetadata``; never raises."""

    def __init__(self, client: ListenApiClient, station_code: str, *, brand: str = DEFAULT_BRAND) -> None:
        self.client = client
        self.station_code = station_code
        self.brand = brand

    def fetch(self, metadata_url: Optional[str]) -> Optional[NowPlayingMetadata]:
        if not metadata_url:
            return None
        if metadata_url.endswith(NO_TRACK_DATA_SUFFIX):
            logger.debug("No track data for this event, fetching show information")
            return self.fetch_show()

        try:
            data = self.client.get_json(metadata_url)
        except (requests.RequestException, ValueError) as exc:
            logger.warning(f"Failed to fetch metadata from {metadata_url}: {exc}")
            return self.fetch_show()

        if not isinstance(data, dict) or not data:
            return self.fetch_show()
        logger.debug(f"Fetched metadata from {metadata_url}")
        return NowPlayingMetadata.create(data.get("eventSongTitle"), data.get("eventSongArtist"), None, data.get("eventImageUrl"))

    def fetch_show(self) -> NowPlayingMetadata:
        try:
            data = self.client.now_playing(self.station_code)
            first = data[0] if isinstance(data, list) and data else None
            on_air = first.get("stationOnAir") if isinstance(first, dict) else None
            if isinstance(on_air, dict) and on_air:
                return NowPlayingMetadata.create(
                    on_air.get("episodeTitle"),
                    self.brand,
                    on_air.get("episodeDescription"),
                    on_air.get("episodeImageUrl"),
                )
            logger.warning(f"No show data available for {self.station_code}")
        except (requests.RequestException, ValueError) as exc:
            logger.warning(f"Failed to fetch show data for {self.station_code}: {exc}")
        return NowPlayingMetadata.create(FALLBACK_TITLE, self.brand)


class MetadataPublisher:
    """Debounces now-playing updates towards a sink.

    The first update after construction (or ``reset``) is applied at once;
    later ones replace any pending update and are applied after ``delay``.
    """

    def __init__(
        self,
        sink: Callable[[NowPlayingMetadata], None],
        delay_seconds: float,
        *,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self._sink = sink
        self.delay_seconds = max(0.0, float(delay_seconds))
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Any = None
        self._generation = 0
        self._first = True
        self._closed = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def publish(self, metadata: NowPlayingMetadata) -> None:
        with self._lock:
            if self._closed:
                return
            self._generation += 1
            if self._timer is not None:
                logger.debug("Replacing pending metadata update")
                self._timer.cancel()
                self._timer = None
            if self._first:
                self._first = False
                immediate = True
            else:
                immediate = False
                gen = self._generation
                timer = self._timer_factory(self.delay_seconds, self._fire, args=(gen, metadata))
                timer.daemon = True
                self._timer = timer
                timer.start()
                logger.debug(f"Delaying metadata update by {self.delay_seconds:g}s")
        if immediate:
            logger.debug("First metadata update, applying immediately")
            self._apply(metadata)

    def _fire(self, generation: int, metadata: NowPlayingMetadata) -> None:
        with self._lock:
            if self._closed or generation != self._generation:
                return
            self._timer = None
        self._apply(metadata)

    def _apply(self, metadata: NowPlayingMetadata) -> None:
        try:
            self._sink(metadata)
        except Exception:
            logger.exception("Now-playing sink failed")

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def reset(self) -> None:
        self.cancel()
        with self._lock:
            self._first = True
            self._closed = False

    def close(self) -> None:
        self.cancel()
        with self._lock:
            self._closed = True
