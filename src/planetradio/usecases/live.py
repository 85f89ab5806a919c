from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from loguru import logger

from planetradio.api.client import ListenApiClient
from planetradio.metadata import DEFAULT_BRAND, MetadataFetcher, MetadataPublisher, NowPlayingMetadata
from planetradio.relay.factory import create_relay
from planetradio.relay.server import StreamDescriptor, StreamRelay
from planetradio.session import AuthSession
from planetradio.signing import AuthenticatedUrlBuilder
from planetradio.stations import StationInfo, StationResolver, station_code_from_uri


SERVICE_NAME = "planet_radio"
DEFAULT_ALBUMART = "/albumart?sourceicon=music_service/planet_radio/assets/planet_radio.webp"


class CommandSink(Protocol):
    def send(self, command: str) -> None: ...


class StatePushSink(Protocol):
    def push_state(self, state: Dict[str, Any]) -> None: ...


@dataclass
class LivePlaybackHandle:
    station: StationInfo
    relay: StreamRelay
    descriptor: StreamDescriptor
    local_url: str


def webradio_state(
    metadata: Optional[NowPlayingMetadata],
    *,
    uri: str,
    status: str = "play",
    brand: str = DEFAULT_BRAND,
) -> Dict[str, Any]:
    title = (metadata.title if metadata else None) or ""
    artist = (metadata.artist if metadata else None) or brand
    albumart = (metadata.artwork_url if metadata else None) or DEFAULT_ALBUMART
    return {
        "status": status,
        "service": SERVICE_NAME,
        "type": "webradio",
        "trackType": "webradio",
        "radioType": "planetradio",
        "albumart": albumart,
        "uri": uri,
        "name": title,
        "title": title,
        "artist": artist,
        "album": (metadata.album if metadata else None) or "",
        "duration": 0,
        "streaming": True,
        "disableUiControls": True,
        "seek": False,
        "pause": False,
        "stop": True,
        "samplerate": "-",
        "bitrate": "-",
        "channels": 2,
    }


class PlaybackController:
    """One-relay-at-a-time playback glue between the core and the host sinks."""

    def __init__(
        self,
        *,
        client: ListenApiClient,
        auth: AuthSession,
        resolver: StationResolver,
        url_builder: AuthenticatedUrlBuilder,
        commands: CommandSink,
        states: StatePushSink,
        metadata_delay_seconds: float = 10.0,
        brand: str = DEFAULT_BRAND,
    ) -> None:
        self.client = client
        self.auth = auth
        self.resolver = resolver
        self.url_builder = url_builder
        self.commands = commands
        self.states = states
        self.metadata_delay_seconds = metadata_delay_seconds
        self.brand = brand

        self._lock = threading.RLock()
        self._username = ""
        self._password = ""
        self._handle: Optional[LivePlaybackHandle] = None
        self.last_metadata: Optional[NowPlayingMetadata] = None

    @property
    def handle(self) -> Optional[LivePlaybackHandle]:
        return self._handle

    def set_credentials(self, username: str, password: str) -> None:
        with self._lock:
            changed = (username, password) != (self._username, self._password)
            self._username, self._password = username, password
            if changed:
                self.auth.invalidate()

    def browse(self, force_refresh: bool = True) -> List[Dict[str, Any]]:
        return [s.to_browse_item() for s in self.resolver.list_stations(force_refresh=force_refresh)]

    def play(self, uri_or_code: str, *, progress: Optional[Callable[[str], None]] = None) -> LivePlaybackHandle:
        def say(msg: str) -> None:
            logger.info(msg)
            if progress:
                progress(msg)

        code = station_code_from_uri(uri_or_code, default=uri_or_code or self.resolver.root_code)
        with self._lock:
            self._stop_relay()

            say("authenticating...")
            user_id = self.auth.authenticate(self._username, self._password)

            say(f"resolving station {code}...")
            station = self.resolver.get_station_info(code)
            stream_url = self.resolver.get_stream_url(code)
            descriptor = StreamDescriptor.from_url(self.url_builder.sign(stream_url, user_id))

            fetcher = MetadataFetcher(self.client, code, brand=self.brand)
            publisher = MetadataPublisher(self._push_metadata, self.metadata_delay_seconds)
            relay = create_relay(
                descriptor,
                self.client,
                fetcher,
                publisher,
                sign=lambda url: self.url_builder.sign(url, user_id),
            )

            say(f"starting {descriptor.kind.value} relay...")
            local_url = relay.start()
            handle = LivePlaybackHandle(station=station, relay=relay, descriptor=descriptor, local_url=local_url)
            self._handle = handle
            self.last_metadata = None

            try:
                for command in ("stop", "clear", f'add "{local_url}"', "consume 1", "play"):
                    self.commands.send(command)
            except Exception:
                self._stop_relay()
                raise

            self.states.push_state(
                webradio_state(NowPlayingMetadata.create(station.display_name, station.tagline or self.brand, None, station.artwork_url), uri=local_url, brand=self.brand)
            )
            say(f"playing {station.display_name} via {local_url}")
            return handle

    def stop(self) -> None:
        with self._lock:
            had_relay = self._stop_relay()
            self.commands.send("stop")
            self.commands.send("clear")
            state = webradio_state(None, uri="", status="stop", brand=self.brand)
            state["albumart"] = ""
            self.states.push_state(state)
            if had_relay:
                logger.info("Playback stopped")

    def _stop_relay(self) -> bool:
        handle, self._handle = self._handle, None
        if handle is None:
            return False
        logger.info("Stopping previous relay before starting a new one")
        handle.relay.stop()
        return True

    def _push_metadata(self, metadata: NowPlayingMetadata) -> None:
        handle = self._handle
        if handle is None:
            return
        self.last_metadata = metadata
        logger.info(f"Now playing: {metadata.artist or '-'} - {metadata.title or '-'}")
        self.states.push_state(webradio_state(metadata, uri=handle.local_url, brand=self.brand))
