from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests
from loguru import logger

from planetradio.api.client import ListenApiClient
from planetradio.errors import NoStreamError, NotFoundError, StationError


URI_PREFIX = "planetradio/"
ROOT_STATION_CODE = "pln"


@dataclass(frozen=True)
class StationInfo:
    code: str
    display_name: str
    tagline: Optional[str] = None
    artwork_url: Optional[str] = None

    @property
    def uri(self) -> str:
        return f"{URI_PREFIX}{self.code}"

    def to_browse_item(self) -> Dict[str, Any]:
        return {
            "service": "planet_radio",
            "type": "mywebradio",
            "title": self.display_name,
            "artist": self.tagline,
            "album": None,
            "icon": "fa fa-music",
            "uri": self.uri,
            "streamType": "aac",
            "stationCode": self.code,
            "albumart": self.artwork_url,
        }


@dataclass
class _CachedStation:
    info: StationInfo
    stream_url: Optional[str] = None


def station_code_from_uri(uri: Optional[str], default: str = ROOT_STATION_CODE) -> str:
    if uri and uri.startswith(URI_PREFIX):
        code = uri[len(URI_PREFIX):].strip("/")
        if code:
            return code
    return default


def _is_true_flag(value: Any) -> bool:
    # The API has served both JSON true and the string "true".
    if value is True:
        return True
    return isinstance(value, str) and value.strip().lower() == "true"


def select_stream_url(station: Dict[str, Any]) -> Optional[str]:
    streams = station.get("stationStreams") or []
    if not isinstance(streams, list):
        return None
    for s in streams:
        if not isinstance(s, dict):
            continue
        if s.get("streamQuality") != "hq" or not _is_true_flag(s.get("streamPremium")):
            continue
        url = str(s.get("streamUrl") or "").strip()
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return url
        logger.warning(f"Ignoring unparsable stream URL: {url!r}")
    return None


def _station_info(station: Dict[str, Any]) -> Optional[StationInfo]:
    code = station.get("stationCode")
    if not code:
        return None
    return StationInfo(
        code=str(code),
        display_name=str(station.get("stationName") or code),
        tagline=station.get("stationStrapline") or None,
        artwork_url=station.get("stationSquareLogo") or None,
    )


class StationResolver:
    """Station lookup with an in-memory cache keyed by station code."""

    def __init__(self, client: ListenApiClient, *, root_code: str = ROOT_STATION_CODE) -> None:
        self.client = client
        self.root_code = root_code
        self._lock = threading.Lock()
        self._cache: Dict[str, _CachedStation] = {}
        self._listing: Optional[List[str]] = None

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._listing = None

    def _fetch(self, code: str) -> Dict[str, Any]:
        try:
            data = self.client.init_web(code)
        except requests.HTTPError as exc:
            resp = exc.response
            if resp is not None and resp.status_code == 404:
                raise NotFoundError(f"Station {code!r} not found") from exc
            raise StationError(f"Station lookup for {code!r} failed: {exc}") from exc
        except (requests.RequestException, ValueError) as exc:
            raise StationError(f"Station lookup for {code!r} failed: {exc}") from exc
        if not data or not data.get("stationCode"):
            raise NotFoundError(f"Station {code!r} not found")
        return data

    def _remember(self, station: Dict[str, Any], *, with_stream: bool, key: Optional[str] = None) -> Optional[_CachedStation]:
        info = _station_info(station)
        if info is None:
            return None
        entry = _CachedStation(info=info)
        if with_stream:
            entry.stream_url = select_stream_url(station)
        key = key or info.code
        with self._lock:
            previous = self._cache.get(key)
            if previous is not None and entry.stream_url is None:
                entry.stream_url = previous.stream_url
            self._cache[key] = entry
        return entry

    def list_stations(self, force_refresh: bool = True) -> List[StationInfo]:
        if force_refresh:
            logger.info("Force refresh requested, clearing station cache")
            self.clear_cache()

        with self._lock:
            if self._listing is not None:
                logger.debug("Returning cached stations")
                return [self._cache[c].info for c in self._listing if c in self._cache]

        logger.info(f"Fetching stations from {self.client.base_url}/initweb/{self.root_code}")
        main = self._fetch(self.root_code)
        brand_id = main.get("stationBrandId")
        stations = [main]
        related = main.get("stationBrandRelated") or []
        if isinstance(related, list):
            for station in related:
                if isinstance(station, dict) and station.get("stationBrandId") == brand_id:
                    stations.append(station)

        codes: List[str] = []
        out: List[StationInfo] = []
        for station in stations:
            # Only the root payload is complete; related entries are summaries.
            entry = self._remember(station, with_stream=station is main)
            if entry is None or entry.info.code in codes:
                continue
            codes.append(entry.info.code)
            out.append(entry.info)

        with self._lock:
            self._listing = codes
        logger.info(f"Cached {len(out)} stations")
        return out

    def get_station_info(self, code: str) -> StationInfo:
        if not code:
            raise ValueError("Station code is required")
        with self._lock:
            cached = self._cache.get(code)
        if cached is not None:
            logger.debug(f"Returning cached info for station {code}")
            return cached.info

        logger.info(f"Fetching info for station {code}")
        entry = self._remember(self._fetch(code), with_stream=True, key=code)
        if entry is None:
            raise NotFoundError(f"Station {code!r} not found")
        return entry.info

    def get_stream_url(self, code: str) -> str:
        if not code:
            raise ValueError("Station code is required")
        with self._lock:
            cached = self._cache.get(code)
        if cached is not None and cached.stream_url:
            logger.debug(f"Returning cached stream URL for station {code}")
            return cached.stream_url

        logger.info(f"Resolving stream for station {code}")
        station = self._fetch(code)
        url = select_stream_url(station)
        if not url:
            raise NoStreamError(f"No suitable stream found for station {code}")
        self._remember(station, with_stream=True, key=code)
        return url
