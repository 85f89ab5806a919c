from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests


USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.3.1 Safari/605.1.15"
)

PLAYLIST_ACCEPT = "application/vnd.apple.mpegurl, application/x-mpegURL, text/plain, */*"


class ListenApiClient:
    """Thin wrapper over the Planet Radio listen API and the stream hosts.

    Every outbound request of the relay goes through ``_request`` so headers
    and timeouts are applied in one place.
    """

    BASE_URL = "https://listenapi.planetradio.co.uk/api9.2"

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        region: str = "GB",
        timeout: float = 20.0,
    ) -> None:
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "*/*"})
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.region = region
        self.timeout = timeout

        self.last_status: Optional[int] = None

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        r = self.session.request(method, url, **kwargs)
        self.last_status = r.status_code
        return r

    def init_web(self, station_code: str) -> Dict[str, Any]:
        r = self._request("GET", f"{self.base_url}/initweb/{station_code}")
        r.raise_for_status()
        data = r.json()
        return data if isinstance(data, dict) else {}

    def now_playing(self, station_code: str) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/stations_nowplaying/{self.region}"
        r = self._request("GET", url, params={"StationCode[]": station_code, "premium": "1"})
        r.raise_for_status()
        data = r.json()
        return data if isinstance(data, list) else []

    def get_json(self, url: str) -> Any:
        r = self._request("GET", url)
        r.raise_for_status()
        return r.json()

    def get_playlist(self, url: str) -> str:
        r = self._request("GET", url, headers={"Accept": PLAYLIST_ACCEPT})
        r.raise_for_status()
        return r.text

    def open_stream(self, url: str, *, headers: Optional[Dict[str, str]] = None, timeout: Any = None) -> requests.Response:
        """Open a streamed GET; the caller owns (and must close) the response."""
        r = self._request("GET", url, headers=headers or {}, stream=True, timeout=timeout or self.timeout)
        try:
            r.raise_for_status()
        except requests.HTTPError:
            r.close()
            raise
        return r
