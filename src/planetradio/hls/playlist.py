from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional
from urllib.parse import urljoin, urlparse


STREAM_INF_TAG = "#EXT-X-STREAM-INF:"
EXTINF_TAG = "#EXTINF:"
MEDIA_SEQUENCE_TAG = "#EXT-X-MEDIA-SEQUENCE:"
MEDIA_PLAYLIST_NAME = "playlist.m3u8"

# <random id>-<progressive counter>-<other id>.aac
_SEQUENCE_RE = re.compile(r"/[^/-]+-(\d+)-[^/-]+\.aac$")
_URL_ATTR_RE = re.compile(r'url="([^"]+)"')
_TITLE_ATTR_RE = re.compile(r'title="([^"]+)"')


@dataclass(frozen=True)
class Segment:
    sequence_id: int
    duration: float
    url: str
    metadata_url: Optional[str] = None


def is_master_playlist(text: str) -> bool:
    return STREAM_INF_TAG in (text or "")


def select_media_playlist(text: str, playlist_url: str) -> Optional[str]:
    """Return the first variant URL whose path names the media playlist."""
    lines = (text or "").splitlines()
    for i, line in enumerate(lines):
        if not line.strip().startswith(STREAM_INF_TAG):
            continue
        for nxt in lines[i + 1:]:
            s = nxt.strip()
            if not s:
                continue
            if s.startswith("#"):
                if s.startswith(STREAM_INF_TAG):
                    break
                continue
            url = urljoin(playlist_url, s)
            if MEDIA_PLAYLIST_NAME in urlparse(url).path:
                return url
            break
    return None


def extract_sequence_id(url: str) -> Optional[int]:
    m = _SEQUENCE_RE.search(urlparse(url).path)
    if not m:
        return None
    return int(m.group(1))


def metadata_url_from_extinf(line: str) -> Optional[str]:
    m = _URL_ATTR_RE.search(line) or _TITLE_ATTR_RE.search(line)
    return m.group(1) if m else None


def parse_media_playlist(text: str, playlist_url: str) -> List[Segment]:
    raw_lines = (text or "").splitlines()

    media_seq = 0
    for line in raw_lines:
        if line.startswith(MEDIA_SEQUENCE_TAG):
            try:
                media_seq = int(line.split(":", 1)[1].strip())
            except ValueError:
                media_seq = 0
            break

    segments: List[Segment] = []
    cur_inf: Optional[str] = None
    index = 0
    for line in raw_lines:
        s = line.strip()
        if s.startswith(EXTINF_TAG):
            cur_inf = s
            continue
        if not s or s.startswith("#"):
            continue
        if cur_inf is None:
            continue

        try:
            duration = float(cur_inf[len(EXTINF_TAG):].split(",", 1)[0].strip())
        except ValueError:
            duration = 0.0
        url = urljoin(playlist_url, s)
        seq = extract_sequence_id(url)
        segments.append(
            Segment(
                sequence_id=seq if seq is not None else media_seq + index,
                duration=duration,
                url=url,
                metadata_url=metadata_url_from_extinf(cur_inf),
            )
        )
        index += 1
        cur_inf = None
    return segments


class SegmentQueue:
    """FIFO of pending segments guarded by a sequence high-water mark.

    A segment is accepted only if its ``sequence_id`` is greater than every id
    accepted before, so refreshing a sliding live playlist never replays audio.
    """

    def __init__(self) -> None:
        self._pending: Deque[Segment] = deque()
        self._high_water: Optional[int] = None

    @property
    def high_water(self) -> Optional[int]:
        return self._high_water

    def __len__(self) -> int:
        return len(self._pending)

    def extend_new(self, segments: Iterable[Segment]) -> List[Segment]:
        added: List[Segment] = []
        for seg in sorted(segments, key=lambda s: s.sequence_id):
            if self._high_water is not None and seg.sequence_id <= self._high_water:
                continue
            self._pending.append(seg)
            self._high_water = seg.sequence_id
            added.append(seg)
        return added

    def pop(self) -> Optional[Segment]:
        if not self._pending:
            return None
        return self._pending.popleft()

    def clear(self) -> None:
        self._pending.clear()
