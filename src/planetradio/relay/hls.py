from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

import requests
from loguru import logger

from planetradio.api.client import ListenApiClient
from planetradio.errors import RelayStartError, TransientFetchError
from planetradio.hls.playlist import (
    Segment,
    SegmentQueue,
    is_master_playlist,
    parse_media_playlist,
    select_media_playlist,
)
from planetradio.metadata import MetadataFetcher, MetadataPublisher
from planetradio.relay.lifecycle import RelayLifecycle
from planetradio.relay.server import RelayServer, RelayState, StreamResponse


CHUNK_SIZE = 16 * 1024
REFRESH_RETRY_DELAY = 1.0
SEGMENT_RETRY_DELAY = 1.0
MIN_POLL_INTERVAL = 1.0
MAX_POLL_INTERVAL = 10.0


class HlsRelay:
    """Relays a live HLS playlist as one continuous AAC response.

    - Resolves a master playlist to its media playlist (preflighted in ``start``)
    - Streams segments back to back into the same client response
    - Re-fetches the playlist when the queue drains, keeping only segments with
      a sequence number above everything already queued
    - Fetches now-playing data off the audio path when a segment's metadata URL
      changes
    """

    def __init__(
        self,
        client: ListenApiClient,
        playlist_url: str,
        fetcher: MetadataFetcher,
        publisher: MetadataPublisher,
        *,
        sign: Optional[Callable[[str], str]] = None,
        refresh_retry_delay: float = REFRESH_RETRY_DELAY,
        segment_retry_delay: float = SEGMENT_RETRY_DELAY,
        min_poll_interval: float = MIN_POLL_INTERVAL,
        max_poll_interval: float = MAX_POLL_INTERVAL,
    ) -> None:
        self.client = client
        self.playlist_url = playlist_url
        self.fetcher = fetcher
        self.publisher = publisher
        self._sign = sign or (lambda url: url)
        self.refresh_retry_delay = refresh_retry_delay
        self.segment_retry_delay = segment_retry_delay
        self.min_poll_interval = min_poll_interval
        self.max_poll_interval = max_poll_interval

        self.lifecycle = RelayLifecycle()
        self._server = RelayServer(self.handle_stream)
        self._metadata_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="planetradio-metadata")
        self.media_playlist_url: Optional[str] = None
        self.last_metadata_url: Optional[str] = None

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

        try:
            self.media_playlist_url = self.resolve_media_playlist()
        except TransientFetchError as exc:
            self.stop()
            raise RelayStartError(f"Failed to resolve HLS playlist: {exc}") from exc
        logger.info(f"HLS relay ready at {url} for {self.media_playlist_url}")
        return url

    def stop(self) -> None:
        if not self.lifecycle.stop():
            return
        logger.info("Stopping HLS relay")
        self.publisher.close()
        self._metadata_pool.shutdown(wait=False, cancel_futures=True)
        self._server.stop()

    def _fetch_playlist(self, url: str) -> str:
        try:
            return self.client.get_playlist(self._sign(url))
        except requests.RequestException as exc:
            raise TransientFetchError(f"Playlist fetch failed for {url}: {exc}") from exc

    def resolve_media_playlist(self) -> str:
        text = self._fetch_playlist(self.playlist_url)
        if is_master_playlist(text):
            logger.info("Detected master playlist, extracting media playlist URL")
            media = select_media_playlist(text, self.playlist_url)
            if media:
                logger.info(f"Found media playlist URL: {media}")
                return media
        return self.playlist_url

    def fetch_segments(self) -> List[Segment]:
        url = self.media_playlist_url or self.playlist_url
        return parse_media_playlist(self._fetch_playlist(url), url)

    def handle_stream(self, response: StreamResponse) -> None:
        if not self.lifecycle.alive:
            response.send_error(503)
            return

        logger.info(f"Starting HLS stream for {self.media_playlist_url or self.playlist_url}")
        try:
            segments = self.fetch_segments()
        except TransientFetchError as exc:
            response.send_error(500)
            raise RelayStartError(str(exc)) from exc
        if not segments:
            response.send_error(500)
            raise RelayStartError("No segments found in HLS playlist")

        queue = SegmentQueue()
        queue.extend_new(segments)
        response.send_headers()
        self.lifecycle.transition(RelayState.STREAMING)
        logger.info(f"Starting HLS segment streaming with {len(queue)} segments")

        last_duration = 0.0
        while self.lifecycle.alive:
            segment = queue.pop()
            if segment is None:
                if not self._refill(queue, last_duration):
                    return
                continue

            last_duration = segment.duration
            self._note_metadata(segment)
            if not self._stream_segment(segment, response):
                if not self.lifecycle.wait(self.segment_retry_delay):
                    return

    def _refill(self, queue: SegmentQueue, last_duration: float) -> bool:
        """Refresh the playlist until new segments arrive; False once stopped."""
        while self.lifecycle.alive:
            try:
                added = queue.extend_new(self.fetch_segments())
            except TransientFetchError as exc:
                logger.warning(f"Failed to refresh HLS playlist: {exc}")
                if not self.lifecycle.wait(self.refresh_retry_delay):
                    return False
                continue
            if added:
                logger.debug(f"Added {len(added)} new segments, last sequence {queue.high_water}")
                return True
            poll = min(self.max_poll_interval, max(self.min_poll_interval, last_duration))
            if not self.lifecycle.wait(poll):
                return False
        return False

    def _note_metadata(self, segment: Segment) -> None:
        url = segment.metadata_url
        if not url or url == self.last_metadata_url:
            return
        self.last_metadata_url = url
        logger.info(f"New metadata URL detected: {url}")
        try:
            self._metadata_pool.submit(self._update_metadata, url)
        except RuntimeError:
            # Pool already shut down by stop().
            pass

    def _update_metadata(self, url: str) -> None:
        try:
            metadata = self.fetcher.fetch(url)
        except Exception:
            # Errors raised in the executor are otherwise only kept on the future.
            logger.exception(f"Metadata update from {url} failed")
            return
        if metadata is not None and self.lifecycle.alive:
            self.publisher.publish(metadata)

    def _stream_segment(self, segment: Segment, response: StreamResponse) -> bool:
        """Pipe one segment into ``response``; False if the download failed."""
        logger.debug(f"Streaming segment {segment.sequence_id}: {segment.url}")
        try:
            upstream = self.client.open_stream(self._sign(segment.url))
        except requests.RequestException as exc:
            logger.warning(f"Failed to fetch segment {segment.sequence_id}: {exc}")
            return False
        if not self.lifecycle.track(upstream):
            return True
        try:
            for chunk in upstream.iter_content(chunk_size=CHUNK_SIZE):
                if not self.lifecycle.alive:
                    return True
                response.write(chunk)
        except requests.RequestException as exc:
            if self.lifecycle.alive:
                logger.warning(f"Segment {segment.sequence_id} interrupted: {exc}")
            return False
        finally:
            self.lifecycle.release(upstream)
        return True
