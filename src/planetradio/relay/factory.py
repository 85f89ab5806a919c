from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from planetradio.api.client import ListenApiClient
from planetradio.metadata import MetadataFetcher, MetadataPublisher
from planetradio.relay.direct import DirectRelay
from planetradio.relay.hls import HlsRelay
from planetradio.relay.server import StreamDescriptor, StreamKind, StreamRelay


def create_relay(
    descriptor: StreamDescriptor,
    client: ListenApiClient,
    fetcher: MetadataFetcher,
    publisher: MetadataPublisher,
    *,
    sign: Optional[Callable[[str], str]] = None,
) -> StreamRelay:
    """Pick the relay strategy for a signed stream URL.

    ``sign`` re-signs playlist and segment URLs for HLS; the direct stream is
    opened once with the already signed ``descriptor.base_url``.
    """
    if descriptor.kind is StreamKind.HLS:
        logger.info("Creating HLS relay")
        return HlsRelay(client, descriptor.base_url, fetcher, publisher, sign=sign)
    if descriptor.kind is StreamKind.DIRECT:
        logger.info("Creating direct AAC relay")
        return DirectRelay(client, descriptor.base_url, fetcher, publisher)
    raise ValueError(f"Unsupported stream kind: {descriptor.kind!r}")
