"""Tests for HLS playlist parsing and segment de-duplication."""

from planetradio.hls.playlist import (
    Segment,
    SegmentQueue,
    extract_sequence_id,
    is_master_playlist,
    metadata_url_from_extinf,
    parse_media_playlist,
    select_media_playlist,
)


MASTER = """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=64000,CODECS="mp4a.40.5"
chunklist_low.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=128000,CODECS="mp4a.40.2"
hq/playlist.m3u8?token=1
"""

MEDIA = """#EXTM3U
#EXT-X-TARGETDURATION:10
#EXT-X-MEDIA-SEQUENCE:100
#EXTINF:10.0,title="Song A",url="https://meta.example/eventdata/11"
abc-00101-xyz.aac
#EXTINF:9.5,title="https://meta.example/eventdata/12"
abc-00102-xyz.aac
#EXTINF:10.0,
https://cdn.example/live/abc-00103-xyz.aac
"""


def seg(n: int) -> Segment:
    return Segment(sequence_id=n, duration=10.0, url=f"https://cdn.example/s-{n}-x.aac")


class TestMasterPlaylist:
    """Tests for master playlist handling."""

    def test_detects_master(self) -> None:
        assert is_master_playlist(MASTER)
        assert not is_master_playlist(MEDIA)

    def test_selects_media_variant_relative_to_master(self) -> None:
        url = select_media_playlist(MASTER, "https://cdn.example/live/master.m3u8")
        assert url == "https://cdn.example/live/hq/playlist.m3u8?token=1"

    def test_no_media_variant(self) -> None:
        text = "#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nchunklist.m3u8\n"
        assert select_media_playlist(text, "https://cdn.example/master.m3u8") is None


class TestMediaPlaylist:
    """Tests for parse_media_playlist."""

    def test_parses_segments(self) -> None:
        segments = parse_media_playlist(MEDIA, "https://cdn.example/live/playlist.m3u8")
        assert [s.sequence_id for s in segments] == [101, 102, 103]
        assert [s.duration for s in segments] == [10.0, 9.5, 10.0]
        assert segments[0].url == "https://cdn.example/live/abc-00101-xyz.aac"
        assert segments[2].url == "https://cdn.example/live/abc-00103-xyz.aac"

    def test_metadata_url_prefers_url_attribute(self) -> None:
        segments = parse_media_playlist(MEDIA, "https://cdn.example/live/playlist.m3u8")
        assert segments[0].metadata_url == "https://meta.example/eventdata/11"
        assert segments[1].metadata_url == "https://meta.example/eventdata/12"
        assert segments[2].metadata_url is None

    def test_sequence_falls_back_to_media_sequence(self) -> None:
        text = "#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:7\n#EXTINF:4,\nfirst.aac\n#EXTINF:4,\nsecond.aac\n"
        segments = parse_media_playlist(text, "https://cdn.example/p/playlist.m3u8")
        assert [s.sequence_id for s in segments] == [7, 8]

    def test_ignores_uris_without_extinf(self) -> None:
        text = "#EXTM3U\norphan.aac\n#EXTINF:2,\nreal-5-a.aac\n"
        segments = parse_media_playlist(text, "https://cdn.example/playlist.m3u8")
        assert [s.url for s in segments] == ["https://cdn.example/real-5-a.aac"]

    def test_extract_sequence_id(self) -> None:
        assert extract_sequence_id("https://cdn.example/x/r4nd-123456-other.aac?sig=1") == 123456
        assert extract_sequence_id("https://cdn.example/x/segment.aac") is None

    def test_metadata_url_from_extinf(self) -> None:
        assert metadata_url_from_extinf('#EXTINF:10,title="t",url="u"') == "u"
        assert metadata_url_from_extinf("#EXTINF:10,") is None


class TestSegmentQueue:
    """Tests for SegmentQueue de-duplication."""

    def test_sliding_window_yields_only_new_segments(self) -> None:
        """After [3,4,5], a refresh showing [3..7] adds exactly [6,7]."""
        queue = SegmentQueue()
        assert [s.sequence_id for s in queue.extend_new([seg(3), seg(4), seg(5)])] == [3, 4, 5]
        added = queue.extend_new([seg(n) for n in range(3, 8)])
        assert [s.sequence_id for s in added] == [6, 7]
        assert [queue.pop().sequence_id for _ in range(len(queue))] == [3, 4, 5, 6, 7]

    def test_high_water_survives_draining(self) -> None:
        queue = SegmentQueue()
        queue.extend_new([seg(1), seg(2)])
        queue.pop()
        queue.pop()
        assert queue.pop() is None
        assert queue.extend_new([seg(2)]) == []
        assert queue.high_water == 2

    def test_unordered_input_is_sorted(self) -> None:
        queue = SegmentQueue()
        queue.extend_new([seg(9), seg(8), seg(10)])
        assert [queue.pop().sequence_id for _ in range(3)] == [8, 9, 10]

    def test_never_emits_a_sequence_twice_over_many_refreshes(self) -> None:
        queue = SegmentQueue()
        emitted = []
        for start in range(0, 20, 2):
            queue.extend_new([seg(n) for n in range(start, start + 5)])
            while len(queue):
                emitted.append(queue.pop().sequence_id)
        assert emitted == sorted(set(emitted))
        assert emitted == list(range(0, 23))

    def test_clear_keeps_high_water(self) -> None:
        queue = SegmentQueue()
        queue.extend_new([seg(1)])
        queue.clear()
        assert len(queue) == 0
        assert queue.extend_new([seg(1)]) == []
