"""Tests for stream URL signing."""

from urllib.parse import parse_qs, parse_qsl, urlsplit

import pytest

from planetradio.signing import PLAYER_ID, AuthenticatedUrlBuilder, merge_query


def query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query, keep_blank_values=True).items()}


@pytest.fixture
def builder() -> AuthenticatedUrlBuilder:
    return AuthenticatedUrlBuilder(region="GB", clock=lambda: 1700000000.9)


class TestSign:
    """Tests for AuthenticatedUrlBuilder.sign."""

    def test_adds_listener_parameters(self, builder: AuthenticatedUrlBuilder) -> None:
        """All listener/session parameters are present."""
        q = query(builder.sign("https://stream.example/planetrock_premhigh.aac", "u42"))
        assert q == {
            "direct": "false",
            "listenerid": "u42",
            "aw_0_1st.bauer_listenerid": "u42",
            "aw_0_1st.playerid": PLAYER_ID,
            "aw_0_1st.skey": "1700000000",
            "aw_0_1st.bauer_loggedin": "true",
            "user_id": "u42",
            "aw_0_1st.bauer_user_id": "u42",
            "region": "GB",
        }

    def test_keeps_path_and_unrelated_parameters(self, builder: AuthenticatedUrlBuilder) -> None:
        """Existing parameters survive, in their original order, ahead of the new ones."""
        signed = builder.sign("https://stream.example/live/pr.m3u8?foo=1&bar=two", "u1")
        parts = urlsplit(signed)
        assert parts.path == "/live/pr.m3u8"
        keys = [k for k, _ in parse_qsl(parts.query)]
        assert keys[:2] == ["foo", "bar"]
        assert query(signed)["bar"] == "two"

    def test_overwrites_same_named_parameter(self, builder: AuthenticatedUrlBuilder) -> None:
        """A pre-existing ``direct=true`` is replaced, not duplicated."""
        signed = builder.sign("https://stream.example/pr.aac?direct=true&region=IE", "u1")
        pairs = parse_qsl(urlsplit(signed).query)
        assert [v for k, v in pairs if k == "direct"] == ["false"]
        assert [v for k, v in pairs if k == "region"] == ["GB"]

    def test_resigning_is_idempotent(self, builder: AuthenticatedUrlBuilder) -> None:
        """Signing twice yields the same parameter set and values."""
        once = builder.sign("https://stream.example/pr.aac?x=1", "u7")
        twice = builder.sign(once, "u7")
        assert once == twice
        assert len(parse_qsl(urlsplit(twice).query)) == 10

    def test_resigning_later_only_changes_skey(self) -> None:
        """Only the time-derived key moves when the clock advances."""
        now = [1000.0]
        builder = AuthenticatedUrlBuilder(clock=lambda: now[0])
        first = query(builder.sign("https://stream.example/pr.aac", "u7"))
        now[0] = 2000.0
        second = query(builder.sign(builder.sign("https://stream.example/pr.aac", "u7"), "u7"))
        assert second.pop("aw_0_1st.skey") == "2000"
        assert first.pop("aw_0_1st.skey") == "1000"
        assert first == second

    def test_requires_user_id(self, builder: AuthenticatedUrlBuilder) -> None:
        """Signing without a listener id is a programming error."""
        with pytest.raises(ValueError):
            builder.sign("https://stream.example/pr.aac", "")


class TestMergeQuery:
    """Tests for the query merge helper."""

    def test_input_is_left_untouched(self) -> None:
        url = "https://a.example/p?k=v"
        merged = merge_query(url, {"k": "w", "n": "1"})
        assert url == "https://a.example/p?k=v"
        assert query(merged) == {"k": "w", "n": "1"}

    def test_keeps_blank_values_and_fragment(self) -> None:
        merged = merge_query("https://a.example/p?empty=#frag", {"n": "1"})
        assert merged == "https://a.example/p?empty=&n=1#frag"

    def test_unrelated_fields_are_kept_verbatim(self) -> None:
        merged = merge_query("https://a.example/p?flag&a=%7E&b=x+y&listenerid=old", {"listenerid": "new"})
        assert merged == "https://a.example/p?flag&a=%7E&b=x+y&listenerid=new"

    def test_sign_keeps_valueless_flag(self, builder: AuthenticatedUrlBuilder) -> None:
        signed = builder.sign("https://stream.example/live.m3u8?flag", "u42")
        assert signed.startswith("https://stream.example/live.m3u8?flag&direct=false&")
        assert "flag=" not in signed
