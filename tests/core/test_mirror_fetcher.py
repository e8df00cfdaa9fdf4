"""Tests for mirror candidate building and fallback fetching."""

import pytest
import requests

from conftest import MIRROR_A, MIRROR_B, FakeResponse, mirror_a, mirror_b
from studysync.config.sync_config import MirrorConfig
from studysync.core.errors import FetchError
from studysync.core.mirror_fetcher import (
    Candidate,
    MirrorBlacklist,
    MirrorFetcher,
    build_candidates,
    parse_gist_url,
    to_raw_url,
)

RAW_URL = "https://raw.githubusercontent.com/acme/banks/main/bank.csv"
OTHER_URL = "https://raw.githubusercontent.com/acme/banks/main/other.csv"


class TestGistUrls:
    """Tests for gist URL parsing and raw rewriting."""

    def test_parse_gist_page_url(self):
        assert parse_gist_url("https://gist.github.com/alice/abc123") == ("alice", "abc123")

    def test_parse_gist_ignores_fragment(self):
        assert parse_gist_url("https://gist.github.com/alice/abc123#file-a-csv") == ("alice", "abc123")

    def test_parse_non_gist(self):
        assert parse_gist_url(RAW_URL) is None

    def test_to_raw_url_rewrites_gist(self):
        assert to_raw_url("https://gist.github.com/alice/abc123") == (
            "https://gist.githubusercontent.com/alice/abc123/raw"
        )

    def test_to_raw_url_keeps_other_urls(self):
        assert to_raw_url(RAW_URL) == RAW_URL


class TestBuildCandidates:
    """Tests for candidate ordering."""

    def test_direct_mirrors_direct(self, sync_config):
        """Direct first, each mirror, then direct again."""
        candidates = build_candidates(RAW_URL, sync_config.mirrors)

        assert [c.url for c in candidates] == [
            RAW_URL,
            mirror_a(RAW_URL),
            mirror_b(RAW_URL),
            RAW_URL,
        ]
        assert candidates[0].mirror is None
        assert candidates[1].mirror == MIRROR_A
        assert candidates[2].mirror == MIRROR_B
        assert candidates[-1].mirror is None

    def test_host_style_only_for_served_hosts(self, sync_config):
        """Host-style mirror skips hosts it does not serve."""
        url = "https://example.org/banks/bank.csv"
        candidates = build_candidates(url, sync_config.mirrors)

        assert [c.url for c in candidates] == [url, mirror_a(url), url]

    def test_no_serving_mirror_gives_direct_only(self):
        mirrors = [MirrorConfig(base="https://m.test/", hosts=["github.com"])]
        candidates = build_candidates("https://example.org/x.csv", mirrors)
        assert candidates == [Candidate("https://example.org/x.csv")]

    def test_capped_by_max_candidates(self, sync_config):
        candidates = build_candidates(RAW_URL, sync_config.mirrors, max_candidates=3)
        assert [c.url for c in candidates] == [RAW_URL, mirror_a(RAW_URL), RAW_URL]

    def test_already_proxied_url_not_wrapped_again(self, sync_config):
        proxied = mirror_a(RAW_URL)
        assert build_candidates(proxied, sync_config.mirrors) == [Candidate(proxied)]

    def test_gist_page_goes_through_raw(self, sync_config):
        candidates = build_candidates("https://gist.github.com/alice/abc123", sync_config.mirrors)
        raw = "https://gist.githubusercontent.com/alice/abc123/raw"
        assert candidates[0].url == raw
        assert candidates[2].url == f"{MIRROR_B}/alice/abc123/raw"


class TestMirrorBlacklist:
    """Tests for the per-cycle blacklist."""

    def test_add_contains_clear(self):
        blacklist = MirrorBlacklist()
        blacklist.add(MIRROR_A)

        assert MIRROR_A in blacklist
        assert len(blacklist) == 1
        assert blacklist.snapshot() == {MIRROR_A}

        blacklist.clear()
        assert MIRROR_A not in blacklist
        assert len(blacklist) == 0


class TestFetch:
    """Tests for MirrorFetcher.fetch."""

    def test_direct_success_uses_one_request(self, sync_config, session):
        session.route(RAW_URL, "hello")
        fetcher = MirrorFetcher(sync_config, session=session)

        assert fetcher.fetch_text(RAW_URL) == "hello"
        assert session.calls == [RAW_URL]

    def test_falls_back_to_mirror_on_transport_error(self, sync_config, session):
        session.route(RAW_URL, requests.ConnectionError)
        session.route(mirror_a(RAW_URL), "from mirror")
        fetcher = MirrorFetcher(sync_config, session=session)

        assert fetcher.fetch_text(RAW_URL) == "from mirror"
        assert session.calls == [RAW_URL, mirror_a(RAW_URL)]
        # The direct URL is never blacklisted
        assert len(fetcher.blacklist) == 0

    def test_transport_error_blacklists_mirror_for_cycle(self, sync_config, session):
        session.fail(RAW_URL, 503)
        session.route(mirror_a(RAW_URL), requests.Timeout)
        session.route(mirror_b(RAW_URL), "via b")
        fetcher = MirrorFetcher(sync_config, session=session)

        assert fetcher.fetch_text(RAW_URL) == "via b"
        assert MIRROR_A in fetcher.blacklist

        session.calls.clear()
        session.route(mirror_b(OTHER_URL), "other via b")
        session.fail(OTHER_URL, 503)
        assert fetcher.fetch_text(OTHER_URL) == "other via b"
        assert mirror_a(OTHER_URL) not in session.calls

    def test_http_error_does_not_blacklist(self, sync_config, session):
        session.fail(RAW_URL, 500)
        session.fail(mirror_a(RAW_URL), 502)
        session.route(mirror_b(RAW_URL), "ok")
        fetcher = MirrorFetcher(sync_config, session=session)

        assert fetcher.fetch_text(RAW_URL) == "ok"
        assert len(fetcher.blacklist) == 0

    def test_last_resort_direct_retry(self, sync_config, session):
        """Direct is retried after every mirror failed."""
        responses = iter([requests.ConnectionError("first"), None])

        def flaky():
            error = next(responses)
            if error is not None:
                raise error
            return FakeResponse(200, "second try")

        session.route(RAW_URL, flaky)
        session.fail(mirror_a(RAW_URL), 500)
        session.fail(mirror_b(RAW_URL), 500)
        fetcher = MirrorFetcher(sync_config, session=session)

        assert fetcher.fetch_text(RAW_URL) == "second try"
        assert session.calls[-1] == RAW_URL
        assert len(session.calls) == 4

    def test_all_candidates_fail(self, sync_config, session):
        session.fail(RAW_URL, 404)
        session.route(mirror_a(RAW_URL), requests.Timeout)
        session.fail(mirror_b(RAW_URL), 503)
        fetcher = MirrorFetcher(sync_config, session=session)

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch(RAW_URL)

        error = exc_info.value
        assert isinstance(error.last_error, requests.Timeout)
        assert error.last_status == 404
        assert len(error.tried) == 4

    def test_fetch_text_strips_bom(self, sync_config, session):
        session.route(RAW_URL, b"\xef\xbb\xbfcontent,answer\n")
        fetcher = MirrorFetcher(sync_config, session=session)

        assert fetcher.fetch_text(RAW_URL) == "content,answer\n"

    def test_candidates_skip_blacklisted(self, sync_config, session):
        fetcher = MirrorFetcher(sync_config, session=session)
        fetcher.blacklist.add(MIRROR_B)

        urls = [c.url for c in fetcher.candidates(RAW_URL)]
        assert mirror_b(RAW_URL) not in urls
        assert urls == [RAW_URL, mirror_a(RAW_URL), RAW_URL]
