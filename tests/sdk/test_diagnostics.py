"""Tests for request ids, request context and curl rendering."""

import re
import time
from datetime import timezone

from trainingpeaks_mcp.sdk.browser import browser_headers, random_user_agent, user_agent
from trainingpeaks_mcp.sdk.diagnostics import RequestContext, new_request_id, render_curl, request_timestamp


class TestRequestId:
    def test_format(self):
        assert re.fullmatch(r"req_[0-9a-z]+_[0-9a-z]{6}", new_request_id())

    def test_timestamp_round_trip(self):
        before = time.time()
        stamp = request_timestamp(new_request_id())
        assert stamp.tzinfo == timezone.utc
        assert abs(stamp.timestamp() - before) < 5

    def test_invalid_id(self):
        assert request_timestamp("nope") is None
        assert request_timestamp("req_!!_abcdef") is None

    def test_context_gets_unique_ids(self):
        a = RequestContext(method="get", url="https://x")
        b = RequestContext(method="get", url="https://x")
        assert a.request_id != b.request_id
        assert a.describe().startswith("GET https://x [req_")


class TestRenderCurl:
    def test_skips_browser_noise(self):
        command = render_curl("get", "https://tpapi.trainingpeaks.com/users/v3/user", headers={
            "Accept": "application/json",
            "User-Agent": "Mozilla/5.0",
            "accept-language": "en",
            "Accept-Encoding": "gzip",
            "cache-control": "no-cache",
            "sec-fetch-mode": "cors",
        })
        assert command.startswith("curl -X GET 'https://tpapi.trainingpeaks.com/users/v3/user'")
        assert "-H 'Accept: application/json'" in command
        for noise in ("Mozilla", "accept-language", "gzip", "no-cache", "sec-fetch"):
            assert noise not in command

    def test_redacts_secrets(self):
        command = render_curl(
            "post", "https://x/login",
            headers={"Authorization": "Bearer tok1"},
            data={"username": "alice", "password": "secret"},
        )
        assert "tok1" not in command
        assert "Bearer ***" in command
        assert "secret" not in command
        assert "alice" in command

    def test_cookies_as_b_flag(self):
        command = render_curl("get", "https://x", cookies=["a=1", "b=2"])
        assert "-b 'a=1; b=2'" in command

    def test_unredacted(self):
        command = render_curl("get", "https://x", headers={"Authorization": "Bearer tok1"}, redact=False)
        assert "Bearer tok1" in command


class TestBrowserHeaders:
    def test_headers_are_consistent(self):
        headers = browser_headers()
        match = re.search(r"Chrome/(\d+)\.", headers["user-agent"])
        assert match
        assert f'v="{match.group(1)}"' in headers["sec-ch-ua"]
        platform = headers["sec-ch-ua-platform"].strip('"')
        assert platform in ("macOS", "Windows", "Linux")

    def test_user_agent_shapes(self):
        assert "Firefox/121.0" in user_agent("Firefox", "Linux", "121.0")
        assert "Version/17.2" in user_agent("Safari", "macOS", "17.2")
        assert random_user_agent().startswith("Mozilla/5.0")
