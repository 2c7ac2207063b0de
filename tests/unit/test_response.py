"""Tests for response assembly helpers."""

import json
from urllib.parse import parse_qs, urlsplit

from requests.structures import CaseInsensitiveDict

from mediaproxy.response import (
    CORS_HEADERS,
    build_cache_key,
    create_error,
    create_response,
    extract_pass_through_headers,
)


class TestCreateResponse:
    def test_cors_applied(self):
        response = create_response(b"hi", 200, {"X-Custom": "1"})
        for key, value in CORS_HEADERS.items():
            assert response.headers[key] == value
        assert response.headers["X-Custom"] == "1"
        assert response.body == b"hi"

    def test_cors_wins_over_caller_headers(self):
        response = create_response(None, 200, {"access-control-allow-origin": "https://x"})
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    def test_none_body_is_empty(self):
        response = create_response(None, 204)
        assert response.status == 204
        assert response.read() == b""


class TestCreateError:
    def test_json_envelope(self):
        response = create_error("Host not allowed", 403)
        assert response.status == 403
        assert response.headers["Content-Type"] == "application/json"
        assert json.loads(response.read()) == {"error": "Host not allowed"}
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    def test_default_status(self):
        assert create_error("nope").status == 403


class TestBuildCacheKey:
    def test_only_url_and_disposition_kept(self):
        key = build_cache_key(
            "https://proxy.dev/api/proxy?url=https%3A%2F%2Fa.com%2Fx.jpg&ttl=60&cache=1&foo=bar",
            "https://a.com/x.jpg",
            "inline",
        )
        parts = urlsplit(key)
        assert (parts.scheme, parts.netloc, parts.path) == ("https", "proxy.dev", "/api/proxy")
        assert parse_qs(parts.query) == {"url": ["https://a.com/x.jpg"], "disposition": ["inline"]}

    def test_unrelated_params_share_key(self):
        a = build_cache_key("https://p/?url=u&ttl=1", "https://a.com/x", "attachment")
        b = build_cache_key("https://p/?ttl=99&url=u&x=y", "https://a.com/x", "attachment")
        assert a == b

    def test_disposition_splits_key(self):
        a = build_cache_key("https://p/", "https://a.com/x", "attachment")
        b = build_cache_key("https://p/", "https://a.com/x", "inline")
        assert a != b


class TestExtractPassThroughHeaders:
    def test_whitelist_only(self):
        upstream = CaseInsensitiveDict(
            {
                "Content-Type": "video/mp4",
                "Content-Length": "100",
                "ETag": '"abc"',
                "Set-Cookie": "secret=1",
                "Server": "nginx",
                "Accept-Ranges": "bytes",
            }
        )
        out: CaseInsensitiveDict[str] = CaseInsensitiveDict()
        content_type = extract_pass_through_headers(upstream, out)
        assert content_type == "video/mp4"
        assert set(k.lower() for k in out) == {"content-type", "content-length", "etag", "accept-ranges"}

    def test_case_insensitive_names(self):
        out: dict[str, str] = {}
        extract_pass_through_headers({"CACHE-CONTROL": "no-cache", "expires": "0"}, out)
        assert out == {"CACHE-CONTROL": "no-cache", "expires": "0"}

    def test_parameters_stripped(self):
        out: dict[str, str] = {}
        content_type = extract_pass_through_headers({"content-type": "image/png; charset=binary"}, out)
        assert content_type == "image/png"
        assert out["content-type"] == "image/png; charset=binary"

    def test_missing_content_type(self):
        assert extract_pass_through_headers({}, {}) == "application/octet-stream"
