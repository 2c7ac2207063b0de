"""Response construction: CORS, JSON errors, cache keys and header pass-through."""

from __future__ import annotations

import json
from collections.abc import Mapping, MutableMapping
from typing import Final
from urllib.parse import urlencode, urlsplit, urlunsplit

from requests.structures import CaseInsensitiveDict

from mediaproxy.mime import OCTET_STREAM
from mediaproxy.models import Body, ProxyResponse

CORS_HEADERS: Final[dict[str, str]] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Range, If-Range, If-Modified-Since, If-None-Match, Content-Type",
    "Access-Control-Max-Age": "86400",
    "Access-Control-Expose-Headers": (
        "Content-Length, Content-Range, Accept-Ranges, Content-Disposition, "
        "X-Proxy-Cache, X-Proxy-Cache-Ttl, X-Proxy-Channel"
    ),
}

# Upstream response headers forwarded to the client (lower-case).
PASS_THROUGH_HEADERS: Final[frozenset[str]] = frozenset(
    {
        "content-type",
        "content-length",
        "content-range",
        "accept-ranges",
        "last-modified",
        "etag",
        "cache-control",
        "expires",
    }
)


def create_response(
    body: Body | None = None,
    status: int = 200,
    headers: Mapping[str, str] | None = None,
) -> ProxyResponse:
    """Build a response with the CORS block applied over *headers*."""
    final_headers: CaseInsensitiveDict[str] = CaseInsensitiveDict(
        dict(headers.items()) if headers else {}
    )
    for key, value in CORS_HEADERS.items():
        final_headers[key] = value
    return ProxyResponse(status=status, headers=final_headers, body=b"" if body is None else body)


def create_error(message: str, status: int = 403) -> ProxyResponse:
    """Build a JSON ``{"error": message}`` response."""
    body = json.dumps({"error": message}).encode("utf-8")
    return create_response(body, status, {"Content-Type": "application/json"})


def build_cache_key(request_url: str, target_url: str, disposition: str) -> str:
    """Derive the cache key for a proxied resource.

    The proxy's own URL is kept (scheme, host, path) but its query string is
    replaced with just the target and disposition, so requests that differ
    only in other parameters share one entry.
    """
    parts = urlsplit(request_url)
    query = urlencode({"url": target_url, "disposition": disposition})
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))


def extract_pass_through_headers(
    upstream_headers: Mapping[str, str],
    response_headers: MutableMapping[str, str],
) -> str:
    """Copy whitelisted upstream headers into *response_headers*.

    Returns:
        The upstream content type without parameters, or
        ``application/octet-stream`` when the upstream sent none.
    """
    content_type = OCTET_STREAM
    for key, value in upstream_headers.items():
        lower = key.lower()
        if lower not in PASS_THROUGH_HEADERS:
            continue
        response_headers[key] = value
        if lower == "content-type":
            content_type = value.split(";")[0].strip() or OCTET_STREAM
    return content_type
