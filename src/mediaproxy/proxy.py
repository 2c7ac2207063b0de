"""Core proxy request handler.

Accepts GET/HEAD (parameters in the query string) and POST (parameters in a
JSON body) and fetches the target on the caller's behalf.

Upstream header priority, lowest to highest:
    browser fingerprint → channel rule → client conditional headers → POST ``headers``
"""

from __future__ import annotations

import json
import math
import time
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Final

import requests
from requests.structures import CaseInsensitiveDict

from mediaproxy.browser_headers import build_browser_headers
from mediaproxy.cache import CacheStore, Scheduler, shared_cache_lifetime
from mediaproxy.channels import ChannelRule, apply_channel_headers
from mediaproxy.config import ProxyConfig
from mediaproxy.exceptions import (
    AuthorizationError,
    GatewayError,
    MethodError,
    ProxyHTTPError,
    UpstreamError,
    ValidationError,
)
from mediaproxy.logging import get_logger
from mediaproxy.mime import (
    OCTET_STREAM,
    CacheTtls,
    get_default_ttls,
    get_extension,
    get_resource_type,
    mime_for_extension,
)
from mediaproxy.models import ProxyRequest, ProxyResponse
from mediaproxy.response import (
    build_cache_key,
    create_error,
    create_response,
    extract_pass_through_headers,
)
from mediaproxy.security import hostname_of, is_host_allowed, is_referrer_allowed

LOG = get_logger(__name__)

SUPPORTED_METHODS: Final[frozenset[str]] = frozenset({"GET", "POST", "HEAD", "OPTIONS"})
CACHEABLE_METHODS: Final[frozenset[str]] = frozenset({"GET", "HEAD"})

# Client request headers forwarded upstream when present.
CONDITIONAL_HEADERS: Final[tuple[str, ...]] = (
    "Range",
    "If-None-Match",
    "If-Modified-Since",
    "If-Range",
)

MAX_BROWSER_TTL: Final[int] = 86400
STALE_WHILE_REVALIDATE: Final[int] = 604800
DEFAULT_CHUNK_SIZE: Final[int] = 64 * 1024
DEFAULT_MAX_CACHE_BODY: Final[int] = 32 * 1024 * 1024


@dataclass(frozen=True)
class ProxyRequestParams:
    """Parameters of one proxy request, parsed once from the query or the body."""

    target_url: str | None = None
    disposition: str = "attachment"
    cache_enabled: bool = True
    cache_ttl_override: str | None = None
    extra_headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def resolved_disposition(self) -> str:
        """``inline`` if requested, otherwise ``attachment``."""
        return "inline" if self.disposition == "inline" else "attachment"


def parse_get_params(request: ProxyRequest) -> ProxyRequestParams:
    """Parse parameters from the query string (GET and HEAD)."""
    query = request.query
    return ProxyRequestParams(
        target_url=query.get("url") or None,
        disposition=(query.get("disposition") or "attachment").lower(),
        cache_enabled=(query.get("cache") or "1") != "0",
        cache_ttl_override=query.get("ttl"),
    )


def parse_post_body(request: ProxyRequest) -> ProxyRequestParams:
    """Parse parameters from a JSON body.

    A body that is not a JSON object yields default parameters instead of an
    error; the missing ``url`` is then reported like any other.
    """
    try:
        body = json.loads(request.body or b"null")
    except (ValueError, UnicodeDecodeError) as exc:
        LOG.debug("post_body_unparsable", error=str(exc))
        return ProxyRequestParams()
    if not isinstance(body, dict):
        LOG.debug("post_body_not_object", body_type=type(body).__name__)
        return ProxyRequestParams()

    url = body.get("url")
    ttl = body.get("ttl")
    headers = body.get("headers")
    return ProxyRequestParams(
        target_url=url if isinstance(url, str) and url else None,
        disposition=str(body.get("disposition") or "attachment").lower(),
        cache_enabled=body.get("cache") is not False,
        cache_ttl_override=None if ttl is None else str(ttl),
        extra_headers=(
            {str(k): str(v) for k, v in headers.items()} if isinstance(headers, dict) else {}
        ),
    )


def resolve_ttls(content_type: str, ext: str, override: str | None) -> CacheTtls:
    """Combine the default lifetimes with a caller-supplied browser TTL.

    A numeric override replaces the browser TTL, clamped to [0, 86400], so
    ``Infinity`` means the maximum; an unparsable one or ``NaN`` is ignored.
    The CDN TTL never drops below the browser TTL.
    """
    defaults = get_default_ttls(content_type, ext)
    browser_ttl = defaults.browser_ttl
    if override is not None:
        try:
            value = float(override)
        except ValueError:
            value = math.nan
        if not math.isnan(value):
            browser_ttl = int(max(0, min(MAX_BROWSER_TTL, value)))
    return CacheTtls(browser_ttl=browser_ttl, cdn_ttl=max(defaults.cdn_ttl, browser_ttl))


class ProxyPipeline:
    """Handles proxy requests against injected configuration and collaborators.

    The pipeline holds no per-request state, so one instance can serve
    concurrent requests.

    Args:
        config: Allow-lists and channel table.
        session: requests session used for upstream fetches.
        cache: Edge cache store; caching is skipped when None.
        scheduler: Runs cache writes off the streaming thread; when None,
            the write happens as the last chunk is handed to the client.
        chunk_size: Size of body chunks streamed from the upstream.
        max_cache_body: Largest body, in bytes, copied into the cache.
    """

    def __init__(
        self,
        config: ProxyConfig | None = None,
        *,
        session: requests.Session | None = None,
        cache: CacheStore | None = None,
        scheduler: Scheduler | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_cache_body: int = DEFAULT_MAX_CACHE_BODY,
    ) -> None:
        self.config = config or ProxyConfig()
        self.session = session or requests.Session()
        self.cache = cache
        self.scheduler = scheduler
        self.chunk_size = chunk_size
        self.max_cache_body = max_cache_body

    def handle_request(self, request: ProxyRequest) -> ProxyResponse:
        """Handle one proxy request and return the response to send."""
        try:
            return self._handle(request)
        except ProxyHTTPError as exc:
            LOG.info(
                "request_rejected",
                method=request.method,
                status=exc.status,
                error=exc.message,
            )
            return create_error(exc.message, exc.status)

    def compose_upstream_headers(
        self,
        request: ProxyRequest,
        params: ProxyRequestParams,
    ) -> tuple[CaseInsensitiveDict[str], ChannelRule]:
        """Build the upstream header set; each layer overwrites the previous one.

        Returns:
            The headers and the channel rule that was applied.
        """
        target_url = params.target_url or ""
        # Nothing has been fetched yet, so only the URL path can hint at the kind.
        kind = get_resource_type(None, get_extension(None, target_url))
        headers: CaseInsensitiveDict[str] = CaseInsensitiveDict(build_browser_headers(kind))

        channel = apply_channel_headers(
            headers, target_url, self.config.channels, self.config.default_channel
        )

        for name in CONDITIONAL_HEADERS:
            value = request.headers.get(name)
            if value:
                headers[name] = value

        for key, value in params.extra_headers.items():
            headers[key] = value

        return headers, channel

    def _authorize(self, request: ProxyRequest, target_url: str) -> None:
        if hostname_of(target_url) is None or not is_host_allowed(
            target_url, self.config.allowed_hosts
        ):
            raise AuthorizationError("Host not allowed")
        if not is_referrer_allowed(request.headers.get("Referer"), self.config.allowed_referrers):
            raise AuthorizationError("Referrer not allowed")

    def _handle(self, request: ProxyRequest) -> ProxyResponse:
        if request.method == "OPTIONS":
            return create_response(None, 204)
        if request.method not in SUPPORTED_METHODS:
            raise MethodError("Method Not Allowed")

        params = parse_post_body(request) if request.method == "POST" else parse_get_params(request)
        target_url = params.target_url
        if not target_url:
            raise ValidationError("Missing url parameter")
        self._authorize(request, target_url)

        upstream_headers, channel = self.compose_upstream_headers(request, params)

        disposition = params.resolved_disposition
        client_range = request.headers.get("Range")
        cacheable = (
            params.cache_enabled and request.method in CACHEABLE_METHODS and not client_range
        )
        cache_key = build_cache_key(request.url, target_url, disposition) if cacheable else None

        if cache_key is not None and self.cache is not None:
            cached = self.cache.match(cache_key)
            if cached is not None:
                LOG.info("cache_hit", url=target_url, channel=channel.name)
                headers = cached.headers.copy()
                headers["X-Proxy-Cache"] = "HIT"
                return create_response(cached.body, cached.status, headers)

        try:
            response, upstream_ok = self._fetch(
                request, params, upstream_headers, channel, client_sent_range=bool(client_range)
            )
            # GET and HEAD share one cache key, so only a GET may write it;
            # a stored HEAD reply would later be served as an empty GET body.
            if (
                cache_key is not None
                and self.cache is not None
                and upstream_ok
                and request.method == "GET"
            ):
                self._cache_when_consumed(cache_key, response)
            return response
        except ProxyHTTPError:
            raise
        except Exception as exc:
            LOG.warning(
                "gateway_error",
                url=target_url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise GatewayError(f"Gateway error: {str(exc) or 'Unknown error'}") from exc

    def _fetch(
        self,
        request: ProxyRequest,
        params: ProxyRequestParams,
        upstream_headers: CaseInsensitiveDict[str],
        channel: ChannelRule,
        *,
        client_sent_range: bool,
    ) -> tuple[ProxyResponse, bool]:
        target_url = params.target_url or ""
        # The proxy is read-only: a POST only carries parameters, never an upstream body.
        method = "GET" if request.method == "POST" else request.method

        upstream = self.session.request(
            method,
            target_url,
            headers=upstream_headers,
            stream=True,
            allow_redirects=True,
            timeout=self.config.upstream_timeout,
        )
        try:
            return self._build_response(
                upstream, params, channel, method, client_sent_range=client_sent_range
            )
        except Exception:
            upstream.close()
            raise

    def _build_response(
        self,
        upstream: requests.Response,
        params: ProxyRequestParams,
        channel: ChannelRule,
        method: str,
        *,
        client_sent_range: bool,
    ) -> tuple[ProxyResponse, bool]:
        target_url = params.target_url or ""
        status = upstream.status_code
        upstream_ok = 200 <= status < 300
        if not upstream_ok and status not in (206, 304):
            raise UpstreamError(status)

        # A channel rule may request a range the client never asked for; the
        # client then gets the whole resource as a plain 200.
        needs_normalize = status == 206 and not client_sent_range

        response_headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
        raw_content_type = extract_pass_through_headers(upstream.headers, response_headers)

        if needs_normalize:
            response_headers.pop("Content-Range", None)
            response_headers.pop("Content-Length", None)

        # requests decodes compressed bodies, so the upstream length no longer applies.
        if upstream.headers.get("Content-Encoding", "identity").lower() != "identity":
            response_headers.pop("Content-Length", None)

        content_type = raw_content_type
        if raw_content_type == OCTET_STREAM:
            ext = get_extension(None, target_url)
            mime = mime_for_extension(ext)
            if mime:
                content_type = mime
                response_headers["Content-Type"] = mime
        else:
            ext = get_extension(raw_content_type, target_url)

        ttls = resolve_ttls(content_type, ext, params.cache_ttl_override)
        if "Cache-Control" not in response_headers:
            response_headers["Cache-Control"] = (
                f"public, max-age={ttls.browser_ttl}, s-maxage={ttls.cdn_ttl}, "
                f"stale-while-revalidate={STALE_WHILE_REVALIDATE}"
            )

        disposition = params.resolved_disposition
        response_headers["Content-Disposition"] = (
            f'{disposition}; filename="download_{int(time.time() * 1000)}.{ext}"'
        )
        response_headers["Vary"] = "Origin, Range"
        response_headers["X-Proxy-Cache"] = "MISS"
        response_headers["X-Proxy-Cache-Ttl"] = f"{ttls.browser_ttl}/{ttls.cdn_ttl}"
        response_headers["X-Proxy-Channel"] = channel.name

        response_status = 200 if needs_normalize else status
        LOG.info(
            "upstream_fetched",
            url=target_url,
            method=method,
            upstream_status=status,
            status=response_status,
            channel=channel.name,
            content_type=content_type,
        )
        body = upstream.iter_content(chunk_size=self.chunk_size)
        return create_response(body, response_status, response_headers), upstream_ok

    def _cache_when_consumed(self, cache_key: str, response: ProxyResponse) -> None:
        """Arrange for *response* to be cached once its body has been streamed.

        The body is copied chunk by chunk as the client reads it and written
        only after the stream is exhausted. Nothing is collected when the
        response forbids shared caching or is larger than ``max_cache_body``.
        """
        if shared_cache_lifetime(response.headers.get("Cache-Control")) == 0:
            LOG.debug("cache_skipped_uncacheable", key=cache_key)
            return
        declared = response.headers.get("Content-Length", "")
        if declared.isdigit() and int(declared) > self.max_cache_body:
            LOG.debug("cache_skipped_too_large", key=cache_key, size=int(declared))
            return
        response.body = self._tee(
            cache_key,
            response.status,
            response.headers.copy(),
            response.iter_body(self.chunk_size),
        )

    def _tee(
        self,
        cache_key: str,
        status: int,
        headers: CaseInsensitiveDict[str],
        source: Iterable[bytes],
    ) -> Iterator[bytes]:
        chunks: list[bytes] | None = []
        size = 0
        for chunk in source:
            if chunks is not None:
                size += len(chunk)
                if size > self.max_cache_body:
                    LOG.debug("cache_skipped_too_large", key=cache_key, size=size)
                    chunks = None
                else:
                    chunks.append(chunk)
            yield chunk
        # Reached only when the client read the whole body.
        if chunks is not None:
            self._store(cache_key, ProxyResponse(status, headers, b"".join(chunks)))

    def _store(self, cache_key: str, entry: ProxyResponse) -> None:
        """Write *entry* to the cache, deferred when a scheduler exists."""
        assert self.cache is not None
        put = partial(self.cache.put, cache_key, entry)
        if self.scheduler is not None:
            self.scheduler.schedule(put)
        else:
            # The response is already being sent; a failed write must not cut it short.
            try:
                put()
            except Exception as exc:
                LOG.error(
                    "cache_store_failed",
                    key=cache_key,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return
        LOG.debug("cache_stored", key=cache_key, deferred=self.scheduler is not None)



def handle_request(
    request: ProxyRequest,
    config: ProxyConfig | None = None,
    *,
    session: requests.Session | None = None,
    cache: CacheStore | None = None,
    scheduler: Scheduler | None = None,
) -> ProxyResponse:
    """Handle a single request with a throwaway pipeline.

    Uses configuration from settings when *config* is not given.
    """
    pipeline = ProxyPipeline(
        config or ProxyConfig.from_settings(),
        session=session,
        cache=cache,
        scheduler=scheduler,
    )
    return pipeline.handle_request(request)
