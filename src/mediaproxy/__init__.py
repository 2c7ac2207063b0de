"""mediaproxy - fetch third-party media on a browser's behalf.

A reverse proxy for images, video and audio that origins refuse to serve to
pages on other sites. It requests the resource with real-browser headers,
applies per-origin channel rules (Referer, Origin, Range), turns unsolicited
partial responses back into whole ones, names the download, and keeps a copy
in an edge cache.

Example:
    >>> from mediaproxy import ProxyPipeline, ProxyRequest, match_channel
    >>> match_channel("https://img.xpccdn.com/cover.jpg").name
    'xinpianchang'
    >>> pipeline = ProxyPipeline()
    >>> response = pipeline.handle_request(  # doctest: +SKIP
    ...     ProxyRequest("GET", "http://localhost:8787/?url=https://xpccdn.com/v/a.mp4")
    ... )
    >>> response.headers["X-Proxy-Channel"]  # doctest: +SKIP
    'xinpianchang'
"""

from mediaproxy.browser_headers import build_browser_headers
from mediaproxy.cache import CacheStore, MemoryCacheStore, Scheduler, ThreadPoolScheduler
from mediaproxy.channels import (
    CHANNEL_RULES,
    DEFAULT_CHANNEL,
    ChannelRule,
    apply_channel_headers,
    load_channel_rules,
    match_channel,
)
from mediaproxy.config import MediaProxySettings, ProxyConfig, get_settings
from mediaproxy.exceptions import (
    AuthorizationError,
    ConfigError,
    GatewayError,
    MediaProxyError,
    MethodError,
    UpstreamError,
    ValidationError,
)
from mediaproxy.mime import ResourceKind, get_default_ttls, get_extension, get_resource_type
from mediaproxy.models import ProxyRequest, ProxyResponse
from mediaproxy.proxy import ProxyPipeline, ProxyRequestParams, handle_request
from mediaproxy.security import is_host_allowed, is_referrer_allowed

__version__ = "0.3.0"

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "ProxyPipeline",
    "ProxyRequestParams",
    "handle_request",
    "ProxyRequest",
    "ProxyResponse",
    # Channels
    "ChannelRule",
    "CHANNEL_RULES",
    "DEFAULT_CHANNEL",
    "match_channel",
    "apply_channel_headers",
    "load_channel_rules",
    # Classification and fingerprints
    "ResourceKind",
    "get_extension",
    "get_resource_type",
    "get_default_ttls",
    "build_browser_headers",
    # Access control
    "is_host_allowed",
    "is_referrer_allowed",
    # Cache
    "CacheStore",
    "MemoryCacheStore",
    "Scheduler",
    "ThreadPoolScheduler",
    # Configuration
    "MediaProxySettings",
    "ProxyConfig",
    "get_settings",
    # Exceptions
    "MediaProxyError",
    "ConfigError",
    "ValidationError",
    "AuthorizationError",
    "MethodError",
    "UpstreamError",
    "GatewayError",
]
