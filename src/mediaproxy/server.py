"""Flask adapter: exposes a ProxyPipeline as a WSGI application.

Every path is routed to the pipeline, so the proxy can sit behind any prefix
(``/proxy?url=...``, ``/api/proxy?url=...``).
"""

from __future__ import annotations

from flask import Flask, Response, request

from mediaproxy.cache import MemoryCacheStore, ThreadPoolScheduler
from mediaproxy.config import MediaProxySettings, ProxyConfig, get_settings
from mediaproxy.logging import get_logger
from mediaproxy.models import ProxyRequest, ProxyResponse
from mediaproxy.proxy import ProxyPipeline

LOG = get_logger(__name__)

# The pipeline answers unsupported methods itself (405 with CORS headers).
_ROUTED_METHODS = ["GET", "POST", "HEAD", "OPTIONS", "PUT", "PATCH", "DELETE"]


def to_proxy_request() -> ProxyRequest:
    """Translate the current Flask request."""
    return ProxyRequest(
        method=request.method,
        url=request.url,
        headers=dict(request.headers.items()),
        body=request.get_data(cache=False),
    )


def to_flask_response(response: ProxyResponse) -> Response:
    """Translate a ProxyResponse, streaming the body when it is not buffered."""
    flask_response = Response(
        response.iter_body(),
        status=response.status,
        headers=list(response.headers.items()),
        direct_passthrough=True,
    )
    # Werkzeug would otherwise add its default text/html type.
    if "Content-Type" not in response.headers:
        del flask_response.headers["Content-Type"]
    return flask_response


def build_pipeline(settings: MediaProxySettings | None = None) -> ProxyPipeline:
    """Create a pipeline wired with the edge cache and background scheduler."""
    settings = settings or get_settings()
    cache = (
        MemoryCacheStore(
            max_entries=settings.cache_max_entries,
            default_ttl=settings.cache_default_ttl,
        )
        if settings.cache_enabled
        else None
    )
    return ProxyPipeline(
        ProxyConfig.from_settings(settings),
        cache=cache,
        scheduler=ThreadPoolScheduler() if cache is not None else None,
        max_cache_body=settings.cache_max_body_bytes,
    )


def create_app(pipeline: ProxyPipeline | None = None) -> Flask:
    """Create the Flask application.

    Args:
        pipeline: Pipeline to serve; built from settings when omitted.
    """
    app = Flask(__name__)
    app.config["PIPELINE"] = pipeline or build_pipeline()

    @app.route("/", defaults={"path": ""}, methods=_ROUTED_METHODS)
    @app.route("/<path:path>", methods=_ROUTED_METHODS)
    def proxy(path: str) -> Response:
        proxy_request = to_proxy_request()
        LOG.debug("request_received", method=proxy_request.method, path=f"/{path}")
        return to_flask_response(app.config["PIPELINE"].handle_request(proxy_request))

    return app
