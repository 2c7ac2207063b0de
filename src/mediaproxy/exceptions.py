"""Custom exceptions for mediaproxy package."""


class MediaProxyError(Exception):
    """Base exception class for all mediaproxy errors."""


class ConfigError(MediaProxyError):
    """Raised when static configuration (channel rules, allow-lists) is invalid."""


class ProxyHTTPError(MediaProxyError):
    """An error that is reported to the client as a JSON error envelope.

    Attributes:
        message: Message placed in the ``{"error": ...}`` envelope.
        status: HTTP status code of the error response.
    """

    status: int = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class ValidationError(ProxyHTTPError):
    """Raised when a request is missing required input."""

    status = 400


class AuthorizationError(ProxyHTTPError):
    """Raised when the target host or the caller's referrer is not allowed."""

    status = 403


class MethodError(ProxyHTTPError):
    """Raised for HTTP methods the proxy does not serve."""

    status = 405


class UpstreamError(ProxyHTTPError):
    """Raised when the upstream answers with a non-success status.

    The status code of the error mirrors the upstream's.
    """

    def __init__(self, status: int) -> None:
        super().__init__(f"Upstream error: {status}", status)


class GatewayError(ProxyHTTPError):
    """Raised when fetching or processing the upstream response fails unexpectedly."""

    status = 502
