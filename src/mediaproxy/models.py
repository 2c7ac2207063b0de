"""Platform-neutral request/response types at the edge of the proxy core.

Hosting adapters (the Flask app, the CLI) translate their own objects into
these and back; nothing inside the pipeline knows which one is in use.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlsplit

from requests.structures import CaseInsensitiveDict

Body = bytes | Iterable[bytes]


def _headers(value: Mapping[str, str] | None) -> CaseInsensitiveDict[str]:
    return CaseInsensitiveDict(dict(value.items()) if value else {})


@dataclass
class ProxyRequest:
    """An inbound request: method, absolute URL, headers and raw body."""

    method: str
    url: str
    headers: CaseInsensitiveDict[str] = field(default_factory=CaseInsensitiveDict)
    body: bytes = b""

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = _headers(self.headers)

    @property
    def query(self) -> dict[str, str]:
        """First value of each query parameter."""
        parsed = parse_qs(urlsplit(self.url).query, keep_blank_values=True)
        return {key: values[0] for key, values in parsed.items()}


@dataclass
class ProxyResponse:
    """An outgoing response.

    ``body`` is either bytes or an iterable of byte chunks streamed from the
    upstream. A streamed body can only be consumed once; ``clone()`` buffers it
    so that the original and the copy yield the same bytes.
    """

    status: int = 200
    headers: CaseInsensitiveDict[str] = field(default_factory=CaseInsensitiveDict)
    body: Body = b""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = _headers(self.headers)
        if self.body is None:
            self.body = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def read(self) -> bytes:
        """Return the whole body, buffering a streamed body in place."""
        if not isinstance(self.body, bytes):
            self.body = b"".join(self.body)
        return self.body

    def iter_body(self, chunk_size: int = 64 * 1024) -> Iterable[bytes]:
        """Iterate over the body in chunks."""
        if isinstance(self.body, bytes):
            return (self.body[i : i + chunk_size] for i in range(0, len(self.body), chunk_size))
        return self.body

    def clone(self) -> ProxyResponse:
        return ProxyResponse(status=self.status, headers=self.headers.copy(), body=self.read())
