"""MIME type table, resource classification and default cache lifetimes."""

from __future__ import annotations

import enum
import posixpath
from typing import Final, NamedTuple
from urllib.parse import urljoin, urlsplit

OCTET_STREAM: Final[str] = "application/octet-stream"
FALLBACK_EXTENSION: Final[str] = "bin"

MIME_TYPES: Final[dict[str, str]] = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "video/x-flv": "flv",
    "video/x-msvideo": "avi",
    "video/ogg": "ogv",
    "application/x-mpegurl": "m3u8",
    "video/mp2t": "ts",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "image/avif": "avif",
    "image/x-icon": "ico",
    "audio/mpeg": "mp3",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/aac": "aac",
    OCTET_STREAM: FALLBACK_EXTENSION,
}

IMAGE_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {"jpg", "jpeg", "png", "gif", "webp", "svg", "ico", "avif"}
)
VIDEO_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {"mp4", "webm", "mov", "flv", "avi", "m3u8", "ts", "ogv"}
)
AUDIO_EXTENSIONS: Final[frozenset[str]] = frozenset({"mp3", "ogg", "wav", "aac"})

# Relative paths are resolved against this base before the path is inspected.
_DUMMY_BASE: Final[str] = "http://dummy.invalid/"


class ResourceKind(enum.StrEnum):
    """Coarse media kind used to pick fingerprints and cache lifetimes."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    OTHER = "other"


class CacheTtls(NamedTuple):
    """Default browser and CDN cache lifetimes, in seconds."""

    browser_ttl: int
    cdn_ttl: int


_PREFIX_KINDS: Final = (
    ("image/", ResourceKind.IMAGE),
    ("video/", ResourceKind.VIDEO),
    ("audio/", ResourceKind.AUDIO),
)
_EXTENSION_KINDS: Final = (
    (IMAGE_EXTENSIONS, ResourceKind.IMAGE),
    (VIDEO_EXTENSIONS, ResourceKind.VIDEO),
    (AUDIO_EXTENSIONS, ResourceKind.AUDIO),
)

IMAGE_TTLS: Final[CacheTtls] = CacheTtls(browser_ttl=86400, cdn_ttl=2592000)
DEFAULT_TTLS: Final[CacheTtls] = CacheTtls(browser_ttl=3600, cdn_ttl=86400)


def _extension_from_path(url_path: str) -> str | None:
    try:
        path = urlsplit(urljoin(_DUMMY_BASE, url_path)).path
    except ValueError:
        return None
    name = posixpath.basename(path)
    if "." not in name:
        return None
    ext = name.rpartition(".")[2].split("?")[0].lower()
    if 2 <= len(ext) <= 5:
        return ext
    return None


def get_extension(content_type: str | None, url_path: str) -> str:
    """Infer a file extension from a content type and/or a URL.

    A known content type wins, except the generic octet-stream marker, which
    says nothing about the payload. Otherwise the extension of the URL path is
    used when it is 2-5 characters long.

    Args:
        content_type: Bare content type (no parameters), or empty/None.
        url_path: Absolute URL or path of the resource.

    Returns:
        Lower-case extension without the dot; ``"bin"`` when nothing matches.
    """
    if content_type and content_type != OCTET_STREAM and content_type in MIME_TYPES:
        return MIME_TYPES[content_type]
    return _extension_from_path(url_path) or FALLBACK_EXTENSION


def get_resource_type(content_type: str | None, ext: str | None) -> ResourceKind:
    """Classify a resource as image, video, audio or other.

    The content-type prefix is authoritative; the extension is only consulted
    when the content type names none of the three media families.
    """
    t = (content_type or "").lower()
    e = (ext or "").lower()
    for prefix, kind in _PREFIX_KINDS:
        if t.startswith(prefix):
            return kind
    for extensions, kind in _EXTENSION_KINDS:
        if e in extensions:
            return kind
    return ResourceKind.OTHER


def get_default_ttls(content_type: str | None, ext: str | None) -> CacheTtls:
    """Return default cache lifetimes; images are cached far longer than anything else."""
    if get_resource_type(content_type, ext) is ResourceKind.IMAGE:
        return IMAGE_TTLS
    return DEFAULT_TTLS


def mime_for_extension(ext: str) -> str | None:
    """Return the first MIME type declared for *ext*, or None."""
    return next((mime for mime, e in MIME_TYPES.items() if e == ext), None)
