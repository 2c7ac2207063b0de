"""Browser fingerprint headers mimicking Chrome 131 on Windows.

Every upstream request starts from these headers. The browser identity
(User-Agent, client hints, locale) is shared by all resource kinds; only the
request-type headers (Accept, Sec-Fetch-Dest, Sec-Fetch-Mode) vary with what
is being fetched, the same way a real page loading a <video> or an <img>
would differ.
"""

from __future__ import annotations

from typing import Final

from mediaproxy.mime import ResourceKind

_USER_AGENT: Final[str] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
_SEC_CH_UA: Final[str] = '"Google Chrome";v="131", "Chromium";v="131", "Not_A Brand";v="24"'

# Identity headers shared across every resource kind.
_BASE_HEADERS: Final[dict[str, str]] = {
    "User-Agent": _USER_AGENT,
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    # Payload bytes are passed through untouched, so ask for them uncompressed.
    "Accept-Encoding": "identity",
    "Connection": "keep-alive",
    "Sec-Fetch-Site": "cross-site",
    "Sec-Ch-Ua": _SEC_CH_UA,
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
}

_MEDIA_HEADERS: Final[dict[str, str]] = {
    "Accept": "video/webm,video/ogg,video/*;q=0.9,application/ogg;q=0.7,audio/*;q=0.6,*/*;q=0.5",
    "Sec-Fetch-Dest": "video",
    "Sec-Fetch-Mode": "no-cors",
}

_IMAGE_HEADERS: Final[dict[str, str]] = {
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Sec-Fetch-Dest": "image",
    "Sec-Fetch-Mode": "no-cors",
}

_GENERIC_HEADERS: Final[dict[str, str]] = {
    "Accept": "*/*",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
}


def build_video_headers() -> dict[str, str]:
    """Headers for a <video>/<audio> element fetching a media stream."""
    return {**_BASE_HEADERS, **_MEDIA_HEADERS}


def build_image_headers() -> dict[str, str]:
    """Headers for an <img> element."""
    return {**_BASE_HEADERS, **_IMAGE_HEADERS}


def build_generic_headers() -> dict[str, str]:
    """Headers for a script-initiated fetch()."""
    return {**_BASE_HEADERS, **_GENERIC_HEADERS}


def build_browser_headers(kind: ResourceKind | str) -> dict[str, str]:
    """Return a fresh browser header dict for the given resource kind.

    Args:
        kind: Resource kind; video and audio share the media profile,
            anything unrecognized gets the generic profile.

    Returns:
        New dict the caller may mutate freely.
    """
    if kind in (ResourceKind.VIDEO, ResourceKind.AUDIO):
        return build_video_headers()
    if kind == ResourceKind.IMAGE:
        return build_image_headers()
    return build_generic_headers()
