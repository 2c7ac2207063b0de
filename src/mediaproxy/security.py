"""Access control for target hosts and calling referrers.

Both checks share one host-matching rule: an allow-list entry matches its
exact hostname and every subdomain of it. A wildcard entry disables the check.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Final
from urllib.parse import urlsplit

WILDCARD: Final[str] = "*"


def hostname_of(url: str) -> str | None:
    """Return the lower-cased hostname of *url*, or None if it cannot be parsed."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    return hostname or None


def host_matches(hostname: str, domains: Iterable[str]) -> bool:
    """Return True if *hostname* equals or is a subdomain of any entry in *domains*."""
    return any(hostname == d or hostname.endswith(f".{d}") for d in domains)


def is_host_allowed(url: str, allow_list: Iterable[str]) -> bool:
    """Check whether the hostname of *url* is on the allow-list.

    A malformed URL is never allowed.

    Args:
        url: Absolute URL to check.
        allow_list: Allowed domains, or a list containing ``"*"``.

    Returns:
        True if the host may be proxied.
    """
    allow_list = tuple(allow_list)
    if WILDCARD in allow_list:
        return True
    hostname = hostname_of(url)
    if hostname is None:
        return False
    return host_matches(hostname, allow_list)


def is_referrer_allowed(referer: str | None, allow_list: Iterable[str]) -> bool:
    """Check whether the caller's ``Referer`` is on the allow-list.

    A missing referrer passes. A present referrer must match like a target host.
    """
    if not referer:
        return True
    return is_host_allowed(referer, allow_list)
