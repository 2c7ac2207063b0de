"""Channel rules: per-destination header overrides.

A channel is a named set of headers sent to every target whose hostname
matches one of the channel's domains (exactly or as a subdomain). Origins that
enforce anti-hotlinking usually want a specific Referer/Origin, and some only
serve media to ranged requests; channels encode those requirements.

Rules are evaluated in declared order and the first match wins, so more
specific rules must come first. Rule tables are loaded once and never mutated.

Channel files are YAML::

    channels:
      - name: xinpianchang
        domains: [xpccdn.com, xinpianchang.com]
        headers:
          Referer: https://www.xinpianchang.com/
          Range: bytes=0-
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final
from urllib.parse import urlsplit

import yaml

from mediaproxy.exceptions import ConfigError
from mediaproxy.logging import get_logger
from mediaproxy.security import host_matches, hostname_of

LOG = get_logger(__name__)


def _normalize_domain(domain: str) -> str:
    """Reduce a configured domain to a bare lower-case hostname."""
    value = domain.strip().lower()
    if "://" in value:
        value = urlsplit(value).hostname or ""
    value = value.split("/", 1)[0].rstrip(".")
    if not value:
        raise ValueError(f"Invalid channel domain: {domain!r}")
    return value


@dataclass(frozen=True)
class ChannelRule:
    """A named header override set bound to a list of domains.

    Attributes:
        name: Channel name reported in ``X-Proxy-Channel``.
        domains: Bare hostnames (no scheme, no path); subdomains match too.
        headers: Headers written over the browser fingerprint.
    """

    name: str
    domains: tuple[str, ...] = ()
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Channel name cannot be empty")
        object.__setattr__(self, "domains", tuple(_normalize_domain(d) for d in self.domains))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def matches(self, hostname: str) -> bool:
        """Return True if *hostname* belongs to one of this channel's domains."""
        return host_matches(hostname.lower(), self.domains)


DEFAULT_CHANNEL: Final[ChannelRule] = ChannelRule(name="default")

# Built-in rule table. Append new channels here or ship a channels file.
CHANNEL_RULES: Final[tuple[ChannelRule, ...]] = (
    ChannelRule(
        name="xinpianchang",
        domains=("xpccdn.com", "xinpianchang.com"),
        headers={
            "Referer": "https://www.xinpianchang.com/",
            "Origin": "https://www.xinpianchang.com",
            "Range": "bytes=0-",
        },
    ),
)


def match_channel(
    target_url: str,
    rules: Iterable[ChannelRule] = CHANNEL_RULES,
    default: ChannelRule = DEFAULT_CHANNEL,
) -> ChannelRule:
    """Return the first rule matching the target's hostname.

    Args:
        target_url: Absolute URL being proxied.
        rules: Rule table in priority order.
        default: Rule returned when nothing matches.

    Returns:
        The matching rule, or *default* when the URL cannot be parsed or no
        rule matches.
    """
    hostname = hostname_of(target_url)
    if hostname is None:
        return default
    for rule in rules:
        if rule.matches(hostname):
            return rule
    return default


def apply_channel_headers(
    headers: MutableMapping[str, str],
    target_url: str,
    rules: Iterable[ChannelRule] = CHANNEL_RULES,
    default: ChannelRule = DEFAULT_CHANNEL,
) -> ChannelRule:
    """Write the matching channel's headers into *headers* in place.

    Returns:
        The matched rule, so callers can report which channel fired.
    """
    channel = match_channel(target_url, rules, default)
    for key, value in channel.headers.items():
        headers[key] = value
    return channel


def _rule_from_dict(data: Any, index: int) -> ChannelRule:
    if not isinstance(data, dict):
        raise ConfigError(f"Channel #{index} must be a mapping, got {type(data).__name__}")
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"Channel #{index} is missing a name")

    domains = data.get("domains", [])
    if isinstance(domains, str):
        domains = [domains]
    if not isinstance(domains, list) or not all(isinstance(d, str) for d in domains):
        raise ConfigError(f"Channel '{name}': domains must be a list of strings")
    if not domains:
        raise ConfigError(f"Channel '{name}': at least one domain is required")

    headers = data.get("headers") or {}
    if not isinstance(headers, dict):
        raise ConfigError(f"Channel '{name}': headers must be a mapping")

    try:
        return ChannelRule(
            name=name.strip(),
            domains=tuple(domains),
            headers={str(k): str(v) for k, v in headers.items()},
        )
    except ValueError as exc:
        raise ConfigError(f"Channel '{name}': {exc}") from exc


def parse_channel_rules(data: Any) -> tuple[ChannelRule, ...]:
    """Build a rule table from an already-parsed YAML document."""
    if data is None:
        return ()
    if isinstance(data, dict):
        data = data.get("channels", [])
    if not isinstance(data, list):
        raise ConfigError("Channel file must contain a list under 'channels'")

    rules = tuple(_rule_from_dict(item, i) for i, item in enumerate(data))
    names = [rule.name for rule in rules]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate channel names: {', '.join(duplicates)}")
    if DEFAULT_CHANNEL.name in names:
        raise ConfigError(f"'{DEFAULT_CHANNEL.name}' is reserved for the fallback channel")
    return rules


def load_channel_rules(path: Path) -> tuple[ChannelRule, ...]:
    """Load a rule table from a YAML file.

    Raises:
        ConfigError: If the file is missing, unparsable or malformed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read channel file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in channel file {path}: {exc}") from exc

    rules = parse_channel_rules(data)
    LOG.debug("channel_rules_loaded", path=str(path), count=len(rules))
    return rules


def describe_rules(rules: Sequence[ChannelRule]) -> list[dict[str, Any]]:
    """Flatten a rule table for display."""
    return [
        {"name": r.name, "domains": list(r.domains), "headers": dict(r.headers)} for r in rules
    ]
