"""Edge cache store and deferred-work contracts.

The pipeline only needs two collaborators here:

- a cache store exposing ``match(key)`` and ``put(key, response)``;
- optionally a scheduler exposing ``schedule(task)`` that runs a task after
  the response has been handed back to the client.

``MemoryCacheStore`` is an in-process store that honours the response's
``Cache-Control`` lifetime the way a shared cache would (``s-maxage`` first,
then ``max-age``). ``ThreadPoolScheduler`` runs deferred tasks on a small
thread pool.

Thread Safety:
    MemoryCacheStore guards its entries with a lock and may be shared by
    every request thread of a server.
"""

from __future__ import annotations

import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol, runtime_checkable

from mediaproxy.logging import get_logger
from mediaproxy.models import ProxyResponse

LOG = get_logger(__name__)

_DIRECTIVE_RE = re.compile(r"(?:^|,)\s*([a-z-]+)\s*(?:=\s*\"?(\d+)\"?)?", re.IGNORECASE)


@runtime_checkable
class CacheStore(Protocol):
    """Key → response store used as the edge cache."""

    def match(self, key: str) -> ProxyResponse | None: ...

    def put(self, key: str, response: ProxyResponse) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Fire-and-forget executor for work that may outlive the response."""

    def schedule(self, task: Callable[[], object]) -> None: ...


def shared_cache_lifetime(cache_control: str | None) -> int | None:
    """Return how long a shared cache may keep a response, in seconds.

    Args:
        cache_control: Value of the response's ``Cache-Control`` header.

    Returns:
        Lifetime in seconds, 0 when the response must not be stored, or
        None when the header states no lifetime.
    """
    if not cache_control:
        return None
    directives: dict[str, int | None] = {}
    for name, value in _DIRECTIVE_RE.findall(cache_control):
        directives[name.lower()] = int(value) if value else None
    if "no-store" in directives or "private" in directives:
        return 0
    for name in ("s-maxage", "max-age"):
        value = directives.get(name)
        if value is not None:
            return value
    return None


class MemoryCacheStore:
    """Bounded in-memory cache with per-entry expiry.

    Entries are evicted least-recently-used once ``max_entries`` is reached.
    Responses without a stated lifetime are kept for ``default_ttl`` seconds.
    """

    def __init__(
        self,
        max_entries: int = 256,
        default_ttl: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, ProxyResponse]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def match(self, key: str) -> ProxyResponse | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, response = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return response.clone()

    def put(self, key: str, response: ProxyResponse) -> None:
        lifetime = shared_cache_lifetime(response.headers.get("Cache-Control"))
        if lifetime is None:
            lifetime = self.default_ttl
        if lifetime <= 0:
            LOG.debug("cache_put_skipped_uncacheable", key=key)
            return
        stored = response.clone()
        with self._lock:
            self._entries[key] = (self._clock() + lifetime, stored)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                LOG.debug("cache_entry_evicted", key=evicted)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class ThreadPoolScheduler:
    """Runs deferred tasks on a thread pool, logging any failure."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mediaproxy")

    def schedule(self, task: Callable[[], object]) -> None:
        future = self._executor.submit(task)
        future.add_done_callback(_log_task_failure)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_task_failure(future: Future[object]) -> None:
    exc = future.exception()
    if exc is not None:
        LOG.error("deferred_task_failed", error=str(exc), error_type=type(exc).__name__)
