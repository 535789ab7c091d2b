from __future__ import annotations

"""Single-flight analysis cache keyed by document-set fingerprints.

Entries are addressed by a :class:`Fingerprint`: the sorted set of document
ids, the analysis type and any parameters that change the result. Concurrent
requests for one fingerprint share a single computation. The computation runs
as its own task, so a caller that goes away (for example an aborted HTTP
request) does not cancel it and the result still lands in the cache for the
remaining waiters.

The clock is injectable so TTL expiry can be tested with fake time.
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from docsense.rag.errors import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ANALYSIS_TYPES = frozenset({"within", "across", "insights", "summary"})


@dataclass(frozen=True)
class Fingerprint:
    """Deterministic identity of an analysis request."""
    document_ids: tuple[str, ...]
    analysis_type: str
    params: tuple[tuple[str, str], ...] = ()

    @property
    def key(self) -> str:
        payload = json.dumps(
            {
                "documents": list(self.document_ids),
                "type": self.analysis_type,
                "params": [list(pair) for pair in self.params],
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def references(self, document_ids: Iterable[str]) -> bool:
        return not set(self.document_ids).isdisjoint(document_ids)


def make_fingerprint(
    document_ids: Iterable[str], analysis_type: str, **params: Any
) -> Fingerprint:
    """Build a fingerprint from an unordered document set and parameters."""
    ids = tuple(sorted(set(document_ids)))
    if not ids:
        raise ValidationError("At least one document id is required")
    if analysis_type not in ANALYSIS_TYPES:
        raise ValidationError(f"Unknown analysis type: {analysis_type}")
    normalized = tuple(
        sorted((name, str(value)) for name, value in params.items() if value is not None)
    )
    return Fingerprint(document_ids=ids, analysis_type=analysis_type, params=normalized)


class CacheState(str, Enum):
    ABSENT = "absent"
    PENDING = "pending"
    READY = "ready"


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    """Outcome of :meth:`AnalysisCache.get_or_compute`.

    ``cached`` is true only when the value came from a stored entry.
    ``shared`` is true when the caller joined a computation started by
    another request.
    """
    value: T
    cached: bool
    shared: bool = False


@dataclass(frozen=True)
class _Entry:
    fingerprint: Fingerprint
    value: Any
    stored_at: float


class AnalysisCache:
    """TTL and size bounded cache with per-fingerprint single flight."""

    def __init__(
        self,
        ttl_seconds: float = 86400.0,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._inflight_fingerprints: dict[str, Fingerprint] = {}
        self._stale: set[str] = set()
        # Guards map mutation only; never held across an await.
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._joins = 0
        self._computations = 0
        self._failures = 0
        self._evictions = 0

    async def get_or_compute(
        self,
        fingerprint: Fingerprint,
        compute: Callable[[], Awaitable[T]],
        force_regenerate: bool = False,
    ) -> CacheLookup[T]:
        """Return the cached value or run ``compute`` once for all concurrent callers.

        ``force_regenerate`` skips the stored entry but still joins a
        computation that is already running for the same fingerprint.
        A failed computation is never stored and its error reaches every
        waiter.
        """
        key = fingerprint.key
        with self._lock:
            if not force_regenerate:
                entry = self._live_entry(key)
                if entry is not None:
                    self._hits += 1
                    self._entries.move_to_end(key)
                    return CacheLookup(value=entry.value, cached=True)
            task = self._inflight.get(key)
            shared = task is not None
            if task is None:
                self._misses += 1
                self._computations += 1
                task = asyncio.ensure_future(self._run(key, fingerprint, compute))
                task.add_done_callback(_consume_exception)
                self._inflight[key] = task
                self._inflight_fingerprints[key] = fingerprint
            else:
                self._joins += 1
        if shared:
            logger.info(
                "analysis_cache_join",
                extra={"analysis_type": fingerprint.analysis_type, "key": key[:12]},
            )
        value = await asyncio.shield(task)
        return CacheLookup(value=value, cached=False, shared=shared)

    async def _run(
        self, key: str, fingerprint: Fingerprint, compute: Callable[[], Awaitable[Any]]
    ) -> Any:
        try:
            value = await compute()
        except BaseException:
            with self._lock:
                self._inflight.pop(key, None)
                self._inflight_fingerprints.pop(key, None)
                self._entries.pop(key, None)
                self._stale.discard(key)
                self._failures += 1
            logger.warning(
                "analysis_compute_failed",
                extra={"analysis_type": fingerprint.analysis_type, "key": key[:12]},
            )
            raise
        with self._lock:
            self._inflight.pop(key, None)
            self._inflight_fingerprints.pop(key, None)
            if key in self._stale:
                self._stale.discard(key)
                logger.info(
                    "analysis_result_discarded",
                    extra={"analysis_type": fingerprint.analysis_type, "key": key[:12]},
                )
            else:
                self._store(key, fingerprint, value)
        return value

    def _store(self, key: str, fingerprint: Fingerprint, value: Any) -> None:
        self._entries[key] = _Entry(fingerprint=fingerprint, value=value, stored_at=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1

    def _live_entry(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.ttl_seconds > 0 and self._clock() - entry.stored_at >= self.ttl_seconds:
            del self._entries[key]
            self._evictions += 1
            return None
        return entry

    def state(self, fingerprint: Fingerprint) -> CacheState:
        key = fingerprint.key
        with self._lock:
            if key in self._inflight:
                return CacheState.PENDING
            if self._live_entry(key) is not None:
                return CacheState.READY
        return CacheState.ABSENT

    def contains(self, fingerprint: Fingerprint) -> bool:
        """Return True when a live entry exists for the fingerprint."""
        with self._lock:
            return self._live_entry(fingerprint.key) is not None

    def invalidate_documents(self, document_ids: Iterable[str]) -> int:
        """Evict every entry whose document set intersects ``document_ids``.

        Computations already running for such fingerprints still resolve
        their waiters, but their results are not stored.
        """
        targets = set(document_ids)
        if not targets:
            return 0
        with self._lock:
            doomed = [
                key for key, entry in self._entries.items()
                if entry.fingerprint.references(targets)
            ]
            for key in doomed:
                del self._entries[key]
            for key, fingerprint in self._inflight_fingerprints.items():
                if fingerprint.references(targets):
                    self._stale.add(key)
        if doomed:
            logger.info(
                "analysis_cache_invalidated",
                extra={"documents": sorted(targets), "evicted": len(doomed)},
            )
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._stale.update(self._inflight)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "inflight": len(self._inflight),
                "hits": self._hits,
                "misses": self._misses,
                "joins": self._joins,
                "computations": self._computations,
                "failures": self._failures,
                "evictions": self._evictions,
            }


def _consume_exception(task: asyncio.Future[Any]) -> None:
    # Marks the error as retrieved when every caller was cancelled.
    if not task.cancelled():
        task.exception()
