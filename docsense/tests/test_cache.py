from __future__ import annotations

import asyncio

import pytest

from docsense.analysis.cache import AnalysisCache, CacheState, make_fingerprint
from docsense.rag.errors import ValidationError
from docsense.rag.llm import LLMError

pytestmark = pytest.mark.anyio


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_fingerprint_ignores_document_order() -> None:
    first = make_fingerprint(["b", "a", "a"], "across", primary="a")
    second = make_fingerprint(["a", "b"], "across", primary="a")

    assert first.key == second.key
    assert first.document_ids == ("a", "b")
    assert make_fingerprint(["a", "b"], "across", primary="b").key != first.key
    assert make_fingerprint(["a", "b"], "insights").key != first.key


def test_fingerprint_requires_documents_and_known_type() -> None:
    with pytest.raises(ValidationError):
        make_fingerprint([], "within")
    with pytest.raises(ValidationError):
        make_fingerprint(["a"], "sentiment")


async def test_concurrent_requests_share_one_computation() -> None:
    cache = AnalysisCache()
    fingerprint = make_fingerprint(["doc-a"], "within")
    release = asyncio.Event()
    calls = 0

    async def compute() -> str:
        nonlocal calls
        calls += 1
        await release.wait()
        return "result"

    waiters = [asyncio.ensure_future(cache.get_or_compute(fingerprint, compute)) for _ in range(3)]
    await asyncio.sleep(0)
    assert cache.state(fingerprint) is CacheState.PENDING
    release.set()
    lookups = await asyncio.gather(*waiters)

    assert calls == 1
    assert [lookup.value for lookup in lookups] == ["result"] * 3
    assert sum(lookup.shared for lookup in lookups) == 2
    assert cache.state(fingerprint) is CacheState.READY

    cached = await cache.get_or_compute(fingerprint, compute)
    assert cached.cached is True
    assert calls == 1


async def test_failure_reaches_every_waiter_and_is_not_cached() -> None:
    cache = AnalysisCache()
    fingerprint = make_fingerprint(["doc-a"], "within")
    release = asyncio.Event()

    async def compute() -> str:
        await release.wait()
        raise LLMError("provider down", upstream_status=503)

    waiters = [asyncio.ensure_future(cache.get_or_compute(fingerprint, compute)) for _ in range(2)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert all(isinstance(result, LLMError) for result in results)
    assert cache.state(fingerprint) is CacheState.ABSENT
    assert cache.stats()["failures"] == 1


async def test_cancelled_caller_does_not_cancel_computation() -> None:
    cache = AnalysisCache()
    fingerprint = make_fingerprint(["doc-a"], "summary")
    release = asyncio.Event()

    async def compute() -> str:
        await release.wait()
        return "done"

    waiter = asyncio.ensure_future(cache.get_or_compute(fingerprint, compute))
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    release.set()
    for _ in range(5):
        await asyncio.sleep(0)

    assert cache.state(fingerprint) is CacheState.READY


async def test_force_regenerate_recomputes_and_replaces() -> None:
    cache = AnalysisCache()
    fingerprint = make_fingerprint(["doc-a"], "within")
    values = iter(["first", "second"])

    async def compute() -> str:
        return next(values)

    await cache.get_or_compute(fingerprint, compute)
    forced = await cache.get_or_compute(fingerprint, compute, force_regenerate=True)
    cached = await cache.get_or_compute(fingerprint, compute)

    assert forced.value == "second"
    assert forced.cached is False
    assert cached.value == "second"
    assert cached.cached is True


async def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = AnalysisCache(ttl_seconds=60, clock=clock)
    fingerprint = make_fingerprint(["doc-a"], "insights")

    async def compute() -> str:
        return "value"

    await cache.get_or_compute(fingerprint, compute)
    clock.now += 59
    assert cache.contains(fingerprint)
    clock.now += 1
    assert not cache.contains(fingerprint)
    assert cache.state(fingerprint) is CacheState.ABSENT


async def test_lru_bound_evicts_oldest() -> None:
    cache = AnalysisCache(max_entries=2)

    async def compute() -> str:
        return "value"

    fingerprints = [make_fingerprint([f"doc-{idx}"], "within") for idx in range(3)]
    for fingerprint in fingerprints:
        await cache.get_or_compute(fingerprint, compute)

    assert not cache.contains(fingerprints[0])
    assert cache.contains(fingerprints[1])
    assert cache.contains(fingerprints[2])


async def test_invalidate_documents_evicts_intersecting_entries() -> None:
    cache = AnalysisCache()

    async def compute() -> str:
        return "value"

    within_a = make_fingerprint(["a"], "within")
    across_ab = make_fingerprint(["a", "b"], "across", primary="b")
    within_b = make_fingerprint(["b"], "within")
    for fingerprint in (within_a, across_ab, within_b):
        await cache.get_or_compute(fingerprint, compute)

    assert cache.invalidate_documents(["a"]) == 2
    assert not cache.contains(within_a)
    assert not cache.contains(across_ab)
    assert cache.contains(within_b)


async def test_invalidation_during_computation_discards_result() -> None:
    cache = AnalysisCache()
    fingerprint = make_fingerprint(["a"], "within")
    release = asyncio.Event()

    async def compute() -> str:
        await release.wait()
        return "stale"

    waiter = asyncio.ensure_future(cache.get_or_compute(fingerprint, compute))
    await asyncio.sleep(0)
    cache.invalidate_documents(["a"])
    release.set()
    lookup = await waiter

    assert lookup.value == "stale"
    assert cache.state(fingerprint) is CacheState.ABSENT
