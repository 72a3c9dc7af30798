#!/usr/bin/env python3
"""
Service availability cache: TTL boundaries, failure memo, invalidation, shared probes
"""
import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from helpers import FakeClock
from task_extractor.bridges.service_cache import DEFAULT_TTL_SECONDS, ServiceAvailabilityCache
from task_extractor.core.errors import ProbeFailure
from task_extractor.core.interfaces import LLMService


def _counting_probe(available=True):
    calls = []

    async def probe(name):
        calls.append(name)
        return LLMService(name=name, url=f"http://{name}", available=available, models=["m1"])

    return probe, calls


def test_default_ttl_is_thirty_minutes():
    assert DEFAULT_TTL_SECONDS == 1800


@pytest.mark.asyncio
async def test_entry_reused_until_ttl_expires():
    clock = FakeClock()
    probe, calls = _counting_probe()
    cache = ServiceAvailabilityCache(probe, ttl=1800, clock=clock)

    first = await cache.get_service("ollama")
    assert first.available and first.models == ["m1"]
    assert first.last_checked == 0.0

    clock.now = 1799.999
    assert (await cache.get_service("ollama")) is first
    assert len(calls) == 1

    clock.now = 1800.001
    refreshed = await cache.get_service("ollama")
    assert len(calls) == 2
    assert refreshed.last_checked == pytest.approx(1800.001)


@pytest.mark.asyncio
async def test_probe_failure_is_cached_as_unavailable():
    clock = FakeClock()
    calls = []

    async def probe(name):
        calls.append(name)
        raise ProbeFailure(name, "http://localhost:11434", "connection refused")

    cache = ServiceAvailabilityCache(probe, clock=clock)
    entry = await cache.get_service("ollama")
    assert entry.available is False
    assert entry.url == "http://localhost:11434"
    assert entry.models == []

    clock.now = 600
    again = await cache.get_service("ollama")
    assert again.available is False
    assert calls == ["ollama"]
    assert cache.available_services() == []


@pytest.mark.asyncio
async def test_invalidate_forces_reprobe():
    probe, calls = _counting_probe()
    cache = ServiceAvailabilityCache(probe, clock=FakeClock())
    await cache.get_service("lmstudio")
    cache.invalidate("lmstudio")
    assert cache.peek("lmstudio") is None
    await cache.get_service("lmstudio")
    assert calls == ["lmstudio", "lmstudio"]


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_probe():
    release = asyncio.Event()
    calls = []

    async def probe(name):
        calls.append(name)
        await release.wait()
        return LLMService(name=name, available=True, models=["llama3.2"])

    cache = ServiceAvailabilityCache(probe, clock=FakeClock())
    lookups = asyncio.gather(*(cache.get_service("ollama") for _ in range(4)))
    await asyncio.sleep(0)
    release.set()
    results = await lookups

    assert calls == ["ollama"]
    assert all(r.available for r in results)


@pytest.mark.asyncio
async def test_result_of_probe_started_before_invalidate_is_discarded():
    release = asyncio.Event()
    calls = []

    async def probe(name):
        calls.append(name)
        if len(calls) == 1:
            await release.wait()
            return LLMService(name=name, url="http://old", available=True)
        return LLMService(name=name, url="http://new", available=True)

    cache = ServiceAvailabilityCache(probe, clock=FakeClock())
    stale_lookup = asyncio.ensure_future(cache.get_service("ollama"))
    await asyncio.sleep(0)

    cache.invalidate("ollama")
    release.set()
    stale = await stale_lookup
    assert stale.url == "http://old"
    assert cache.peek("ollama") is None

    fresh = await cache.get_service("ollama")
    assert fresh.url == "http://new"
    assert cache.peek("ollama").url == "http://new"


@pytest.mark.asyncio
async def test_available_services_lists_only_reachable_valid_entries():
    clock = FakeClock()

    async def probe(name):
        return LLMService(name=name, available=(name == "ollama"))

    cache = ServiceAvailabilityCache(probe, ttl=100, clock=clock)
    await cache.get_service("ollama")
    await cache.get_service("lmstudio")
    assert [s.name for s in cache.available_services()] == ["ollama"]

    clock.now = 200
    assert cache.available_services() == []

    cache.clear()
    assert cache.entries() == {}
