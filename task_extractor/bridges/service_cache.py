"""
Time-bounded memo of local LLM service reachability
"""
import asyncio
import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable, Dict, List, Optional

from ..core.interfaces import LLMService

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60


class ServiceAvailabilityCache:
    """Answers "is service X reachable, and with which models?".

    Each service is probed at most once per TTL window. A probe that raises
    is recorded as a definitive ``available=False`` entry and is only retried
    after the TTL expires or the entry is invalidated. Concurrent lookups of
    the same service share one probe.
    """

    def __init__(
        self,
        probe: Callable[[str], Awaitable[LLMService]],
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._probe = probe
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, LLMService] = {}
        self._probes: Dict[str, "asyncio.Future[LLMService]"] = {}
        self._generation: Dict[str, int] = {}

    def _is_valid(self, entry: LLMService) -> bool:
        return self._clock() - entry.last_checked < self.ttl

    def peek(self, name: str) -> Optional[LLMService]:
        """Valid cached entry or None; never probes"""
        entry = self._entries.get(name)
        if entry is not None and self._is_valid(entry):
            return entry
        return None

    async def get_service(self, name: str) -> LLMService:
        entry = self.peek(name)
        if entry is not None:
            return entry
        pending = self._probes.get(name)
        if pending is None:
            pending = asyncio.ensure_future(self._probe_and_store(name, self._generation.get(name, 0)))
            self._probes[name] = pending
            pending.add_done_callback(lambda fut, n=name: self._forget_probe(n, fut))
        return await asyncio.shield(pending)

    def _forget_probe(self, name: str, fut: "asyncio.Future[LLMService]") -> None:
        if self._probes.get(name) is fut:
            del self._probes[name]

    async def _probe_and_store(self, name: str, generation: int) -> LLMService:
        started = self._clock()
        try:
            service = await self._probe(name)
        except Exception as e:
            # Expected for local services that are not running; not user-visible
            logger.debug(f"event=service_probe_failed service={name} error={e}")
            service = LLMService(name=name, url=getattr(e, "url", ""), available=False)
        entry = replace(service, name=name, last_checked=started)
        if self._generation.get(name, 0) == generation:
            self._entries[name] = entry
            logger.info(
                f"event=service_cached service={name} available={entry.available} models={len(entry.models)}"
            )
        return entry

    def invalidate(self, name: str) -> None:
        """Force the next lookup to re-probe, ignoring any in-progress probe"""
        self._entries.pop(name, None)
        self._probes.pop(name, None)
        self._generation[name] = self._generation.get(name, 0) + 1
        logger.info(f"event=service_invalidated service={name}")

    def available_services(self) -> List[LLMService]:
        """Valid cached entries that are reachable"""
        return [e for e in self._entries.values() if e.available and self._is_valid(e)]

    def entries(self) -> Dict[str, LLMService]:
        return dict(self._entries)

    def clear(self) -> None:
        for name in list(self._entries) + list(self._probes):
            self._generation[name] = self._generation.get(name, 0) + 1
        self._entries.clear()
        self._probes.clear()
