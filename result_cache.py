"""Single-slot, time-limited cache around a full pipeline run."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pipeline import PipelineResult, build_client, build_narrator, run_pipeline
from settings import Settings

logger = logging.getLogger(__name__)

EMPTY = "empty"
FRESH = "fresh"
STALE = "stale"


@dataclass(frozen=True)
class CacheEntry:
    result: PipelineResult
    created_at: float


@dataclass(frozen=True)
class CacheLookup:
    entry: CacheEntry
    cached: bool


class ResultCache:
    """Holds at most one pipeline result for the whole process.

    Concurrent callers that miss share one computation: the compute lock is
    taken with a re-check, so only the first caller runs the producer and the
    rest pick up its entry. A failed computation stores nothing, and neither
    does one that was running when clear() was called.
    """

    def __init__(
        self,
        producer: Callable[[], PipelineResult],
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._producer = producer
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._generation = 0
        self._compute_lock = threading.Lock()
        self._state_lock = threading.Lock()

    def _is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and (self._clock() - entry.created_at) < self.ttl_seconds

    @property
    def state(self) -> str:
        entry = self._entry
        if entry is None:
            return EMPTY
        return FRESH if self._is_fresh(entry) else STALE

    def age_seconds(self) -> Optional[float]:
        entry = self._entry
        return None if entry is None else self._clock() - entry.created_at

    def peek(self) -> Optional[CacheEntry]:
        return self._entry

    def get_or_compute(self) -> CacheLookup:
        entry = self._entry
        if self._is_fresh(entry):
            logger.debug("Returning cached result")
            return CacheLookup(entry=entry, cached=True)

        with self._compute_lock:
            # Double-checked: another caller may have refreshed while we waited.
            entry = self._entry
            if self._is_fresh(entry):
                return CacheLookup(entry=entry, cached=True)

            logger.info("Cache %s; running pipeline", self.state)
            generation = self._generation
            result = self._producer()
            entry = CacheEntry(result=result, created_at=self._clock())
            with self._state_lock:
                if self._generation == generation:
                    self._entry = entry
                else:
                    logger.info("Cache cleared during computation; result not stored")
            return CacheLookup(entry=entry, cached=False)

    def clear(self) -> None:
        with self._state_lock:
            self._generation += 1
            self._entry = None
        logger.info("Cache cleared")


def build_cache(settings: Settings) -> ResultCache:
    """A cache whose producer runs the full census pipeline with *settings*."""
    client = build_client(settings)
    narrator = build_narrator(settings)

    def produce() -> PipelineResult:
        return run_pipeline(client, narrator, threshold=settings.threshold, region_scope=settings.region_scope)

    return ResultCache(produce, ttl_seconds=settings.cache_ttl_seconds)
