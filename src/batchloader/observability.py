"""Fetch observers.

Every finished batch produces one ``FetchEvent``, delivered to the observers
registered on the loader (``Loader.new(observers=[...])``).  Observers run on
the calling thread after the batch outcome is known, once per batch, which
makes them the place to count backend round trips or export timings.

    counter = RoundTripCounter()
    loader = Loader.new(observers=[counter]).add_source("db", source)
    ...
    counter.total            # batches executed so far
    counter.count("db")      # batches for one source
"""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from batchloader.descriptor import BatchDescriptor


class FetchOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class FetchEvent:
    source_id: str
    descriptor: BatchDescriptor
    keys: int
    duration_ms: float
    outcome: FetchOutcome
    error: Exception | None = None


FetchObserver = Callable[[FetchEvent], None]


class RoundTripCounter:
    """Thread-safe observer counting batches per source and descriptor."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[tuple[str, BatchDescriptor]] = Counter()
        self.events: list[FetchEvent] = []

    def __call__(self, event: FetchEvent) -> None:
        with self._lock:
            self._counts[(event.source_id, event.descriptor)] += 1
            self.events.append(event)

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def count(self, source_id: str, descriptor: BatchDescriptor | None = None) -> int:
        with self._lock:
            if descriptor is not None:
                return self._counts[(source_id, descriptor)]
            return sum(n for (sid, _), n in self._counts.items() if sid == source_id)

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self.events.clear()


__all__ = ["FetchOutcome", "FetchEvent", "FetchObserver", "RoundTripCounter"]
