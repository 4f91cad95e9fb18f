"""
Batch scheduler: executes the pending batches of one ``run``.

One batch per (source, descriptor) pair.  Batches are independent, so they
run concurrently on a thread pool; all keys of one descriptor always travel
in the same batch.

Manifesto:
    - **One round trip per batch:** a descriptor's pending set is never split
    - **Failure isolation:** an exception becomes an ``Err`` for every key of
      its own batch; sibling batches commit normally
    - **Bounded:** ``max_concurrency`` worker threads, sized against the
      backend connection pool
    - **Bounded in time:** batches still running at the deadline fail with
      ``FetchTimeoutError``; finished batches are kept

Architecture:
    ::

        execute([Batch, Batch, Batch])
            │
            ├── ThreadPoolExecutor(max_workers=min(max_concurrency, n))
            │     submit(_fetch, batch)  (logging context copied per task)
            │
            ├── wait(FIRST_COMPLETED) until all done or deadline
            │     done      → BatchOutcome(Ok per key | Err per key)
            │     deadline  → BatchOutcome(Err(FetchTimeoutError) per key)
            │
            ├── observers(FetchEvent) per batch
            └── shutdown(wait=False, cancel_futures=True)

Guardrails:
    ❌ DON'T: Mutate loader state from a worker thread
    ✅ DO: Return outcomes; the loader commits them on the calling thread

Tags:
    scheduler, thread-pool, concurrency, timeout, failure-isolation,
    batchloader
"""

from __future__ import annotations

import contextvars
import copy
import time
import uuid
from collections.abc import Hashable, Iterable, Mapping, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from batchloader.core.errors import FetchFailedError, FetchTimeoutError, LoaderError
from batchloader.core.logging import LogContext, get_logger
from batchloader.core.result import Err, Ok, Result
from batchloader.descriptor import BatchDescriptor
from batchloader.observability import FetchEvent, FetchObserver, FetchOutcome
from batchloader.sources.base import Source

logger = get_logger(__name__)


@dataclass(frozen=True)
class Batch:
    source_id: str
    source: Source
    descriptor: BatchDescriptor
    items: Mapping[Hashable, Any]


@dataclass(frozen=True)
class BatchOutcome:
    batch: Batch
    results: Mapping[Hashable, Result[Any]]
    outcome: FetchOutcome
    duration_ms: float
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is FetchOutcome.SUCCEEDED


def _as_loader_error(exc: Exception, batch: Batch) -> LoaderError:
    if isinstance(exc, LoaderError):
        error = copy.copy(exc)
    else:
        error = FetchFailedError(
            f"{batch.source.describe()} failed for {batch.descriptor!r}: {exc}",
            cause=exc,
        )
    return error.with_context(
        source_id=batch.source_id,
        descriptor=repr(batch.descriptor),
        batch_size=len(batch.items),
    )


def _fetch(batch: Batch) -> BatchOutcome:
    started = time.perf_counter()
    try:
        values = batch.source.fetch(batch.descriptor, batch.items)
        if not isinstance(values, Mapping):
            raise FetchFailedError(
                f"{batch.source.describe()} returned {type(values).__name__}, expected a mapping"
            )
        missing = batch.source.missing(batch.descriptor)
        results: dict[Hashable, Result[Any]] = {
            key: Ok(values[key]) if key in values else Ok(missing)
            for key in batch.items
        }
    except Exception as exc:
        error = _as_loader_error(exc, batch)
        return BatchOutcome(
            batch=batch,
            results={key: Err(error) for key in batch.items},
            outcome=FetchOutcome.FAILED,
            duration_ms=(time.perf_counter() - started) * 1000,
            error=error,
        )

    return BatchOutcome(
        batch=batch,
        results=results,
        outcome=FetchOutcome.SUCCEEDED,
        duration_ms=(time.perf_counter() - started) * 1000,
    )


class BatchScheduler:
    """Run batches concurrently and collect one outcome per batch.

    Args:
        max_concurrency: Maximum worker threads.
        timeout_seconds: Deadline for a batch, measured from the start of
            the run.  ``Source.timeout`` overrides it per source.
        observers: Called with a ``FetchEvent`` for every batch.
    """

    def __init__(
        self,
        max_concurrency: int,
        timeout_seconds: float,
        observers: Iterable[FetchObserver] = (),
    ):
        self.max_concurrency = max_concurrency
        self.timeout_seconds = timeout_seconds
        self.observers = tuple(observers)

    def execute(self, batches: Sequence[Batch]) -> list[BatchOutcome]:
        if not batches:
            return []

        run_id = uuid.uuid4().hex[:12]
        with LogContext(run_id=run_id):
            logger.info("loader.run.started", batches=len(batches))
            outcomes = self._execute(batches)
            for outcome in outcomes:
                self._notify(outcome)

            failed = sum(1 for o in outcomes if not o.succeeded)
            logger.info(
                "loader.run.completed",
                batches=len(outcomes),
                succeeded=len(outcomes) - failed,
                failed=failed,
            )
        return outcomes

    def _timeout_for(self, batch: Batch) -> float:
        return batch.source.timeout if batch.source.timeout is not None else self.timeout_seconds

    def _execute(self, batches: Sequence[Batch]) -> list[BatchOutcome]:
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_concurrency, len(batches)),
            thread_name_prefix="batchloader",
        )
        start = time.monotonic()
        outcomes: list[BatchOutcome] = []
        try:
            futures: dict[Future[BatchOutcome], Batch] = {}
            for batch in batches:
                ctx = contextvars.copy_context()
                futures[executor.submit(ctx.run, _fetch, batch)] = batch
            deadlines = {f: start + self._timeout_for(b) for f, b in futures.items()}

            pending = set(futures)
            while pending:
                now = time.monotonic()
                expired = [f for f in pending if deadlines[f] <= now and not f.done()]
                for future in expired:
                    pending.discard(future)
                    future.cancel()
                    outcomes.append(self._timed_out(futures[future], now - start))
                if not pending:
                    break

                next_deadline = min(deadlines[f] for f in pending)
                done, _ = wait(
                    pending,
                    timeout=max(0.0, next_deadline - now),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    pending.discard(future)
                    outcomes.append(future.result())
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return outcomes

    def _timed_out(self, batch: Batch, elapsed: float) -> BatchOutcome:
        timeout = self._timeout_for(batch)
        error = _as_loader_error(FetchTimeoutError(timeout), batch)
        return BatchOutcome(
            batch=batch,
            results={key: Err(error) for key in batch.items},
            outcome=FetchOutcome.TIMED_OUT,
            duration_ms=elapsed * 1000,
            error=error,
        )

    def _notify(self, outcome: BatchOutcome) -> None:
        batch = outcome.batch
        fields = {
            "source_id": batch.source_id,
            "descriptor": repr(batch.descriptor),
            "keys": len(batch.items),
            "duration_ms": round(outcome.duration_ms, 3),
        }
        if outcome.outcome is FetchOutcome.SUCCEEDED:
            logger.debug("loader.batch.completed", **fields)
        elif outcome.outcome is FetchOutcome.TIMED_OUT:
            logger.warning("loader.batch.timeout", **fields)
        else:
            logger.warning("loader.batch.failed", **fields, **outcome.error.to_dict())

        event = FetchEvent(
            source_id=batch.source_id,
            descriptor=batch.descriptor,
            keys=len(batch.items),
            duration_ms=outcome.duration_ms,
            outcome=outcome.outcome,
            error=outcome.error,
        )
        for observer in self.observers:
            try:
                observer(event)
            except Exception:
                logger.exception("loader.observer.failed", observer=repr(observer))


__all__ = ["Batch", "BatchOutcome", "BatchScheduler"]
