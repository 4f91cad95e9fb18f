"""Tests for batchloader.scheduler.BatchScheduler."""

from __future__ import annotations

import threading
import time

import structlog

from batchloader import FetchFailedError, FetchTimeoutError, InvalidQueryError, KVSource, key
from batchloader.core.logging import bind_context, clear_context
from batchloader.core.result import Err, Ok
from batchloader.observability import FetchOutcome, RoundTripCounter
from batchloader.scheduler import Batch, BatchScheduler
from batchloader.sources.base import Source


def batch(source, descriptor, keys, source_id="kv"):
    return Batch(source_id, source, descriptor, {k: k for k in keys})


def doubled(descriptor, keys):
    return {k: k * 2 for k in keys}


class TestExecute:
    def test_empty(self):
        assert BatchScheduler(2, 1.0).execute([]) == []

    def test_success(self):
        outcomes = BatchScheduler(2, 5.0).execute([batch(KVSource(doubled), key("x"), [1, 2])])
        assert len(outcomes) == 1
        assert outcomes[0].succeeded
        assert outcomes[0].results == {1: Ok(2), 2: Ok(4)}

    def test_missing_keys_get_source_default(self):
        source = KVSource(lambda d, keys: {1: "one"})
        (outcome,) = BatchScheduler(1, 5.0).execute([batch(source, key("x"), [1, 2])])
        assert outcome.results == {1: Ok("one"), 2: Ok(None)}

    def test_failure_is_isolated_to_its_batch(self):
        def explode(descriptor, keys):
            raise ConnectionError("db down")

        outcomes = BatchScheduler(4, 5.0).execute(
            [
                batch(KVSource(explode), key("bad"), [1, 2]),
                batch(KVSource(doubled), key("good"), [1, 2]),
            ]
        )
        by_name = {o.batch.descriptor.target: o for o in outcomes}

        good = by_name["good"]
        assert good.results == {1: Ok(2), 2: Ok(4)}

        bad = by_name["bad"]
        assert bad.outcome is FetchOutcome.FAILED
        assert set(bad.results) == {1, 2}
        error = bad.results[1].error
        assert isinstance(error, FetchFailedError)
        assert isinstance(error.cause, ConnectionError)
        assert error.context.source_id == "kv"
        assert error.context.batch_size == 2

    def test_loader_errors_are_kept(self):
        def invalid(descriptor, keys):
            raise InvalidQueryError("bad option")

        (outcome,) = BatchScheduler(1, 5.0).execute([batch(KVSource(invalid), key("x"), [1])])
        assert isinstance(outcome.results[1], Err)
        assert type(outcome.results[1].error) is InvalidQueryError


    def test_non_mapping_result_fails_only_its_batch(self):
        class NoMapping(Source):
            def fetch(self, descriptor, items):
                return None

        outcomes = BatchScheduler(2, 5.0).execute(
            [
                batch(NoMapping(), key("bad"), [1]),
                batch(KVSource(doubled), key("good"), [1]),
            ]
        )
        by_name = {o.batch.descriptor.target: o for o in outcomes}

        assert by_name["good"].results == {1: Ok(2)}
        assert by_name["bad"].outcome is FetchOutcome.FAILED
        error = by_name["bad"].results[1].error
        assert isinstance(error, FetchFailedError)
        assert "expected a mapping" in str(error)

    def test_failing_missing_hook_fails_only_its_batch(self):
        class BrokenDefault(KVSource):
            def missing(self, descriptor):
                raise RuntimeError("no default")

        outcomes = BatchScheduler(2, 5.0).execute(
            [
                batch(BrokenDefault(lambda d, keys: {}), key("bad"), [1]),
                batch(KVSource(doubled), key("good"), [1]),
            ]
        )
        by_name = {o.batch.descriptor.target: o for o in outcomes}

        assert by_name["good"].succeeded
        assert isinstance(by_name["bad"].results[1].error, FetchFailedError)
        assert isinstance(by_name["bad"].results[1].error.cause, RuntimeError)

    def test_source_error_instance_is_not_mutated(self):
        shared = InvalidQueryError("bad option")

        def invalid(descriptor, keys):
            raise shared

        (outcome,) = BatchScheduler(1, 5.0).execute([batch(KVSource(invalid), key("x"), [1])])

        assert outcome.results[1].error is not shared
        assert outcome.results[1].error.context.source_id == "kv"
        assert shared.context.source_id is None


class TestTimeouts:
    def test_slow_batch_times_out_and_fast_batch_commits(self):
        release = threading.Event()

        def slow(descriptor, keys):
            release.wait(5)
            return doubled(descriptor, keys)

        try:
            started = time.monotonic()
            outcomes = BatchScheduler(2, 0.2).execute(
                [
                    batch(KVSource(slow), key("slow"), [1]),
                    batch(KVSource(doubled), key("fast"), [1]),
                ]
            )
            elapsed = time.monotonic() - started
        finally:
            release.set()

        by_name = {o.batch.descriptor.target: o for o in outcomes}
        assert elapsed < 2
        assert by_name["fast"].results == {1: Ok(2)}
        assert by_name["slow"].outcome is FetchOutcome.TIMED_OUT
        error = by_name["slow"].results[1].error
        assert isinstance(error, FetchTimeoutError)
        assert error.timeout == 0.2

    def test_source_timeout_overrides_run_timeout(self):
        release = threading.Event()

        def slow(descriptor, keys):
            release.wait(5)
            return {}

        try:
            outcomes = BatchScheduler(1, 30.0).execute(
                [batch(KVSource(slow, timeout=0.1), key("slow"), [1])]
            )
        finally:
            release.set()

        assert outcomes[0].outcome is FetchOutcome.TIMED_OUT


class TestConcurrency:
    def test_batches_run_in_parallel(self):
        barrier = threading.Barrier(3, timeout=5)

        def rendezvous(descriptor, keys):
            barrier.wait()
            return {k: True for k in keys}

        source = KVSource(rendezvous)
        outcomes = BatchScheduler(3, 10.0).execute(
            [batch(source, key(name), [1]) for name in ("a", "b", "c")]
        )
        assert all(o.succeeded for o in outcomes)

    def test_max_concurrency_bounds_workers(self):
        lock = threading.Lock()
        active = 0
        peak = 0

        def track(descriptor, keys):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1
            return {}

        source = KVSource(track)
        BatchScheduler(2, 10.0).execute([batch(source, key(i), [1]) for i in range(6)])
        assert peak <= 2

    def test_logging_context_reaches_workers(self):
        seen = {}

        def capture(descriptor, keys):
            seen.update(structlog.contextvars.get_contextvars())
            return {}

        bind_context(request_id="req-1")
        try:
            BatchScheduler(1, 5.0).execute([batch(KVSource(capture), key("x"), [1])])
        finally:
            clear_context()
        assert seen["request_id"] == "req-1"
        assert "run_id" in seen


class TestObservers:
    def test_one_event_per_batch(self):
        counter = RoundTripCounter()
        BatchScheduler(2, 5.0, observers=[counter]).execute(
            [
                batch(KVSource(doubled), key("a"), [1, 2, 3]),
                batch(KVSource(doubled), key("b"), [1], source_id="other"),
            ]
        )
        assert counter.total == 2
        assert counter.count("kv") == 1
        assert counter.count("other", key("b")) == 1
        event = next(e for e in counter.events if e.source_id == "kv")
        assert event.keys == 3
        assert event.outcome is FetchOutcome.SUCCEEDED
        assert event.duration_ms >= 0

    def test_failing_observer_does_not_break_the_run(self):
        def broken(event):
            raise RuntimeError("observer bug")

        counter = RoundTripCounter()
        outcomes = BatchScheduler(1, 5.0, observers=[broken, counter]).execute(
            [batch(KVSource(doubled), key("a"), [1])]
        )
        assert outcomes[0].succeeded
        assert counter.total == 1

    def test_failed_event_carries_error(self):
        def explode(descriptor, keys):
            raise ValueError("nope")

        counter = RoundTripCounter()
        BatchScheduler(1, 5.0, observers=[counter]).execute(
            [batch(KVSource(explode), key("a"), [1])]
        )
        (event,) = counter.events
        assert event.outcome is FetchOutcome.FAILED
        assert isinstance(event.error, FetchFailedError)

    def test_reset(self):
        counter = RoundTripCounter()
        BatchScheduler(1, 5.0, observers=[counter]).execute([batch(KVSource(doubled), key("a"), [1])])
        counter.reset()
        assert counter.total == 0
        assert counter.events == []
