"""Request ledger: pending keys and cached outcomes of one source.

``SourceState`` is an immutable value.  Every change returns a new state and
leaves the receiver untouched, so a loader value handed to another holder can
never change under it.

    pending   {descriptor: {item_key: item}}       not fetched yet
    results   {descriptor: {item_key: Ok | Err}}   fetched (or failed)

A key is either pending, cached, or unknown.  A key whose cached outcome is
an ``Err`` may be queued again; the next ``run`` replaces the error.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from batchloader.core.errors import NotLoadedError
from batchloader.core.result import Ok, Result
from batchloader.descriptor import BatchDescriptor


@dataclass(frozen=True)
class SourceState:
    pending: Mapping[BatchDescriptor, Mapping[Hashable, Any]] = field(default_factory=dict)
    results: Mapping[BatchDescriptor, Mapping[Hashable, Result[Any]]] = field(default_factory=dict)

    def is_pending(self, descriptor: BatchDescriptor, key: Hashable) -> bool:
        return key in self.pending.get(descriptor, {})

    def cached(self, descriptor: BatchDescriptor, key: Hashable) -> Result[Any] | None:
        return self.results.get(descriptor, {}).get(key)

    def has_pending(self) -> bool:
        return any(self.pending.values())

    def batches(self) -> Iterator[tuple[BatchDescriptor, Mapping[Hashable, Any]]]:
        """Yield ``(descriptor, {key: item})`` for every non-empty pending set."""
        for descriptor, items in self.pending.items():
            if items:
                yield descriptor, items

    def with_pending(self, descriptor: BatchDescriptor, key: Hashable, item: Any) -> SourceState:
        """Queue ``key`` unless it is already pending or successfully cached."""
        if self.is_pending(descriptor, key):
            return self
        if isinstance(self.cached(descriptor, key), Ok):
            return self

        pending = dict(self.pending)
        pending[descriptor] = {**pending.get(descriptor, {}), key: item}
        return replace(self, pending=pending)

    def commit(self, descriptor: BatchDescriptor, outcomes: Mapping[Hashable, Result[Any]]) -> SourceState:
        """Store the outcomes of one batch and clear its pending set."""
        results = dict(self.results)
        results[descriptor] = {**results.get(descriptor, {}), **outcomes}

        pending = dict(self.pending)
        remaining = {k: v for k, v in pending.get(descriptor, {}).items() if k not in outcomes}
        if remaining:
            pending[descriptor] = remaining
        else:
            pending.pop(descriptor, None)
        return replace(self, pending=pending, results=results)

    def outcome(self, descriptor: BatchDescriptor, key: Hashable) -> Result[Any]:
        """Cached outcome for ``key``.

        Raises:
            NotLoadedError: the key is still pending or was never loaded.
        """
        if self.is_pending(descriptor, key):
            raise NotLoadedError(
                f"{key!r} is pending for {descriptor!r}; call run() before get()"
            ).with_context(descriptor=repr(descriptor), item_key=repr(key))
        result = self.cached(descriptor, key)
        if result is None:
            raise NotLoadedError(
                f"{key!r} was never loaded for {descriptor!r}"
            ).with_context(descriptor=repr(descriptor), item_key=repr(key))
        return result


__all__ = ["SourceState"]
