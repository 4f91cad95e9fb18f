"""
Loader: the public face of the batch loader.

A ``Loader`` is an immutable value.  ``add_source``, ``load``, ``load_many``
and ``run`` each return a new loader; ``get`` and ``get_many`` read from the
cache.  Only ``run`` touches a backend.

Manifesto:
    - **Collect, then fetch:** ``load`` only records intent, ``run`` issues
      one round trip per (source, descriptor) pair
    - **Explicit state:** callers thread the returned loader along; there is
      no registry or global to reset between tests
    - **Programmer errors are loud:** ``get`` before ``run`` or an unknown
      source id always raises, whatever the get policy

Architecture:
    ::

        Loader.new(settings)
            .add_source("db", RelationalSource(sessions))
            .load("db", association("posts", limit=1), user1)     pure
            .load("db", association("posts", limit=1), user2)     pure
            .run()                                                I/O
            .get("db", association("posts", limit=1), user1)      read

        ┌──────────────────────────── Loader ─────────────────────────────┐
        │ settings   LoaderSettings                                       │
        │ sources    {source_id: Source}                                  │
        │ states     {source_id: SourceState(pending, results)}           │
        │ observers  (FetchObserver, ...)                                 │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> loader = Loader.new().add_source("kv", KVSource(lambda d, ks: {k: k * 2 for k in ks}))
    >>> loader = loader.load_many("kv", key("double"), [1, 2]).run()
    >>> loader.get_many("kv", key("double"), [1, 2])
    [2, 4]

Tags:
    dataloader, batching, caching, n-plus-one, immutable, batchloader

Doc-Types:
    - API Reference
    - Getting Started
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from batchloader.core.errors import LoaderError, SourceNotFoundError
from batchloader.core.logging import get_logger
from batchloader.core.result import Err, Ok
from batchloader.core.settings import GetPolicy, LoaderSettings
from batchloader.descriptor import BatchDescriptor
from batchloader.ledger import SourceState
from batchloader.observability import FetchObserver
from batchloader.scheduler import Batch, BatchScheduler
from batchloader.sources.base import Source

logger = get_logger(__name__)


@dataclass(frozen=True)
class Loader:
    settings: LoaderSettings = field(default_factory=LoaderSettings)
    sources: Mapping[str, Source] = field(default_factory=dict)
    states: Mapping[str, SourceState] = field(default_factory=dict)
    observers: tuple[FetchObserver, ...] = ()

    @classmethod
    def new(
        cls,
        settings: LoaderSettings | None = None,
        *,
        observers: Iterable[FetchObserver] = (),
    ) -> Loader:
        """Create an empty loader."""
        return cls(settings=settings or LoaderSettings(), observers=tuple(observers))

    def add_source(self, source_id: str, source: Source) -> Loader:
        """Register ``source`` under ``source_id``.

        Re-registering an id replaces the source and drops its cached state.
        """
        sources = {**self.sources, source_id: source}
        states = {**self.states, source_id: SourceState()}
        logger.debug("loader.source.added", source_id=source_id, source=source.describe())
        return replace(self, sources=sources, states=states)

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #

    def load(self, source_id: str, descriptor: BatchDescriptor, item: Any) -> Loader:
        """Queue ``item`` for ``descriptor``.  No I/O.

        Returns the same loader when the item is already pending or cached.
        """
        source, state = self._lookup(source_id)
        item_key = source.item_key(descriptor, item)
        updated = state.with_pending(descriptor, item_key, item)
        if updated is state:
            return self
        return replace(self, states={**self.states, source_id: updated})

    def load_many(self, source_id: str, descriptor: BatchDescriptor, items: Iterable[Any]) -> Loader:
        """Queue every item; equivalent to folding ``load``."""
        source, state = self._lookup(source_id)
        updated = state
        for item in items:
            updated = updated.with_pending(descriptor, source.item_key(descriptor, item), item)
        if updated is state:
            return self
        return replace(self, states={**self.states, source_id: updated})

    def pending_batches(self) -> bool:
        """True if any source has keys waiting for ``run``."""
        return any(state.has_pending() for state in self.states.values())

    # ------------------------------------------------------------------ #
    # Running
    # ------------------------------------------------------------------ #

    def run(self) -> Loader:
        """Fetch every pending batch and return the loader with results cached.

        With nothing pending this is a no-op returning the same loader.
        """
        batches = [
            Batch(source_id, self.sources[source_id], descriptor, items)
            for source_id, state in self.states.items()
            for descriptor, items in state.batches()
        ]
        if not batches:
            return self

        scheduler = BatchScheduler(
            max_concurrency=self.settings.max_concurrency,
            timeout_seconds=self.settings.timeout_seconds,
            observers=self.observers,
        )
        states = dict(self.states)
        for outcome in scheduler.execute(batches):
            batch = outcome.batch
            states[batch.source_id] = states[batch.source_id].commit(batch.descriptor, outcome.results)
        return replace(self, states=states)

    # ------------------------------------------------------------------ #
    # Reading
    # ------------------------------------------------------------------ #

    def get(self, source_id: str, descriptor: BatchDescriptor, item: Any) -> Any:
        """Read the cached result for ``item``.

        Raises:
            SourceNotFoundError: ``source_id`` is not registered.
            NotLoadedError: the item was never loaded, or ``run`` has not
                happened since it was.
            LoaderError: the item's batch failed and the get policy is
                ``raise_on_error``.
        """
        source, state = self._lookup(source_id)
        item_key = source.item_key(descriptor, item)
        result = state.outcome(descriptor, item_key)

        if isinstance(result, Ok):
            try:
                result = Ok(source.present(descriptor, item_key, result.value))
            except LoaderError as exc:
                result = Err(exc.with_context(source_id=source_id, item_key=repr(item_key)))

        policy = self.settings.get_policy
        if policy is GetPolicy.TUPLES:
            return result
        if isinstance(result, Ok):
            return result.value
        if policy is GetPolicy.RETURN_NONE_ON_ERROR:
            return None
        raise copy.copy(result.error)

    def get_many(self, source_id: str, descriptor: BatchDescriptor, items: Iterable[Any]) -> list[Any]:
        return [self.get(source_id, descriptor, item) for item in items]

    def _lookup(self, source_id: str) -> tuple[Source, SourceState]:
        try:
            return self.sources[source_id], self.states[source_id]
        except KeyError:
            raise SourceNotFoundError(source_id) from None


__all__ = ["Loader"]
