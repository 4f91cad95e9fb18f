"""Key/value source backed by a plain batch function.

Use it for anything that is not a SQLAlchemy relation: an HTTP API that
accepts many ids, a cache, a computed lookup.

    def load_users(descriptor, ids):
        rows = api.get_users(ids=sorted(ids), **descriptor.options.param_map)
        return {row["id"]: row for row in rows}

    loader = Loader.new().add_source("users", KVSource(load_users))
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Mapping
from typing import Any

from batchloader.core.logging import get_logger
from batchloader.descriptor import BatchDescriptor
from batchloader.sources.base import Source

logger = get_logger(__name__)

BatchFunction = Callable[[BatchDescriptor, frozenset], Mapping[Hashable, Any]]


class KVSource(Source):
    """Source calling ``load(descriptor, items)`` once per batch.

    Items are their own keys.  Items absent from the returned mapping are
    cached as ``None``.
    """

    def __init__(self, load: BatchFunction, *, timeout: float | None = None):
        self._load = load
        self.timeout = timeout

    def fetch(self, descriptor: BatchDescriptor, items: Mapping[Hashable, Any]) -> Mapping[Hashable, Any]:
        keys = frozenset(items)
        results = self._load(descriptor, keys)
        unexpected = set(results) - keys
        if unexpected:
            logger.debug(
                "loader.kv.unexpected_keys",
                descriptor=repr(descriptor),
                count=len(unexpected),
            )
        return {k: results[k] for k in keys if k in results}

    def describe(self) -> str:
        name = getattr(self._load, "__qualname__", repr(self._load))
        return f"KVSource({name})"
