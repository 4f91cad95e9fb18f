"""Source contract.

A source is a stateless fetch strategy registered on a loader under a source
id.  The loader owns the per-source ledger (pending keys and cached results);
the source only knows how to turn a set of items sharing one
``BatchDescriptor`` into a ``{key: value}`` mapping in one backend round
trip.

    ┌──────────────┐  item_key()   ┌──────────────┐   fetch()   ┌──────────┐
    │ Loader.load  │ ────────────▶ │  SourceState │ ──────────▶ │  Source  │
    └──────────────┘               │   (ledger)   │ ◀────────── │          │
    ┌──────────────┐   present()   │              │  {key: val} └──────────┘
    │ Loader.get   │ ◀──────────── │              │
    └──────────────┘               └──────────────┘
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Hashable, Mapping
from typing import Any

from batchloader.core.errors import InvalidQueryError
from batchloader.descriptor import BatchDescriptor


class Source(ABC):
    """Base class for batch fetch strategies.

    Subclasses implement ``fetch``; the other hooks have defaults suitable
    for sources whose items are plain hashable keys.

    Attributes:
        timeout: Per-source override of ``LoaderSettings.timeout_seconds``
            (``None`` uses the loader setting).
    """

    timeout: float | None = None

    def item_key(self, descriptor: BatchDescriptor, item: Any) -> Hashable:
        """Normalize an item to the hashable key used for dedup and caching."""
        try:
            hash(item)
        except TypeError:
            raise InvalidQueryError(
                f"{type(self).__name__} needs hashable items, got {type(item).__name__}"
            ) from None
        return item

    @abstractmethod
    def fetch(self, descriptor: BatchDescriptor, items: Mapping[Hashable, Any]) -> Mapping[Hashable, Any]:
        """Fetch every item of one batch in a single round trip.

        Args:
            descriptor: Shared descriptor of the batch.
            items: ``{item_key: item}`` for every pending item.

        Returns:
            ``{item_key: value}``.  Keys left out are cached as ``missing()``.

        Raises:
            InvalidQueryError: descriptor options are unusable; nothing ran.
            Exception: any backend failure; the scheduler wraps it as
                ``FetchFailedError``.
        """

    def missing(self, descriptor: BatchDescriptor) -> Any:
        """Value cached for a key the fetch mapping did not mention."""
        return None

    def present(self, descriptor: BatchDescriptor, key: Hashable, value: Any) -> Any:
        """Shape a cached value for ``Loader.get`` (cardinality transform)."""
        return value

    def describe(self) -> str:
        return type(self).__name__
