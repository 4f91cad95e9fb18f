"""
batchloader - request batching and caching for data backends.

Collects independent ``load`` requests, groups them by batch descriptor and
issues one backend round trip per group, including "top N per key" queries
that stay correct when many keys share one statement.

    from batchloader import Loader, RelationalSource, association

    loader = (
        Loader.new()
        .add_source("db", RelationalSource(session_factory))
        .load_many("db", association("posts", limit=1, order_by="title"), users)
        .run()
    )
    first_posts = loader.get_many("db", association("posts", limit=1, order_by="title"), users)
"""

from batchloader.core.errors import (
    FetchFailedError,
    FetchTimeoutError,
    InvalidQueryError,
    LoaderError,
    NotLoadedError,
    SourceNotFoundError,
)
from batchloader.core.result import Err, Ok
from batchloader.core.settings import GetPolicy, LoaderSettings
from batchloader.descriptor import (
    BatchDescriptor,
    Cardinality,
    ColumnKey,
    DescriptorKind,
    OrderBy,
    QueryOptions,
    asc,
    association,
    by,
    desc,
    key,
    many,
    one,
)
from batchloader.loader import Loader
from batchloader.observability import FetchEvent, FetchOutcome, RoundTripCounter
from batchloader.sources import KVSource, RelationalSource, Source

__version__ = "0.1.0"

new = Loader.new

__all__ = [
    "Loader",
    "new",
    "LoaderSettings",
    "GetPolicy",
    "Source",
    "KVSource",
    "RelationalSource",
    "BatchDescriptor",
    "DescriptorKind",
    "Cardinality",
    "QueryOptions",
    "OrderBy",
    "ColumnKey",
    "association",
    "many",
    "one",
    "key",
    "by",
    "asc",
    "desc",
    "FetchEvent",
    "FetchOutcome",
    "RoundTripCounter",
    "Ok",
    "Err",
    "LoaderError",
    "NotLoadedError",
    "SourceNotFoundError",
    "InvalidQueryError",
    "FetchFailedError",
    "FetchTimeoutError",
]
