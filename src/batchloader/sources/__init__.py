"""Batch fetch strategies.

Modules
-------
base            Source contract
kv              KVSource: a plain ``(descriptor, keys) -> {key: value}`` function
relational      RelationalSource: SQLAlchemy entities and relationships
grouped_limit   Window-function "top N per key" statement builder
"""

from batchloader.sources.base import Source
from batchloader.sources.grouped_limit import GroupedRelation, build_grouped_query, partition_rows
from batchloader.sources.kv import KVSource
from batchloader.sources.relational import RelationalSource, default_query

__all__ = [
    "Source",
    "KVSource",
    "RelationalSource",
    "default_query",
    "GroupedRelation",
    "build_grouped_query",
    "partition_rows",
]
