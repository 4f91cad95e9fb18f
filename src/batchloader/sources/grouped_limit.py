"""
Grouped-limit query strategy: "top N rows per key" in one round trip.

Batching breaks as soon as per-key pagination enters the picture.  Two users
loaded with ``limit=1, order_by="id"`` cannot share ``ORDER BY id LIMIT 1``:
that limit applies to the whole batch and one of the users gets nothing.
The limit has to apply per grouping value.

Manifesto:
    - **One statement per batch:** the number of keys never changes the
      number of round trips
    - **Per-group ranking:** ``row_number() OVER (PARTITION BY group ORDER BY
      ...)`` filtered to ``rank <= limit``
    - **Deterministic order:** the target's primary key is appended as a
      tie-break, so equal sort values never reorder between runs
    - **No missing entries:** every requested grouping value gets a list,
      empty when nothing matched

Architecture:
    ::

        base select (query hook)           SELECT posts.* FROM posts
              │                             WHERE deleted_at IS NULL
              ▼
        + secondary join (m2m / through)   JOIN likes ON posts.id = likes.post_id
        + filters                          AND ...
        + group IN (values)                AND likes.user_id IN (3, 4)
        + row_number() over partition      row_number() OVER (PARTITION BY
              │                              likes.user_id ORDER BY title DESC, id)
              ▼
        subquery "ranked" ──▶ SELECT ranked.*, _batch_group
                              WHERE _batch_rank <= :limit
                              ORDER BY _batch_group, _batch_rank
              │
              ▼
        partition_rows ──▶ {3: [post1], 4: [post4]}

    Without a limit the ranking step is skipped: a plain filtered, ordered
    select across all requested values.

Examples:
    >>> relation = GroupedRelation(Post, Post.user_id, select(Post), group_attribute="user_id")
    >>> stmt = build_grouped_query(relation, QueryOptions.build(limit=1, order_by="id"), [1, 2])
    >>> rows = session.execute(stmt).all()
    >>> partition_rows(rows, [1, 2])
    {1: [<Post 1>], 2: [<Post 3>]}

Guardrails:
    ❌ DON'T: Put ``.limit()`` on the base select returned by a query hook
    ✅ DO: Pass ``limit=`` in the descriptor options so it applies per group
    ✅ DO: Expect InvalidQueryError before any I/O when a hook adds a limit or offset

    ❌ DON'T: Order by columns that are not on the target entity
    ✅ DO: Expect InvalidQueryError before any I/O when you do

Performance:
    - One statement, one round trip per batch
    - Window functions need SQLite >= 3.25, PostgreSQL, MySQL 8, Oracle

Tags:
    batching, window-function, row-number, top-n-per-group, sqlalchemy,
    batchloader

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, func, inspect as sa_inspect, select
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.expression import FromClause

from batchloader.core.errors import InvalidQueryError
from batchloader.descriptor import Direction, OrderBy, QueryOptions

GROUP_LABEL = "_batch_group"
RANK_LABEL = "_batch_rank"


@dataclass(frozen=True)
class GroupedRelation:
    """Where the rows come from and how they map back to keys.

    Attributes:
        entity: Mapped class of the returned rows.
        group_column: Column whose value identifies the owning key.  Either a
            column of ``entity`` or of ``secondary``.
        base: Select of ``entity`` from the source's query hook.
        secondary: Intermediate table for many-to-many and through
            relationships, joined with ``onclause``.
        group_attribute: Attribute key of ``group_column`` on ``entity`` when
            the column belongs to the target.
    """

    entity: type
    group_column: ColumnElement[Any]
    base: Select[Any]
    secondary: FromClause | None = None
    onclause: ColumnElement[bool] | None = None
    group_attribute: str | None = None


QueryBuilder = Callable[[GroupedRelation, QueryOptions, Sequence[Hashable]], Select[Any]]


def resolve_column(entity: type, name: str) -> Any:
    """Return the mapped attribute ``entity.<name>``, or raise InvalidQueryError."""
    mapper = sa_inspect(entity)
    if name not in mapper.column_attrs:
        raise InvalidQueryError(f"{entity.__name__} has no column {name!r}")
    return getattr(entity, name)


def order_clauses(entity: type, order_by: Iterable[OrderBy]) -> list[Any]:
    """ORDER BY clauses for ``order_by`` plus a primary-key tie-break."""
    clauses = []
    seen = set()
    for item in order_by:
        column = resolve_column(entity, item.column)
        clauses.append(column.desc() if item.direction is Direction.DESC else column.asc())
        seen.add(item.column)

    mapper = sa_inspect(entity)
    for pk in mapper.primary_key:
        attr = mapper.get_property_by_column(pk).key
        if attr not in seen:
            clauses.append(getattr(entity, attr).asc())
    return clauses


def _apply_filters(stmt: Select[Any], entity: type, options: QueryOptions) -> Select[Any]:
    for name, value in options.filters:
        column = resolve_column(entity, name)
        if value is None:
            stmt = stmt.where(column.is_(None))
        elif isinstance(value, tuple):
            stmt = stmt.where(column.in_(value))
        else:
            stmt = stmt.where(column == value)
    return stmt


def build_grouped_query(
    relation: GroupedRelation,
    options: QueryOptions,
    values: Sequence[Hashable],
) -> Select[Any]:
    """Build the single statement for one batch.

    Rows of the returned select are ``(entity, group_value)``.

    Raises:
        InvalidQueryError: an order-by or filter column is not on the entity,
            or the base select already carries a LIMIT or OFFSET.
    """
    entity = relation.entity
    if relation.base._limit_clause is not None or relation.base._offset_clause is not None:
        # a limit on the base select would apply to the whole batch
        raise InvalidQueryError(
            f"query hook for {entity.__name__} applied a limit or offset; "
            "pass limit= in the descriptor options instead"
        )
    ordering = order_clauses(entity, options.order_by)

    stmt = relation.base
    if relation.secondary is not None:
        stmt = stmt.join(relation.secondary, relation.onclause)
    stmt = _apply_filters(stmt, entity, options)
    stmt = stmt.where(relation.group_column.in_(list(values)))

    if options.limit is None:
        if relation.group_attribute is not None:
            return stmt.add_columns(relation.group_column).order_by(*ordering)
        return stmt.add_columns(relation.group_column.label(GROUP_LABEL)).order_by(*ordering)

    rank = func.row_number().over(
        partition_by=relation.group_column,
        order_by=ordering,
    ).label(RANK_LABEL)

    if relation.group_attribute is not None:
        ranked = stmt.add_columns(rank).subquery("ranked")
        target = aliased(entity, ranked)
        group = getattr(target, relation.group_attribute)
    else:
        ranked = stmt.add_columns(relation.group_column.label(GROUP_LABEL), rank).subquery("ranked")
        target = aliased(entity, ranked)
        group = ranked.c[GROUP_LABEL]

    return (
        select(target, group)
        .where(ranked.c[RANK_LABEL] <= options.limit)
        .order_by(group, ranked.c[RANK_LABEL])
    )


def partition_rows(
    rows: Iterable[Sequence[Any]],
    values: Iterable[Hashable],
) -> dict[Hashable, list[Any]]:
    """Split ``(entity, group_value)`` rows into one ordered list per value.

    Every value in ``values`` gets an entry; rows whose group value was not
    requested are dropped.
    """
    grouped: dict[Hashable, list[Any]] = {value: [] for value in values}
    for row in rows:
        entity, group = row[0], row[1]
        bucket = grouped.get(group)
        if bucket is not None:
            bucket.append(entity)
    return grouped


__all__ = [
    "GROUP_LABEL",
    "RANK_LABEL",
    "GroupedRelation",
    "QueryBuilder",
    "resolve_column",
    "order_clauses",
    "build_grouped_query",
    "partition_rows",
]
