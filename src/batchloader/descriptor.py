"""Batch descriptors: the identity of a fetch strategy.

A ``BatchDescriptor`` says *how* to fetch (which association or entity,
with which limit/order/filter options).  Requests with equal descriptors are
merged into one backend round trip; requests with different descriptors are
never merged, even when they hit the same table, because their options
would give different answers.

Descriptors are a tagged variant rather than a loosely shaped tuple::

    association("posts", limit=1, order_by="title")    # relationship on the item
    many(Post, order_by=["-id"])                        # entity rows grouped by a column
    one(User)                                           # entity row by primary key
    key("users_by_email", region="eu")                  # key/value batch

All values are frozen and hashable, so descriptors can key dictionaries.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from batchloader.core.errors import InvalidQueryError


class DescriptorKind(str, Enum):
    ASSOCIATION = "association"
    ENTITY = "entity"
    KEY = "key"


class Cardinality(str, Enum):
    """ONE collapses a group to a single entity or None; MANY keeps the list."""

    ONE = "one"
    MANY = "many"


class Direction(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class OrderBy:
    column: str
    direction: Direction = Direction.ASC

    def __str__(self) -> str:
        prefix = "-" if self.direction is Direction.DESC else ""
        return f"{prefix}{self.column}"


def asc(column: str) -> OrderBy:
    return OrderBy(column, Direction.ASC)


def desc(column: str) -> OrderBy:
    return OrderBy(column, Direction.DESC)


def _coerce_order_by(value: Any) -> OrderBy:
    if isinstance(value, OrderBy):
        return value
    if isinstance(value, str):
        if value.startswith("-"):
            return desc(value[1:])
        return asc(value)
    if isinstance(value, tuple) and len(value) == 2:
        direction, column = value
        try:
            return OrderBy(str(column), Direction(str(direction).lower()))
        except ValueError:
            pass
    raise InvalidQueryError(f"Unsupported order_by entry: {value!r}")


def _freeze(mapping: Mapping[str, Any] | None, what: str) -> tuple[tuple[str, Any], ...]:
    if not mapping:
        return ()
    frozen = []
    for name, value in sorted(mapping.items()):
        if isinstance(value, list):
            value = tuple(value)
        if not isinstance(value, Hashable):
            raise InvalidQueryError(f"{what} value for {name!r} must be hashable: {value!r}")
        frozen.append((name, value))
    return tuple(frozen)


@dataclass(frozen=True)
class QueryOptions:
    """Limit, ordering, equality filters and free-form params of a descriptor.

    ``params`` are not interpreted by the loader; they are handed to the
    source's query hook (e.g. a soft-delete switch).
    """

    limit: int | None = None
    order_by: tuple[OrderBy, ...] = ()
    filters: tuple[tuple[str, Any], ...] = ()
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def build(
        cls,
        *,
        limit: int | None = None,
        order_by: str | OrderBy | Iterable[Any] | None = None,
        filters: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> QueryOptions:
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int):
                raise InvalidQueryError(f"limit must be an integer, got {limit!r}")
            if limit < 0:
                raise InvalidQueryError(f"limit must not be negative, got {limit}")

        if order_by is None:
            ordering: tuple[OrderBy, ...] = ()
        elif isinstance(order_by, (str, OrderBy)):
            ordering = (_coerce_order_by(order_by),)
        elif isinstance(order_by, tuple) and len(order_by) == 2 and isinstance(order_by[1], str) \
                and str(order_by[0]).lower() in {"asc", "desc"}:
            ordering = (_coerce_order_by(order_by),)
        else:
            ordering = tuple(_coerce_order_by(item) for item in order_by)

        return cls(
            limit=limit,
            order_by=ordering,
            filters=_freeze(filters, "filter"),
            params=_freeze(params, "param"),
        )

    @property
    def filter_map(self) -> dict[str, Any]:
        return dict(self.filters)

    @property
    def param_map(self) -> dict[str, Any]:
        return dict(self.params)

    def describe(self) -> str:
        parts = []
        if self.limit is not None:
            parts.append(f"limit={self.limit}")
        if self.order_by:
            parts.append("order_by=" + ",".join(str(o) for o in self.order_by))
        for name, value in self.filters:
            parts.append(f"{name}={value!r}")
        for name, value in self.params:
            parts.append(f"{name}={value!r}")
        return ", ".join(parts)


@dataclass(frozen=True)
class ColumnKey:
    """Item key naming the grouping column explicitly (``by(user_id=1)``)."""

    column: str
    value: Any


def by(**column: Any) -> ColumnKey:
    if len(column) != 1:
        raise InvalidQueryError(
            f"by() takes exactly one column, got {sorted(column)}; composite keys are not supported"
        )
    (name, value), = column.items()
    return ColumnKey(name, value)


@dataclass(frozen=True)
class BatchDescriptor:
    kind: DescriptorKind
    target: Any
    cardinality: Cardinality | None = None
    options: QueryOptions = QueryOptions()

    def __repr__(self) -> str:
        if isinstance(self.target, type):
            target = self.target.__name__
        else:
            target = repr(self.target)
        if self.kind is DescriptorKind.ENTITY and self.cardinality is not None:
            head = f"{self.cardinality.value}({target}"
        else:
            head = f"{self.kind.value}({target}"
        options = self.options.describe()
        return f"{head}, {options})" if options else f"{head})"


def association(name: str, **options: Any) -> BatchDescriptor:
    """Descriptor for the relationship ``name`` of the loaded items."""
    return BatchDescriptor(DescriptorKind.ASSOCIATION, name, None, QueryOptions.build(**options))


def many(entity: type, **options: Any) -> BatchDescriptor:
    """Descriptor for all ``entity`` rows grouped by the key's column."""
    return BatchDescriptor(DescriptorKind.ENTITY, entity, Cardinality.MANY, QueryOptions.build(**options))


def one(entity: type, **options: Any) -> BatchDescriptor:
    """Descriptor for at most one ``entity`` row per key."""
    return BatchDescriptor(DescriptorKind.ENTITY, entity, Cardinality.ONE, QueryOptions.build(**options))


def key(name: Hashable, **params: Any) -> BatchDescriptor:
    """Descriptor for a key/value source batch."""
    return BatchDescriptor(DescriptorKind.KEY, name, None, QueryOptions.build(params=params))


__all__ = [
    "DescriptorKind",
    "Cardinality",
    "Direction",
    "OrderBy",
    "QueryOptions",
    "ColumnKey",
    "BatchDescriptor",
    "asc",
    "desc",
    "by",
    "association",
    "many",
    "one",
    "key",
]
