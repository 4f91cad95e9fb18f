"""Relational source: SQLAlchemy-backed batches.

Decodes descriptors against SQLAlchemy mapper metadata and runs one grouped
statement per batch (see ``grouped_limit``).

Supported descriptors
─────────────────────
association(name)   relationship ``name`` on the item's mapped class:
                    has-many, belongs-to, many-to-many and through
                    (``secondary``) relationships with single-column joins
many(Entity)        rows grouped by the column named in ``by(col=value)``
one(Entity)         at most one row per key; scalar keys are primary keys

Example::

    source = RelationalSource(loader_session_factory(engine), query=not_deleted)
    loader = (
        Loader.new()
        .add_source("db", source)
        .load_many("db", association("posts", limit=3, order_by="-id"), users)
        .run()
    )
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Hashable, Mapping, Sequence
from contextlib import AbstractContextManager
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable, SQLAlchemyError
from sqlalchemy.orm import Mapper, RelationshipProperty, Session

from batchloader.core.errors import FetchFailedError, InvalidQueryError
from batchloader.core.logging import get_logger
from batchloader.descriptor import BatchDescriptor, Cardinality, ColumnKey, DescriptorKind, QueryOptions
from batchloader.sources.base import Source
from batchloader.sources.grouped_limit import (
    GroupedRelation,
    QueryBuilder,
    build_grouped_query,
    partition_rows,
    resolve_column,
)

logger = get_logger(__name__)

QueryHook = Callable[[type, QueryOptions], Select[Any]]
SessionFactory = Callable[[], AbstractContextManager[Session]]


def default_query(entity: type, options: QueryOptions) -> Select[Any]:
    return select(entity)


def _mapper_of(item: Any) -> Mapper[Any]:
    try:
        return sa_inspect(item).mapper
    except NoInspectionAvailable:
        raise InvalidQueryError(
            f"association descriptors need mapped instances, got {type(item).__name__}"
        ) from None


def _relationship(mapper: Mapper[Any], name: str) -> RelationshipProperty[Any]:
    prop = mapper.relationships.get(name)
    if prop is None:
        raise InvalidQueryError(f"{mapper.class_.__name__} has no relationship {name!r}")
    return prop


def _single_pair(pairs: list[tuple[Any, Any]], prop: RelationshipProperty[Any]) -> tuple[Any, Any]:
    if len(pairs) != 1:
        raise InvalidQueryError(
            f"relationship {prop} joins on {len(pairs)} columns; only single-column joins are supported"
        )
    return pairs[0]


def _collapse(rows: Sequence[Any], descriptor: BatchDescriptor) -> Any:
    if len(rows) > 1:
        raise InvalidQueryError(f"expected at most one result for {descriptor!r}, got {len(rows)}")
    return rows[0] if rows else None


class RelationalSource(Source):
    """Source fetching ORM entities through a SQLAlchemy session.

    Args:
        session_factory: Callable returning a context-managed ``Session``
            (usually a ``sessionmaker``).  One session per batch, closed when
            the batch ends whatever its outcome.
        query: Hook ``(entity, options) -> Select`` producing the base select
            for an entity, e.g. to exclude soft-deleted rows.  Must not apply
            limits; those come from the descriptor.
        build_query: Statement builder ``(relation, options, values) -> Select``.
            Defaults to the window-function grouped-limit builder.
        timeout: Per-source run timeout override in seconds.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        query: QueryHook = default_query,
        build_query: QueryBuilder = build_grouped_query,
        timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._query = query
        self._build_query = build_query
        self.timeout = timeout

    # ------------------------------------------------------------------ #
    # Source hooks
    # ------------------------------------------------------------------ #

    def item_key(self, descriptor: BatchDescriptor, item: Any) -> Hashable:
        if descriptor.kind is DescriptorKind.ASSOCIATION:
            mapper = _mapper_of(item)
            identity = tuple(mapper.primary_key_from_instance(item))
            if any(value is None for value in identity):
                raise InvalidQueryError(
                    f"{mapper.class_.__name__} instance has no primary key; flush it before loading"
                )
            return (mapper.class_, identity)
        if descriptor.kind is DescriptorKind.ENTITY:
            return super().item_key(descriptor, item)
        raise InvalidQueryError(f"RelationalSource cannot serve {descriptor.kind.value} descriptors")

    def fetch(self, descriptor: BatchDescriptor, items: Mapping[Hashable, Any]) -> Mapping[Hashable, Any]:
        # statements are all built before the session is opened so an invalid
        # option fails the batch without any I/O
        plans = self._plan(descriptor, items)
        statements = [
            (self._build_query(relation, descriptor.options, list(dict.fromkeys(groups.values()))), groups)
            for relation, groups in plans
        ]

        results: dict[Hashable, Any] = {}
        try:
            with self._session_factory() as session:
                for stmt, groups in statements:
                    rows = session.execute(stmt).all()
                    grouped = partition_rows(rows, groups.values())
                    for item_key, value in groups.items():
                        results[item_key] = tuple(grouped[value])
        except SQLAlchemyError as exc:
            raise FetchFailedError(
                f"{descriptor!r} failed: {exc.__class__.__name__}", cause=exc
            ) from exc

        logger.debug(
            "loader.relational.fetched",
            descriptor=repr(descriptor),
            statements=len(statements),
            keys=len(items),
        )
        return results

    def missing(self, descriptor: BatchDescriptor) -> Any:
        return ()

    def present(self, descriptor: BatchDescriptor, key: Hashable, value: Any) -> Any:
        # rows are cached as tuples; every get hands out its own list
        if self.cardinality(descriptor, key) is Cardinality.ONE:
            return _collapse(value, descriptor)
        return list(value)

    def describe(self) -> str:
        return f"RelationalSource({self._session_factory!r})"

    # ------------------------------------------------------------------ #
    # Descriptor decoding
    # ------------------------------------------------------------------ #

    def cardinality(self, descriptor: BatchDescriptor, key: Hashable) -> Cardinality:
        if descriptor.kind is DescriptorKind.ASSOCIATION:
            parent, _ = key
            prop = _relationship(sa_inspect(parent), descriptor.target)
            return Cardinality.MANY if prop.uselist else Cardinality.ONE
        return descriptor.cardinality or Cardinality.MANY

    def _plan(
        self, descriptor: BatchDescriptor, items: Mapping[Hashable, Any]
    ) -> list[tuple[GroupedRelation, dict[Hashable, Any]]]:
        """Split a batch into ``(relation, {item_key: group_value})`` pairs.

        Usually one pair.  Items of different mapped classes (associations)
        or keys naming different columns (entities) need one statement each.
        """
        if descriptor.kind is DescriptorKind.ASSOCIATION:
            return self._plan_association(descriptor, items)
        if descriptor.kind is DescriptorKind.ENTITY:
            return self._plan_entity(descriptor, items)
        raise InvalidQueryError(f"RelationalSource cannot serve {descriptor.kind.value} descriptors")

    def _plan_association(self, descriptor, items):
        by_class: dict[type, dict[Hashable, Any]] = defaultdict(dict)
        for item_key, item in items.items():
            by_class[item_key[0]][item_key] = item

        plans = []
        for parent, members in by_class.items():
            parent_mapper = sa_inspect(parent)
            prop = _relationship(parent_mapper, descriptor.target)
            entity = prop.mapper.class_
            base = self._query(entity, descriptor.options)

            if prop.secondary is None:
                local, remote = _single_pair(list(prop.local_remote_pairs), prop)
                remote_attr = prop.mapper.get_property_by_column(remote).key
                relation = GroupedRelation(
                    entity, getattr(entity, remote_attr), base, group_attribute=remote_attr
                )
            else:
                local, secondary_column = _single_pair(self._secondary_pairs(prop, parent_mapper), prop)
                relation = GroupedRelation(
                    entity,
                    secondary_column,
                    base,
                    secondary=prop.secondary,
                    onclause=prop.secondaryjoin,
                )

            local_attr = parent_mapper.get_property_by_column(local).key
            groups = {k: getattr(item, local_attr) for k, item in members.items()}
            plans.append((relation, groups))
        return plans

    @staticmethod
    def _secondary_pairs(prop, parent_mapper) -> list[tuple[Any, Any]]:
        pairs = list(prop.synchronize_pairs)
        if pairs:
            return pairs
        return [
            (local, remote)
            for local, remote in prop.local_remote_pairs
            if parent_mapper.local_table.c.contains_column(local)
            and prop.secondary.c.contains_column(remote)
        ]

    def _plan_entity(self, descriptor, items):
        entity = descriptor.target
        mapper = sa_inspect(entity)
        by_column: dict[str, dict[Hashable, Any]] = defaultdict(dict)
        for item_key, item in items.items():
            if isinstance(item, ColumnKey):
                resolve_column(entity, item.column)
                by_column[item.column][item_key] = item.value
            else:
                if len(mapper.primary_key) != 1:
                    raise InvalidQueryError(
                        f"{entity.__name__} has a composite primary key; load it with by(column=value)"
                    )
                pk_attr = mapper.get_property_by_column(mapper.primary_key[0]).key
                by_column[pk_attr][item_key] = item

        if len(by_column) > 1:
            logger.debug(
                "loader.relational.split_batch",
                descriptor=repr(descriptor),
                columns=sorted(by_column),
            )

        base = self._query(entity, descriptor.options)
        return [
            (GroupedRelation(entity, getattr(entity, column), base, group_attribute=column), groups)
            for column, groups in by_column.items()
        ]
