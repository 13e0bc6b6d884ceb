from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import and_, delete, insert, select, update

from ..core.descriptors import TableDescriptor
from ..core.utils import dedupe
from ..errors import ConfigurationError

# Centralized write/lookup statement builders. Identifiers always come from
# table descriptors, values always travel as bound parameters.

__all__ = [
    'StatementKind',
    'Statement',
    'returning_columns',
    'build_insert',
    'build_update',
    'build_point_select',
    'build_null_out_update',
    'build_delete',
]


class StatementKind(str, Enum):
    INSERT = 'insert'
    UPDATE = 'update'
    SELECT = 'select'
    DELETE = 'delete'


@dataclass(frozen=True)
class Statement:
    kind: StatementKind
    table: str
    clause: Any = field(repr=False)
    returning: Tuple[str, ...] = ()

    def compile(self, dialect=None) -> str:
        return str(self.clause.compile(dialect=dialect))

    def __str__(self) -> str:
        return self.compile()


# --- helpers -------------------------------------------------------------
def _column(table: TableDescriptor, name: str):
    """Resolve a SQLAlchemy column by its database name."""
    table.attribute(name)
    source = table.source
    col = source.c.get(name)
    if col is not None and col.name == name:
        return col
    for col in source.columns:
        if col.name == name:
            return col
    raise ConfigurationError(f"Column {name} not found on {table.name}")


def returning_columns(table: TableDescriptor, requested: Optional[Iterable[str]] = None) -> Tuple[str, ...]:
    """Requested attributes (all when None) plus every unique-constraint attribute."""
    names = list(table.attribute_names if requested is None else requested)
    for name in names:
        table.attribute(name)
    return tuple(dedupe(names + list(table.unique_attributes)))


def _key_clause(table: TableDescriptor, key: Mapping[str, Any]):
    if not key:
        raise ConfigurationError(f"Empty key predicate for {table.name}")
    if table.covering_unique(key) is None:
        raise ConfigurationError(
            f"Key {sorted(key)} does not cover a unique constraint of {table.name}"
        )
    parts = []
    for name, value in key.items():
        if value is None:
            raise ConfigurationError(f"Key attribute {table.name}.{name} cannot be null")
        parts.append(_column(table, name) == value)
    return parts


def _guard_clause(table: TableDescriptor, guard: Optional[Mapping[str, Any]]):
    parts = []
    for name, value in (guard or {}).items():
        col = _column(table, name)
        parts.append(col.is_(None) if value is None else col == value)
    return parts


def _where(table: TableDescriptor, key: Mapping[str, Any], guard: Optional[Mapping[str, Any]]):
    return and_(*_key_clause(table, key), *_guard_clause(table, guard))


def _returning(table: TableDescriptor, returning: Iterable[str]) -> Tuple[Tuple[str, ...], List[Any]]:
    names = returning_columns(table, returning)
    return names, [_column(table, n) for n in names]


# --- builders ------------------------------------------------------------
def build_insert(table: TableDescriptor, values: Mapping[str, Any], returning: Iterable[str] = ()) -> Statement:
    """INSERT into ``table``.

    Null primary-key values on NOT NULL columns are omitted so the database
    supplies its default; an empty value set becomes ``DEFAULT VALUES``.
    """
    if not table.insertable:
        raise ConfigurationError(f"Table {table.name} is not insertable")
    pk = set(table.primary_key.attributes)
    params = {}
    for name, value in values.items():
        attr = table.attribute(name)
        if not attr.insertable:
            raise ConfigurationError(f"Attribute {table.name}.{name} is not insertable")
        if value is None and name in pk and not attr.nullable:
            continue
        params[_column(table, name)] = value
    names, cols = _returning(table, returning)
    stmt = insert(table.source)
    if params:
        stmt = stmt.values(params)
    return Statement(StatementKind.INSERT, table.name, stmt.returning(*cols), names)


def build_update(
    table: TableDescriptor,
    key: Mapping[str, Any],
    values: Mapping[str, Any],
    returning: Iterable[str] = (),
    *,
    guard: Optional[Mapping[str, Any]] = None,
) -> Statement:
    if not table.updatable:
        raise ConfigurationError(f"Table {table.name} is not updatable")
    if not values:
        raise ConfigurationError(f"Empty UPDATE for {table.name}")
    params = {}
    for name, value in values.items():
        if not table.attribute(name).updatable:
            raise ConfigurationError(f"Attribute {table.name}.{name} is not updatable")
        params[_column(table, name)] = value
    names, cols = _returning(table, returning)
    stmt = update(table.source).where(_where(table, key, guard)).values(params).returning(*cols)
    return Statement(StatementKind.UPDATE, table.name, stmt, names)


def build_point_select(
    table: TableDescriptor,
    key: Mapping[str, Any],
    returning: Iterable[str] = (),
    *,
    guard: Optional[Mapping[str, Any]] = None,
) -> Statement:
    names, cols = _returning(table, returning)
    stmt = select(*cols).where(_where(table, key, guard))
    return Statement(StatementKind.SELECT, table.name, stmt, names)


def build_null_out_update(
    table: TableDescriptor,
    key: Mapping[str, Any],
    columns: Iterable[str],
    returning: Iterable[str] = (),
    *,
    guard: Optional[Mapping[str, Any]] = None,
) -> Statement:
    """UPDATE setting ``columns`` to NULL; used to detach a row from a relation."""
    cols = list(columns)
    if not cols:
        raise ConfigurationError(f"No columns to null out on {table.name}")
    for name in cols:
        attr = table.attribute(name)
        if not attr.nullable:
            raise ConfigurationError(f"Attribute {table.name}.{name} is NOT NULL")
    return build_update(table, key, {name: None for name in cols}, returning, guard=guard)


def build_delete(
    table: TableDescriptor,
    key: Mapping[str, Any],
    returning: Iterable[str] = (),
    *,
    guard: Optional[Mapping[str, Any]] = None,
) -> Statement:
    if not table.deletable:
        raise ConfigurationError(f"Table {table.name} is not deletable")
    names, cols = _returning(table, returning)
    stmt = delete(table.source).where(_where(table, key, guard)).returning(*cols)
    return Statement(StatementKind.DELETE, table.name, stmt, names)
