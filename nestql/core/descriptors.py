"""Immutable table/relation metadata.

Built once by :mod:`nestql.core.introspection` and shared read-only by every
request. Nothing here talks to the database.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from ..errors import ConfigurationError


class Direction(str, Enum):
    FORWARD = 'forward'   # foreign key stored on the local table
    REVERSE = 'reverse'   # foreign key stored on the remote table


@dataclass(frozen=True)
class AttributeDescriptor:
    name: str
    field_name: str
    type: Any
    nullable: bool = True
    insertable: bool = True
    updatable: bool = True
    has_default: bool = False


@dataclass(frozen=True)
class UniqueConstraintDescriptor:
    name: Optional[str]
    attributes: Tuple[str, ...]
    is_primary: bool = False


@dataclass(frozen=True)
class TableDescriptor:
    """One relational table as seen by the mutation engine.

    ``source`` is the SQLAlchemy ``Table`` statements are built against.
    """

    name: str
    type_name: str
    field_name: str
    attributes: Tuple[AttributeDescriptor, ...]
    unique_constraints: Tuple[UniqueConstraintDescriptor, ...]
    source: Any = field(compare=False, repr=False)
    insertable: bool = True
    updatable: bool = True
    deletable: bool = True

    def __post_init__(self):
        names = [a.name for a in self.attributes]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Table {self.name} declares duplicate attributes")
        if not any(u.is_primary for u in self.unique_constraints):
            raise ConfigurationError(f"Table {self.name} has no primary key")
        for u in self.unique_constraints:
            missing = [a for a in u.attributes if a not in names]
            if not u.attributes or missing:
                raise ConfigurationError(
                    f"Unique constraint {u.name or u.attributes} on {self.name} references unknown attributes {missing}"
                )
        object.__setattr__(self, '_by_name', MappingProxyType({a.name: a for a in self.attributes}))
        object.__setattr__(self, '_by_field', MappingProxyType({a.field_name: a for a in self.attributes}))

    @property
    def attribute_names(self) -> Tuple[str, ...]:
        return tuple(a.name for a in self.attributes)

    def has_attribute(self, name: str) -> bool:
        return name in self._by_name  # type: ignore[attr-defined]

    def attribute(self, name: str) -> AttributeDescriptor:
        try:
            return self._by_name[name]  # type: ignore[attr-defined]
        except KeyError:
            raise ConfigurationError(f"Attribute {name} not found in {self.name}") from None

    def attribute_for_field(self, field_name: str) -> Optional[AttributeDescriptor]:
        return self._by_field.get(field_name)  # type: ignore[attr-defined]

    @property
    def primary_key(self) -> UniqueConstraintDescriptor:
        return next(u for u in self.unique_constraints if u.is_primary)

    @property
    def unique_attributes(self) -> Tuple[str, ...]:
        """Every attribute that belongs to some unique constraint, primary key first."""
        out: list = []
        for u in self.unique_constraints:
            for a in u.attributes:
                if a not in out:
                    out.append(a)
        return tuple(out)

    def find_unique(self, attributes: Iterable[str]) -> Optional[UniqueConstraintDescriptor]:
        """Return the unique constraint made of exactly ``attributes`` (order-insensitive)."""
        wanted = set(attributes)
        for u in self.unique_constraints:
            if set(u.attributes) == wanted:
                return u
        return None

    def covering_unique(self, attributes: Iterable[str]) -> Optional[UniqueConstraintDescriptor]:
        """Return a unique constraint whose attributes are all contained in ``attributes``."""
        have = set(attributes)
        for u in self.unique_constraints:
            if set(u.attributes) <= have:
                return u
        return None


@dataclass(frozen=True)
class RelationDescriptor:
    """A directed relationship from ``local_table`` to ``remote_table``.

    ``attribute_pairs`` lists ``(local_attribute, remote_attribute)`` pairs.
    ``is_referencee`` is True when the foreign key lives on the remote table.
    """

    name: str
    field_name: str
    local_table: str
    remote_table: str
    attribute_pairs: Tuple[Tuple[str, str], ...]
    is_referencee: bool
    is_unique: bool
    constraint_name: Optional[str] = None

    def __post_init__(self):
        if not self.attribute_pairs:
            raise ConfigurationError(f"Relation {self.name} has no attribute pairs")
        for pair in self.attribute_pairs:
            if len(pair) != 2:
                raise ConfigurationError(f"Relation {self.name} has a malformed attribute pair {pair!r}")

    @property
    def direction(self) -> Direction:
        return Direction.REVERSE if self.is_referencee else Direction.FORWARD

    @property
    def local_attributes(self) -> Tuple[str, ...]:
        return tuple(p[0] for p in self.attribute_pairs)

    @property
    def remote_attributes(self) -> Tuple[str, ...]:
        return tuple(p[1] for p in self.attribute_pairs)

    @property
    def fk_attributes(self) -> Tuple[str, ...]:
        """Columns that physically hold the foreign key (on whichever side that is)."""
        return self.remote_attributes if self.is_referencee else self.local_attributes


class MetadataSnapshot:
    """Read-only view over every table and relation known to the engine."""

    def __init__(self, tables: Iterable[TableDescriptor], relations: Iterable[RelationDescriptor]):
        tmap: Dict[str, TableDescriptor] = {}
        for t in tables:
            if t.name in tmap:
                raise ConfigurationError(f"Table {t.name} registered twice")
            tmap[t.name] = t
        rmap: Dict[str, Dict[str, RelationDescriptor]] = {name: {} for name in tmap}
        for r in relations:
            local = tmap.get(r.local_table)
            remote = tmap.get(r.remote_table)
            if local is None or remote is None:
                raise ConfigurationError(f"Relation {r.name} references an unknown table")
            for la, ra in r.attribute_pairs:
                if not local.has_attribute(la) or not remote.has_attribute(ra):
                    raise ConfigurationError(
                        f"Relation {r.name} pairs {r.local_table}.{la} with {r.remote_table}.{ra}, which do not both exist"
                    )
            fields = rmap[r.local_table]
            if r.field_name in fields:
                raise ConfigurationError(
                    f"Relations {fields[r.field_name].name} and {r.name} on {r.local_table} share field name {r.field_name}"
                )
            if local.attribute_for_field(r.field_name) is not None:
                raise ConfigurationError(
                    f"Relation field {r.field_name} on {r.local_table} shadows an attribute"
                )
            fields[r.field_name] = r
        self._tables: Mapping[str, TableDescriptor] = MappingProxyType(tmap)
        self._relations: Mapping[str, Mapping[str, RelationDescriptor]] = MappingProxyType(
            {k: MappingProxyType(v) for k, v in rmap.items()}
        )

    @property
    def tables(self) -> Mapping[str, TableDescriptor]:
        return self._tables

    def table(self, name: str) -> TableDescriptor:
        try:
            return self._tables[name]
        except KeyError:
            raise ConfigurationError(f"Unknown table {name}") from None

    def relations_for(self, table_name: str) -> Mapping[str, RelationDescriptor]:
        """Relations keyed by field name, in declaration order."""
        self.table(table_name)
        return self._relations[table_name]

    def relation(self, table_name: str, field_name: str) -> Optional[RelationDescriptor]:
        return self.relations_for(table_name).get(field_name)

    def __contains__(self, table_name: object) -> bool:
        return table_name in self._tables

    def __repr__(self) -> str:
        return f"MetadataSnapshot(tables={list(self._tables)})"
