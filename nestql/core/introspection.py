"""Build a :class:`MetadataSnapshot` from SQLAlchemy table metadata.

Foreign keys are read from ``ForeignKeyConstraint`` objects; each yields a
forward relation on the referencing table and a reverse relation on the
referenced one.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import Computed, ForeignKeyConstraint, MetaData, Table, UniqueConstraint

from ..errors import ConfigurationError
from ..naming import Inflector
from ..settings import MutationSettings, info_flags
from .descriptors import (
    AttributeDescriptor,
    MetadataSnapshot,
    RelationDescriptor,
    TableDescriptor,
    UniqueConstraintDescriptor,
)

logger = logging.getLogger(__name__)

__all__ = ['build_snapshot', 'describe_table']


def _has_default(table: Table, col) -> bool:
    if col.default is not None or col.server_default is not None:
        return True
    if col.identity is not None:
        return True
    # single integer primary keys get a sequence or rowid unless autoincrement is disabled
    return table.autoincrement_column is col


def _unique_constraints(table: Table) -> List[UniqueConstraintDescriptor]:
    out: List[UniqueConstraintDescriptor] = []
    seen: set = set()

    def _add(name: Optional[str], cols: Iterable[str], primary: bool = False):
        attrs = tuple(cols)
        key = frozenset(attrs)
        if not attrs or key in seen:
            return
        seen.add(key)
        out.append(UniqueConstraintDescriptor(name=name, attributes=attrs, is_primary=primary))

    pk = table.primary_key
    _add(pk.name or f"{table.name}_pkey", [c.name for c in pk.columns], primary=True)
    for cons in table.constraints:
        if isinstance(cons, UniqueConstraint):
            _add(cons.name, [c.name for c in cons.columns])
    for col in table.columns:
        if col.unique:
            _add(f"{table.name}_{col.name}_key", [col.name])
    for idx in table.indexes:
        if idx.unique:
            _add(idx.name, [c.name for c in idx.columns])
    return out


def describe_table(table: Table, inflector: Inflector) -> TableDescriptor:
    """Describe one SQLAlchemy table; flags come from ``info={'nestql': {...}}``."""
    flags = info_flags(table)
    attrs: List[AttributeDescriptor] = []
    for col in table.columns:
        cflags = info_flags(col)
        computed = isinstance(col.computed, Computed)
        attrs.append(
            AttributeDescriptor(
                name=col.name,
                field_name=inflector.attribute(col.name),
                type=col.type,
                nullable=bool(col.nullable),
                insertable=bool(cflags.get('insert', True)) and not computed,
                updatable=bool(cflags.get('update', True)) and not computed,
                has_default=_has_default(table, col),
            )
        )
    type_name = flags.get('type_name') or inflector.table_type(table.name)
    return TableDescriptor(
        name=table.name,
        type_name=type_name,
        field_name=inflector.table_field(table.name),
        attributes=tuple(attrs),
        unique_constraints=tuple(_unique_constraints(table)),
        source=table,
        insertable=bool(flags.get('insert', True)),
        updatable=bool(flags.get('update', True)),
        deletable=bool(flags.get('delete', True)),
    )


def _fk_flags(fk: ForeignKeyConstraint) -> Dict[str, Any]:
    flags = info_flags(fk)
    for element in fk.elements:
        for k, v in info_flags(element).items():
            flags.setdefault(k, v)
    return flags


def _relations_for_fk(
    fk: ForeignKeyConstraint,
    local: TableDescriptor,
    remote: TableDescriptor,
    inflector: Inflector,
) -> Tuple[RelationDescriptor, RelationDescriptor]:
    """Return (forward, reverse) relations for one foreign key constraint.

    ``local`` holds the foreign key, ``remote`` is the referenced table.
    """
    fk_cols = tuple(e.parent.name for e in fk.elements)
    ref_cols = tuple(e.column.name for e in fk.elements)
    if local.name == remote.name and fk_cols == ref_cols:
        raise ConfigurationError(
            f"Foreign key {fk.name or fk_cols} on {local.name} references its own columns; relation direction is ambiguous"
        )
    flags = _fk_flags(fk)
    cname = fk.name or f"{local.name}_{'_'.join(fk_cols)}_fkey"
    reverse_unique = local.covering_unique(fk_cols) is not None

    forward = RelationDescriptor(
        name=f"{cname}:forward",
        field_name=flags.get('forward_field') or inflector.relation_field(remote.name, fk_cols, is_unique=True),
        local_table=local.name,
        remote_table=remote.name,
        attribute_pairs=tuple(zip(fk_cols, ref_cols)),
        is_referencee=False,
        is_unique=True,
        constraint_name=fk.name,
    )
    reverse = RelationDescriptor(
        name=f"{cname}:reverse",
        field_name=flags.get('reverse_field') or inflector.relation_field(local.name, fk_cols, is_unique=reverse_unique),
        local_table=remote.name,
        remote_table=local.name,
        attribute_pairs=tuple(zip(ref_cols, fk_cols)),
        is_referencee=True,
        is_unique=reverse_unique,
        constraint_name=fk.name,
    )
    return forward, reverse


def build_snapshot(
    metadata: MetaData | Iterable[Table],
    settings: Optional[MutationSettings] = None,
) -> MetadataSnapshot:
    """Introspect tables and foreign keys into an immutable snapshot.

    Tables flagged ``omit`` or lacking a primary key are skipped, and so are
    foreign keys touching them.
    """
    settings = settings or MutationSettings()
    inflector = settings.inflector()
    tables_in = list(metadata.sorted_tables) if isinstance(metadata, MetaData) else list(metadata)

    descriptors: Dict[str, TableDescriptor] = {}
    for table in tables_in:
        if info_flags(table).get('omit'):
            logger.debug(f"Skipping table {table.name}: omitted via info flags")
            continue
        if not list(table.primary_key.columns):
            logger.warning(f"Skipping table {table.name}: no primary key")
            continue
        descriptors[table.name] = describe_table(table, inflector)

    relations: List[RelationDescriptor] = []
    for table in tables_in:
        local = descriptors.get(table.name)
        if local is None:
            continue
        seen_pairs: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], Optional[str]] = {}
        for fk in sorted(table.foreign_key_constraints, key=lambda c: (c.name or '', tuple(c.column_keys))):
            remote = descriptors.get(fk.referred_table.name)
            if remote is None:
                logger.debug(f"Skipping foreign key {fk.name} on {table.name}: referenced table not mutable")
                continue
            forward, reverse = _relations_for_fk(fk, local, remote, inflector)
            key = (remote.name, forward.attribute_pairs)
            if key in seen_pairs:
                raise ConfigurationError(
                    f"Foreign keys {seen_pairs[key]} and {fk.name} on {table.name} correlate the same columns with {remote.name}"
                )
            seen_pairs[key] = fk.name
            relations.extend((forward, reverse))

    snapshot = MetadataSnapshot(descriptors.values(), relations)
    logger.info(f"Built nested mutation metadata for {len(descriptors)} tables and {len(relations)} relations")
    return snapshot
