"""Typed mutation input tree and the parser that builds it from wire payloads.

A payload is parsed exactly once per request. Everything the engine can
reject without touching the database (unknown fields, lists on unique
relations, malformed ids, ambiguous foreign-key assignments) is rejected here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from ..errors import PathItem, ValidationError
from ..settings import MutationSettings
from .descriptors import MetadataSnapshot, RelationDescriptor, TableDescriptor
from .node_id import NodeIdRegistry, decode_opaque_id
from .utils import coerce_value

logger = logging.getLogger(__name__)

Path = Tuple[PathItem, ...]

__all__ = [
    'Verb',
    'RootKind',
    'RowAddress',
    'RowInput',
    'Operation',
    'Single',
    'Many',
    'RelationInput',
    'Selection',
    'RootOperation',
    'MutationInputParser',
]


class Verb(str, Enum):
    CREATE = 'create'
    CONNECT_BY_KEYS = 'connectByKeys'
    CONNECT_BY_ID = 'connectById'
    DISCONNECT_BY_KEYS = 'disconnectByKeys'
    DISCONNECT_BY_ID = 'disconnectById'
    UPDATE = 'update'
    DELETE = 'delete'

    @property
    def links_row(self) -> bool:
        """True for verbs that make the related row reference (or be referenced by) the parent."""
        return self in (Verb.CREATE, Verb.CONNECT_BY_KEYS, Verb.CONNECT_BY_ID)

    @property
    def is_connect(self) -> bool:
        return self in (Verb.CONNECT_BY_KEYS, Verb.CONNECT_BY_ID)

    @property
    def is_disconnect(self) -> bool:
        return self in (Verb.DISCONNECT_BY_KEYS, Verb.DISCONNECT_BY_ID)


class RootKind(str, Enum):
    CREATE = 'create'
    UPDATE = 'update'


@dataclass(frozen=True)
class RowAddress:
    """Identifies one existing row by unique-key values (decoded from a node id when ``node_id`` is set)."""

    keys: Tuple[Tuple[str, Any], ...]
    node_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.keys)


@dataclass(frozen=True)
class RowInput:
    """Attribute values for one row write plus its nested relation inputs."""

    values: Dict[str, Any] = field(default_factory=dict)
    relations: Dict[str, 'RelationInput'] = field(default_factory=dict)
    path: Path = ()


@dataclass(frozen=True)
class Operation:
    verb: Verb
    path: Path
    address: Optional[RowAddress] = None
    row: Optional[RowInput] = None


@dataclass(frozen=True)
class Single:
    operation: Operation

    @property
    def operations(self) -> Tuple[Operation, ...]:
        return (self.operation,)


@dataclass(frozen=True)
class Many:
    operations: Tuple[Operation, ...]


RelationInput = Union[Single, Many]


@dataclass(frozen=True)
class Selection:
    """Requested output: attribute names (None = all) and nested relation selections."""

    attributes: Optional[Tuple[str, ...]] = None
    relations: Dict[str, 'Selection'] = field(default_factory=dict)
    node_id: bool = False

    def for_relation(self, field_name: str) -> Optional['Selection']:
        return self.relations.get(field_name)


@dataclass(frozen=True)
class RootOperation:
    kind: RootKind
    table: str
    row: RowInput
    address: Optional[RowAddress] = None
    selection: Optional[Selection] = None
    name: Optional[str] = None


class MutationInputParser:
    """Turns client payloads (client field names, JSON values) into :class:`RootOperation` trees."""

    def __init__(self, snapshot: MetadataSnapshot, settings: MutationSettings, node_ids: NodeIdRegistry):
        self.snapshot = snapshot
        self.settings = settings
        self.node_ids = node_ids
        self.inflector = settings.inflector()
        self.node_id_field = settings.node_id_field
        self._verbs: Dict[str, Verb] = {self.inflector.verb(v.value): v for v in Verb}

    # --- roots ---------------------------------------------------------------
    def parse_create(
        self,
        table_name: str,
        payload: Any,
        *,
        path: Path = ('input',),
        selection: Any = None,
        name: Optional[str] = None,
    ) -> RootOperation:
        table = self.snapshot.table(table_name)
        row = self.parse_row(table, payload, path, creating=True)
        return RootOperation(
            kind=RootKind.CREATE,
            table=table.name,
            row=row,
            selection=self.parse_selection(table, selection),
            name=name,
        )

    def parse_update(
        self,
        table_name: str,
        address_payload: Any,
        patch: Any,
        *,
        path: Path = ('input',),
        patch_path: Optional[Path] = None,
        selection: Any = None,
        name: Optional[str] = None,
    ) -> RootOperation:
        table = self.snapshot.table(table_name)
        address = self.parse_address(table, address_payload, path)
        row = self.parse_row(table, patch if patch is not None else {}, patch_path or path, creating=False)
        return RootOperation(
            kind=RootKind.UPDATE,
            table=table.name,
            row=row,
            address=address,
            selection=self.parse_selection(table, selection),
            name=name,
        )

    # --- rows ----------------------------------------------------------------
    def parse_row(
        self,
        table: TableDescriptor,
        payload: Any,
        path: Path,
        *,
        creating: bool,
        linked: Optional[RelationDescriptor] = None,
    ) -> RowInput:
        """Parse one row payload.

        ``linked`` is the reverse relation through which this row hangs off its
        parent; its foreign-key attributes are owned by the relation and may not
        be set by the client.
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(f"Expected an object for {table.type_name}", path=path)
        if creating and not table.insertable:
            raise ValidationError(f"{table.type_name} rows cannot be created", path=path)
        if not creating and not table.updatable:
            raise ValidationError(f"{table.type_name} rows cannot be updated", path=path)

        values: Dict[str, Any] = {}
        relations: Dict[str, RelationInput] = {}
        for key, raw in payload.items():
            rel = self.snapshot.relation(table.name, key)
            if rel is not None:
                if raw is None:
                    continue
                relations[key] = self.parse_relation(rel, raw, path + (key,), parent_creating=creating)
                continue
            attr = table.attribute_for_field(key)
            if attr is None:
                raise ValidationError(f"Unknown field {key} on {table.type_name}", path=path + (key,))
            writable = attr.insertable if creating else attr.updatable
            if not writable:
                verb = 'set on create' if creating else 'updated'
                raise ValidationError(f"Field {key} on {table.type_name} cannot be {verb}", path=path + (key,))
            values[attr.name] = coerce_value(attr.type, raw, path=path + (key,))

        if linked is not None:
            owned = [a for a in linked.remote_attributes if a in values]
            if owned:
                fields = ', '.join(table.attribute(a).field_name for a in owned)
                raise ValidationError(
                    f"{fields} on {table.type_name} is assigned by {linked.field_name}; it cannot be set explicitly",
                    path=path,
                )
            for field_name in relations:
                rel = self.snapshot.relation(table.name, field_name)
                if not rel.is_referencee and set(rel.local_attributes) & set(linked.remote_attributes):
                    raise ValidationError(
                        f"{field_name} would reassign the row linked through {linked.field_name}",
                        path=path + (field_name,),
                    )
        self._check_forward_conflicts(table, values, relations, path)
        return RowInput(values=values, relations=relations, path=path)

    def _check_forward_conflicts(
        self,
        table: TableDescriptor,
        values: Mapping[str, Any],
        relations: Mapping[str, RelationInput],
        path: Path,
    ) -> None:
        # A forward create/connect owns the local FK columns it fills in.
        owners: Dict[str, str] = {}
        for field_name, rin in relations.items():
            rel = self.snapshot.relation(table.name, field_name)
            if rel is None or rel.is_referencee:
                continue
            if not any(op.verb.links_row for op in rin.operations):
                continue
            for attr in rel.local_attributes:
                if attr in values:
                    raise ValidationError(
                        f"{field_name} and {table.attribute(attr).field_name} both assign {table.type_name}.{attr}; "
                        "disconnect explicitly or set only one of them",
                        path=path + (field_name,),
                    )
                if attr in owners:
                    raise ValidationError(
                        f"{owners[attr]} and {field_name} both assign {table.type_name}.{attr}",
                        path=path + (field_name,),
                    )
                owners[attr] = field_name

    # --- relations -----------------------------------------------------------
    def parse_relation(
        self,
        rel: RelationDescriptor,
        raw: Any,
        path: Path,
        *,
        parent_creating: bool,
    ) -> RelationInput:
        if isinstance(raw, (list, tuple)):
            if rel.is_unique:
                raise ValidationError(
                    f"{rel.field_name} relates a single row and takes one operation, not a list",
                    path=path,
                )
            return Many(tuple(
                self.parse_operation(rel, item, path + (i,), parent_creating=parent_creating)
                for i, item in enumerate(raw)
            ))
        return Single(self.parse_operation(rel, raw, path, parent_creating=parent_creating))

    def parse_operation(
        self,
        rel: RelationDescriptor,
        raw: Any,
        path: Path,
        *,
        parent_creating: bool,
    ) -> Operation:
        allowed = ', '.join(self._verbs)
        if not isinstance(raw, Mapping) or len(raw) != 1:
            raise ValidationError(f"{rel.field_name} expects exactly one of: {allowed}", path=path)
        key, body = next(iter(raw.items()))
        verb = self._verbs.get(key)
        if verb is None:
            raise ValidationError(f"Unknown operation {key}; expected one of: {allowed}", path=path + (key,))
        opath = path + (key,)
        if parent_creating and not verb.links_row:
            raise ValidationError(f"{key} requires an existing parent row", path=opath)
        if verb.links_row:
            self._check_linkable(rel, verb, opath, parent_creating=parent_creating)
        remote = self.snapshot.table(rel.remote_table)
        linked = rel if rel.is_referencee else None

        if verb is Verb.CREATE:
            row = self.parse_row(remote, body, opath, creating=True, linked=linked)
            return Operation(verb=verb, path=opath, row=row)

        if verb.is_disconnect:
            self._check_detachable(rel, opath, 'disconnected')

        if verb in (Verb.CONNECT_BY_KEYS, Verb.DISCONNECT_BY_KEYS):
            address = self.parse_keys(remote, body, opath)
            return Operation(verb=verb, path=opath, address=address)
        if verb in (Verb.CONNECT_BY_ID, Verb.DISCONNECT_BY_ID):
            address = self.parse_node_id(remote, body, opath)
            return Operation(verb=verb, path=opath, address=address)

        if not isinstance(body, Mapping):
            raise ValidationError(f"{key} expects an object", path=opath)
        body = dict(body)
        if verb is Verb.DELETE:
            if not remote.deletable:
                raise ValidationError(f"{remote.type_name} rows cannot be deleted", path=opath)
            if not rel.is_referencee:
                # forward: the parent's FK is nulled out before the delete
                self._check_detachable(rel, opath, 'deleted')
            return Operation(verb=verb, path=opath, address=self.parse_address(remote, body, opath))

        # Verb.UPDATE
        patch = body.pop('patch', None)
        if not isinstance(patch, Mapping):
            raise ValidationError("update expects a patch object", path=opath + ('patch',))
        address = self.parse_address(remote, body, opath)
        row = self.parse_row(remote, patch, opath + ('patch',), creating=False, linked=linked)
        return Operation(verb=verb, path=opath, address=address, row=row)

    def _check_detachable(self, rel: RelationDescriptor, path: Path, action: str) -> None:
        holder = self.snapshot.table(rel.remote_table if rel.is_referencee else rel.local_table)
        for attr_name in rel.fk_attributes:
            attr = holder.attribute(attr_name)
            if not attr.nullable or not attr.updatable:
                raise ValidationError(
                    f"{rel.field_name} cannot be {action}: {holder.type_name}.{attr.field_name} is required",
                    path=path,
                )

    def _check_linkable(self, rel: RelationDescriptor, verb: Verb, path: Path, *, parent_creating: bool) -> None:
        """The FK columns a create/connect writes must be writable by that statement."""
        holder = self.snapshot.table(rel.remote_table if rel.is_referencee else rel.local_table)
        # reverse: the related row is inserted (create) or updated (connect);
        # forward: the parent row is inserted or updated
        inserting = verb is Verb.CREATE if rel.is_referencee else parent_creating
        if rel.is_referencee and verb.is_connect and not holder.updatable:
            raise ValidationError(
                f"{rel.field_name} cannot be connected: {holder.type_name} rows cannot be updated",
                path=path,
            )
        for attr_name in rel.fk_attributes:
            attr = holder.attribute(attr_name)
            if not (attr.insertable if inserting else attr.updatable):
                raise ValidationError(
                    f"{rel.field_name} cannot be linked: {holder.type_name}.{attr.field_name} is read-only",
                    path=path,
                )

    # --- addressing ----------------------------------------------------------
    def parse_address(self, table: TableDescriptor, body: Any, path: Path) -> RowAddress:
        """Address a row by node id or unique key; the node id wins when both are given."""
        if not isinstance(body, Mapping):
            raise ValidationError(f"Expected key fields or {self.node_id_field} for {table.type_name}", path=path)
        node_id = body.get(self.node_id_field)
        if node_id is not None:
            if len(body) > 1:
                logger.debug(f"Both {self.node_id_field} and key fields given for {table.type_name}; using {self.node_id_field}")
            return self.parse_node_id(table, node_id, path + (self.node_id_field,))
        keys = {k: v for k, v in body.items() if k != self.node_id_field}
        return self.parse_keys(table, keys, path)

    def parse_keys(self, table: TableDescriptor, body: Any, path: Path) -> RowAddress:
        if not isinstance(body, Mapping) or not body:
            raise ValidationError(f"Expected unique key fields for {table.type_name}", path=path)
        resolved: Dict[str, Any] = {}
        for key, raw in body.items():
            attr = table.attribute_for_field(key)
            if attr is None:
                raise ValidationError(f"Unknown field {key} on {table.type_name}", path=path + (key,))
            if raw is None:
                raise ValidationError(f"Key field {key} cannot be null", path=path + (key,))
            resolved[attr.name] = coerce_value(attr.type, raw, path=path + (key,))
        unique = table.find_unique(resolved)
        if unique is None:
            fields = ', '.join(sorted(body))
            raise ValidationError(f"{fields} is not a unique key of {table.type_name}", path=path)
        return RowAddress(keys=tuple((a, resolved[a]) for a in unique.attributes))

    def parse_node_id(self, table: TableDescriptor, body: Any, path: Path) -> RowAddress:
        if isinstance(body, Mapping):
            if set(body) != {self.node_id_field}:
                raise ValidationError(f"Expected {{{self.node_id_field}: ...}}", path=path)
            path = path + (self.node_id_field,)
            body = body[self.node_id_field]
        handler = self.node_ids.handler_for(table.name)
        pairs = decode_opaque_id(handler, body, path=path)
        keys = tuple((a, coerce_value(table.attribute(a).type, v, path=path)) for a, v in pairs)
        return RowAddress(keys=keys, node_id=body)

    # --- output selection -----------------------------------------------------
    def parse_selection(self, table: TableDescriptor, spec: Any, path: Path = ('selection',)) -> Optional[Selection]:
        """Parse ``['id', 'name', {'childrenByParentId': ['label']}]`` style selections."""
        if spec is None:
            return None
        if not isinstance(spec, (list, tuple)):
            raise ValidationError("Selection must be a list", path=path)
        attrs: list = []
        relations: Dict[str, Selection] = {}
        node_id = False
        for i, item in enumerate(spec):
            entries: Iterable[Tuple[str, Any]]
            if isinstance(item, str):
                entries = [(item, None)]
            elif isinstance(item, Mapping):
                entries = item.items()
            else:
                raise ValidationError("Selection entries must be names or objects", path=path + (i,))
            for key, sub in entries:
                if key == self.node_id_field:
                    node_id = True
                    continue
                rel = self.snapshot.relation(table.name, key)
                if rel is not None:
                    relations[key] = self.parse_selection(
                        self.snapshot.table(rel.remote_table), sub, path + (key,)
                    ) or Selection()
                    continue
                attr = table.attribute_for_field(key)
                if attr is None:
                    raise ValidationError(f"Unknown field {key} on {table.type_name}", path=path + (i,))
                if attr.name not in attrs:
                    attrs.append(attr.name)
        return Selection(attributes=tuple(attrs), relations=relations, node_id=node_id)
