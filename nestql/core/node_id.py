"""Opaque global identifiers.

The default codec is the PostGraphile-compatible ``base64JSON`` form:
``base64(json([TypeName, *primary_key_values]))``. Any object providing
``encode(list)`` / ``decode(str) -> list`` can replace it.
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from ..errors import ConfigurationError, DecodeError
from .descriptors import MetadataSnapshot, TableDescriptor

__all__ = [
    'NodeIdCodec',
    'Base64JSONCodec',
    'NodeIdHandler',
    'NodeIdRegistry',
    'decode_opaque_id',
]


class NodeIdCodec(Protocol):
    name: str

    def encode(self, value: List[Any]) -> str: ...

    def decode(self, value: str) -> List[Any]: ...


class Base64JSONCodec:
    name = 'base64JSON'

    def encode(self, value: List[Any]) -> str:
        raw = json.dumps(value, separators=(',', ':'), default=str)
        return base64.b64encode(raw.encode('utf-8')).decode('ascii')

    def decode(self, value: str) -> List[Any]:
        try:
            raw = base64.b64decode(str(value).encode('ascii'), validate=True)
            decoded = json.loads(raw.decode('utf-8'))
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise DecodeError(f"Malformed node id {value!r}") from exc
        if not isinstance(decoded, list) or not decoded:
            raise DecodeError(f"Malformed node id {value!r}")
        return decoded


class NodeIdHandler:
    """Encodes/decodes node ids of one table (identified by its type name)."""

    def __init__(self, table: TableDescriptor, codec: NodeIdCodec):
        self.table = table
        self.codec = codec
        self.type_name = table.type_name

    def match(self, decoded: Sequence[Any]) -> bool:
        pk = self.table.primary_key.attributes
        return len(decoded) == len(pk) + 1 and decoded[0] == self.type_name

    def encode(self, row: Dict[str, Any]) -> Optional[str]:
        values = [row.get(a) for a in self.table.primary_key.attributes]
        if any(v is None for v in values):
            return None
        return self.codec.encode([self.type_name, *values])

    def spec(self, decoded: Sequence[Any]) -> Tuple[Tuple[str, Any], ...]:
        return tuple(zip(self.table.primary_key.attributes, decoded[1:]))


def decode_opaque_id(handler: NodeIdHandler, node_id: Any, *, path=()) -> Tuple[Tuple[str, Any], ...]:
    """Decode ``node_id`` into ``((attribute, value), ...)`` for the handler's table.

    Raises DecodeError if the id is malformed or names another table type.
    """
    if not isinstance(node_id, str) or not node_id:
        raise DecodeError(f"Expected a node id string, got {node_id!r}", path=path)
    try:
        decoded = handler.codec.decode(node_id)
    except DecodeError as exc:
        raise DecodeError(exc.message, path=path) from exc
    if not handler.match(decoded):
        raise DecodeError(
            f"Node id {node_id!r} does not identify a {handler.type_name}", path=path
        )
    return handler.spec(decoded)


class NodeIdRegistry:
    """One handler per table, sharing a codec."""

    def __init__(self, snapshot: MetadataSnapshot, codec: Optional[NodeIdCodec] = None):
        self.codec = codec or Base64JSONCodec()
        self._handlers: Dict[str, NodeIdHandler] = {}
        seen: Dict[str, str] = {}
        for name, table in snapshot.tables.items():
            if table.type_name in seen:
                raise ConfigurationError(
                    f"Tables {seen[table.type_name]} and {name} share node id type {table.type_name}"
                )
            seen[table.type_name] = name
            self._handlers[name] = NodeIdHandler(table, self.codec)

    def handler_for(self, table_name: str) -> NodeIdHandler:
        try:
            return self._handlers[table_name]
        except KeyError:
            raise ConfigurationError(f"No node id handler for {table_name}") from None

    def encode(self, table_name: str, row: Dict[str, Any]) -> Optional[str]:
        return self.handler_for(table_name).encode(row)
