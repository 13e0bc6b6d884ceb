"""Per-relation operation resolvers.

One resolver class per verb; each implements the forward (FK on the parent)
and reverse (FK on the related row) variants. A resolver either runs its
statement right away, because the parent's own write needs the result, or
hands back a :class:`PendingStatement` that the orchestrator runs once the
parent row exists.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union

from .core.descriptors import Direction, RelationDescriptor, TableDescriptor
from .core.inputs import Operation, RowAddress, Selection, Verb
from .errors import ConfigurationError, MissingRowError, ValidationError
from .executor import StatementExecutor
from .sql.builders import build_delete, build_null_out_update, build_point_select, build_update

if TYPE_CHECKING:
    from .orchestrator import MutationOrchestrator

logger = logging.getLogger(__name__)

__all__ = [
    'ResolvedNode',
    'PendingStatement',
    'Resolution',
    'OperationResolver',
    'CreateResolver',
    'ConnectResolver',
    'DisconnectResolver',
    'UpdateResolver',
    'DeleteResolver',
    'resolver_for',
]


@dataclass
class ResolvedNode:
    """A written or looked-up row plus the nested output of its relation fields."""

    table: TableDescriptor
    row: Dict[str, Any]
    relations: Dict[str, Any] = field(default_factory=dict)
    node_id: Optional[str] = None
    selection: Optional[Selection] = None
    node_id_field: str = 'nodeId'

    def to_dict(self) -> Dict[str, Any]:
        sel = self.selection
        names = self.table.attribute_names if sel is None or sel.attributes is None else sel.attributes
        out: Dict[str, Any] = {}
        for name in names:
            if name in self.row:
                out[self.table.attribute(name).field_name] = self.row[name]
        if self.node_id is not None and (sel is None or sel.node_id):
            out[self.node_id_field] = self.node_id
        for field_name, child in self.relations.items():
            # an explicit field list covers relation fields too
            if sel is not None and sel.attributes is not None and field_name not in sel.relations:
                continue
            out[field_name] = _child_dict(child)
        return out


def _child_dict(child: Union['ResolvedNode', List[Optional['ResolvedNode']], None]):
    if child is None:
        return None
    if isinstance(child, list):
        return [c.to_dict() if c is not None else None for c in child]
    return child.to_dict()


@dataclass
class PendingStatement:
    """Work deferred until the parent row is written; ``run`` receives the parent node."""

    run: Callable[[ResolvedNode], Awaitable[Optional[ResolvedNode]]]
    path: tuple = ()


@dataclass
class Resolution:
    contribution: Dict[str, Any] = field(default_factory=dict)
    node: Optional[ResolvedNode] = None
    follow_up: Optional[PendingStatement] = None


def link_values(relation: RelationDescriptor, local_row: Dict[str, Any]) -> Dict[str, Any]:
    """Remote attribute values that tie a remote row to ``local_row``."""
    return {ra: local_row.get(la) for la, ra in relation.attribute_pairs}


def contribution_from(relation: RelationDescriptor, remote_row: Dict[str, Any]) -> Dict[str, Any]:
    """Local attribute values that make the local row reference ``remote_row``."""
    return {la: remote_row.get(ra) for la, ra in relation.attribute_pairs}


def _matches(row: Dict[str, Any], address: RowAddress) -> bool:
    return all(row.get(a) == v for a, v in address.keys)


class OperationResolver:
    verb: Verb

    def __init__(self, orchestrator: 'MutationOrchestrator', executor: StatementExecutor, *, parent_exists: bool = False):
        self.orchestrator = orchestrator
        self.executor = executor
        self.snapshot = orchestrator.snapshot
        self.parent_exists = parent_exists

    async def resolve(
        self,
        relation: RelationDescriptor,
        operation: Operation,
        parent: Optional[Dict[str, Any]],
        selection: Optional[Selection] = None,
    ) -> Resolution:
        """``parent`` is the parent's current row when it was read before the write, else None."""
        if relation.direction is Direction.FORWARD:
            return await self.forward(relation, operation, parent, selection)
        return await self.reverse(relation, operation, parent, selection)

    async def forward(self, relation, operation, parent, selection) -> Resolution:
        raise ConfigurationError(f"{operation.verb.value} is not supported on {relation.field_name}")

    async def reverse(self, relation, operation, parent, selection) -> Resolution:
        raise ConfigurationError(f"{operation.verb.value} is not supported on {relation.field_name}")

    # --- shared helpers ------------------------------------------------------
    def remote(self, relation: RelationDescriptor) -> TableDescriptor:
        return self.snapshot.table(relation.remote_table)

    def node(self, table: TableDescriptor, row: Dict[str, Any], selection: Optional[Selection]) -> ResolvedNode:
        return self.orchestrator.make_node(table, row, selection)

    async def fetch_one(self, statement, path) -> Optional[Dict[str, Any]]:
        rows = await self.executor.fetch(statement, path)
        return rows[0] if rows else None

    def guard_forward_link(
        self,
        relation: RelationDescriptor,
        parent: Optional[Dict[str, Any]],
        target: Optional[Dict[str, Any]],
        path,
    ) -> None:
        """Reject linking an existing parent that already references a different row."""
        if parent is None:
            return
        current = {la: parent.get(la) for la in relation.local_attributes}
        if all(v is None for v in current.values()):
            return
        if target is not None and current == contribution_from(relation, target):
            return
        raise ValidationError(
            f"{relation.field_name} already references another {self.remote(relation).type_name}; "
            "disconnect it before linking a new one",
            path=path,
        )

    async def guard_reverse_link(
        self,
        relation: RelationDescriptor,
        link: Dict[str, Any],
        address: Optional[RowAddress],
        path,
    ) -> None:
        """For one-to-one reverse relations, reject linking when another row already holds the link."""
        remote = self.remote(relation)
        existing = await self.fetch_one(build_point_select(remote, link), path)
        if existing is None:
            return
        if address is not None and _matches(existing, address):
            return
        raise ValidationError(
            f"{relation.field_name} already links another {remote.type_name}; disconnect it before linking a new one",
            path=path,
        )


class CreateResolver(OperationResolver):
    verb = Verb.CREATE

    async def forward(self, relation, operation, parent, selection) -> Resolution:
        self.guard_forward_link(relation, parent, None, operation.path)
        node = await self.orchestrator.create_row(
            self.executor,
            self.remote(relation),
            operation.row,
            selection=selection,
            needed=relation.remote_attributes,
        )
        return Resolution(contribution=contribution_from(relation, node.row), node=node)

    async def reverse(self, relation, operation, parent, selection) -> Resolution:
        check = relation.is_unique and self.parent_exists

        async def run(parent_node: ResolvedNode) -> Optional[ResolvedNode]:
            link = link_values(relation, parent_node.row)
            if check:
                await self.guard_reverse_link(relation, link, None, operation.path)
            return await self.orchestrator.create_row(
                self.executor,
                self.remote(relation),
                operation.row,
                extra=link,
                selection=selection,
            )

        return Resolution(follow_up=PendingStatement(run, operation.path))


class ConnectResolver(OperationResolver):
    """connectByKeys and connectById; the address is already decoded by the parser."""

    verb = Verb.CONNECT_BY_KEYS

    async def forward(self, relation, operation, parent, selection) -> Resolution:
        remote = self.remote(relation)
        requested = self.orchestrator.requested(remote, selection, relation.remote_attributes)
        row = await self.fetch_one(
            build_point_select(remote, operation.address.as_dict(), requested), operation.path
        )
        if row is None:
            raise MissingRowError(f"No {remote.type_name} matches {operation.address.as_dict()}", path=operation.path)
        self.guard_forward_link(relation, parent, row, operation.path)
        return Resolution(contribution=contribution_from(relation, row), node=self.node(remote, row, selection))

    async def reverse(self, relation, operation, parent, selection) -> Resolution:
        remote = self.remote(relation)
        check = relation.is_unique and self.parent_exists

        async def run(parent_node: ResolvedNode) -> Optional[ResolvedNode]:
            link = link_values(relation, parent_node.row)
            if check:
                await self.guard_reverse_link(relation, link, operation.address, operation.path)
            stmt = build_update(
                remote,
                operation.address.as_dict(),
                link,
                self.orchestrator.requested(remote, selection),
            )
            row = await self.fetch_one(stmt, operation.path)
            if row is None:
                raise MissingRowError(
                    f"No {remote.type_name} matches {operation.address.as_dict()}", path=operation.path
                )
            return self.node(remote, row, selection)

        return Resolution(follow_up=PendingStatement(run, operation.path))


class DisconnectResolver(OperationResolver):
    """Detach a row; a row that is not (or no longer) linked to the parent is left alone."""

    verb = Verb.DISCONNECT_BY_KEYS

    async def forward(self, relation, operation, parent, selection) -> Resolution:
        remote = self.remote(relation)
        local = self.snapshot.table(relation.local_table)

        async def run(parent_node: ResolvedNode) -> Optional[ResolvedNode]:
            target = await self.fetch_one(
                build_point_select(
                    remote,
                    operation.address.as_dict(),
                    self.orchestrator.requested(remote, selection, relation.remote_attributes),
                ),
                operation.path,
            )
            if target is None:
                logger.debug(f"{relation.field_name}: disconnect target not found, nothing to do")
                return None
            key = {a: parent_node.row[a] for a in local.primary_key.attributes}
            stmt = build_null_out_update(
                local,
                key,
                relation.local_attributes,
                self.orchestrator.requested(local, parent_node.selection),
                guard=contribution_from(relation, target),
            )
            row = await self.fetch_one(stmt, operation.path)
            if row is None:
                logger.debug(f"{relation.field_name}: parent does not reference the target, nothing to do")
                return None
            parent_node.row.update(row)
            return self.node(remote, target, selection)

        return Resolution(follow_up=PendingStatement(run, operation.path))

    async def reverse(self, relation, operation, parent, selection) -> Resolution:
        remote = self.remote(relation)

        async def run(parent_node: ResolvedNode) -> Optional[ResolvedNode]:
            stmt = build_null_out_update(
                remote,
                operation.address.as_dict(),
                relation.remote_attributes,
                self.orchestrator.requested(remote, selection),
                guard=link_values(relation, parent_node.row),
            )
            row = await self.fetch_one(stmt, operation.path)
            if row is None:
                logger.debug(f"{relation.field_name}: row not linked to parent, disconnect is a no-op")
                return None
            return self.node(remote, row, selection)

        return Resolution(follow_up=PendingStatement(run, operation.path))


class UpdateResolver(OperationResolver):
    """Patch the related row; the link between the two rows is part of the guard, never of the patch."""

    verb = Verb.UPDATE

    async def forward(self, relation, operation, parent, selection) -> Resolution:
        return self._deferred(relation, operation, selection)

    async def reverse(self, relation, operation, parent, selection) -> Resolution:
        return self._deferred(relation, operation, selection)

    def _deferred(self, relation, operation, selection) -> Resolution:
        remote = self.remote(relation)

        async def run(parent_node: ResolvedNode) -> Optional[ResolvedNode]:
            return await self.orchestrator.update_row(
                self.executor,
                remote,
                operation.address,
                operation.row,
                guard=link_values(relation, parent_node.row),
                selection=selection,
                path=operation.path,
            )

        return Resolution(follow_up=PendingStatement(run, operation.path))


class DeleteResolver(OperationResolver):
    """Delete the related row.

    Forward: the parent's FK is nulled out first, then the referenced row is
    deleted. Reverse: the child row is deleted where it still links to the parent.
    """

    verb = Verb.DELETE

    async def forward(self, relation, operation, parent, selection) -> Resolution:
        remote = self.remote(relation)
        local = self.snapshot.table(relation.local_table)

        async def run(parent_node: ResolvedNode) -> Optional[ResolvedNode]:
            link = link_values(relation, parent_node.row)
            target = None
            if not any(v is None for v in link.values()):
                target = await self.fetch_one(
                    build_point_select(
                        remote,
                        operation.address.as_dict(),
                        self.orchestrator.requested(remote, selection, relation.remote_attributes),
                        guard=link,
                    ),
                    operation.path,
                )
            if target is None:
                raise self._not_linked(relation, operation)
            key = {a: parent_node.row[a] for a in local.primary_key.attributes}
            unlinked = await self.fetch_one(
                build_null_out_update(
                    local,
                    key,
                    relation.local_attributes,
                    self.orchestrator.requested(local, parent_node.selection),
                    guard=contribution_from(relation, target),
                ),
                operation.path,
            )
            if unlinked is None:
                raise self._not_linked(relation, operation)
            parent_node.row.update(unlinked)
            return await self._delete(remote, operation, selection, link)

        return Resolution(follow_up=PendingStatement(run, operation.path))

    async def reverse(self, relation, operation, parent, selection) -> Resolution:
        remote = self.remote(relation)

        async def run(parent_node: ResolvedNode) -> Optional[ResolvedNode]:
            row = await self._delete(remote, operation, selection, link_values(relation, parent_node.row))
            if row is None:
                raise self._not_linked(relation, operation)
            return row

        return Resolution(follow_up=PendingStatement(run, operation.path))

    async def _delete(self, remote, operation, selection, guard) -> Optional[ResolvedNode]:
        stmt = build_delete(
            remote,
            operation.address.as_dict(),
            self.orchestrator.requested(remote, selection),
            guard=guard,
        )
        row = await self.fetch_one(stmt, operation.path)
        return self.node(remote, row, selection) if row is not None else None

    def _not_linked(self, relation, operation) -> MissingRowError:
        return MissingRowError(
            f"No {self.remote(relation).type_name} matching {operation.address.as_dict()} "
            f"is linked through {relation.field_name}",
            path=operation.path,
        )


def resolver_for(verb: Verb) -> type:
    if verb is Verb.CREATE:
        return CreateResolver
    elif verb is Verb.CONNECT_BY_KEYS or verb is Verb.CONNECT_BY_ID:
        return ConnectResolver
    elif verb is Verb.DISCONNECT_BY_KEYS or verb is Verb.DISCONNECT_BY_ID:
        return DisconnectResolver
    elif verb is Verb.UPDATE:
        return UpdateResolver
    elif verb is Verb.DELETE:
        return DeleteResolver
    raise ConfigurationError(f"No resolver for {verb!r}")
