"""Mutation orchestrator: turns one :class:`RootOperation` into ordered statements.

For every row written the orchestrator runs three passes:

1. forward pass: relations whose FK sits on this row are resolved first;
   created/connected rows contribute FK values to this row's write;
2. row write: INSERT (create) or UPDATE (update) with direct values plus the
   forward contributions;
3. backward pass: deferred statements (reverse relations, and forward
   update/delete/disconnect) run with the written row as their parent.

Everything for one root mutation happens inside one savepoint.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .core.descriptors import MetadataSnapshot, TableDescriptor
from .core.inputs import Many, RootKind, RootOperation, RowAddress, RowInput, Selection
from .core.node_id import NodeIdRegistry
from .core.utils import dedupe
from .errors import MissingRowError, NestedMutationError
from .executor import StatementExecutor
from .resolvers import PendingStatement, ResolvedNode, resolver_for
from .settings import MutationSettings
from .sql.builders import build_insert, build_point_select, build_update

logger = logging.getLogger(__name__)

__all__ = ['MutationOrchestrator']


class MutationOrchestrator:
    """Resolves root mutations against a shared, read-only metadata snapshot."""

    def __init__(
        self,
        snapshot: MetadataSnapshot,
        node_ids: NodeIdRegistry,
        settings: Optional[MutationSettings] = None,
    ):
        self.snapshot = snapshot
        self.node_ids = node_ids
        self.settings = settings or MutationSettings()

    def executor_for(self, session: Any) -> StatementExecutor:
        if isinstance(session, StatementExecutor):
            return session
        return StatementExecutor(session, log_statements=self.settings.log_statements)

    async def resolve(self, session: Any, root: RootOperation) -> ResolvedNode:
        """Run ``root`` inside its own savepoint and return the output tree.

        Any error rolls the savepoint back, so nothing from this root mutation
        stays applied; the surrounding transaction is untouched.
        """
        executor = self.executor_for(session)
        table = self.snapshot.table(root.table)
        issued = len(executor.history)
        try:
            async with executor.savepoint():
                if root.kind is RootKind.CREATE:
                    node = await self.create_row(executor, table, root.row, selection=root.selection)
                else:
                    node = await self.update_row(
                        executor,
                        table,
                        root.address,
                        root.row,
                        selection=root.selection,
                        path=root.row.path,
                    )
        except NestedMutationError as exc:
            logger.warning(f"Rolled back {root.kind.value} {table.name}: {exc}")
            raise
        logger.info(f"Resolved {root.kind.value} {table.name} with {len(executor.history) - issued} statements")
        return node

    # --- rows ----------------------------------------------------------------
    def requested(
        self,
        table: TableDescriptor,
        selection: Optional[Selection],
        extra: Iterable[str] = (),
    ) -> Tuple[str, ...]:
        """Attributes to return for ``table``: the selection (default all) plus ``extra``."""
        if selection is None or selection.attributes is None:
            base = list(table.attribute_names)
        else:
            base = list(selection.attributes)
        return tuple(dedupe(base + list(extra)))

    def make_node(self, table: TableDescriptor, row: Dict[str, Any], selection: Optional[Selection]) -> ResolvedNode:
        return ResolvedNode(
            table=table,
            row=dict(row),
            node_id=self.node_ids.encode(table.name, row),
            selection=selection,
            node_id_field=self.settings.node_id_field,
        )

    def _link_attributes(self, table: TableDescriptor, row: RowInput) -> List[str]:
        out: List[str] = []
        for field_name in row.relations:
            rel = self.snapshot.relation(table.name, field_name)
            out.extend(rel.local_attributes)
        return out

    async def create_row(
        self,
        executor: StatementExecutor,
        table: TableDescriptor,
        row: RowInput,
        *,
        extra: Optional[Mapping[str, Any]] = None,
        selection: Optional[Selection] = None,
        needed: Iterable[str] = (),
    ) -> ResolvedNode:
        values: Dict[str, Any] = dict(row.values)
        deferred, nested = await self._forward_pass(executor, table, row, values, None, selection, exists=False)
        if extra:
            values.update(extra)
        returning = self.requested(table, selection, list(needed) + self._link_attributes(table, row))
        rows = await executor.fetch(build_insert(table, values, returning), row.path)
        node = self.make_node(table, rows[0], selection)
        node.relations.update(nested)
        await self._backward_pass(node, deferred)
        return node

    async def update_row(
        self,
        executor: StatementExecutor,
        table: TableDescriptor,
        address: RowAddress,
        row: RowInput,
        *,
        guard: Optional[Mapping[str, Any]] = None,
        selection: Optional[Selection] = None,
        path: Tuple = (),
    ) -> ResolvedNode:
        """Update the row at ``address``; ``guard`` adds equality conditions (e.g. the parent link)."""
        key = address.as_dict()
        returning = self.requested(table, selection, self._link_attributes(table, row))
        current: Optional[Dict[str, Any]] = None
        if self._needs_current_row(table, row):
            current = await self._fetch_existing(executor, table, key, returning, guard, path)

        values: Dict[str, Any] = dict(row.values)
        deferred, nested = await self._forward_pass(executor, table, row, values, current, selection, exists=True)
        if values:
            rows = await executor.fetch(build_update(table, key, values, returning, guard=guard), path)
            if not rows:
                raise MissingRowError(f"No {table.type_name} matches {key}", path=path)
            written = rows[0]
        elif current is not None:
            written = current
        else:
            written = await self._fetch_existing(executor, table, key, returning, guard, path)
        node = self.make_node(table, written, selection)
        node.relations.update(nested)
        await self._backward_pass(node, deferred)
        return node

    def _needs_current_row(self, table: TableDescriptor, row: RowInput) -> bool:
        # linking a forward relation on an existing row must see the FK it replaces
        for field_name, rin in row.relations.items():
            rel = self.snapshot.relation(table.name, field_name)
            if not rel.is_referencee and any(op.verb.links_row for op in rin.operations):
                return True
        return False

    async def _fetch_existing(self, executor, table, key, returning, guard, path) -> Dict[str, Any]:
        rows = await executor.fetch(build_point_select(table, key, returning, guard=guard), path)
        if not rows:
            raise MissingRowError(f"No {table.type_name} matches {key}", path=path)
        return rows[0]

    # --- passes --------------------------------------------------------------
    async def _forward_pass(
        self,
        executor: StatementExecutor,
        table: TableDescriptor,
        row: RowInput,
        values: Dict[str, Any],
        parent: Optional[Dict[str, Any]],
        selection: Optional[Selection],
        *,
        exists: bool,
    ):
        """Resolve every relation operation in input order.

        Forward create/connect run now and merge their FK contribution into
        ``values``; everything else comes back as pending work. Returns
        ``(deferred, nested_output)``.
        """
        deferred: List[Tuple[str, Optional[int], PendingStatement]] = []
        nested: Dict[str, Any] = {}
        for field_name, rin in row.relations.items():
            rel = self.snapshot.relation(table.name, field_name)
            sub = selection.for_relation(field_name) if selection is not None else None
            plural = isinstance(rin, Many)
            if plural:
                nested[field_name] = [None] * len(rin.operations)
            else:
                nested[field_name] = None
            for index, op in enumerate(rin.operations):
                resolver = resolver_for(op.verb)(self, executor, parent_exists=exists)
                res = await resolver.resolve(rel, op, parent, sub)
                values.update(res.contribution)
                slot = index if plural else None
                if res.follow_up is not None:
                    deferred.append((field_name, slot, res.follow_up))
                elif plural:
                    nested[field_name][index] = res.node
                else:
                    nested[field_name] = res.node
        return deferred, nested

    async def _backward_pass(self, node: ResolvedNode, deferred) -> None:
        # caller order; statements share one connection so they run one by one
        for field_name, slot, pending in deferred:
            child = await pending.run(node)
            if slot is None:
                node.relations[field_name] = child
            else:
                node.relations[field_name][slot] = child
